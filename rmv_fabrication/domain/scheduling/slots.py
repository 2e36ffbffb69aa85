"""Slot availability for sales staff during business hours"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterator

from sqlalchemy.orm import Session

from ...config import APPOINTMENT_END_HOUR, APPOINTMENT_START_HOUR, SLOT_DURATION_MINUTES
from .repository import AppointmentRepository


def business_hours(day: date) -> tuple[datetime, datetime]:
    """Opening and closing timestamps for ``day``"""
    return (
        datetime.combine(day, time(hour=APPOINTMENT_START_HOUR)),
        datetime.combine(day, time(hour=APPOINTMENT_END_HOUR)),
    )


def is_within_business_hours(moment: datetime) -> bool:
    return APPOINTMENT_START_HOUR <= moment.hour < APPOINTMENT_END_HOUR


def slot_end(start: datetime) -> datetime:
    return start + timedelta(minutes=SLOT_DURATION_MINUTES)


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime
    is_available: bool


class SlotSchedule:
    """One staff member's slots for one day.

    Iterating walks the business day in slot-duration steps. Each pass reads the
    staff member's live bookings afresh, so the schedule can be iterated again
    after bookings change.
    """

    def __init__(self, db: Session, sales_staff_id: int, day: date):
        self.db = db
        self.sales_staff_id = sales_staff_id
        self.day = day

    def __iter__(self) -> Iterator[Slot]:
        opening, closing = business_hours(self.day)
        booked = AppointmentRepository.booked_starts(
            self.db, self.sales_staff_id, opening, closing
        )
        current = opening
        while current < closing:
            yield Slot(start=current, end=slot_end(current), is_available=current not in booked)
            current = slot_end(current)

    def available(self) -> list[Slot]:
        return [slot for slot in self if slot.is_available]


@dataclass
class StaffAvailability:
    sales_staff_id: int
    name: str
    slots: SlotSchedule
