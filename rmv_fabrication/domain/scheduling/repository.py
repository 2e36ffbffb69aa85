"""Appointment repository - Database operations for appointments"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import APPOINTMENT_RELEASED_STATUSES, Appointment


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get_appointment(db: Session, appointment_id: int) -> Optional[Appointment]:
        """Get an appointment by ID, ignoring soft-deleted rows"""
        return (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.is_deleted.is_(False))
            .first()
        )

    @staticmethod
    def _live(db: Session):
        return db.query(Appointment).filter(
            Appointment.status.notin_(APPOINTMENT_RELEASED_STATUSES),
            Appointment.is_deleted.is_(False),
        )

    @staticmethod
    def has_conflict(
        db: Session,
        sales_staff_id: int,
        scheduled_date: datetime,
        exclude_id: Optional[int] = None,
    ) -> bool:
        """True if the staff member holds a live appointment at exactly ``scheduled_date``.

        Only identical timestamps conflict; overlapping intervals do not.
        """
        query = AppointmentRepository._live(db).filter(
            Appointment.assigned_sales_staff_id == sales_staff_id,
            Appointment.scheduled_date == scheduled_date,
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return db.query(query.exists()).scalar()

    @staticmethod
    def booked_starts(
        db: Session, sales_staff_id: int, start: datetime, end: datetime
    ) -> set[datetime]:
        """Start timestamps of the staff member's live appointments within [start, end)"""
        rows = (
            AppointmentRepository._live(db)
            .filter(
                Appointment.assigned_sales_staff_id == sales_staff_id,
                Appointment.scheduled_date >= start,
                Appointment.scheduled_date < end,
            )
            .with_entities(Appointment.scheduled_date)
            .all()
        )
        return {row[0] for row in rows}

    @staticmethod
    def get_calendar(db: Session, start: datetime, end: datetime) -> list[Appointment]:
        """Live appointments in [start, end], ordered by time"""
        return (
            AppointmentRepository._live(db)
            .filter(Appointment.scheduled_date >= start, Appointment.scheduled_date <= end)
            .order_by(Appointment.scheduled_date, Appointment.id)
            .all()
        )

    @staticmethod
    def get_for_customer(db: Session, customer_id: int) -> list[Appointment]:
        return (
            db.query(Appointment)
            .filter(Appointment.customer_id == customer_id, Appointment.is_deleted.is_(False))
            .order_by(Appointment.scheduled_date)
            .all()
        )

    @staticmethod
    def link_project(db: Session, appointment: Appointment, project_id: int) -> None:
        """Record that a consultation turned into a project; committed by the caller"""
        appointment.converted_to_project_id = project_id
