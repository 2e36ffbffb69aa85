"""Appointment service - Booking, assignment and lifecycle of consultations"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import (
    ADMIN,
    APPOINTMENT_AGENT,
    APPOINTMENT_END_HOUR,
    APPOINTMENT_START_HOUR,
    CANCELLATION_CUTOFF_HOURS,
    CASHIER,
    CUSTOMER,
    SALES_STAFF,
)
from ...errors import (
    AlreadyAssignedError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    OutOfHoursError,
    ValidationError,
)
from ...models import Appointment, User
from ...services.activity_service import ActivityRecord, ActivityService, emit, status_change
from ...services.notification_service import dispatch, get_notifier
from ...shared.access import CallerContext, require_role
from ...shared.history import note_history, now, record_status
from ..staff.repository import StaffRepository
from .repository import AppointmentRepository
from .schemas import AppointmentCreate
from .slots import SlotSchedule, StaffAvailability, is_within_business_hours, slot_end
from .states import can_transition, is_terminal

logger = logging.getLogger(__name__)


def is_within_policy(scheduled_date: datetime, cancelled_at: datetime) -> bool:
    """True when a cancellation lands before the cutoff window preceding the appointment"""
    return cancelled_at < scheduled_date - timedelta(hours=CANCELLATION_CUTOFF_HOURS)


class AppointmentService:
    """Service layer for the appointment state machine"""

    def __init__(self, db: Session, notifier=None, audit=None):
        self.db = db
        self.repo = AppointmentRepository()
        self.staff = StaffRepository()
        self.notifier = notifier or get_notifier()
        self.audit = audit or ActivityService.for_session(db)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    def get_visible_appointment(self, caller: CallerContext, appointment_id: int) -> Appointment:
        """Customers may only read their own appointments"""
        appointment = self.get_appointment(appointment_id)
        if caller.is_customer and appointment.customer_id != caller.caller_id:
            raise ForbiddenError("You can only view your own appointments")
        return appointment

    def my_appointments(self, caller: CallerContext) -> list[Appointment]:
        require_role(caller, CUSTOMER)
        return self.repo.get_for_customer(self.db, caller.caller_id)

    def get_calendar(
        self, caller: CallerContext, start: datetime, end: datetime
    ) -> dict[str, list[Appointment]]:
        """Live appointments between ``start`` and ``end`` keyed by ISO date"""
        require_role(caller, APPOINTMENT_AGENT, ADMIN)
        if end < start:
            raise ValidationError("End date must be after start date")

        calendar: dict[str, list[Appointment]] = {}
        for appointment in self.repo.get_calendar(self.db, start, end):
            calendar.setdefault(appointment.scheduled_date.date().isoformat(), []).append(appointment)
        return calendar

    def get_available_slots(
        self, day: date, sales_staff_id: Optional[int] = None
    ) -> Union[SlotSchedule, list[StaffAvailability]]:
        """Slot schedule for one staff member, or availability for every active sales staff"""
        if sales_staff_id is not None:
            if not self.staff.get_active(self.db, sales_staff_id, SALES_STAFF):
                raise NotFoundError("Sales staff not found")
            return SlotSchedule(self.db, sales_staff_id, day)

        return [
            StaffAvailability(
                sales_staff_id=staff.id,
                name=staff.full_name,
                slots=SlotSchedule(self.db, staff.id, day),
            )
            for staff in self.staff.list_active(self.db, SALES_STAFF)
        ]

    # ------------------------------------------------------------------
    # Booking and assignment
    # ------------------------------------------------------------------

    def book_appointment(self, caller: CallerContext, data: AppointmentCreate) -> Appointment:
        """Book a consultation. Ocular visits are auto-assigned to the first free sales staff."""
        require_role(caller, CUSTOMER)
        scheduled = data.scheduled_date

        if not is_within_business_hours(scheduled):
            raise OutOfHoursError(
                f"Appointments must be between {APPOINTMENT_START_HOUR}:00 and {APPOINTMENT_END_HOUR}:00"
            )
        if data.appointment_type == "ocular_visit" and (
            data.site_address is None or data.site_address.is_blank()
        ):
            raise ValidationError("Site address is required for ocular visits")

        logger.info(f"📥 Booking {data.appointment_type} for customer {caller.caller_id} at {scheduled}")

        appointment = None
        if data.appointment_type == "ocular_visit":
            appointment = self._auto_assign(caller, data)

        if appointment is None:
            appointment = self._new_appointment(caller, data)
            self.db.add(appointment)
            self.db.commit()
        self.db.refresh(appointment)

        emit(
            self.audit,
            ActivityRecord(
                actor_id=caller.caller_id,
                actor_role=caller.role,
                action="appointment_created",
                resource_type="appointment",
                resource_id=appointment.id,
                changes=status_change(None, appointment.status),
                extra={
                    "appointment_type": appointment.appointment_type,
                    "auto_assigned": appointment.assigned_sales_staff_id is not None,
                },
            ),
        )
        if appointment.assigned_sales_staff_id is not None:
            self._notify_confirmation(appointment)
        return appointment

    def _new_appointment(
        self, caller: CallerContext, data: AppointmentCreate, sales_staff: Optional[User] = None
    ) -> Appointment:
        appointment = Appointment(
            customer_id=caller.caller_id,
            scheduled_date=data.scheduled_date,
            scheduled_end_date=slot_end(data.scheduled_date),
            appointment_type=data.appointment_type,
            site_address=data.site_address.model_dump() if data.site_address else None,
            interested_category=data.interested_category,
            description=data.description,
            customer_notes=data.notes,
            status_history=[],
        )
        record_status(appointment, "pending", caller.caller_id, "Appointment booked by customer")
        if sales_staff is not None:
            appointment.assigned_sales_staff_id = sales_staff.id
            record_status(
                appointment,
                "scheduled",
                caller.caller_id,
                f"Auto-assigned to {sales_staff.full_name}",
            )
        return appointment

    def _auto_assign(self, caller: CallerContext, data: AppointmentCreate) -> Optional[Appointment]:
        """Try each active sales staff in order; None when nobody is free at that instant"""
        candidates = self.staff.list_active(self.db, SALES_STAFF)
        for candidate in candidates:
            staff_id = candidate.id
            self.staff.lock_staff(self.db, staff_id)
            if self.repo.has_conflict(self.db, staff_id, data.scheduled_date):
                self.db.rollback()
                continue

            appointment = self._new_appointment(caller, data, candidate)
            self.db.add(appointment)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                logger.warning(f"⚠️ Slot {data.scheduled_date} taken concurrently for staff {staff_id}, trying next")
                continue

            logger.info(f"✅ Auto-assigned appointment {appointment.id} to sales staff {staff_id}")
            return appointment

        logger.info(f"⚠️ No sales staff free at {data.scheduled_date}, leaving appointment pending")
        return None

    def assign_sales_staff(
        self,
        caller: CallerContext,
        appointment_id: int,
        sales_staff_id: int,
        agent_notes: Optional[str] = None,
    ) -> Appointment:
        """Assign a pending appointment to a sales staff member"""
        require_role(caller, APPOINTMENT_AGENT, ADMIN)
        appointment = self.get_appointment(appointment_id)

        if appointment.status != "pending":
            raise AlreadyAssignedError("Appointment has already been assigned")

        sales_staff = self.staff.get_active(self.db, sales_staff_id, SALES_STAFF)
        if not sales_staff:
            raise NotFoundError("Sales staff not found")

        self.staff.lock_staff(self.db, sales_staff.id)
        if self.repo.has_conflict(
            self.db, sales_staff.id, appointment.scheduled_date, exclude_id=appointment.id
        ):
            self.db.rollback()
            raise ConflictError("Sales staff already has an appointment at this time")

        appointment.assigned_sales_staff_id = sales_staff.id
        if agent_notes is not None:
            appointment.agent_notes = agent_notes
        record_status(
            appointment, "scheduled", caller.caller_id, f"Assigned to {sales_staff.full_name}"
        )
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Sales staff already has an appointment at this time")
        self.db.refresh(appointment)

        logger.info(f"✅ Appointment {appointment.id} assigned to sales staff {sales_staff.id}")
        self._audit_transition(caller, appointment, "appointment_scheduled", "pending",
                               extra={"sales_staff_id": sales_staff.id})
        self._notify_confirmation(appointment)
        return appointment

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def confirm_appointment(self, caller: CallerContext, appointment_id: int) -> Appointment:
        """Customer (or agent on their behalf) confirms a scheduled appointment"""
        require_role(caller, CUSTOMER, APPOINTMENT_AGENT, ADMIN)
        appointment = self.get_appointment(appointment_id)
        if caller.is_customer and appointment.customer_id != caller.caller_id:
            raise ForbiddenError("You can only confirm your own appointments")
        if appointment.status != "scheduled":
            raise InvalidStateError(f"Cannot confirm an appointment that is {appointment.status}")

        return self._transition(caller, appointment, "confirmed", "Appointment confirmed",
                                "appointment_confirmed")

    def start_appointment(self, caller: CallerContext, appointment_id: int) -> Appointment:
        require_role(caller, SALES_STAFF)
        appointment = self.get_appointment(appointment_id)
        self._require_assigned(caller, appointment)
        if not can_transition(appointment.status, "in_progress"):
            raise InvalidStateError(f"Cannot start an appointment that is {appointment.status}")

        return self._transition(caller, appointment, "in_progress", "Consultation started",
                                "appointment_started")

    def cancel_appointment(
        self,
        caller: CallerContext,
        appointment_id: int,
        reason: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Appointment:
        """Cancel a live appointment and record whether it was inside the cancellation policy"""
        require_role(caller, CUSTOMER, APPOINTMENT_AGENT, SALES_STAFF, ADMIN)
        appointment = self.get_appointment(appointment_id)

        if caller.is_customer and appointment.customer_id != caller.caller_id:
            raise ForbiddenError("You can only cancel your own appointments")
        if is_terminal(appointment.status):
            raise InvalidStateError(f"Cannot cancel an appointment that is {appointment.status}")

        cancelled_at = now()
        within_policy = is_within_policy(appointment.scheduled_date, cancelled_at)
        before = appointment.status

        appointment.cancelled_by_id = caller.caller_id
        appointment.cancelled_at = cancelled_at
        appointment.cancellation_reason = reason
        appointment.cancellation_within_policy = within_policy
        record_status(appointment, "cancelled", caller.caller_id, reason or "Appointment cancelled")
        self.db.commit()
        self.db.refresh(appointment)

        logger.info(f"✅ Appointment {appointment.id} cancelled by {caller.role} (within policy: {within_policy})")
        self._audit_transition(caller, appointment, "appointment_cancelled", before,
                               extra={"reason": reason, "within_policy": within_policy})

        customer = appointment.customer
        dispatch(
            self.notifier,
            "appointment_cancellation",
            customer.email if customer else None,
            {
                "customer_name": customer.full_name if customer else "",
                "scheduled_date": appointment.scheduled_date,
                "reason": reason or "",
                "message": message or "Your appointment has been cancelled.",
            },
        )
        return appointment

    def complete_appointment(
        self, caller: CallerContext, appointment_id: int, sales_notes: Optional[str] = None
    ) -> Appointment:
        """Assigned sales staff closes the consultation"""
        require_role(caller, SALES_STAFF)
        appointment = self.get_appointment(appointment_id)
        self._require_assigned(caller, appointment)
        if not can_transition(appointment.status, "completed"):
            raise InvalidStateError(f"Cannot complete an appointment that is {appointment.status}")

        if sales_notes is not None:
            appointment.sales_notes = sales_notes
        return self._transition(caller, appointment, "completed", "Consultation completed",
                                "appointment_completed")

    def mark_no_show(self, caller: CallerContext, appointment_id: int) -> Appointment:
        require_role(caller, SALES_STAFF, APPOINTMENT_AGENT, ADMIN)
        appointment = self.get_appointment(appointment_id)
        if is_terminal(appointment.status):
            raise InvalidStateError(f"Cannot mark an appointment that is {appointment.status} as no-show")

        return self._transition(caller, appointment, "no_show", "Customer did not show up",
                                "appointment_no_show")

    # ------------------------------------------------------------------
    # Travel fee (ocular visits)
    # ------------------------------------------------------------------

    def set_travel_fee(
        self,
        caller: CallerContext,
        appointment_id: int,
        is_required: bool = True,
        amount: Optional[Decimal] = None,
        notes: Optional[str] = None,
    ) -> Appointment:
        require_role(caller, CASHIER, ADMIN)
        appointment = self._get_ocular(appointment_id)

        if appointment.travel_fee_status in ("collected", "verified"):
            raise InvalidStateError(f"Travel fee has already been {appointment.travel_fee_status}")
        if is_required and (amount is None or Decimal(amount) < 0):
            raise ValidationError("A non-negative travel fee amount is required")

        appointment.travel_fee_required = is_required
        appointment.travel_fee_amount = Decimal(amount) if is_required else Decimal("0")
        appointment.travel_fee_status = "pending" if is_required else "not_required"
        if notes is not None:
            appointment.travel_fee_notes = notes
        note_history(
            appointment,
            caller.caller_id,
            f"Travel fee set to {appointment.travel_fee_amount}" if is_required else "Travel fee waived",
        )
        self.db.commit()
        self.db.refresh(appointment)

        self._audit_travel_fee(caller, appointment, "travel_fee_set")
        return appointment

    def collect_travel_fee(
        self,
        caller: CallerContext,
        appointment_id: int,
        collected_amount: Decimal,
        notes: Optional[str] = None,
    ) -> Appointment:
        """Assigned sales staff records the fee collected on site"""
        require_role(caller, SALES_STAFF)
        appointment = self._get_ocular(appointment_id)
        self._require_assigned(caller, appointment)

        if appointment.travel_fee_status != "pending":
            raise InvalidStateError("No pending travel fee to collect")
        if Decimal(collected_amount) < 0:
            raise ValidationError("Collected amount cannot be negative")

        appointment.travel_fee_amount = Decimal(collected_amount)
        appointment.travel_fee_status = "collected"
        appointment.travel_fee_collected_by_id = caller.caller_id
        appointment.travel_fee_collected_at = now()
        if notes is not None:
            appointment.travel_fee_notes = notes
        note_history(appointment, caller.caller_id, f"Travel fee of {collected_amount} collected")
        self.db.commit()
        self.db.refresh(appointment)

        self._audit_travel_fee(caller, appointment, "travel_fee_collected")
        return appointment

    def verify_travel_fee(
        self, caller: CallerContext, appointment_id: int, notes: Optional[str] = None
    ) -> Appointment:
        require_role(caller, CASHIER)
        appointment = self._get_ocular(appointment_id)

        if appointment.travel_fee_status != "collected":
            raise InvalidStateError("Travel fee must be collected before verification")

        appointment.travel_fee_status = "verified"
        appointment.travel_fee_verified_by_id = caller.caller_id
        appointment.travel_fee_verified_at = now()
        if notes is not None:
            appointment.travel_fee_notes = notes
        note_history(appointment, caller.caller_id, "Travel fee verified")
        self.db.commit()
        self.db.refresh(appointment)

        self._audit_travel_fee(caller, appointment, "travel_fee_verified")
        return appointment

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_ocular(self, appointment_id: int) -> Appointment:
        appointment = self.get_appointment(appointment_id)
        if appointment.appointment_type != "ocular_visit":
            raise ValidationError("Travel fees only apply to ocular visits")
        return appointment

    @staticmethod
    def _require_assigned(caller: CallerContext, appointment: Appointment) -> None:
        if appointment.assigned_sales_staff_id != caller.caller_id:
            raise ForbiddenError("You are not assigned to this appointment")

    def _transition(
        self, caller: CallerContext, appointment: Appointment, status: str, notes: str, action: str
    ) -> Appointment:
        before = appointment.status
        record_status(appointment, status, caller.caller_id, notes)
        self.db.commit()
        self.db.refresh(appointment)

        logger.info(f"✅ Appointment {appointment.id}: {before} → {status}")
        self._audit_transition(caller, appointment, action, before)
        return appointment

    def _audit_transition(
        self,
        caller: CallerContext,
        appointment: Appointment,
        action: str,
        before: str,
        extra: Optional[dict] = None,
    ) -> None:
        emit(
            self.audit,
            ActivityRecord(
                actor_id=caller.caller_id,
                actor_role=caller.role,
                action=action,
                resource_type="appointment",
                resource_id=appointment.id,
                changes=status_change(before, appointment.status),
                extra=extra or {},
            ),
        )

    def _audit_travel_fee(self, caller: CallerContext, appointment: Appointment, action: str) -> None:
        emit(
            self.audit,
            ActivityRecord(
                actor_id=caller.caller_id,
                actor_role=caller.role,
                action=action,
                resource_type="appointment",
                resource_id=appointment.id,
                extra={
                    "travel_fee_status": appointment.travel_fee_status,
                    "amount": str(appointment.travel_fee_amount)
                    if appointment.travel_fee_amount is not None
                    else None,
                },
            ),
        )

    def _notify_confirmation(self, appointment: Appointment) -> None:
        customer = appointment.customer
        staff = appointment.assigned_sales_staff
        dispatch(
            self.notifier,
            "appointment_confirmation",
            customer.email if customer else None,
            {
                "customer_name": customer.full_name if customer else "",
                "appointment_type": appointment.appointment_type,
                "scheduled_date": appointment.scheduled_date,
                "sales_staff_name": staff.full_name if staff else "",
            },
        )
