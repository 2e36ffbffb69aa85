"""Appointment router - FastAPI endpoints for consultations"""

import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_caller
from ...database import get_db
from ...shared.access import CallerContext
from .schemas import (
    AppointmentCreate,
    AppointmentResponse,
    AssignSalesStaffRequest,
    CancelAppointmentRequest,
    CollectTravelFeeRequest,
    CompleteAppointmentRequest,
    SlotResponse,
    StaffAvailabilityResponse,
    TravelFeeRequest,
    VerifyTravelFeeRequest,
)
from .service import AppointmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


def get_appointment_service(db: Session = Depends(get_db)) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db)


def _envelope(message: str, appointment, **extra) -> dict:
    return {
        "success": True,
        "message": message,
        "appointment": AppointmentResponse.model_validate(appointment),
        **extra,
    }


# ============================================================================
# BOOKING AND QUERIES
# ============================================================================


@router.post("", status_code=201)
async def book_appointment(
    data: AppointmentCreate,
    caller: CallerContext = Depends(get_current_caller),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Book a consultation; ocular visits are auto-assigned when a sales staff is free"""
    appointment = service.book_appointment(caller, data)
    message = (
        "Appointment booked and scheduled"
        if appointment.status == "scheduled"
        else "Appointment booked, waiting for staff assignment"
    )
    return _envelope(message, appointment)


@router.get("/mine", response_model=list[AppointmentResponse])
async def my_appointments(
    caller: CallerContext = Depends(get_current_caller),
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.my_appointments(caller)


@router.get("/slots")
async def get_available_slots(
    day: date = Query(..., alias="date"),
    sales_staff_id: Optional[int] = Query(None),
    caller: CallerContext = Depends(get_current_caller),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Free and booked slots for one sales staff, or for everyone when no staff is given"""
    result = service.get_available_slots(day, sales_staff_id)
    if sales_staff_id is not None:
        return [SlotResponse(start=s.start, end=s.end, is_available=s.is_available) for s in result]
    return [
        StaffAvailabilityResponse(
            sales_staff_id=availability.sales_staff_id,
            name=availability.name,
            slots=[
                SlotResponse(start=s.start, end=s.end, is_available=s.is_available)
                for s in availability.slots
            ],
        )
        for availability in result
    ]


@router.get("/calendar", response_model=dict[str, list[AppointmentResponse]])
async def get_calendar(
    start: datetime = Query(...),
    end: datetime = Query(...),
    caller: CallerContext = Depends(get_current_caller),
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.get_calendar(caller, start, end)


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    caller: CallerContext = Depends(get_current_caller),
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.get_visible_appointment(caller, appointment_id)


# ============================================================================
# LIFECYCLE
# ============================================================================


@router.put("/{appointment_id}/assign")
async def assign_sales_staff(
    appointment_id: int,
    data: AssignSalesStaffRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.assign_sales_staff(
        caller, appointment_id, data.sales_staff_id, data.agent_notes
    )
    return _envelope("Sales staff assigned", appointment)


@router.put("/{appointment_id}/confirm")
async def confirm_appointment(
    appointment_id: int,
    caller: CallerContext = Depends(get_current_caller),
    service: AppointmentService = Depends(get_appointment_service),
):
    return _envelope("Appointment confirmed", service.confirm_appointment(caller, appointment_id))


@router.put("/{appointment_id}/start")
async def start_appointment(
    appointment_id: int,
    caller: CallerContext = Depends(get_current_caller),
    service: AppointmentService = Depends(get_appointment_service),
):
    return _envelope("Consultation started", service.start_appointment(caller, appointment_id))


@router.put("/{appointment_id}/cancel")
async def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Cancel an appointment; the response says whether the cancellation policy was met"""
    appointment = service.cancel_appointment(caller, appointment_id, data.reason, data.message)
    within_policy = bool(appointment.cancellation_within_policy)
    message = (
        "Appointment cancelled"
        if within_policy
        else "Appointment cancelled outside the cancellation policy window"
    )
    return _envelope(message, appointment, is_within_policy=within_policy)


@router.put("/{appointment_id}/complete")
async def complete_appointment(
    appointment_id: int,
    data: CompleteAppointmentRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.complete_appointment(caller, appointment_id, data.sales_notes)
    return _envelope("Appointment completed", appointment)


@router.put("/{appointment_id}/no-show")
async def mark_no_show(
    appointment_id: int,
    caller: CallerContext = Depends(get_current_caller),
    service: AppointmentService = Depends(get_appointment_service),
):
    return _envelope("Appointment marked as no-show", service.mark_no_show(caller, appointment_id))


# ============================================================================
# TRAVEL FEE
# ============================================================================


@router.put("/{appointment_id}/travel-fee")
async def set_travel_fee(
    appointment_id: int,
    data: TravelFeeRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.set_travel_fee(
        caller, appointment_id, data.is_required, data.amount, data.notes
    )
    return _envelope("Travel fee updated", appointment)


@router.put("/{appointment_id}/travel-fee/collect")
async def collect_travel_fee(
    appointment_id: int,
    data: CollectTravelFeeRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.collect_travel_fee(
        caller, appointment_id, data.collected_amount, data.notes
    )
    return _envelope("Travel fee collected", appointment)


@router.put("/{appointment_id}/travel-fee/verify")
async def verify_travel_fee(
    appointment_id: int,
    data: VerifyTravelFeeRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: AppointmentService = Depends(get_appointment_service),
):
    return _envelope("Travel fee verified", service.verify_travel_fee(caller, appointment_id, data.notes))
