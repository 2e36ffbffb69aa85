"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.schemas import SiteAddress


def _to_local_naive(value: datetime) -> datetime:
    """Appointments are stored as naive local timestamps, truncated to the minute"""
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.replace(second=0, microsecond=0)


class AppointmentCreate(BaseModel):
    """Schema for a customer booking"""

    scheduled_date: datetime
    appointment_type: Literal["office_consultation", "ocular_visit"] = "office_consultation"
    interested_category: Optional[str] = None
    description: Optional[str] = Field(None, max_length=1000)
    site_address: Optional[SiteAddress] = None
    notes: Optional[str] = None

    @field_validator("scheduled_date")
    @classmethod
    def normalize_scheduled_date(cls, v):
        return _to_local_naive(v)


class AssignSalesStaffRequest(BaseModel):
    sales_staff_id: int
    agent_notes: Optional[str] = None


class CancelAppointmentRequest(BaseModel):
    reason: Optional[str] = None
    message: Optional[str] = None


class CompleteAppointmentRequest(BaseModel):
    sales_notes: Optional[str] = None


class TravelFeeRequest(BaseModel):
    is_required: bool = True
    amount: Optional[Decimal] = None
    notes: Optional[str] = None


class CollectTravelFeeRequest(BaseModel):
    collected_amount: Decimal
    notes: Optional[str] = None

    @field_validator("collected_amount")
    @classmethod
    def validate_amount(cls, v):
        if v < 0:
            raise ValueError("Collected amount cannot be negative")
        return v


class VerifyTravelFeeRequest(BaseModel):
    notes: Optional[str] = None


class AppointmentResponse(BaseModel):
    """Schema for appointment response"""

    id: int
    public_id: str
    customer_id: int
    assigned_sales_staff_id: Optional[int]
    scheduled_date: datetime
    scheduled_end_date: datetime
    appointment_type: str
    status: str
    site_address: Optional[dict] = None
    interested_category: Optional[str] = None
    description: Optional[str] = None
    customer_notes: Optional[str] = None
    agent_notes: Optional[str] = None
    sales_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancellation_within_policy: Optional[bool] = None
    travel_fee_status: Optional[str] = None
    travel_fee_amount: Optional[Decimal] = None
    converted_to_project_id: Optional[int] = None
    status_history: list[dict] = []
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SlotResponse(BaseModel):
    start: datetime
    end: datetime
    is_available: bool


class StaffAvailabilityResponse(BaseModel):
    sales_staff_id: int
    name: str
    slots: list[SlotResponse]
