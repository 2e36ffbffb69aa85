"""Project domain schemas - Pydantic models for validation"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ...config import PROJECT_CATEGORIES
from ...shared.schemas import ContentReference, SiteAddress


class StagePercentages(BaseModel):
    initial: int
    midpoint: int
    final: int


class ProjectCreate(BaseModel):
    """Schema for creating a project after a consultation"""

    customer_id: int
    category: str
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    specifications: Optional[dict] = None
    site_address: Optional[SiteAddress] = None
    source_appointment_id: Optional[int] = None
    estimated_completion: Optional[datetime] = None
    stage_percentages: Optional[StagePercentages] = None

    @field_validator("category")
    @classmethod
    def validate_category(cls, v):
        if v not in PROJECT_CATEGORIES:
            raise ValueError(f"Category must be one of: {', '.join(PROJECT_CATEGORIES)}")
        return v

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v.strip()


class ConsultationUpdate(BaseModel):
    notes: Optional[str] = None
    measurements: Optional[list[dict]] = None
    photos: list[ContentReference] = []


class SubmitToEngineerRequest(BaseModel):
    engineer_id: int


class BlueprintUpload(BaseModel):
    file: ContentReference
    notes: Optional[str] = None


class CostingUpload(BaseModel):
    file: ContentReference
    total_amount: Decimal
    breakdown: list[dict] = []
    notes: Optional[str] = None


class RevisionRequest(BaseModel):
    revision_type: Literal["minor", "major"] = "minor"
    description: str


class StatusUpdateRequest(BaseModel):
    status: str
    notes: Optional[str] = None


class FabricationStaffRequest(BaseModel):
    staff_ids: list[int]


class ProgressUpdateRequest(BaseModel):
    progress: int
    notes: Optional[str] = None


class FabricationPhotoRequest(BaseModel):
    file: ContentReference
    caption: Optional[str] = None


class InstallationScheduleRequest(BaseModel):
    scheduled_date: datetime
    notes: Optional[str] = None


class PaymentSummary(BaseModel):
    id: int
    stage: str
    amount_expected: Decimal
    amount_received: Optional[Decimal] = None
    status: str
    receipt_number: Optional[str] = None

    class Config:
        from_attributes = True


class ProjectResponse(BaseModel):
    """Schema for project response"""

    id: int
    public_id: str
    project_number: str
    customer_id: int
    source_appointment_id: Optional[int] = None
    category: str
    title: str
    description: Optional[str] = None
    specifications: Optional[dict] = None
    site_address: Optional[dict] = None
    status: str
    assigned_sales_staff_id: Optional[int] = None
    assigned_engineer_id: Optional[int] = None
    fabrication_staff_ids: list[int] = []
    consultation_notes: Optional[str] = None
    consultation_measurements: list[dict] = []
    consultation_photos: list[dict] = []
    blueprint_current_version: int
    blueprint_versions: list[dict] = []
    costing_current_version: int
    costing_versions: list[dict] = []
    costing_approved_amount: Optional[Decimal] = None
    is_approved: bool
    approved_at: Optional[datetime] = None
    revisions: list[dict] = []
    initial_percentage: int
    initial_amount: Optional[Decimal] = None
    midpoint_percentage: int
    midpoint_amount: Optional[Decimal] = None
    final_percentage: int
    final_amount: Optional[Decimal] = None
    fabrication_progress: int
    fabrication_started_at: Optional[datetime] = None
    fabrication_completed_at: Optional[datetime] = None
    fabrication_photos: list[dict] = []
    fabrication_notes: list[dict] = []
    installation_scheduled_date: Optional[datetime] = None
    installation_started_at: Optional[datetime] = None
    installation_completed_at: Optional[datetime] = None
    estimated_completion: Optional[datetime] = None
    actual_completion: Optional[datetime] = None
    status_history: list[dict] = []
    payments: list[PaymentSummary] = []
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
