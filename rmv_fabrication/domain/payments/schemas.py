"""Payment domain schemas - Pydantic models for validation"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, field_validator

from ...models import PAYMENT_METHODS
from ...shared.schemas import ContentReference


class PaymentProofSubmit(BaseModel):
    proof: ContentReference
    payment_method: str

    @field_validator("payment_method")
    @classmethod
    def validate_method(cls, v):
        if v not in PAYMENT_METHODS:
            raise ValueError(f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}")
        return v


class PaymentVerifyRequest(BaseModel):
    amount_received: Optional[Decimal] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None


class PaymentRejectRequest(BaseModel):
    reason: str


class QRCodeUpload(BaseModel):
    file: ContentReference


class PaymentResponse(BaseModel):
    """Schema for payment response"""

    id: int
    public_id: str
    project_id: int
    customer_id: int
    stage: str
    amount_expected: Decimal
    amount_received: Optional[Decimal] = None
    payment_method: Optional[str] = None
    status: str
    proof_url: Optional[str] = None
    proof_original_name: Optional[str] = None
    proof_uploaded_at: Optional[datetime] = None
    qr_code_url: Optional[str] = None
    verified_by_id: Optional[int] = None
    verified_at: Optional[datetime] = None
    verification_notes: Optional[str] = None
    reference_number: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    receipt_number: Optional[str] = None
    receipt_generated_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    status_history: list[dict] = []

    class Config:
        from_attributes = True
