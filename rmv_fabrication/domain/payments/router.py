"""Payment router - FastAPI endpoints for the payment ledger"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_caller
from ...database import get_db
from ...shared.access import CallerContext
from .schemas import (
    PaymentProofSubmit,
    PaymentRejectRequest,
    PaymentResponse,
    PaymentVerifyRequest,
    QRCodeUpload,
)
from .service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_payment_service(db: Session = Depends(get_db)) -> PaymentService:
    """Dependency injection for PaymentService"""
    return PaymentService(db)


def _envelope(message: str, payment) -> dict:
    return {"success": True, "message": message, "payment": PaymentResponse.model_validate(payment)}


@router.get("/mine", response_model=list[PaymentResponse])
async def my_payments(
    caller: CallerContext = Depends(get_current_caller),
    service: PaymentService = Depends(get_payment_service),
):
    return service.my_payments(caller)


@router.get("/pending-verification", response_model=list[PaymentResponse])
async def pending_verification(
    caller: CallerContext = Depends(get_current_caller),
    service: PaymentService = Depends(get_payment_service),
):
    return service.pending_verification(caller)


@router.get("/project/{project_id}", response_model=list[PaymentResponse])
async def project_payments(
    project_id: int,
    caller: CallerContext = Depends(get_current_caller),
    service: PaymentService = Depends(get_payment_service),
):
    return service.project_payments(caller, project_id)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: int,
    caller: CallerContext = Depends(get_current_caller),
    service: PaymentService = Depends(get_payment_service),
):
    return service.get_payment(caller, payment_id)


@router.post("/{payment_id}/proof")
async def submit_payment_proof(
    payment_id: int,
    data: PaymentProofSubmit,
    caller: CallerContext = Depends(get_current_caller),
    service: PaymentService = Depends(get_payment_service),
):
    payment = service.submit_payment_proof(caller, payment_id, data.proof, data.payment_method)
    return _envelope("Payment proof submitted", payment)


@router.put("/{payment_id}/verify")
async def verify_payment(
    payment_id: int,
    data: PaymentVerifyRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: PaymentService = Depends(get_payment_service),
):
    """Verify a payment and issue its receipt"""
    payment = service.verify_payment(
        caller, payment_id, data.amount_received, data.reference_number, data.notes
    )
    return _envelope(f"Payment verified, receipt {payment.receipt_number} issued", payment)


@router.put("/{payment_id}/reject")
async def reject_payment(
    payment_id: int,
    data: PaymentRejectRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: PaymentService = Depends(get_payment_service),
):
    return _envelope("Payment rejected", service.reject_payment(caller, payment_id, data.reason))


@router.post("/{payment_id}/qr-code")
async def upload_qr_code(
    payment_id: int,
    data: QRCodeUpload,
    caller: CallerContext = Depends(get_current_caller),
    service: PaymentService = Depends(get_payment_service),
):
    return _envelope("QR code uploaded", service.upload_qr_code(caller, payment_id, data.file))
