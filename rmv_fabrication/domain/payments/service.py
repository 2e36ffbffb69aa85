"""Payment service - Proof submission, cashier verification and receipts"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import ADMIN, CASHIER, CUSTOMER
from ...errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ...models import PAYMENT_METHODS, Payment, Project
from ...services.activity_service import ActivityRecord, ActivityService, emit, status_change
from ...services.notification_service import dispatch, get_notifier
from ...shared.access import CallerContext, require_role
from ...shared.history import now, record_status
from ...shared.schemas import ContentReference
from ..projects.repository import ProjectRepository
from .repository import PaymentRepository

logger = logging.getLogger(__name__)

# Verifying a stage moves the project on, but only out of the status that waits for it
STAGE_ADVANCES = {
    "initial": ("pending_initial_payment", "in_fabrication"),
    "midpoint": ("pending_midpoint_payment", "ready_for_installation"),
    "final": ("pending_final_payment", "completed"),
}
RECEIPT_ATTEMPTS = 3


class PaymentService:
    """Service layer for the payment ledger"""

    def __init__(self, db: Session, notifier=None, audit=None):
        self.db = db
        self.repo = PaymentRepository()
        self.projects = ProjectRepository()
        self.notifier = notifier or get_notifier()
        self.audit = audit or ActivityService.for_session(db)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _get(self, payment_id: int) -> Payment:
        payment = self.repo.get_payment(self.db, payment_id)
        if not payment:
            raise NotFoundError("Payment not found")
        return payment

    def get_payment(self, caller: CallerContext, payment_id: int) -> Payment:
        payment = self._get(payment_id)
        if caller.is_customer and payment.customer_id != caller.caller_id:
            raise ForbiddenError("You can only view your own payments")
        return payment

    def project_payments(self, caller: CallerContext, project_id: int) -> list[Payment]:
        project = self.projects.get_project(self.db, project_id)
        if not project:
            raise NotFoundError("Project not found")
        if caller.is_customer and project.customer_id != caller.caller_id:
            raise ForbiddenError("You can only view payments for your own projects")
        return self.repo.get_for_project(self.db, project_id)

    def pending_verification(self, caller: CallerContext) -> list[Payment]:
        """Submitted proofs awaiting the cashier"""
        require_role(caller, CASHIER, ADMIN)
        return self.repo.get_submitted(self.db)

    def my_payments(self, caller: CallerContext) -> list[Payment]:
        require_role(caller, CUSTOMER)
        return self.repo.get_for_customer(self.db, caller.caller_id)

    # ------------------------------------------------------------------
    # Customer
    # ------------------------------------------------------------------

    def submit_payment_proof(
        self,
        caller: CallerContext,
        payment_id: int,
        proof: ContentReference,
        payment_method: str,
    ) -> Payment:
        """Attach the customer's proof of payment; a rejected payment may be resubmitted"""
        require_role(caller, CUSTOMER)
        payment = self._get(payment_id)
        if payment.customer_id != caller.caller_id:
            raise ForbiddenError("You can only pay for your own projects")
        if payment.status == "verified":
            raise InvalidStateError("Payment has already been verified")
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}")

        before = payment.status
        payment.proof_key = proof.key
        payment.proof_url = proof.url
        payment.proof_original_name = proof.original_name
        payment.proof_uploaded_at = now()
        payment.payment_method = payment_method
        record_status(
            payment,
            "submitted",
            caller.caller_id,
            "Proof resubmitted" if before == "rejected" else "Proof of payment uploaded",
        )
        self.db.commit()
        self.db.refresh(payment)

        logger.info(f"✅ Proof uploaded for {payment.stage} payment {payment.id}")
        self._audit(caller, payment, "payment_proof_uploaded", before, {"payment_method": payment_method})
        return payment

    # ------------------------------------------------------------------
    # Cashier
    # ------------------------------------------------------------------

    def verify_payment(
        self,
        caller: CallerContext,
        payment_id: int,
        amount_received: Optional[Decimal] = None,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Payment:
        """Verify a submitted payment, issue its receipt and advance the project in one commit"""
        require_role(caller, CASHIER)
        if amount_received is not None and Decimal(amount_received) < 0:
            raise ValidationError("Amount received cannot be negative")

        for attempt in range(1, RECEIPT_ATTEMPTS + 1):
            payment = self._get(payment_id)
            if payment.status != "submitted":
                raise InvalidStateError(f"Cannot verify a payment that is {payment.status}")

            stamp = now()
            receipt_number = self.repo.next_receipt_number(self.db, stamp)
            project_before = payment.project.status

            payment.amount_received = (
                Decimal(amount_received) if amount_received is not None else payment.amount_expected
            )
            payment.reference_number = reference_number
            payment.verification_notes = notes
            payment.verified_by_id = caller.caller_id
            payment.verified_at = stamp
            payment.receipt_number = receipt_number
            payment.receipt_generated_at = stamp
            record_status(payment, "verified", caller.caller_id, f"Receipt {receipt_number} issued")
            advanced = self._advance_project(caller, payment.project, payment.stage, receipt_number, stamp)

            try:
                self.db.commit()
                break
            except IntegrityError:
                self.db.rollback()
                logger.warning(f"⚠️ Receipt {receipt_number} already issued, retrying (attempt {attempt})")
                if attempt == RECEIPT_ATTEMPTS:
                    raise ConflictError("Could not issue a unique receipt number, please retry")

        self.db.refresh(payment)
        project = payment.project
        logger.info(
            f"✅ Payment {payment.id} verified with receipt {payment.receipt_number}"
            + (f", project {project.project_number} → {project.status}" if advanced else "")
        )

        self._audit(
            caller,
            payment,
            "payment_verified",
            "submitted",
            {
                "receipt_number": payment.receipt_number,
                "project_advanced": advanced,
                "project_status": {"before": project_before, "after": project.status},
            },
        )
        customer = payment.customer
        dispatch(
            self.notifier,
            "payment_verification",
            customer.email if customer else None,
            {
                "customer_name": customer.full_name if customer else "",
                "stage": payment.stage,
                "project_number": project.project_number,
                "amount_received": payment.amount_received,
                "receipt_number": payment.receipt_number,
            },
        )
        return payment

    @staticmethod
    def _advance_project(
        caller: CallerContext, project: Project, stage: str, receipt_number: str, stamp: datetime
    ) -> bool:
        """Move the project past the stage's payment gate; False when it is not waiting on it"""
        waiting_status, next_status = STAGE_ADVANCES[stage]
        if project.status != waiting_status:
            return False

        if next_status == "in_fabrication":
            project.fabrication_started_at = stamp
        elif next_status == "completed":
            project.actual_completion = stamp
        record_status(
            project,
            next_status,
            caller.caller_id,
            f"{stage.capitalize()} payment verified ({receipt_number})",
        )
        return True

    def reject_payment(self, caller: CallerContext, payment_id: int, reason: str) -> Payment:
        require_role(caller, CASHIER)
        payment = self._get(payment_id)
        if payment.status != "submitted":
            raise InvalidStateError(f"Cannot reject a payment that is {payment.status}")
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")

        payment.rejected_by_id = caller.caller_id
        payment.rejected_at = now()
        payment.rejection_reason = reason.strip()
        record_status(payment, "rejected", caller.caller_id, reason.strip())
        self.db.commit()
        self.db.refresh(payment)

        logger.info(f"⚠️ Payment {payment.id} rejected: {payment.rejection_reason}")
        self._audit(caller, payment, "payment_rejected", "submitted", {"reason": payment.rejection_reason})
        return payment

    def upload_qr_code(self, caller: CallerContext, payment_id: int, file: ContentReference) -> Payment:
        """Attach the QR code the customer pays against"""
        require_role(caller, CASHIER)
        payment = self._get(payment_id)

        payment.qr_code_key = file.key
        payment.qr_code_url = file.url
        payment.qr_code_uploaded_by_id = caller.caller_id
        payment.qr_code_uploaded_at = now()
        self.db.commit()
        self.db.refresh(payment)

        self._audit(caller, payment, "qr_code_uploaded", None, {"key": file.key})
        return payment

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _audit(
        self,
        caller: CallerContext,
        payment: Payment,
        action: str,
        before: Optional[str],
        extra: dict,
    ) -> None:
        emit(
            self.audit,
            ActivityRecord(
                actor_id=caller.caller_id,
                actor_role=caller.role,
                action=action,
                resource_type="payment",
                resource_id=payment.id,
                changes=status_change(before, payment.status) if before is not None else None,
                extra={"project_id": payment.project_id, "stage": payment.stage, **extra},
            ),
        )
