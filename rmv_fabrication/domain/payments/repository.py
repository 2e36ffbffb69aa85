"""Payment repository - Database operations for project payments"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import Payment


class PaymentRepository:
    """Repository for payment database operations"""

    @staticmethod
    def get_payment(db: Session, payment_id: int) -> Optional[Payment]:
        return (
            db.query(Payment)
            .options(joinedload(Payment.project))
            .filter(Payment.id == payment_id)
            .first()
        )

    @staticmethod
    def get_for_project(db: Session, project_id: int) -> list[Payment]:
        return db.query(Payment).filter(Payment.project_id == project_id).order_by(Payment.id).all()

    @staticmethod
    def get_for_customer(db: Session, customer_id: int) -> list[Payment]:
        return (
            db.query(Payment)
            .filter(Payment.customer_id == customer_id)
            .order_by(Payment.project_id, Payment.id)
            .all()
        )

    @staticmethod
    def get_submitted(db: Session) -> list[Payment]:
        """Payments with proof uploaded, oldest proof first"""
        return (
            db.query(Payment)
            .filter(Payment.status == "submitted")
            .order_by(Payment.proof_uploaded_at, Payment.id)
            .all()
        )

    @staticmethod
    def next_receipt_number(db: Session, moment: datetime) -> str:
        """RMV-RCT-YYYYMM-#### numbered by receipts already issued in ``moment``'s year"""
        year_start = datetime(moment.year, 1, 1)
        next_year = datetime(moment.year + 1, 1, 1)
        issued = (
            db.query(Payment)
            .filter(
                Payment.receipt_number.isnot(None),
                Payment.receipt_generated_at >= year_start,
                Payment.receipt_generated_at < next_year,
            )
            .count()
        )
        return f"RMV-RCT-{moment:%Y%m}-{issued + 1:04d}"
