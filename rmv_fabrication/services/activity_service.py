"""
Activity (audit) logging
One immutable ActivityLog row per workflow transition, written best-effort in its own session
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..database import SessionLocal
from ..models import ActivityLog

logger = logging.getLogger(__name__)

DESCRIPTIONS = {
    # Appointments
    "appointment_created": "Appointment booked",
    "appointment_scheduled": "Appointment scheduled",
    "appointment_confirmed": "Appointment confirmed",
    "appointment_started": "Consultation started",
    "appointment_cancelled": "Appointment cancelled",
    "appointment_completed": "Appointment completed",
    "appointment_no_show": "Customer did not show up",
    "travel_fee_set": "Travel fee updated",
    "travel_fee_collected": "Travel fee collected",
    "travel_fee_verified": "Travel fee verified",
    # Projects
    "project_created": "Project created",
    "project_updated": "Project details updated",
    "project_status_changed": "Project status changed",
    "project_assigned": "Project assigned to staff",
    "blueprint_uploaded": "Blueprint uploaded",
    "blueprint_revised": "Blueprint revised",
    "costing_uploaded": "Costing uploaded",
    "costing_revised": "Costing revised",
    "approval_requested": "Approval requested from customer",
    "revision_requested": "Revision requested by customer",
    "project_approved": "Project approved by customer",
    "fabrication_progress_updated": "Fabrication progress updated",
    "fabrication_photo_uploaded": "Fabrication photo uploaded",
    "installation_scheduled": "Installation scheduled",
    # Payments
    "payment_proof_uploaded": "Payment proof uploaded",
    "payment_verified": "Payment verified",
    "payment_rejected": "Payment rejected",
    "qr_code_uploaded": "QR code uploaded",
}


@dataclass
class ActivityRecord:
    actor_id: int
    actor_role: str
    action: str
    resource_type: str
    resource_id: Optional[int]
    description: Optional[str] = None
    changes: Optional[dict] = None
    extra: dict = field(default_factory=dict)


class ActivityService:
    """Append-only audit sink backed by the activity_logs table"""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self.session_factory = session_factory or SessionLocal

    @classmethod
    def for_session(cls, db: Session) -> "ActivityService":
        """Audit sink writing to the same database as ``db`` through a separate session"""
        return cls(sessionmaker(autocommit=False, autoflush=False, bind=db.get_bind()))

    def append(self, record: ActivityRecord) -> Optional[ActivityLog]:
        """Persist one record; failures are logged, never raised"""
        db = self.session_factory()
        try:
            entry = ActivityLog(
                actor_id=record.actor_id,
                actor_role=record.actor_role,
                action=record.action,
                resource_type=record.resource_type,
                resource_id=record.resource_id,
                description=record.description or DESCRIPTIONS.get(record.action, record.action),
                changes=record.changes,
                extra=record.extra or None,
            )
            db.add(entry)
            db.commit()
            db.refresh(entry)
            return entry
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to log activity {record.action} on {record.resource_type} {record.resource_id}: {e}")
            return None
        finally:
            db.close()

    @staticmethod
    def get_resource_activity(db: Session, resource_type: str, resource_id: int, limit: int = 50) -> list[ActivityLog]:
        """Audit trail for one resource, newest first"""
        return (
            db.query(ActivityLog)
            .filter(ActivityLog.resource_type == resource_type, ActivityLog.resource_id == resource_id)
            .order_by(ActivityLog.id.desc())
            .limit(limit)
            .all()
        )


def emit(audit, record: ActivityRecord) -> None:
    """Send ``record`` to any audit sink without letting it fail the caller"""
    try:
        audit.append(record)
    except Exception as e:
        logger.error(f"❌ Audit sink rejected {record.action} on {record.resource_type} {record.resource_id}: {e}")


def status_change(before: Optional[str], after: Optional[str]) -> dict:
    return {"before": {"status": before}, "after": {"status": after}}
