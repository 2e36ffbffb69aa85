"""Project service - Lifecycle of a fabrication project from draft to completion"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import (
    ADMIN,
    CUSTOMER,
    ENGINEER,
    FABRICATION_STAFF,
    PAYMENT_STAGE_PERCENTAGES,
    SALES_STAFF,
)
from ...errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from ...models import PAYMENT_STAGES, PROJECT_STATUSES, REVISION_TYPES, Payment, Project
from ...services.activity_service import ActivityRecord, ActivityService, emit, status_change
from ...services.notification_service import dispatch, get_notifier
from ...shared.access import CallerContext, require_role, require_staff
from ...shared.history import append_entry, now, record_status
from ...shared.schemas import ContentReference
from ..scheduling.repository import AppointmentRepository
from ..staff.repository import StaffRepository
from .repository import ProjectRepository
from .schemas import ConsultationUpdate, ProjectCreate
from .stages import derive_stage_amounts, validate_percentages

logger = logging.getLogger(__name__)

# Statuses from which the engineer may (re)submit designs to the customer
APPROVAL_SUBMITTABLE_STATUSES = (
    "draft",
    "pending_blueprint",
    "revision_requested",
    "pending_customer_approval",
)
ENGINEER_QUEUE_STATUSES = ("pending_blueprint", "revision_requested")
# Status changes the customer hears about
CUSTOMER_NOTIFIED_STATUSES = (
    "approved",
    "in_fabrication",
    "ready_for_installation",
    "in_installation",
    "completed",
)
PROJECT_NUMBER_ATTEMPTS = 3


class ProjectService:
    """Service layer for the project state machine"""

    def __init__(self, db: Session, notifier=None, audit=None):
        self.db = db
        self.repo = ProjectRepository()
        self.appointments = AppointmentRepository()
        self.staff = StaffRepository()
        self.notifier = notifier or get_notifier()
        self.audit = audit or ActivityService.for_session(db)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _get(self, project_id: int) -> Project:
        project = self.repo.get_project(self.db, project_id)
        if not project:
            raise NotFoundError("Project not found")
        return project

    def get_project(self, caller: CallerContext, project_id: int) -> Project:
        """Project with its payments; customers only see their own"""
        project = self._get(project_id)
        if caller.is_customer and project.customer_id != caller.caller_id:
            raise ForbiddenError("You can only view your own projects")
        return project

    def my_projects(self, caller: CallerContext) -> list[Project]:
        require_role(caller, CUSTOMER)
        return self.repo.get_for_customer(self.db, caller.caller_id)

    def pending_for_engineer(self, caller: CallerContext) -> list[Project]:
        """Projects waiting on the calling engineer's blueprint or revision"""
        require_role(caller, ENGINEER)
        return self.repo.get_for_engineer(self.db, caller.caller_id, ENGINEER_QUEUE_STATUSES)

    def fabrication_queue(self, caller: CallerContext) -> list[Project]:
        require_role(caller, FABRICATION_STAFF)
        return self.repo.get_for_fabrication_staff(self.db, caller.caller_id)

    # ------------------------------------------------------------------
    # Creation and consultation
    # ------------------------------------------------------------------

    def create_project(self, caller: CallerContext, data: ProjectCreate) -> Project:
        """Open a draft project for a customer, optionally converted from an appointment"""
        require_role(caller, SALES_STAFF, ADMIN)

        if not self.staff.get_customer(self.db, data.customer_id):
            raise NotFoundError("Customer not found")
        percentages = validate_percentages(
            data.stage_percentages.model_dump() if data.stage_percentages else PAYMENT_STAGE_PERCENTAGES
        )
        if data.source_appointment_id is not None and not self.appointments.get_appointment(
            self.db, data.source_appointment_id
        ):
            raise NotFoundError("Source appointment not found")

        logger.info(f"📥 Creating {data.category} project for customer {data.customer_id}")

        for attempt in range(1, PROJECT_NUMBER_ATTEMPTS + 1):
            project = Project(
                project_number=self.repo.next_project_number(self.db, now().year),
                customer_id=data.customer_id,
                source_appointment_id=data.source_appointment_id,
                category=data.category,
                title=data.title,
                description=data.description,
                specifications=data.specifications,
                site_address=data.site_address.model_dump() if data.site_address else None,
                estimated_completion=data.estimated_completion,
                assigned_sales_staff_id=caller.caller_id,
                initial_percentage=percentages["initial"],
                midpoint_percentage=percentages["midpoint"],
                final_percentage=percentages["final"],
                status_history=[],
            )
            record_status(project, "draft", caller.caller_id, "Project created")
            self.db.add(project)
            try:
                self.db.flush()
                if data.source_appointment_id is not None:
                    appointment = self.appointments.get_appointment(self.db, data.source_appointment_id)
                    self.appointments.link_project(self.db, appointment, project.id)
                self.db.commit()
                break
            except IntegrityError:
                self.db.rollback()
                if attempt == PROJECT_NUMBER_ATTEMPTS:
                    raise
                logger.warning(f"⚠️ Project number collision, retrying (attempt {attempt})")

        self.db.refresh(project)
        logger.info(f"✅ Project {project.project_number} created")
        emit(
            self.audit,
            ActivityRecord(
                actor_id=caller.caller_id,
                actor_role=caller.role,
                action="project_created",
                resource_type="project",
                resource_id=project.id,
                changes=status_change(None, project.status),
                extra={
                    "project_number": project.project_number,
                    "source_appointment_id": project.source_appointment_id,
                },
            ),
        )
        return project

    def update_consultation(
        self, caller: CallerContext, project_id: int, data: ConsultationUpdate
    ) -> Project:
        """Record consultation notes and measurements, appending any new photos"""
        require_role(caller, SALES_STAFF)
        project = self._get(project_id)

        project.consultation_by_id = caller.caller_id
        project.consultation_at = now()
        if data.notes is not None:
            project.consultation_notes = data.notes
        if data.measurements is not None:
            project.consultation_measurements = list(data.measurements)
        for photo in data.photos:
            append_entry(
                project,
                "consultation_photos",
                {**photo.as_record(), "uploaded_at": now().isoformat()},
            )
        self.db.commit()
        self.db.refresh(project)

        self._audit(caller, project, "project_updated", extra={"photos_added": len(data.photos)})
        return project

    def submit_to_engineer(self, caller: CallerContext, project_id: int, engineer_id: int) -> Project:
        require_role(caller, SALES_STAFF, ADMIN)
        project = self._get(project_id)

        if project.status != "draft":
            raise InvalidStateError(f"Only draft projects can be sent to an engineer (currently {project.status})")
        engineer = self.staff.get_active(self.db, engineer_id, ENGINEER)
        if not engineer:
            raise NotFoundError("Engineer not found")

        before = project.status
        project.assigned_engineer_id = engineer.id
        record_status(project, "pending_blueprint", caller.caller_id, f"Assigned to engineer {engineer.full_name}")
        self.db.commit()
        self.db.refresh(project)

        logger.info(f"✅ Project {project.project_number} sent to engineer {engineer.id}")
        self._audit(caller, project, "project_assigned", before=before, extra={"engineer_id": engineer.id})
        return project

    # ------------------------------------------------------------------
    # Design versions
    # ------------------------------------------------------------------

    def upload_blueprint(
        self,
        caller: CallerContext,
        project_id: int,
        file: ContentReference,
        notes: Optional[str] = None,
    ) -> Project:
        require_role(caller, ENGINEER)
        project = self._get(project_id)

        version = project.blueprint_current_version + 1
        append_entry(project, "blueprint_versions", self._version_record(caller, version, file, notes))
        project.blueprint_current_version = version
        return self._commit_upload(caller, project, "blueprint", version)

    def upload_costing(
        self,
        caller: CallerContext,
        project_id: int,
        file: ContentReference,
        total_amount: Decimal,
        breakdown: Optional[list[dict]] = None,
        notes: Optional[str] = None,
    ) -> Project:
        require_role(caller, ENGINEER)
        project = self._get(project_id)

        if total_amount is None or Decimal(total_amount) <= 0:
            raise ValidationError("Costing total amount must be positive")

        version = project.costing_current_version + 1
        record = self._version_record(caller, version, file, notes)
        record["total_amount"] = str(Decimal(total_amount))
        record["breakdown"] = list(breakdown or [])
        append_entry(project, "costing_versions", record)
        project.costing_current_version = version
        return self._commit_upload(caller, project, "costing", version)

    @staticmethod
    def _version_record(caller: CallerContext, version: int, file: ContentReference, notes: Optional[str]) -> dict:
        return {
            "version": version,
            **file.as_record(),
            "uploaded_by": caller.caller_id,
            "uploaded_at": now().isoformat(),
            "notes": notes,
        }

    def _commit_upload(self, caller: CallerContext, project: Project, kind: str, version: int) -> Project:
        """Commit a design upload; an upload answering a revision request reopens the blueprint stage"""
        before = project.status
        if project.status == "revision_requested":
            self._resolve_revisions(project, caller.caller_id)
            record_status(project, "pending_blueprint", caller.caller_id, f"{kind.capitalize()} v{version} uploaded")
        self.db.commit()
        self.db.refresh(project)

        logger.info(f"✅ {kind.capitalize()} v{version} uploaded for project {project.project_number}")
        action = f"{kind}_uploaded" if version == 1 else f"{kind}_revised"
        self._audit(
            caller,
            project,
            action,
            before=before if before != project.status else None,
            extra={"version": version},
        )
        return project

    @staticmethod
    def _resolve_revisions(project: Project, resolved_by: int) -> None:
        resolved_at = now().isoformat()
        project.revisions = [
            revision
            if revision.get("resolved_at")
            else {**revision, "resolved_at": resolved_at, "resolved_by": resolved_by}
            for revision in project.revisions or []
        ]

    # ------------------------------------------------------------------
    # Customer approval
    # ------------------------------------------------------------------

    def submit_for_approval(self, caller: CallerContext, project_id: int) -> Project:
        """Send the current blueprint and costing to the customer for review"""
        require_role(caller, ENGINEER)
        project = self._get(project_id)

        if project.blueprint_current_version < 1 or project.costing_current_version < 1:
            raise PreconditionError("Both a blueprint and a costing must be uploaded before approval")
        if project.status not in APPROVAL_SUBMITTABLE_STATUSES:
            raise InvalidStateError(f"Cannot request approval for a project that is {project.status}")

        before = project.status
        record_status(
            project,
            "pending_customer_approval",
            caller.caller_id,
            f"Blueprint v{project.blueprint_current_version} and costing v{project.costing_current_version} submitted",
        )
        self.db.commit()
        self.db.refresh(project)

        self._audit(caller, project, "approval_requested", before=before)
        self._notify(project, "blueprint_ready")
        return project

    def approve_project(self, caller: CallerContext, project_id: int) -> Project:
        """Customer accepts the design: fixes the price and opens the three payment stages"""
        require_role(caller, CUSTOMER)
        project = self._get(project_id)
        self._require_owner(caller, project)

        if project.status != "pending_customer_approval":
            raise InvalidStateError(f"Cannot approve a project that is {project.status}")
        if not project.costing_versions:
            raise PreconditionError("Project has no costing to approve")

        approved_amount = Decimal(project.costing_versions[-1]["total_amount"])
        amounts = derive_stage_amounts(
            approved_amount, {stage: project.stage_percentage(stage) for stage in PAYMENT_STAGES}
        )
        before = project.status
        approved_at = now()

        project.costing_approved_amount = approved_amount
        project.is_approved = True
        project.approved_at = approved_at
        project.approved_blueprint_version = project.blueprint_current_version
        project.approved_costing_version = project.costing_current_version
        for stage in PAYMENT_STAGES:
            setattr(project, f"{stage}_amount", amounts[stage])
        record_status(project, "approved", caller.caller_id, "Approved by customer")
        record_status(project, "pending_initial_payment", caller.caller_id, "Awaiting initial payment")

        for stage in PAYMENT_STAGES:
            payment = Payment(
                project_id=project.id,
                customer_id=project.customer_id,
                stage=stage,
                amount_expected=amounts[stage],
                status_history=[],
            )
            record_status(payment, "pending", caller.caller_id, f"{stage.capitalize()} payment opened")
            self.db.add(payment)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise InvalidStateError("Payments for this project already exist")
        self.db.refresh(project)

        logger.info(f"✅ Project {project.project_number} approved at {approved_amount}")
        self._audit(
            caller,
            project,
            "project_approved",
            before=before,
            extra={"approved_amount": str(approved_amount)},
        )
        self._notify(project, "project_status_update", status="approved")
        return project

    def request_revision(
        self,
        caller: CallerContext,
        project_id: int,
        revision_type: str,
        description: str,
    ) -> Project:
        require_role(caller, CUSTOMER)
        project = self._get(project_id)
        self._require_owner(caller, project)

        if project.status != "pending_customer_approval":
            raise InvalidStateError(f"Cannot request a revision for a project that is {project.status}")
        if revision_type not in REVISION_TYPES:
            raise ValidationError(f"Revision type must be one of: {', '.join(REVISION_TYPES)}")
        if not description or not description.strip():
            raise ValidationError("Revision description is required")

        before = project.status
        append_entry(
            project,
            "revisions",
            {
                "requested_by": caller.caller_id,
                "requested_at": now().isoformat(),
                "type": revision_type,
                "description": description.strip(),
                "resolved_at": None,
                "resolved_by": None,
            },
        )
        record_status(project, "revision_requested", caller.caller_id, description.strip())
        self.db.commit()
        self.db.refresh(project)

        self._audit(caller, project, "revision_requested", before=before, extra={"type": revision_type})
        return project

    # ------------------------------------------------------------------
    # Staff-driven progress
    # ------------------------------------------------------------------

    def update_project_status(
        self,
        caller: CallerContext,
        project_id: int,
        status: str,
        notes: Optional[str] = None,
    ) -> Project:
        """Move a project to any status, stamping the fabrication and installation milestones"""
        require_staff(caller)
        if status not in PROJECT_STATUSES:
            raise ValidationError(f"Unknown project status: {status}")
        project = self._get(project_id)

        before = project.status
        stamp = now()
        if status == "in_fabrication" and before != "in_fabrication":
            project.fabrication_started_at = stamp
        elif status == "ready_for_installation":
            project.fabrication_completed_at = stamp
            project.fabrication_progress = 100
        elif status == "in_installation" and project.installation_started_at is None:
            project.installation_started_at = stamp
        elif status == "completed":
            project.installation_completed_at = stamp
            project.actual_completion = stamp
        record_status(project, status, caller.caller_id, notes)
        self.db.commit()
        self.db.refresh(project)

        logger.info(f"✅ Project {project.project_number}: {before} → {status}")
        self._audit(caller, project, "project_status_changed", before=before, extra={"notes": notes})
        if status in CUSTOMER_NOTIFIED_STATUSES:
            self._notify(project, "project_status_update", status=status)
        return project

    def assign_fabrication_staff(self, caller: CallerContext, project_id: int, staff_ids: list[int]) -> Project:
        require_role(caller, ADMIN)
        project = self._get(project_id)

        wanted = list(dict.fromkeys(staff_ids))
        crew = self.staff.get_active_many(self.db, wanted, FABRICATION_STAFF)
        found = {user.id for user in crew}
        missing = [staff_id for staff_id in wanted if staff_id not in found]
        if missing:
            raise NotFoundError(f"Fabrication staff not found: {', '.join(str(i) for i in missing)}")

        previous = project.fabrication_staff_ids
        project.fabrication_staff = crew
        self.db.commit()
        self.db.refresh(project)

        self._audit(
            caller,
            project,
            "project_assigned",
            changes={
                "before": {"fabrication_staff_ids": previous},
                "after": {"fabrication_staff_ids": project.fabrication_staff_ids},
            },
        )
        return project

    def update_fabrication_progress(
        self,
        caller: CallerContext,
        project_id: int,
        progress: int,
        notes: Optional[str] = None,
    ) -> Project:
        require_role(caller, FABRICATION_STAFF, ADMIN)
        if progress is None or not 0 <= progress <= 100:
            raise ValidationError("Progress must be between 0 and 100")
        project = self._get(project_id)

        previous = project.fabrication_progress
        project.fabrication_progress = progress
        if notes:
            append_entry(
                project,
                "fabrication_notes",
                {
                    "note": notes,
                    "progress": progress,
                    "added_by": caller.caller_id,
                    "added_at": now().isoformat(),
                },
            )
        self.db.commit()
        self.db.refresh(project)

        self._audit(
            caller,
            project,
            "fabrication_progress_updated",
            changes={"before": {"progress": previous}, "after": {"progress": progress}},
        )
        return project

    def add_fabrication_photo(
        self,
        caller: CallerContext,
        project_id: int,
        file: ContentReference,
        caption: Optional[str] = None,
    ) -> Project:
        require_role(caller, FABRICATION_STAFF)
        project = self._get(project_id)

        append_entry(
            project,
            "fabrication_photos",
            {
                **file.as_record(),
                "caption": caption,
                "uploaded_by": caller.caller_id,
                "uploaded_at": now().isoformat(),
            },
        )
        self.db.commit()
        self.db.refresh(project)

        self._audit(caller, project, "fabrication_photo_uploaded", extra={"key": file.key})
        return project

    def schedule_installation(
        self,
        caller: CallerContext,
        project_id: int,
        scheduled_date: datetime,
        notes: Optional[str] = None,
    ) -> Project:
        require_role(caller, ADMIN, FABRICATION_STAFF)
        project = self._get(project_id)

        project.installation_scheduled_date = scheduled_date
        if notes is not None:
            project.installation_notes = notes
        self.db.commit()
        self.db.refresh(project)

        self._audit(
            caller,
            project,
            "installation_scheduled",
            extra={"scheduled_date": scheduled_date.isoformat()},
        )
        return project

    def update_payment_stages(
        self, caller: CallerContext, project_id: int, percentages: dict[str, int]
    ) -> Project:
        """Admin override of the stage split.

        Once the price is approved the stage amounts and the expected amount
        of every open payment are recomputed in the same commit. A verified
        payment's amount is never rewritten.
        """
        require_role(caller, ADMIN)
        percentages = validate_percentages(percentages)
        project = self._get(project_id)

        amounts = None
        if project.costing_approved_amount is not None:
            amounts = derive_stage_amounts(project.costing_approved_amount, percentages)
            for payment in project.payments:
                if payment.status == "verified" and payment.amount_expected != amounts[payment.stage]:
                    raise InvalidStateError(
                        f"The {payment.stage} payment is already verified and cannot be changed"
                    )

        previous = {stage: project.stage_percentage(stage) for stage in PAYMENT_STAGES}
        for stage in PAYMENT_STAGES:
            setattr(project, f"{stage}_percentage", percentages[stage])
            if amounts is not None:
                setattr(project, f"{stage}_amount", amounts[stage])
        if amounts is not None:
            for payment in project.payments:
                payment.amount_expected = amounts[payment.stage]
        self.db.commit()
        self.db.refresh(project)

        split = "-".join(f"{percentages[stage]}%" for stage in PAYMENT_STAGES)
        logger.info(f"✅ Payment stages for project {project.project_number} set to {split}")
        self._audit(
            caller,
            project,
            "project_updated",
            changes={"before": previous, "after": percentages},
            extra={"payment_stages": split},
        )
        return project

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_owner(caller: CallerContext, project: Project) -> None:
        if project.customer_id != caller.caller_id:
            raise ForbiddenError("You can only act on your own projects")

    def _audit(
        self,
        caller: CallerContext,
        project: Project,
        action: str,
        before: Optional[str] = None,
        changes: Optional[dict] = None,
        extra: Optional[dict] = None,
    ) -> None:
        if changes is None and before is not None:
            changes = status_change(before, project.status)
        emit(
            self.audit,
            ActivityRecord(
                actor_id=caller.caller_id,
                actor_role=caller.role,
                action=action,
                resource_type="project",
                resource_id=project.id,
                changes=changes,
                extra=extra or {},
            ),
        )

    def _notify(self, project: Project, event_name: str, **template_data) -> None:
        customer = project.customer
        dispatch(
            self.notifier,
            event_name,
            customer.email if customer else None,
            {
                "customer_name": customer.full_name if customer else "",
                "project_id": project.id,
                "project_number": project.project_number,
                "project_title": project.title,
                **template_data,
            },
        )
