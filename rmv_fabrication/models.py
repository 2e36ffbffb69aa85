import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    and_,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


# Appointment statuses: pending → scheduled → confirmed → in_progress → completed
# pending: booked by customer, waiting for agent assignment
# scheduled: sales staff assigned (by agent or auto-assignment)
# confirmed: customer confirmed the schedule
# in_progress: consultation ongoing
# completed / cancelled / no_show: terminal
APPOINTMENT_STATUSES = (
    "pending",
    "scheduled",
    "confirmed",
    "in_progress",
    "completed",
    "cancelled",
    "no_show",
)
APPOINTMENT_TERMINAL_STATUSES = ("completed", "cancelled", "no_show")
# Appointments in these statuses no longer hold their (staff, timestamp) slot
APPOINTMENT_RELEASED_STATUSES = ("cancelled", "no_show")
APPOINTMENT_TYPES = ("office_consultation", "ocular_visit")
TRAVEL_FEE_STATUSES = ("not_required", "pending", "collected", "verified")

PROJECT_STATUSES = (
    "draft",
    "pending_blueprint",
    "pending_customer_approval",
    "revision_requested",
    "approved",
    "pending_initial_payment",
    "in_fabrication",
    "pending_midpoint_payment",
    "ready_for_installation",
    "in_installation",
    "pending_final_payment",
    "completed",
    "cancelled",
    "on_hold",
)
REVISION_TYPES = ("minor", "major")

PAYMENT_STAGES = ("initial", "midpoint", "final")
PAYMENT_STATUSES = ("pending", "submitted", "verified", "rejected")
PAYMENT_METHODS = ("gcash", "bank_transfer", "cash", "other")

RESOURCE_TYPES = ("user", "appointment", "project", "payment", "system")


class User(Base):
    """Staff member or customer. Owned by the identity provider, read-only here."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    phone = Column(String(20), nullable=True)
    role = Column(String(30), nullable=False, default="customer", index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )

    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    assigned_sales_staff_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Scheduling
    scheduled_date = Column(DateTime, nullable=False)
    scheduled_end_date = Column(DateTime, nullable=False)  # scheduled_date + slot duration
    appointment_type = Column(String(30), nullable=False, default="office_consultation")
    status = Column(String(30), nullable=False, default="pending", index=True)

    # Ocular visit site: street, barangay, city, province, zip_code, landmark
    site_address = Column(JSON, nullable=True)
    interested_category = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)

    customer_notes = Column(Text, nullable=True)
    agent_notes = Column(Text, nullable=True)
    sales_notes = Column(Text, nullable=True)

    # Cancellation
    cancelled_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancellation_within_policy = Column(Boolean, nullable=True)  # cancelled before the cutoff window

    # Travel fee (ocular visits): pending → collected → verified, or not_required
    travel_fee_required = Column(Boolean, nullable=True)
    travel_fee_amount = Column(Numeric(12, 2), nullable=True)
    travel_fee_status = Column(String(20), nullable=True)
    travel_fee_notes = Column(Text, nullable=True)
    travel_fee_collected_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    travel_fee_collected_at = Column(DateTime, nullable=True)
    travel_fee_verified_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    travel_fee_verified_at = Column(DateTime, nullable=True)

    converted_to_project_id = Column(
        Integer,
        ForeignKey("projects.id", use_alter=True, name="fk_appointments_converted_project"),
        nullable=True,
    )

    # [{status, changed_by, changed_at, notes}] in insertion order
    status_history = Column(JSON, default=list, nullable=False)

    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    customer = relationship("User", foreign_keys=[customer_id])
    assigned_sales_staff = relationship("User", foreign_keys=[assigned_sales_staff_id])


# At most one live appointment per (sales staff, exact timestamp)
_live_slot_clause = and_(
    Appointment.status.notin_(APPOINTMENT_RELEASED_STATUSES),
    Appointment.is_deleted.is_(False),
)
Index(
    "uq_appointments_staff_slot",
    Appointment.assigned_sales_staff_id,
    Appointment.scheduled_date,
    unique=True,
    sqlite_where=_live_slot_clause,
    postgresql_where=_live_slot_clause,
)


# Fabrication crew of a project
project_fabrication_staff = Table(
    "project_fabrication_staff",
    Base.metadata,
    Column("project_id", Integer, ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
)


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )
    project_number = Column(String(20), unique=True, nullable=False, index=True)  # RMV-YYYY-####

    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    source_appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)

    category = Column(String(50), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    specifications = Column(JSON, nullable=True)  # material, dimensions, color, finish
    site_address = Column(JSON, nullable=True)

    status = Column(String(40), nullable=False, default="draft", index=True)

    # Assigned staff
    assigned_sales_staff_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    assigned_engineer_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Consultation (sales)
    consultation_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    consultation_at = Column(DateTime, nullable=True)
    consultation_notes = Column(Text, nullable=True)
    consultation_measurements = Column(JSON, default=list, nullable=False)
    consultation_photos = Column(JSON, default=list, nullable=False)

    # Blueprint (engineer): [{version, key, url, original_name, uploaded_by, uploaded_at, notes}]
    blueprint_current_version = Column(Integer, default=0, nullable=False)
    blueprint_versions = Column(JSON, default=list, nullable=False)

    # Costing (engineer): versions also carry total_amount and breakdown
    costing_current_version = Column(Integer, default=0, nullable=False)
    costing_versions = Column(JSON, default=list, nullable=False)
    costing_approved_amount = Column(Numeric(12, 2), nullable=True)

    # Customer approval
    is_approved = Column(Boolean, default=False, nullable=False)
    approved_at = Column(DateTime, nullable=True)
    approved_blueprint_version = Column(Integer, nullable=True)
    approved_costing_version = Column(Integer, nullable=True)

    # [{requested_by, requested_at, type, description, resolved_at, resolved_by}]
    revisions = Column(JSON, default=list, nullable=False)

    # Payment stages, amounts stay null until costing_approved_amount is set
    initial_percentage = Column(Integer, nullable=False, default=30)
    initial_amount = Column(Numeric(12, 2), nullable=True)
    midpoint_percentage = Column(Integer, nullable=False, default=40)
    midpoint_amount = Column(Numeric(12, 2), nullable=True)
    final_percentage = Column(Integer, nullable=False, default=30)
    final_amount = Column(Numeric(12, 2), nullable=True)

    # Fabrication
    fabrication_progress = Column(Integer, default=0, nullable=False)
    fabrication_started_at = Column(DateTime, nullable=True)
    fabrication_completed_at = Column(DateTime, nullable=True)
    fabrication_photos = Column(JSON, default=list, nullable=False)
    fabrication_notes = Column(JSON, default=list, nullable=False)

    # Installation
    installation_scheduled_date = Column(DateTime, nullable=True)
    installation_started_at = Column(DateTime, nullable=True)
    installation_completed_at = Column(DateTime, nullable=True)
    installation_notes = Column(Text, nullable=True)

    # Timeline
    estimated_completion = Column(DateTime, nullable=True)
    actual_completion = Column(DateTime, nullable=True)

    status_history = Column(JSON, default=list, nullable=False)

    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), index=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    customer = relationship("User", foreign_keys=[customer_id])
    assigned_engineer = relationship("User", foreign_keys=[assigned_engineer_id])
    fabrication_staff = relationship(
        "User", secondary=project_fabrication_staff, order_by="User.id", lazy="selectin"
    )
    payments = relationship("Payment", back_populates="project", order_by="Payment.id")

    @property
    def fabrication_staff_ids(self) -> list[int]:
        return [user.id for user in self.fabrication_staff]

    def stage_amount(self, stage: str):
        return getattr(self, f"{stage}_amount")

    def stage_percentage(self, stage: str) -> int:
        return getattr(self, f"{stage}_percentage")


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (UniqueConstraint("project_id", "stage", name="uq_payments_project_stage"),)

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )

    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # denormalized

    stage = Column(String(20), nullable=False)
    amount_expected = Column(Numeric(12, 2), nullable=False)
    amount_received = Column(Numeric(12, 2), nullable=True)
    payment_method = Column(String(30), nullable=True)

    # Status workflow: pending → submitted → verified | rejected (rejected → submitted on resubmit)
    status = Column(String(20), nullable=False, default="pending", index=True)

    # Proof uploaded by the customer (blob store reference)
    proof_key = Column(String(500), nullable=True)
    proof_url = Column(Text, nullable=True)
    proof_original_name = Column(String(255), nullable=True)
    proof_uploaded_at = Column(DateTime, nullable=True)

    # QR code the customer pays against (uploaded by cashier)
    qr_code_key = Column(String(500), nullable=True)
    qr_code_url = Column(Text, nullable=True)
    qr_code_uploaded_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    qr_code_uploaded_at = Column(DateTime, nullable=True)

    # Verification
    verified_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    verification_notes = Column(Text, nullable=True)
    reference_number = Column(String(100), nullable=True)  # Bank/GCash reference

    # Rejection
    rejected_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Receipt, immutable once generated
    receipt_number = Column(String(30), unique=True, nullable=True, index=True)
    receipt_generated_at = Column(DateTime, nullable=True)

    due_date = Column(DateTime, nullable=True)
    status_history = Column(JSON, default=list, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    project = relationship("Project", back_populates="payments")
    customer = relationship("User", foreign_keys=[customer_id])


class ActivityLog(Base):
    """Append-only audit record, one per workflow transition"""

    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(Integer, nullable=False, index=True)
    actor_role = Column(String(30), nullable=False, index=True)
    action = Column(String(50), nullable=False, index=True)
    resource_type = Column(String(20), nullable=True)
    resource_id = Column(Integer, nullable=True)
    description = Column(Text, nullable=False)
    changes = Column(JSON, nullable=True)  # {"before": ..., "after": ...}
    extra = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), index=True)

    __table_args__ = (Index("ix_activity_logs_resource", "resource_type", "resource_id"),)
