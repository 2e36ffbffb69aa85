"""Project router - FastAPI endpoints for the project lifecycle"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_caller
from ...database import get_db
from ...shared.access import CallerContext
from .schemas import (
    BlueprintUpload,
    ConsultationUpdate,
    CostingUpload,
    FabricationPhotoRequest,
    FabricationStaffRequest,
    InstallationScheduleRequest,
    ProgressUpdateRequest,
    ProjectCreate,
    ProjectResponse,
    RevisionRequest,
    StagePercentages,
    StatusUpdateRequest,
    SubmitToEngineerRequest,
)
from .service import ProjectService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["Projects"])


def get_project_service(db: Session = Depends(get_db)) -> ProjectService:
    """Dependency injection for ProjectService"""
    return ProjectService(db)


def _envelope(message: str, project) -> dict:
    return {"success": True, "message": message, "project": ProjectResponse.model_validate(project)}


# ============================================================================
# QUERIES
# ============================================================================


@router.get("/mine", response_model=list[ProjectResponse])
async def my_projects(
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    return service.my_projects(caller)


@router.get("/engineer/pending", response_model=list[ProjectResponse])
async def pending_for_engineer(
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    return service.pending_for_engineer(caller)


@router.get("/fabrication/queue", response_model=list[ProjectResponse])
async def fabrication_queue(
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    return service.fabrication_queue(caller)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: int,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    """Project details with its payment stages"""
    return service.get_project(caller, project_id)


# ============================================================================
# SALES AND ENGINEERING
# ============================================================================


@router.post("", status_code=201)
async def create_project(
    data: ProjectCreate,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    return _envelope("Project created", service.create_project(caller, data))


@router.put("/{project_id}/consultation")
async def update_consultation(
    project_id: int,
    data: ConsultationUpdate,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    return _envelope("Consultation updated", service.update_consultation(caller, project_id, data))


@router.put("/{project_id}/submit-to-engineer")
async def submit_to_engineer(
    project_id: int,
    data: SubmitToEngineerRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    project = service.submit_to_engineer(caller, project_id, data.engineer_id)
    return _envelope("Project sent to engineer", project)


@router.post("/{project_id}/blueprint")
async def upload_blueprint(
    project_id: int,
    data: BlueprintUpload,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    project = service.upload_blueprint(caller, project_id, data.file, data.notes)
    return _envelope(f"Blueprint v{project.blueprint_current_version} uploaded", project)


@router.post("/{project_id}/costing")
async def upload_costing(
    project_id: int,
    data: CostingUpload,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    project = service.upload_costing(
        caller, project_id, data.file, data.total_amount, data.breakdown, data.notes
    )
    return _envelope(f"Costing v{project.costing_current_version} uploaded", project)


@router.put("/{project_id}/submit-for-approval")
async def submit_for_approval(
    project_id: int,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    return _envelope("Sent to customer for approval", service.submit_for_approval(caller, project_id))


# ============================================================================
# CUSTOMER DECISION
# ============================================================================


@router.put("/{project_id}/approve")
async def approve_project(
    project_id: int,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    return _envelope("Project approved", service.approve_project(caller, project_id))


@router.put("/{project_id}/request-revision")
async def request_revision(
    project_id: int,
    data: RevisionRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    project = service.request_revision(caller, project_id, data.revision_type, data.description)
    return _envelope("Revision requested", project)


# ============================================================================
# FABRICATION AND INSTALLATION
# ============================================================================


@router.put("/{project_id}/status")
async def update_project_status(
    project_id: int,
    data: StatusUpdateRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    project = service.update_project_status(caller, project_id, data.status, data.notes)
    return _envelope("Project status updated", project)


@router.put("/{project_id}/fabrication-staff")
async def assign_fabrication_staff(
    project_id: int,
    data: FabricationStaffRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    project = service.assign_fabrication_staff(caller, project_id, data.staff_ids)
    return _envelope("Fabrication staff assigned", project)


@router.put("/{project_id}/fabrication-progress")
async def update_fabrication_progress(
    project_id: int,
    data: ProgressUpdateRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    project = service.update_fabrication_progress(caller, project_id, data.progress, data.notes)
    return _envelope("Fabrication progress updated", project)


@router.post("/{project_id}/fabrication-photos")
async def add_fabrication_photo(
    project_id: int,
    data: FabricationPhotoRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    project = service.add_fabrication_photo(caller, project_id, data.file, data.caption)
    return _envelope("Fabrication photo added", project)


@router.put("/{project_id}/installation")
async def schedule_installation(
    project_id: int,
    data: InstallationScheduleRequest,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    project = service.schedule_installation(caller, project_id, data.scheduled_date, data.notes)
    return _envelope("Installation scheduled", project)


@router.put("/{project_id}/payment-stages")
async def update_payment_stages(
    project_id: int,
    data: StagePercentages,
    caller: CallerContext = Depends(get_current_caller),
    service: ProjectService = Depends(get_project_service),
):
    project = service.update_payment_stages(caller, project_id, data.model_dump())
    return _envelope("Payment stages updated", project)
