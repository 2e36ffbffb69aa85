"""Activity router - read access to the audit trail"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ...auth import get_current_caller
from ...database import get_db
from ...errors import ValidationError
from ...models import RESOURCE_TYPES
from ...services.activity_service import ActivityService
from ...shared.access import CallerContext, require_staff

router = APIRouter(prefix="/activity", tags=["Activity"])


class ActivityLogResponse(BaseModel):
    id: int
    actor_id: int
    actor_role: str
    action: str
    resource_type: Optional[str] = None
    resource_id: Optional[int] = None
    description: str
    changes: Optional[dict] = None
    extra: Optional[dict] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


@router.get("/{resource_type}/{resource_id}", response_model=list[ActivityLogResponse])
async def get_resource_activity(
    resource_type: str,
    resource_id: int,
    limit: int = Query(50, ge=1, le=200),
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    """Audit trail of one appointment, project or payment, newest first"""
    require_staff(caller)
    if resource_type not in RESOURCE_TYPES:
        raise ValidationError(f"Unknown resource type: {resource_type}")
    return ActivityService.get_resource_activity(db, resource_type, resource_id, limit)
