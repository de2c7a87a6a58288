"""Change-log and global activity API endpoints."""
import logging
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from taskpulse_core import activity, models, schemas
from taskpulse_core.auth import CurrentUser
from taskpulse_core.errors import ValidationError

from ...database import get_db
from ..dependencies import get_current_user, require_privileged
from ..responses import ok

logger = logging.getLogger("taskpulse-core.changelogs")

router = APIRouter(tags=["changelogs"])


def _optional_uuid(value: Optional[str], name: str) -> Optional[UUID]:
    """Query values may be a UUID, empty, or "all" (no filter)."""
    if value is None or value in ("", "all"):
        return None
    try:
        return UUID(value)
    except ValueError:
        raise ValidationError(f"{name} must be a UUID or 'all'")


@router.get("/", response_model=schemas.ApiResponse[list[schemas.ActivityEntry]])
def get_global_activity(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Dashboard activity of the last two days (latest 50).

    Admins and managers see everything. Other roles see changes they made,
    tasks assigned to them, and changes in projects they belong to.
    """
    return ok(activity.get_global_activity(db, current_user))


@router.get("/raw", response_model=schemas.ApiResponse[list[schemas.ActivityEntry]])
def get_raw_changelogs(
    entity_type: Optional[models.EntityType] = Query(None, description="Filter by entity type"),
    entity_id: Optional[UUID] = Query(None, description="Filter by entity id"),
    project_id: Optional[str] = Query(None, description="Project id or 'all'"),
    sprint_id: Optional[str] = Query(None, description="Sprint id or 'all'"),
    member_id: Optional[str] = Query(None, description="Acting user id or 'all'"),
    start_date: Optional[date] = Query(None, description="Changed on or after"),
    end_date: Optional[date] = Query(None, description="Changed on or before"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_privileged),
):
    """
    Full change-log for operators, newest first, with optional filters.

    - **project_id**: The project itself plus anything whose snapshot references it
    - **sprint_id**: The sprint itself plus anything whose snapshot references it
    - **member_id**: Changes made by this user
    """
    clauses = activity.raw_filter_clauses(
        entity_type=entity_type,
        entity_id=entity_id,
        project_id=_optional_uuid(project_id, "project_id"),
        sprint_id=_optional_uuid(sprint_id, "sprint_id"),
        member_id=_optional_uuid(member_id, "member_id"),
        start_date=start_date,
        end_date=end_date,
    )
    return ok(activity.get_raw_changelogs(db, clauses))
