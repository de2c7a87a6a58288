"""Sprints API endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from taskpulse_core import activity, crud, projections, schemas
from taskpulse_core.auth import CurrentUser

from ...database import get_db
from ..dependencies import get_current_user
from ..responses import ok

logger = logging.getLogger("taskpulse-core.sprints")

router = APIRouter(tags=["sprints"])


@router.post("/", response_model=schemas.ApiResponse[schemas.SprintResponse], status_code=201)
def create_sprint(
    sprint_data: schemas.SprintCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Create the next sprint of a project (admins and managers).

    - **project_id**: Owning project
    - **name**: Optional; defaults to "Sprint <number>"
    - **goal**: Sprint goal
    - **status**: planned, active, completed... (default: planned)
    - **start_date** / **end_date**: Sprint dates
    """
    sprint = crud.create_sprint(db, sprint_data, current_user)
    return ok(schemas.SprintResponse.model_validate(sprint))


@router.get("/", response_model=schemas.ApiResponse[list[schemas.SprintResponse]])
def list_sprints(
    project_id: Optional[UUID] = Query(None, description="Filter by project"),
    status: Optional[str] = Query(None, description="Filter by status"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List sprints, ordered by project and number."""
    sprints = crud.list_sprints(db, current_user, project_id=project_id, status=status)
    return ok([schemas.SprintResponse.model_validate(s) for s in sprints])


@router.get("/next-number", response_model=schemas.ApiResponse[schemas.NextSprintNumber])
def get_next_sprint_number(
    project_id: UUID = Query(..., description="Project to number the sprint in"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Number and default name the next sprint of a project would get."""
    number = crud.get_next_sprint_number(db, project_id)
    return ok(schemas.NextSprintNumber(sprint_number=number, name=f"Sprint {number}"))


@router.get("/{sprint_id}", response_model=schemas.ApiResponse[schemas.SprintResponse])
def get_sprint(
    sprint_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Get a sprint by ID (members of its project, admins and managers)."""
    return ok(schemas.SprintResponse.model_validate(crud.get_sprint(db, sprint_id, current_user)))


@router.put("/{sprint_id}", response_model=schemas.ApiResponse[schemas.SprintResponse])
def update_sprint(
    sprint_id: UUID,
    sprint_data: schemas.SprintUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Update a sprint (admins and managers)."""
    sprint = crud.update_sprint(db, sprint_id, sprint_data, current_user)
    return ok(schemas.SprintResponse.model_validate(sprint))


@router.delete("/{sprint_id}", response_model=schemas.ApiResponse[schemas.MessageData])
def delete_sprint(
    sprint_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Delete a sprint; its tasks are kept without a sprint (admins and managers)."""
    crud.delete_sprint(db, sprint_id, current_user)
    return ok(schemas.MessageData(message="Sprint deleted successfully"))


@router.get("/{sprint_id}/burndown", response_model=schemas.ApiResponse[list[schemas.BurndownPoint]])
def get_sprint_burndown(
    sprint_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Daily ideal, estimated and actual remaining hours for a sprint."""
    sprint = crud.get_sprint(db, sprint_id, current_user)
    return ok(projections.sprint_burndown(db, sprint))


@router.get("/{sprint_id}/activity", response_model=schemas.ApiResponse[list[schemas.ActivityEntry]])
def get_sprint_activity(
    sprint_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Activity of the last two days for a sprint and its tasks (latest 20).

    Admins and managers see everything; other roles do not see changes made by admins or managers.
    """
    crud.get_sprint(db, sprint_id, current_user)
    return ok(activity.get_sprint_activity(db, sprint_id, current_user))


@router.get("/{sprint_id}/hierarchy", response_model=schemas.ApiResponse[schemas.SprintHierarchy])
def get_sprint_hierarchy(
    sprint_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Sprint tasks grouped by module, with a "General Tasks" group for tasks without one."""
    sprint = crud.get_sprint(db, sprint_id, current_user)
    return ok(schemas.SprintHierarchy.model_validate(projections.sprint_hierarchy(db, sprint)))
