"""Projects API endpoints."""
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

logger = logging.getLogger("taskpulse-core.projects")

router = APIRouter(tags=["projects"])


def _project_detail(project) -> schemas.ProjectDetailResponse:
    """Convert Project model to ProjectDetailResponse schema."""
    base = schemas.ProjectResponse.model_validate(project)
    return schemas.ProjectDetailResponse(
        **base.model_dump(),
        members=[
            schemas.UserSummary(id=m.user_id, name=m.user.full_name if m.user else None)
            for m in project.members
        ],
        modules=[schemas.ModuleResponse.model_validate(m) for m in project.modules],
    )


@router.post("/", response_model=schemas.ApiResponse[schemas.ProjectDetailResponse], status_code=201)
def create_project(
    project_data: schemas.ProjectCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Create a new project (admins and managers).

    - **name**: Project name; a trailing "-N" sets the version (e.g., "HRMS-2")
    - **description**: Optional description
    - **status**: Project status (default: active)
    - **color**: Display color
    - **org_code**: Organization code used in task codes (default: RS)
    - **members**: Member user ids (the creator is always added)
    - **modules**: Modules to create with the project
    """
    project = crud.create_project(db, project_data, current_user)
    return ok(_project_detail(project))


@router.get("/", response_model=schemas.ApiResponse[list[schemas.ProjectResponse]])
def list_projects(
    status: Optional[str] = Query(None, description="Filter by status"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    List projects visible to the caller.

    Admins and managers see every project; other roles see projects they are members of.
    """
    projects = crud.list_projects(db, current_user, status=status)
    return ok([schemas.ProjectResponse.model_validate(p) for p in projects])


@router.get("/my", response_model=schemas.ApiResponse[list[schemas.ProjectResponse]])
def list_my_projects(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List projects the caller is a member of."""
    projects = crud.list_my_projects(db, current_user)
    return ok([schemas.ProjectResponse.model_validate(p) for p in projects])


@router.get("/{project_id}", response_model=schemas.ApiResponse[schemas.ProjectDetailResponse])
def get_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Get a project with its members and modules."""
    project = crud.get_project(db, project_id, current_user)
    return ok(_project_detail(project))


@router.put("/{project_id}", response_model=schemas.ApiResponse[schemas.ProjectDetailResponse])
def update_project(
    project_id: UUID,
    project_data: schemas.ProjectUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Update a project (admins and managers).

    - **members**: When present, replaces the member list
    - **modules**: When present, appended as new modules
    """
    project = crud.update_project(db, project_id, project_data, current_user)
    return ok(_project_detail(project))


@router.delete("/{project_id}", response_model=schemas.ApiResponse[schemas.MessageData])
def delete_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Delete a project with its modules, sprints and tasks (admins and managers)."""
    crud.delete_project(db, project_id, current_user)
    return ok(schemas.MessageData(message="Project deleted successfully"))


@router.get("/{project_id}/members", response_model=schemas.ApiResponse[list[schemas.ProjectMemberResponse]])
def list_project_members(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List the members of a project."""
    members = crud.list_project_members(db, project_id, current_user)
    return ok([
        schemas.ProjectMemberResponse(user_id=u.id, full_name=u.full_name, email=u.email, role=u.role)
        for u in members
    ])


@router.get("/{project_id}/summary", response_model=schemas.ApiResponse[schemas.ProjectSummary])
def get_project_summary(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Task, point and current-sprint numbers for a project."""
    project = crud.get_project(db, project_id, current_user)
    return ok(projections.project_summary(db, project.id, project.name))


@router.get("/{project_id}/hierarchy", response_model=schemas.ApiResponse[schemas.ProjectHierarchy])
def get_project_hierarchy(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Project with its modules, sprints and tasks (task lines carry assignee names)."""
    project = crud.get_project(db, project_id, current_user)
    hierarchy = projections.project_hierarchy(db, project)
    return ok(schemas.ProjectHierarchy.model_validate(hierarchy, from_attributes=True))


@router.get("/{project_id}/activity", response_model=schemas.ApiResponse[list[schemas.ActivityEntry]])
def get_project_activity(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Activity of the last two days for a project (latest 20).

    Admins and managers see everything; other roles do not see changes made by admins or managers.
    """
    crud.get_project(db, project_id, current_user)
    return ok(activity.get_project_activity(db, project_id, current_user))
