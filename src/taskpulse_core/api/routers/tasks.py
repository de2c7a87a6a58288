"""Tasks API endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from taskpulse_core import crud, models, schemas
from taskpulse_core.auth import CurrentUser
from taskpulse_core.workload import MAX_HOURS, MAX_POINTS, check_developer_load

from ...database import get_db
from ..dependencies import get_current_user
from ..responses import ok

logger = logging.getLogger("taskpulse-core.tasks")

router = APIRouter(tags=["tasks"])


def _task_to_response(task: models.Task) -> schemas.TaskResponse:
    """Convert Task model to TaskResponse schema with joined names."""
    return schemas.TaskResponse(
        id=task.id,
        task_code=task.task_code,
        task_serial=task.task_serial,
        title=task.title,
        description=task.description,
        status=task.status,
        priority=task.priority,
        potential=task.potential,
        potential_points=task.potential_points,
        target_hours=task.target_hours,
        est_hours=task.est_hours,
        actual_hours=task.actual_hours,
        project_id=task.project_id,
        sprint_id=task.sprint_id,
        module_id=task.module_id,
        assignee_id=task.assignee_id,
        created_by=task.created_by,
        start_date=task.start_date,
        end_date=task.end_date,
        in_progress_at=task.in_progress_at,
        current_period_start=task.current_period_start,
        completed_at=task.completed_at,
        task_duration_minutes=task.task_duration_minutes or 0,
        created_at=task.created_at,
        updated_at=task.updated_at,
        project_name=task.project.name if task.project else None,
        project_color=task.project.color if task.project else None,
        module_name=task.module.name if task.module else None,
        assignee_name=task.assignee.full_name if task.assignee else None,
        created_by_name=task.creator.full_name if task.creator else None,
        collaborators=[schemas.UserSummary(id=u.id, name=u.full_name) for u in task.collaborators],
    )


@router.post("/", response_model=schemas.ApiResponse[schemas.TaskResponse], status_code=201)
def create_task(
    task_data: schemas.TaskCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Create a new task.

    - **project_id**: Project UUID (required)
    - **title**: Task title
    - **status**: Initial status (default: todo)
    - **priority**: low, medium, high, critical (default: medium)
    - **potential**: Size tag (Very Small, Small, Medium, Large, Very Large)
    - **sprint_id** / **module_id**: Optional placement within the project
    - **assignee_id**: Assignee (developers must assign themselves)
    - **collaborators**: Collaborator user ids
    - **end_date**: Due date

    Rejected with 400 when the assignee would exceed 20 points or 40 hours in the sprint.
    """
    task = crud.create_task(db, task_data, current_user)
    return ok(_task_to_response(task))


@router.get("/", response_model=schemas.ApiResponse[list[schemas.TaskResponse]])
def list_tasks(
    project_id: Optional[UUID] = Query(None, description="Filter by project"),
    sprint_id: Optional[UUID] = Query(None, description="Filter by sprint"),
    assignee_id: Optional[UUID] = Query(None, description="Filter by assignee"),
    status: Optional[str] = Query(None, description="Filter by status"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    List tasks, newest first.

    Developers only see tasks they are assigned to or collaborate on.
    """
    tasks = crud.list_tasks(
        db,
        current_user,
        project_id=project_id,
        sprint_id=sprint_id,
        assignee_id=assignee_id,
        status=status,
    )
    return ok([_task_to_response(t) for t in tasks])


@router.get("/workload", response_model=schemas.ApiResponse[schemas.WorkloadResponse])
def get_workload(
    assignee_id: UUID = Query(..., description="Developer"),
    sprint_id: UUID = Query(..., description="Sprint"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Points and hours a developer has committed in a sprint, against the caps."""
    crud.get_user(db, assignee_id)
    crud.get_sprint(db, sprint_id)
    load = check_developer_load(db, assignee_id, sprint_id)
    return ok(schemas.WorkloadResponse(
        assignee_id=assignee_id,
        sprint_id=sprint_id,
        points=load.points,
        hours=load.hours,
        max_points=MAX_POINTS,
        max_hours=MAX_HOURS,
        remaining_points=max(0, MAX_POINTS - load.points),
        remaining_hours=max(0.0, MAX_HOURS - load.hours),
    ))


@router.get("/{task_id}", response_model=schemas.ApiResponse[schemas.TaskResponse])
def get_task(
    task_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Get a task by ID."""
    return ok(_task_to_response(crud.get_task(db, task_id)))


@router.patch("/{task_id}", response_model=schemas.ApiResponse[schemas.TaskResponse])
def update_task(
    task_id: UUID,
    task_data: schemas.TaskUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Partially update a task. Only fields present in the body are changed.

    Status changes track time in progress and completion, and add automatic
    timesheet entries (30 min when started, 60 min when done).
    Developers may only edit their own tasks and may not reassign them.
    """
    task = crud.update_task(db, task_id, task_data, current_user)
    return ok(_task_to_response(task))


@router.delete("/{task_id}", response_model=schemas.ApiResponse[schemas.MessageData])
def delete_task(
    task_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Delete a task and its timesheets (admins and managers)."""
    crud.delete_task(db, task_id, current_user)
    return ok(schemas.MessageData(message="Task deleted successfully"))
