"""Timesheets API endpoints."""
import logging
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from taskpulse_core import crud, models, projections, schemas
from taskpulse_core.auth import CurrentUser
from taskpulse_core.errors import AuthorizationError

from ...database import get_db
from ..dependencies import get_current_user, require_privileged
from ..responses import ok

logger = logging.getLogger("taskpulse-core.timesheets")

router = APIRouter(tags=["timesheets"])


def _timesheet_to_response(
    timesheet: models.Timesheet,
    user_name: Optional[str] = None,
    task_title: Optional[str] = None,
    project_name: Optional[str] = None,
) -> schemas.TimesheetResponse:
    return schemas.TimesheetResponse(
        id=timesheet.id,
        user_id=timesheet.user_id,
        task_id=timesheet.task_id,
        log_date=timesheet.log_date,
        minutes_logged=timesheet.minutes_logged,
        source=timesheet.source,
        notes=timesheet.notes,
        approved_by=timesheet.approved_by,
        approved_at=timesheet.approved_at,
        created_at=timesheet.created_at,
        user_name=user_name,
        task_title=task_title,
        project_name=project_name,
    )


@router.post("/", response_model=schemas.ApiResponse[schemas.TimesheetResponse], status_code=201)
def log_time(
    timesheet_data: schemas.TimesheetCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Log time manually for the caller.

    - **task_id**: Task worked on (optional)
    - **minutes_logged**: Minutes, greater than 0
    - **log_date**: Day worked (default: today)
    - **notes**: Free text
    """
    timesheet = crud.log_time(db, timesheet_data, current_user)
    return ok(_timesheet_to_response(timesheet, user_name=current_user.full_name))


@router.get("/", response_model=schemas.ApiResponse[list[schemas.TimesheetResponse]])
def list_timesheets(
    user_id: Optional[UUID] = Query(None, description="Filter by user (admins and managers)"),
    task_id: Optional[UUID] = Query(None, description="Filter by task"),
    week_start: Optional[date] = Query(None, description="Range start (with week_end)"),
    week_end: Optional[date] = Query(None, description="Range end (with week_start)"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List timesheet entries. Non-privileged callers only get their own."""
    rows = crud.list_timesheets(
        db,
        current_user,
        user_id=user_id,
        week_start=week_start,
        week_end=week_end,
        task_id=task_id,
    )
    return ok([
        _timesheet_to_response(ts, user_name, task_title, project_name)
        for ts, user_name, task_title, project_name in rows
    ])


@router.get("/summary/weekly", response_model=schemas.ApiResponse[list[schemas.WeeklySummaryRow]])
def get_weekly_summary(
    week_start: date = Query(..., description="First day of the range"),
    week_end: date = Query(..., description="Last day of the range"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_privileged),
):
    """Minutes logged and tasks worked per user (admins and managers)."""
    return ok(projections.weekly_timesheet_summary(db, week_start, week_end))


@router.put("/{timesheet_id}/approve", response_model=schemas.ApiResponse[schemas.TimesheetResponse])
def approve_timesheet(
    timesheet_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Approve a timesheet entry (admins and managers)."""
    timesheet = crud.approve_timesheet(db, timesheet_id, current_user)
    return ok(_timesheet_to_response(timesheet))


def _weekly_to_response(
    sheet: models.WeeklyTimesheet,
    employee_name: Optional[str] = None,
    supervisor_name: Optional[str] = None,
    project_name: Optional[str] = None,
) -> schemas.WeeklyTimesheetResponse:
    return schemas.WeeklyTimesheetResponse(
        id=sheet.id,
        user_id=sheet.user_id,
        project_id=sheet.project_id,
        supervisor_id=sheet.supervisor_id,
        week_start=sheet.week_start,
        week_end=sheet.week_end,
        daily_data=sheet.daily_data,
        total_hours=sheet.total_hours,
        approved_hours=sheet.approved_hours,
        status=sheet.status,
        created_at=sheet.created_at,
        updated_at=sheet.updated_at,
        employee_name=employee_name,
        supervisor_name=supervisor_name,
        project_name=project_name,
    )


@router.get("/preview", response_model=schemas.ApiResponse[schemas.TimesheetPreview])
def preview_weekly_timesheet(
    start_date: date = Query(..., description="First day of the sheet"),
    end_date: date = Query(..., description="Last day of the sheet"),
    user_id: Optional[UUID] = Query(None, description="Employee (default: caller; others need admin/manager)"),
    project_id: Optional[UUID] = Query(None, description="Limit to one project"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Generate a weekly timesheet sheet from logged time.

    Days without logged time are filled from assigned tasks whose start/end
    window covers them (8 hours each).
    """
    user_id = user_id or current_user.id
    if user_id != current_user.id and not current_user.is_privileged:
        raise AuthorizationError("You can only preview your own timesheets")
    if project_id is not None:
        crud.get_project(db, project_id, current_user)
    return ok(projections.timesheet_preview(db, user_id, start_date, end_date, project_id=project_id))


@router.post("/weekly", response_model=schemas.ApiResponse[schemas.WeeklyTimesheetResponse], status_code=201)
def save_weekly_timesheet(
    sheet_data: schemas.WeeklyTimesheetCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Save a weekly timesheet sheet.

    - **user_id**: Employee (non-privileged callers: themselves only)
    - **daily_data**: Day rows, usually the preview's, possibly edited
    - **status**: draft (default), submitted...
    """
    sheet = crud.save_weekly_timesheet(db, sheet_data, current_user)
    return ok(_weekly_to_response(*crud.get_weekly_timesheet(db, sheet.id, current_user)))


@router.get("/weekly", response_model=schemas.ApiResponse[list[schemas.WeeklyTimesheetResponse]])
def list_weekly_timesheets(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Saved weekly sheets, newest first. Non-privileged callers only get their own."""
    rows = crud.list_weekly_timesheets(db, current_user)
    return ok([_weekly_to_response(*row) for row in rows])


@router.get("/weekly/{sheet_id}", response_model=schemas.ApiResponse[schemas.WeeklyTimesheetResponse])
def get_weekly_timesheet(
    sheet_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return ok(_weekly_to_response(*crud.get_weekly_timesheet(db, sheet_id, current_user)))
