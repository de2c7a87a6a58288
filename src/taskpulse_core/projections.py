"""Read-only views: burndown, project summary, hierarchies and timesheet sheets."""
import logging
from collections import Counter
from datetime import date, timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from .errors import NotFoundError, ValidationError
from .models import (
    CLOSED_TASK_STATUSES,
    COMPLETED_TASK_STATUSES,
    Module,
    Project,
    Sprint,
    Task,
    TaskStatus,
    Timesheet,
    User,
    utcnow,
)

logger = logging.getLogger("taskpulse-core.projections")

GENERAL_TASKS_GROUP = "General Tasks"

# Generated timesheet rows assume a fixed 8-hour office day
REGULAR_DAY_HOURS = 8.0
WORKDAY_START = "10:00"
WORKDAY_END = "18:00"


def _estimate(task: Task) -> float:
    return float(task.est_hours or task.target_hours or 0)


def sprint_burndown(db: Session, sprint: Sprint, today: Optional[date] = None) -> list[dict[str, Any]]:
    """
    Daily burndown of a sprint in hours.

    ideal falls linearly from the total estimate to zero; remaining_est drops
    as tasks are completed; remaining_actual drops as time is logged. Days
    after today carry no remaining values.

    Raises:
        ValidationError: If the sprint has no start or end date
    """
    if sprint.start_date is None or sprint.end_date is None:
        raise ValidationError("Sprint needs start_date and end_date for a burndown")

    today = today or utcnow().date()
    tasks = db.scalars(select(Task).where(Task.sprint_id == sprint.id)).all()
    logged_rows = db.execute(
        select(Timesheet.log_date, func.sum(Timesheet.minutes_logged))
        .join(Task, Task.id == Timesheet.task_id)
        .where(Task.sprint_id == sprint.id)
        .group_by(Timesheet.log_date)
    ).all()
    hours_by_day = {log_date: (minutes or 0) / 60.0 for log_date, minutes in logged_rows}

    total = sum(_estimate(t) for t in tasks)
    total_days = (sprint.end_date - sprint.start_date).days
    step = total / (total_days or 1)

    points = []
    day = sprint.start_date
    index = 0
    while day <= sprint.end_date:
        completed = sum(
            _estimate(t) for t in tasks
            if t.status == TaskStatus.DONE.value and t.completed_at and t.completed_at.date() <= day
        )
        logged = sum(hours for log_day, hours in hours_by_day.items() if log_day <= day)
        future = day > today
        points.append({
            "day": day,
            "display_date": f"{day:%b} {day.day}",
            "ideal": round(max(0.0, total - step * index), 1),
            "remaining_est": None if future else round(max(0.0, total - completed), 1),
            "remaining_actual": None if future else round(max(0.0, total - logged), 1),
        })
        day += timedelta(days=1)
        index += 1
    return points


def _current_sprint(sprints: list[Sprint], today: date) -> Optional[Sprint]:
    for sprint in sprints:
        if sprint.status == "active":
            return sprint
    for sprint in sprints:
        if sprint.start_date and sprint.end_date and sprint.start_date <= today <= sprint.end_date:
            return sprint
    return sprints[-1] if sprints else None


def project_summary(db: Session, project_id: UUID, project_name: str, today: Optional[date] = None) -> dict[str, Any]:
    """Task, point and sprint counts for one project."""
    today = today or utcnow().date()
    tasks = db.scalars(select(Task).where(Task.project_id == project_id)).all()
    sprints = list(db.scalars(
        select(Sprint).where(Sprint.project_id == project_id).order_by(Sprint.sprint_number)
    ))
    total_modules = db.scalar(select(func.count(Module.id)).where(Module.project_id == project_id)) or 0

    done = [t for t in tasks if t.status in COMPLETED_TASK_STATUSES]
    overdue = [
        t for t in tasks
        if t.end_date and t.end_date < today and t.status not in CLOSED_TASK_STATUSES
    ]

    current = _current_sprint(sprints, today)
    current_progress = None
    if current is not None:
        sprint_tasks = [t for t in tasks if t.sprint_id == current.id]
        current_progress = {
            "id": current.id,
            "name": current.name,
            "sprint_number": current.sprint_number,
            "status": current.status,
            "start_date": current.start_date,
            "end_date": current.end_date,
            "total_tasks": len(sprint_tasks),
            "completed_tasks": sum(1 for t in sprint_tasks if t.status in COMPLETED_TASK_STATUSES),
        }

    return {
        "project_id": project_id,
        "project_name": project_name,
        "total_modules": total_modules,
        "total_sprints": len(sprints),
        "total_tasks": len(tasks),
        "completed_tasks": len(done),
        "in_progress_tasks": sum(1 for t in tasks if t.status == TaskStatus.IN_PROGRESS.value),
        "overdue_tasks": len(overdue),
        "total_points": sum(t.potential_points or 0 for t in tasks),
        "completed_points": sum(t.potential_points or 0 for t in done),
        "completion_percent": round(len(done) / len(tasks) * 100, 1) if tasks else 0.0,
        "status_counts": dict(Counter(t.status for t in tasks)),
        "current_sprint": current_progress,
    }


def weekly_timesheet_summary(db: Session, week_start: date, week_end: date) -> list[dict[str, Any]]:
    """
    Minutes logged and distinct tasks worked per user between two dates.

    Raises:
        ValidationError: If week_end is before week_start
    """
    if week_end < week_start:
        raise ValidationError("week_end must not be before week_start")

    total_minutes = func.sum(Timesheet.minutes_logged).label("total_minutes")
    stmt = (
        select(
            User.id,
            User.full_name,
            total_minutes,
            func.count(distinct(Timesheet.task_id)).label("tasks_worked"),
        )
        .select_from(Timesheet)
        .join(User, User.id == Timesheet.user_id)
        .where(Timesheet.log_date.between(week_start, week_end))
        .group_by(User.id, User.full_name)
        .order_by(total_minutes.desc())
    )
    return [
        {
            "user_id": user_id,
            "full_name": full_name,
            "total_minutes": int(minutes or 0),
            "tasks_worked": int(tasks_worked or 0),
        }
        for user_id, full_name, minutes, tasks_worked in db.execute(stmt).all()
    ]


def _hierarchy_tasks(db: Session, *criteria) -> list[dict[str, Any]]:
    rows = db.execute(
        select(Task, User.full_name)
        .outerjoin(User, User.id == Task.assignee_id)
        .where(*criteria)
        .order_by(Task.task_serial)
    ).all()
    return [
        {
            "id": task.id,
            "task_code": task.task_code,
            "title": task.title,
            "status": task.status,
            "module_id": task.module_id,
            "sprint_id": task.sprint_id,
            "assignee_id": task.assignee_id,
            "assignee_name": assignee_name,
        }
        for task, assignee_name in rows
    ]


def project_hierarchy(db: Session, project: Project) -> dict[str, Any]:
    """A project with its modules, sprints and tasks."""
    return {
        "project": project,
        "modules": list(db.scalars(
            select(Module).where(Module.project_id == project.id).order_by(Module.module_serial)
        )),
        "sprints": list(db.scalars(
            select(Sprint).where(Sprint.project_id == project.id).order_by(Sprint.sprint_number)
        )),
        "tasks": _hierarchy_tasks(db, Task.project_id == project.id),
    }


def sprint_hierarchy(db: Session, sprint: Sprint) -> dict[str, Any]:
    """
    A sprint's tasks grouped by module.

    Modules appear when at least one sprint task belongs to them; tasks without
    a module are collected under a trailing "General Tasks" group.
    """
    project = db.get(Project, sprint.project_id)
    tasks = _hierarchy_tasks(db, Task.sprint_id == sprint.id)
    module_ids = {t["module_id"] for t in tasks if t["module_id"] is not None}
    modules = db.scalars(
        select(Module).where(Module.id.in_(module_ids)).order_by(Module.module_serial)
    ).all() if module_ids else []

    groups = [
        {
            "module_id": module.id,
            "module_code": module.module_code,
            "name": module.name,
            "tasks": [t for t in tasks if t["module_id"] == module.id],
        }
        for module in modules
    ]
    orphans = [t for t in tasks if t["module_id"] is None]
    if orphans:
        groups.append({"module_id": None, "module_code": None, "name": GENERAL_TASKS_GROUP, "tasks": orphans})

    sprint_data = {column.name: getattr(sprint, column.name) for column in Sprint.__table__.columns}
    sprint_data["project_name"] = project.name
    sprint_data["project_color"] = project.color
    return {"sprint": sprint_data, "modules": groups, "tasks": tasks}


def _sheet_row(day: date, task_code: Optional[str], hours: float, worked: bool) -> dict[str, Any]:
    return {
        "work_date": day,
        "day": f"{day:%a}, {day:%b} {day.day}",
        "task_code": task_code or "N/A",
        "start_time": WORKDAY_START if worked else "",
        "end_time": WORKDAY_END if worked else "",
        "regular_hrs": round(min(REGULAR_DAY_HOURS, hours), 2),
        "overtime_hrs": round(max(0.0, hours - REGULAR_DAY_HOURS), 2),
        "total_hrs": round(hours, 2),
    }


def timesheet_preview(
    db: Session,
    user_id: UUID,
    start_date: date,
    end_date: date,
    project_id: Optional[UUID] = None,
) -> dict[str, Any]:
    """
    Generate a weekly timesheet sheet for one user.

    Each day gets one row per logged entry (hours over 8 count as overtime).
    A day without entries falls back to an 8-hour row per assigned task whose
    start..end window covers it, or else a single empty row.

    Raises:
        ValidationError: If end_date is before start_date
        NotFoundError: If the user or project does not exist
    """
    if end_date < start_date:
        raise ValidationError("end_date must not be before start_date")
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    project = db.get(Project, project_id) if project_id else None
    if project_id and project is None:
        raise NotFoundError("Project", project_id)

    log_stmt = (
        select(Timesheet.log_date, Timesheet.minutes_logged, Task.task_code)
        .outerjoin(Task, Task.id == Timesheet.task_id)
        .where(Timesheet.user_id == user_id, Timesheet.log_date.between(start_date, end_date))
        .order_by(Timesheet.log_date, Timesheet.created_at)
    )
    task_stmt = select(Task.task_code, Task.start_date, Task.end_date).where(Task.assignee_id == user_id)
    if project_id:
        log_stmt = log_stmt.where(Task.project_id == project_id)
        task_stmt = task_stmt.where(Task.project_id == project_id)
    logs = db.execute(log_stmt).all()
    assigned = db.execute(task_stmt.order_by(Task.task_serial)).all()

    daily_data = []
    day = start_date
    while day <= end_date:
        day_logs = [row for row in logs if row.log_date == day]
        if day_logs:
            daily_data.extend(
                _sheet_row(day, row.task_code, row.minutes_logged / 60.0, worked=True) for row in day_logs
            )
        else:
            covering = [
                t for t in assigned
                if t.start_date is not None and t.start_date <= day <= (t.end_date or t.start_date)
            ]
            if covering:
                daily_data.extend(_sheet_row(day, t.task_code, REGULAR_DAY_HOURS, worked=True) for t in covering)
            else:
                daily_data.append(_sheet_row(day, None, 0.0, worked=False))
        day += timedelta(days=1)

    return {
        "employee": {"id": user.id, "name": user.full_name},
        "resource_serial": user.resource_serial,
        "project": {"id": project.id, "name": project.name} if project else {"id": None, "name": "N/A"},
        "start_date": start_date,
        "end_date": end_date,
        "daily_data": daily_data,
        "assigned_tasks": [
            {"task_code": t.task_code, "start_date": t.start_date, "end_date": t.end_date} for t in assigned
        ],
        "total_hours": round(sum(row["total_hrs"] for row in daily_data), 2),
    }
