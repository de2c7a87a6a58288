"""Task status transitions and their side effects.

Status text is free-form; only three transitions carry behavior:
- entering in_progress opens a work period (first entry timestamp is sticky)
- leaving in_progress closes the period and accumulates elapsed minutes
- entering done stamps completed_at

Entering in_progress or done also produces a fixed-size automatic timesheet
entry (30 and 60 minutes respectively), independent of elapsed time.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from uuid import UUID

from .models import Task, TaskStatus, Timesheet, TimesheetSource, utcnow

logger = logging.getLogger("taskpulse-core.task_lifecycle")

IN_PROGRESS = TaskStatus.IN_PROGRESS.value
DONE = TaskStatus.DONE.value

AUTO_LOG_STARTED_MINUTES = 30
AUTO_LOG_STARTED_NOTE = "Auto-log: Task started"
AUTO_LOG_COMPLETED_MINUTES = 60
AUTO_LOG_COMPLETED_NOTE = "Auto-log: Task completed"

_WHITESPACE = re.compile(r"\s+")


def normalize_status(status: Optional[str]) -> str:
    """
    Normalize a status for comparison and storage.

    "In Progress", "in progress" and "IN_PROGRESS" all become "in_progress".
    """
    if status is None:
        return ""
    return _WHITESPACE.sub("_", str(status).strip().lower())


@dataclass(frozen=True)
class StatusTransition:
    """Outcome of a status change applied to a task."""

    from_status: str
    to_status: str
    started: bool = False
    stopped: bool = False
    completed: bool = False
    minutes_added: int = 0


def _elapsed_minutes(start: datetime, end: datetime) -> int:
    seconds = (end - start).total_seconds()
    if seconds <= 0:
        return 0
    # Round half up
    return int(seconds / 60 + 0.5)


def apply_status_transition(
    task: Task,
    new_status: Optional[str],
    now: Optional[datetime] = None,
) -> Optional[StatusTransition]:
    """
    Apply a status change and its bookkeeping to a task in place.

    Args:
        task: Task to mutate (not flushed)
        new_status: Requested status, any casing/spacing
        now: Transition timestamp (defaults to current UTC time)

    Returns:
        StatusTransition describing the side effects, or None when the
        normalized status did not change
    """
    old = normalize_status(task.status)
    new = normalize_status(new_status)
    if not new:
        return None

    task.status = new
    if new == old:
        return None

    now = now or utcnow()
    started = stopped = completed = False
    minutes_added = 0

    if old == IN_PROGRESS:
        stopped = True
        if task.current_period_start is not None:
            minutes_added = _elapsed_minutes(task.current_period_start, now)
            task.task_duration_minutes = (task.task_duration_minutes or 0) + minutes_added
        task.current_period_start = None

    if new == IN_PROGRESS:
        started = True
        task.current_period_start = now
        if task.in_progress_at is None:
            task.in_progress_at = now

    if new == DONE:
        completed = True
        task.completed_at = now

    logger.debug(f"Task {task.id}: {old or '<none>'} -> {new} (+{minutes_added} min)")
    return StatusTransition(
        from_status=old,
        to_status=new,
        started=started,
        stopped=stopped,
        completed=completed,
        minutes_added=minutes_added,
    )


def auto_timesheets(
    task: Task,
    transition: Optional[StatusTransition],
    user_id: Optional[UUID],
    log_date: Optional[date] = None,
) -> list[Timesheet]:
    """Build the automatic timesheet entries a transition calls for."""
    if transition is None or user_id is None:
        return []

    log_date = log_date or utcnow().date()
    entries = []
    if transition.started:
        entries.append(Timesheet(
            user_id=user_id,
            task_id=task.id,
            log_date=log_date,
            minutes_logged=AUTO_LOG_STARTED_MINUTES,
            source=TimesheetSource.AUTO,
            notes=AUTO_LOG_STARTED_NOTE,
        ))
    if transition.completed:
        entries.append(Timesheet(
            user_id=user_id,
            task_id=task.id,
            log_date=log_date,
            minutes_logged=AUTO_LOG_COMPLETED_MINUTES,
            source=TimesheetSource.AUTO,
            notes=AUTO_LOG_COMPLETED_NOTE,
        ))
    return entries
