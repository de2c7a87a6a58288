"""Sprint workload caps per developer.

Each task may carry a size tag ("potential") that maps to a fixed
(points, hours) pair. A developer's tasks within one sprint may not add up to
more than MAX_POINTS points or MAX_HOURS hours.

The check reads then writes without locking; two concurrent assignments can
both pass and jointly overshoot the caps.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import ValidationError, WorkloadExceededError
from .models import Task

logger = logging.getLogger("taskpulse-core.workload")

MAX_POINTS = 20
MAX_HOURS = 40


@dataclass(frozen=True)
class PotentialSize:
    points: int
    hours: float


POTENTIAL_MAP: dict[str, PotentialSize] = {
    "Very Small": PotentialSize(points=1, hours=2),
    "Small": PotentialSize(points=2, hours=4),
    "Medium": PotentialSize(points=3, hours=6),
    "Large": PotentialSize(points=5, hours=10),
    "Very Large": PotentialSize(points=8, hours=18),
}

_LOOKUP = {re.sub(r"[\s_-]+", "", tag.lower()): tag for tag in POTENTIAL_MAP}


@dataclass(frozen=True)
class DeveloperLoad:
    """Summed size of a developer's tasks in one sprint."""

    points: int
    hours: float

    def plus(self, size: PotentialSize) -> "DeveloperLoad":
        return DeveloperLoad(points=self.points + size.points, hours=self.hours + size.hours)

    def exceeds_caps(self) -> bool:
        return self.points > MAX_POINTS or self.hours > MAX_HOURS


def canonical_potential(tag: Optional[str]) -> Optional[str]:
    """
    Map a size tag to its canonical spelling.

    "very large", "VERY_LARGE" and "Very Large" all map to "Very Large".
    Empty input returns None.

    Raises:
        ValidationError: If the tag is not a known size
    """
    if tag is None or not str(tag).strip():
        return None
    key = re.sub(r"[\s_-]+", "", str(tag).lower())
    if key not in _LOOKUP:
        raise ValidationError(
            f"Unknown potential '{tag}'. Expected one of: {', '.join(POTENTIAL_MAP)}"
        )
    return _LOOKUP[key]


def size_for(tag: Optional[str]) -> Optional[PotentialSize]:
    """Return the (points, hours) pair for a tag, or None for an empty tag."""
    canonical = canonical_potential(tag)
    return POTENTIAL_MAP[canonical] if canonical else None


def _fmt(value: float) -> str:
    return f"{value:g}"


def check_developer_load(
    db: Session,
    assignee_id: Optional[UUID],
    sprint_id: Optional[UUID],
    exclude_task_id: Optional[UUID] = None,
) -> DeveloperLoad:
    """
    Sum points and hours of a developer's tasks in a sprint.

    Args:
        db: Database session
        assignee_id: Developer
        sprint_id: Sprint
        exclude_task_id: Task to leave out (the one being updated)

    Returns:
        DeveloperLoad with the current totals
    """
    if not assignee_id or not sprint_id:
        return DeveloperLoad(points=0, hours=0)

    stmt = select(
        func.coalesce(func.sum(Task.potential_points), 0),
        func.coalesce(func.sum(Task.target_hours), 0),
    ).where(Task.assignee_id == assignee_id, Task.sprint_id == sprint_id)
    if exclude_task_id is not None:
        stmt = stmt.where(Task.id != exclude_task_id)

    points, hours = db.execute(stmt).one()
    return DeveloperLoad(points=int(points or 0), hours=float(hours or 0))


def enforce_workload_limit(
    db: Session,
    assignee_id: Optional[UUID],
    sprint_id: Optional[UUID],
    potential: Optional[str],
    exclude_task_id: Optional[UUID] = None,
) -> Optional[DeveloperLoad]:
    """
    Reject an assignment that would exceed the sprint caps.

    Only runs when assignee, sprint and size tag are all present.

    Returns:
        The resulting load when the check ran, else None

    Raises:
        WorkloadExceededError: If the resulting load exceeds a cap
    """
    size = size_for(potential)
    if not assignee_id or not sprint_id or size is None:
        return None

    current = check_developer_load(db, assignee_id, sprint_id, exclude_task_id)
    resulting = current.plus(size)
    if resulting.exceeds_caps():
        logger.warning(
            f"Workload cap hit for assignee {assignee_id} in sprint {sprint_id}: "
            f"{resulting.points} pts / {_fmt(resulting.hours)} hrs"
        )
        raise WorkloadExceededError(
            f"Workload limit exceeded: sprint load would become "
            f"{resulting.points} pts / {_fmt(resulting.hours)} hrs "
            f"(max {MAX_POINTS} pts / {MAX_HOURS} hrs, current "
            f"{current.points} pts / {_fmt(current.hours)} hrs)",
            current_points=current.points,
            current_hours=current.hours,
            resulting_points=resulting.points,
            resulting_hours=resulting.hours,
        )
    return resulting
