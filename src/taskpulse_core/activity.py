"""Activity feeds over the change-log.

Three authorized views, each limited to the last two days:
- project feed: the project row plus task/module/sprint rows whose snapshot
  references the project
- sprint feed: the sprint row plus task rows whose snapshot references it
- global feed: everything for admins/managers; otherwise only rows the viewer
  acted on, is assigned to, or can see through project membership

Project and sprint feeds hide rows acted by admins/managers from other roles.

Plus an unauthorized raw view for operators, driven by typed filter clauses.
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Optional, Sequence
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from .auth import CurrentUser
from .errors import ValidationError
from .models import (
    PRIVILEGED_ROLES,
    ChangeAction,
    ChangeLog,
    EntityType,
    ProjectMember,
    Role,
    TaskStatus,
    User,
    utcnow,
)
from .query_filters import Clause, Operator, apply_clauses

logger = logging.getLogger("taskpulse-core.activity")

ACTIVITY_WINDOW = timedelta(days=2)
PROJECT_FEED_LIMIT = 20
SPRINT_FEED_LIMIT = 20
GLOBAL_FEED_LIMIT = 50

UNKNOWN_USER = "Unknown User"

_PROJECT_CHILDREN = (EntityType.TASK, EntityType.MODULE, EntityType.SPRINT)


def _snapshot_key(key: str):
    """String value of a snapshot key in either before or after data."""
    return ChangeLog.before_data[key].as_string(), ChangeLog.after_data[key].as_string()


def _snapshot_matches(key: str, value: Any):
    before, after = _snapshot_key(key)
    return or_(before == str(value), after == str(value))


def _snapshot_in(key: str, values: Sequence[str]):
    before, after = _snapshot_key(key)
    return or_(before.in_(values), after.in_(values))


def _entity_name(entity_id: Any, before: dict, after: dict) -> Any:
    return (
        after.get("title")
        or after.get("name")
        or before.get("title")
        or before.get("name")
        or entity_id
    )


def generate_activity_message(
    entity_type: str,
    action: str,
    before: Optional[dict],
    after: Optional[dict],
    entity_id: Any,
) -> str:
    """
    Render a change-log row as a one-line message.

    Examples:
        "#RS/HRMS/R1/V1/S1/HR1/004 Started task Login page"
        "#HRMS Created project HRMS"
        "#<sprint id> Sprint Sprint 2 is now active"
    """
    before = before or {}
    after = after or {}
    entity_type = getattr(entity_type, "value", entity_type)
    action = getattr(action, "value", action)

    name = _entity_name(entity_id, before, after)
    id_tag = after.get("task_code") or after.get("project_code") or entity_id
    prefix = f"#{id_tag} " if id_tag else ""
    status_changed = before.get("status") != after.get("status")

    if entity_type == EntityType.TASK.value:
        if action == ChangeAction.CREATED.value:
            return f"{prefix}Created task {name}"
        if action == ChangeAction.DELETED.value:
            return f"{prefix}Deleted task {name}"
        if action == ChangeAction.UPDATED.value:
            if status_changed:
                to_status = after.get("status") or ""
                if to_status == TaskStatus.DONE.value:
                    return f"{prefix}Completed task {name}"
                if to_status == TaskStatus.IN_PROGRESS.value:
                    return f"{prefix}Started task {name}"
                return f"{prefix}Moved task {name} to {to_status.replace('_', ' ')}"
            return f"{prefix}Updated task {name}"

    if entity_type == EntityType.PROJECT.value:
        if action == ChangeAction.CREATED.value:
            return f"{prefix}Created project {name}"
        if action == ChangeAction.UPDATED.value:
            return f"{prefix}Updated project {name}"
        if action == ChangeAction.DELETED.value:
            return f"{prefix}Deleted project {name}"

    if entity_type == EntityType.MODULE.value:
        if action == ChangeAction.CREATED.value:
            return f"{prefix}Added module {name} to project"
        if action == ChangeAction.UPDATED.value:
            return f"{prefix}Updated module {name}"
        if action == ChangeAction.DELETED.value:
            return f"{prefix}Removed module {name}"

    if entity_type == EntityType.SPRINT.value:
        if action == ChangeAction.CREATED.value:
            return f"{prefix}Created sprint {name}"
        if action == ChangeAction.UPDATED.value:
            if status_changed:
                return f"{prefix}Sprint {name} is now {after.get('status')}"
            return f"{prefix}Updated sprint {name}"
        if action == ChangeAction.DELETED.value:
            return f"{prefix}Deleted sprint {name}"

    return f"{prefix}{action[:1].upper()}{action[1:]} {entity_type} {name}"


def format_log(entry: ChangeLog, user_name: Optional[str] = None) -> dict[str, Any]:
    """
    Turn a change-log row into an activity record.

    meta holds from_status/to_status for task status changes, otherwise the
    raw after-snapshot.
    """
    before = entry.before_data or {}
    after = entry.after_data or {}
    entity_type = entry.entity_type.value
    action = entry.action.value

    meta: dict[str, Any] = {}
    if entity_type == EntityType.TASK.value and action == ChangeAction.UPDATED.value:
        if before.get("status") != after.get("status"):
            meta = {"from_status": before.get("status"), "to_status": after.get("status")}

    name = user_name or UNKNOWN_USER
    return {
        "id": entry.id,
        "type": entity_type,
        "action": action,
        "entity_id": str(after.get("task_code") or after.get("project_code") or entry.entity_id),
        "message": generate_activity_message(entity_type, action, before, after, entry.entity_id),
        "user_name": name,
        "user_id": entry.changed_by,
        "user": {"id": entry.changed_by, "name": name},
        "project_name": after.get("project_name") or before.get("project_name"),
        "module_name": after.get("module_name") or before.get("module_name"),
        "meta": meta or after,
        "changed_at": entry.changed_at,
        "created_at": entry.changed_at,
    }


def _feed_query(since: datetime):
    return (
        select(ChangeLog, User.full_name)
        .outerjoin(User, User.id == ChangeLog.changed_by)
        .where(ChangeLog.changed_at >= since)
        .order_by(ChangeLog.changed_at.desc())
    )


def _hide_privileged_actors(stmt, viewer: CurrentUser):
    if viewer.role in PRIVILEGED_ROLES:
        return stmt
    return stmt.where(or_(User.role.is_(None), User.role.not_in([Role.ADMIN, Role.MANAGER])))


def _run(db: Session, stmt) -> list[dict[str, Any]]:
    return [format_log(entry, user_name) for entry, user_name in db.execute(stmt).all()]


def get_project_activity(
    db: Session,
    project_id: UUID,
    viewer: CurrentUser,
    now: Optional[datetime] = None,
) -> list[dict[str, Any]]:
    """Recent activity for a project (limit 20)."""
    since = (now or utcnow()) - ACTIVITY_WINDOW
    stmt = _feed_query(since).where(
        or_(
            and_(ChangeLog.entity_type == EntityType.PROJECT, ChangeLog.entity_id == project_id),
            and_(
                ChangeLog.entity_type.in_(_PROJECT_CHILDREN),
                _snapshot_matches("project_id", project_id),
            ),
        )
    )
    stmt = _hide_privileged_actors(stmt, viewer).limit(PROJECT_FEED_LIMIT)
    return _run(db, stmt)


def get_sprint_activity(
    db: Session,
    sprint_id: UUID,
    viewer: CurrentUser,
    now: Optional[datetime] = None,
) -> list[dict[str, Any]]:
    """Recent activity for a sprint (limit 20)."""
    since = (now or utcnow()) - ACTIVITY_WINDOW
    stmt = _feed_query(since).where(
        or_(
            and_(ChangeLog.entity_type == EntityType.SPRINT, ChangeLog.entity_id == sprint_id),
            and_(
                ChangeLog.entity_type == EntityType.TASK,
                _snapshot_matches("sprint_id", sprint_id),
            ),
        )
    )
    stmt = _hide_privileged_actors(stmt, viewer).limit(SPRINT_FEED_LIMIT)
    return _run(db, stmt)


def get_global_activity(
    db: Session,
    viewer: CurrentUser,
    now: Optional[datetime] = None,
) -> list[dict[str, Any]]:
    """
    Dashboard feed (limit 50).

    Non-privileged viewers see rows they acted on, task rows where they are
    the assignee in either snapshot, and rows of projects they belong to.
    """
    since = (now or utcnow()) - ACTIVITY_WINDOW
    stmt = _feed_query(since)

    if viewer.role not in PRIVILEGED_ROLES:
        visible = [
            ChangeLog.changed_by == viewer.id,
            and_(
                ChangeLog.entity_type == EntityType.TASK,
                _snapshot_matches("assignee_id", viewer.id),
            ),
        ]
        member_of = list(db.scalars(
            select(ProjectMember.project_id).where(ProjectMember.user_id == viewer.id)
        ))
        if member_of:
            visible.append(and_(
                ChangeLog.entity_type == EntityType.PROJECT,
                ChangeLog.entity_id.in_(member_of),
            ))
            visible.append(and_(
                ChangeLog.entity_type.in_(_PROJECT_CHILDREN),
                _snapshot_in("project_id", [str(pid) for pid in member_of]),
            ))
        stmt = stmt.where(or_(*visible))

    return _run(db, stmt.limit(GLOBAL_FEED_LIMIT))


# Raw operator view

def _project_filter(operator: Operator, value: Any):
    if operator is not Operator.EQ:
        raise ValidationError("project_id only supports equality")
    return or_(
        and_(ChangeLog.entity_type == EntityType.PROJECT, ChangeLog.entity_id == value),
        _snapshot_matches("project_id", value),
    )


def _sprint_filter(operator: Operator, value: Any):
    if operator is not Operator.EQ:
        raise ValidationError("sprint_id only supports equality")
    return or_(
        and_(ChangeLog.entity_type == EntityType.SPRINT, ChangeLog.entity_id == value),
        _snapshot_matches("sprint_id", value),
    )


RAW_FILTER_FIELDS = {
    "entity_type": ChangeLog.entity_type,
    "entity_id": ChangeLog.entity_id,
    "member_id": ChangeLog.changed_by,
    "changed_at": ChangeLog.changed_at,
    "project_id": _project_filter,
    "sprint_id": _sprint_filter,
}


def _is_set(value: Any) -> bool:
    return value is not None and value != "" and value != "all"


def raw_filter_clauses(
    entity_type: Optional[EntityType] = None,
    entity_id: Optional[UUID] = None,
    project_id: Optional[UUID] = None,
    sprint_id: Optional[UUID] = None,
    member_id: Optional[UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> list[Clause]:
    """Translate the raw view's query parameters into filter clauses ("all" means no filter)."""
    clauses = []
    if _is_set(entity_type):
        clauses.append(Clause("entity_type", Operator.EQ, EntityType(entity_type)))
    if _is_set(entity_id):
        clauses.append(Clause("entity_id", Operator.EQ, entity_id))
    if _is_set(member_id):
        clauses.append(Clause("member_id", Operator.EQ, member_id))
    if _is_set(project_id):
        clauses.append(Clause("project_id", Operator.EQ, project_id))
    if _is_set(sprint_id):
        clauses.append(Clause("sprint_id", Operator.EQ, sprint_id))
    if start_date is not None:
        clauses.append(Clause("changed_at", Operator.GTE, datetime.combine(start_date, time.min)))
    if end_date is not None:
        clauses.append(Clause("changed_at", Operator.LTE, datetime.combine(end_date, time.max)))
    return clauses


def get_raw_changelogs(db: Session, clauses: Sequence[Clause]) -> list[dict[str, Any]]:
    """Unwindowed, unauthorized change-log listing for operators."""
    stmt = (
        select(ChangeLog, User.full_name)
        .outerjoin(User, User.id == ChangeLog.changed_by)
        .order_by(ChangeLog.changed_at.desc())
    )
    stmt = apply_clauses(stmt, clauses, RAW_FILTER_FIELDS)
    return _run(db, stmt)
