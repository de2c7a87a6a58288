"""Change-log recorder.

Every create/update/delete of a tracked entity appends one immutable row with
JSON snapshots of the entity before and after the change.

The row is written inside a SAVEPOINT of the caller's transaction, so:
- it commits or rolls back together with the business change
- a failure to write it is logged and discarded, never failing the caller
"""
import logging
from typing import Any, Optional, Union
from uuid import UUID

from pydantic import BaseModel
from pydantic_core import to_jsonable_python
from sqlalchemy import inspect
from sqlalchemy.orm import Session

from .models import (
    ChangeAction,
    ChangeLog,
    EntityType,
    Module,
    Project,
    Sprint,
    Task,
    User,
)

logger = logging.getLogger("taskpulse-core.changelog")

Snapshot = Union[dict[str, Any], BaseModel, None]


def column_snapshot(obj: Any) -> dict[str, Any]:
    """Plain dict of an ORM object's column attributes."""
    mapper = inspect(obj).mapper
    return {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}


def project_snapshot(db: Session, project: Project) -> dict[str, Any]:
    data = column_snapshot(project)
    data["project_id"] = project.id
    data["project_name"] = project.name
    return data


def module_snapshot(db: Session, module: Module) -> dict[str, Any]:
    data = column_snapshot(module)
    project = db.get(Project, module.project_id)
    data["project_name"] = project.name if project else None
    data["module_name"] = module.name
    return data


def sprint_snapshot(db: Session, sprint: Sprint) -> dict[str, Any]:
    data = column_snapshot(sprint)
    data["sprint_id"] = sprint.id
    project = db.get(Project, sprint.project_id)
    data["project_name"] = project.name if project else None
    return data


def task_snapshot(db: Session, task: Task) -> dict[str, Any]:
    """
    Snapshot of a task with display names denormalized in.

    project_id and sprint_id are always present (sprint_id may be None) so
    that scoped activity feeds can filter on the snapshot alone.
    """
    data = column_snapshot(task)
    data.setdefault("sprint_id", None)
    project = db.get(Project, task.project_id) if task.project_id else None
    module = db.get(Module, task.module_id) if task.module_id else None
    assignee = db.get(User, task.assignee_id) if task.assignee_id else None
    data["project_name"] = project.name if project else None
    data["project_color"] = project.color if project else None
    data["module_name"] = module.name if module else None
    data["assignee_name"] = assignee.full_name if assignee else None
    data["collaborators"] = [{"id": u.id, "name": u.full_name} for u in task.collaborators]
    return data


def _to_document(snapshot: Snapshot) -> Optional[dict[str, Any]]:
    if snapshot is None:
        return None
    if isinstance(snapshot, BaseModel):
        snapshot = snapshot.model_dump()
    return to_jsonable_python(snapshot)


def record_change(
    db: Session,
    entity_type: Union[EntityType, str],
    entity_id: UUID,
    action: Union[ChangeAction, str],
    before: Snapshot = None,
    after: Snapshot = None,
    user_id: Optional[UUID] = None,
) -> Optional[ChangeLog]:
    """
    Append a change-log row for a mutation.

    Pending business changes are flushed first so their errors still reach
    the caller; only the change-log write itself is guarded.

    Args:
        db: Session holding the business transaction
        entity_type: Tracked entity kind
        entity_id: Entity primary key
        action: created / updated / deleted
        before: Snapshot before the change (None for creates)
        after: Snapshot after the change (None for deletes)
        user_id: Acting user

    Returns:
        The new ChangeLog row, or None if writing it failed
    """
    db.flush()
    try:
        entry = ChangeLog(
            entity_type=EntityType(entity_type),
            entity_id=entity_id,
            action=ChangeAction(action),
            before_data=_to_document(before),
            after_data=_to_document(after),
            changed_by=user_id,
        )
        with db.begin_nested():
            db.add(entry)
    except Exception as e:
        logger.error(f"Change log failed for {entity_type} {entity_id} ({action}): {e}", exc_info=True)
        return None

    logger.debug(f"Recorded {entry.action.value} {entry.entity_type.value} {entity_id}")
    return entry
