"""Notifications: automatic reminders, manual pushes and read flags.

Reminders are reconciled on demand rather than by a scheduler:
``refresh_reminders`` derives overdue-task and sprint-ending reminders from
current state and inserts only those without an unread twin, so running it
any number of times leaves the same set of notifications.
"""
import logging
from datetime import date, timedelta
from typing import Optional, Sequence, Union
from uuid import UUID

from sqlalchemy import exists, or_, select, update
from sqlalchemy.orm import Session

from .auth import CurrentUser
from .errors import AuthorizationError, NotFoundError, ValidationError
from .models import (
    CLOSED_TASK_STATUSES,
    Notification,
    NotificationKind,
    Project,
    Sprint,
    Task,
    User,
    task_collaborators,
    utcnow,
)

logger = logging.getLogger("taskpulse-core.notifications")

NOTIFICATION_LIST_LIMIT = 50
SPRINT_END_LOOKAHEAD = timedelta(days=2)
EVERYONE = frozenset({"everyone", "@everyone"})


def _has_unread(db: Session, recipient_id: UUID, kind: NotificationKind, key: str, value: UUID) -> bool:
    stmt = select(Notification.id).where(
        Notification.recipient_id == recipient_id,
        Notification.kind == kind,
        Notification.is_read.is_(False),
        Notification.payload[key].as_string() == str(value),
    ).limit(1)
    return db.scalar(stmt) is not None


def _overdue_tasks(db: Session, user_id: UUID, today: date) -> Sequence[Task]:
    is_collaborator = exists().where(
        task_collaborators.c.task_id == Task.id,
        task_collaborators.c.user_id == user_id,
    )
    stmt = select(Task).where(
        Task.status.not_in(CLOSED_TASK_STATUSES),
        Task.end_date.is_not(None),
        Task.end_date < today,
        or_(Task.assignee_id == user_id, is_collaborator),
    ).order_by(Task.end_date)
    return db.scalars(stmt).all()


def _sprints_ending(db: Session, today: date) -> Sequence[Sprint]:
    has_open_tasks = exists().where(
        Task.sprint_id == Sprint.id,
        Task.status.not_in(CLOSED_TASK_STATUSES),
    )
    stmt = select(Sprint).where(
        Sprint.end_date >= today,
        Sprint.end_date <= today + SPRINT_END_LOOKAHEAD,
        has_open_tasks,
    ).order_by(Sprint.end_date)
    return db.scalars(stmt).all()


def refresh_reminders(db: Session, user: CurrentUser, today: Optional[date] = None) -> int:
    """
    Create missing overdue-task and sprint-ending reminders for a user.

    Overdue: open tasks past their due date where the user is assignee or
    collaborator. Sprint ending (admins/managers only): sprints ending within
    two days that still have open tasks. A reminder is skipped when an unread
    one of the same kind already references the same task/sprint.

    Args:
        db: Database session
        user: Reminder recipient
        today: Reference date (defaults to the current UTC date)

    Returns:
        Number of notifications created
    """
    today = today or utcnow().date()
    created = 0

    for task in _overdue_tasks(db, user.id, today):
        if _has_unread(db, user.id, NotificationKind.OVERDUE_TASK, "task_id", task.id):
            continue
        db.add(Notification(
            recipient_id=user.id,
            project_id=task.project_id,
            kind=NotificationKind.OVERDUE_TASK,
            title="Task Overdue",
            message=f"{task.title} overdue please complete",
            payload={"task_id": str(task.id)},
        ))
        db.flush()
        created += 1

    if user.is_privileged:
        for sprint in _sprints_ending(db, today):
            if _has_unread(db, user.id, NotificationKind.SPRINT_END, "sprint_id", sprint.id):
                continue
            db.add(Notification(
                recipient_id=user.id,
                project_id=sprint.project_id,
                kind=NotificationKind.SPRINT_END,
                title="Sprint Ending Soon",
                message=f"Tasks pending in {sprint.name}",
                payload={"sprint_id": str(sprint.id)},
            ))
            db.flush()
            created += 1

    if created:
        db.commit()
        logger.info(f"Created {created} reminder(s) for user {user.id}")
    return created


def list_notifications(db: Session, user_id: UUID, limit: int = NOTIFICATION_LIST_LIMIT):
    """Most recent notifications for a user, with sender and project names."""
    stmt = (
        select(Notification, User.full_name, Project.name, Project.color)
        .outerjoin(User, User.id == Notification.sender_id)
        .outerjoin(Project, Project.id == Notification.project_id)
        .where(Notification.recipient_id == user_id)
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )
    return db.execute(stmt).all()


def mark_read(db: Session, notification_id: UUID, user_id: UUID) -> Notification:
    """
    Flip one notification to read.

    Raises:
        NotFoundError: If the notification does not exist for this user
    """
    notification = db.scalar(select(Notification).where(
        Notification.id == notification_id,
        Notification.recipient_id == user_id,
    ))
    if notification is None:
        raise NotFoundError("Notification", notification_id)
    notification.is_read = True
    db.commit()
    return notification


def mark_all_read(db: Session, user_id: UUID) -> int:
    """Flip every unread notification of a user to read; returns the count."""
    result = db.execute(
        update(Notification)
        .where(Notification.recipient_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    db.commit()
    return result.rowcount or 0


def push_reminder(
    db: Session,
    sender: CurrentUser,
    recipient_ids: Sequence[Union[UUID, str]],
    message: str,
    project_id: Optional[UUID] = None,
    task_id: Optional[UUID] = None,
    title: str = "New Reminder",
) -> list[Notification]:
    """
    Send a manual reminder to users.

    ``everyone`` / ``@everyone`` among the recipients expands to every active
    user.

    Raises:
        AuthorizationError: If the sender is not an admin or manager
        ValidationError: If recipients or message are missing
    """
    if not sender.is_privileged:
        raise AuthorizationError("Only admins and managers can push reminders")
    if not recipient_ids or not message or not message.strip():
        raise ValidationError("Recipients and message are required")

    if any(str(rid).strip().lower() in EVERYONE for rid in recipient_ids):
        recipients = list(db.scalars(select(User.id).where(User.is_active.is_(True))))
    else:
        try:
            recipients = list(dict.fromkeys(UUID(str(rid)) for rid in recipient_ids if rid))
        except ValueError:
            raise ValidationError("recipient_ids must be user ids or 'everyone'")
        known = set(db.scalars(select(User.id).where(User.id.in_(recipients))))
        missing = [rid for rid in recipients if rid not in known]
        if missing:
            raise NotFoundError("User", missing[0])

    payload = {"task_id": str(task_id)} if task_id else None
    notifications = [
        Notification(
            recipient_id=rid,
            sender_id=sender.id,
            project_id=project_id,
            kind=NotificationKind.TAG,
            title=title,
            message=message.strip(),
            payload=payload,
        )
        for rid in recipients
    ]
    db.add_all(notifications)
    db.commit()
    logger.info(f"User {sender.id} pushed a reminder to {len(notifications)} recipient(s)")
    return notifications
