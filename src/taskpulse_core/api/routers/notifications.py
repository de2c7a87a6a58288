"""Notifications API endpoints."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from taskpulse_core import notifications, schemas
from taskpulse_core.auth import CurrentUser

from ...database import get_db
from ..dependencies import get_current_user
from ..responses import ok

logger = logging.getLogger("taskpulse-core.notifications")

router = APIRouter(tags=["notifications"])


@router.get("/", response_model=schemas.ApiResponse[list[schemas.NotificationResponse]])
def list_notifications(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Latest 50 notifications for the caller.

    Overdue-task and sprint-ending reminders are brought up to date first.
    """
    notifications.refresh_reminders(db, current_user)
    rows = notifications.list_notifications(db, current_user.id)
    return ok([
        schemas.NotificationResponse(
            id=n.id,
            kind=n.kind,
            title=n.title,
            message=n.message,
            payload=n.payload,
            is_read=n.is_read,
            created_at=n.created_at,
            project_id=n.project_id,
            sender_id=n.sender_id,
            sender_name=sender_name,
            project_name=project_name,
            project_color=project_color,
        )
        for n, sender_name, project_name, project_color in rows
    ])


@router.post("/refresh", response_model=schemas.ApiResponse[schemas.RefreshResult])
def refresh_reminders(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Bring the caller's automatic reminders up to date without listing them."""
    return ok(schemas.RefreshResult(created=notifications.refresh_reminders(db, current_user)))


@router.put("/read-all", response_model=schemas.ApiResponse[schemas.MessageData])
def mark_all_read(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    count = notifications.mark_all_read(db, current_user.id)
    return ok(schemas.MessageData(message=f"{count} notification(s) marked as read"))


@router.put("/{notification_id}/read", response_model=schemas.ApiResponse[schemas.MessageData])
def mark_read(
    notification_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    notifications.mark_read(db, notification_id, current_user.id)
    return ok(schemas.MessageData(message="Notification marked as read"))


@router.post("/push", response_model=schemas.ApiResponse[schemas.MessageData])
def push_reminder(
    reminder: schemas.PushReminderRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Push a manual reminder (admins and managers).

    - **recipient_ids**: User ids, or "everyone" / "@everyone" for all active users
    - **message**: Reminder text
    - **project_id** / **task_id**: Optional context
    """
    recipients = reminder.recipient_ids
    if isinstance(recipients, str):
        recipients = [recipients]
    sent = notifications.push_reminder(
        db,
        current_user,
        recipients,
        reminder.message,
        project_id=reminder.project_id,
        task_id=reminder.task_id,
    )
    return ok(schemas.MessageData(message=f"Reminder pushed to {len(sent)} user(s)"))
