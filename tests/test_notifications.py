"""Tests for reminders, manual pushes and read flags."""
from datetime import timedelta
from uuid import uuid4

import pytest

from taskpulse_core import notifications
from taskpulse_core.auth import CurrentUser
from taskpulse_core.errors import AuthorizationError, NotFoundError, ValidationError
from taskpulse_core.models import Notification, NotificationKind, Role, utcnow


def _count(db, user, kind=None):
    query = db.query(Notification).filter(Notification.recipient_id == user.id)
    if kind is not None:
        query = query.filter(Notification.kind == kind)
    return query.count()


class TestRefreshReminders:
    """Reminders are derived from current state and never duplicated."""

    def test_overdue_task_reminder_is_idempotent(self, db, make_project, make_task, developer):
        """Running the sweep twice raises one reminder."""
        today = utcnow().date()
        project = make_project(members=[developer])
        make_task(project, title="Fix export", assignee_id=developer.id, end_date=today - timedelta(days=1))
        user = CurrentUser.from_user(developer)

        assert notifications.refresh_reminders(db, user, today) == 1
        assert notifications.refresh_reminders(db, user, today) == 0

        reminder = db.query(Notification).filter(Notification.recipient_id == developer.id).one()
        assert reminder.kind == NotificationKind.OVERDUE_TASK
        assert reminder.title == "Task Overdue"
        assert reminder.message == "Fix export overdue please complete"
        assert reminder.project_id == project.id

    def test_read_reminder_is_raised_again(self, db, make_project, make_task, developer):
        """Once read, a reminder can be raised again by the next sweep."""
        today = utcnow().date()
        project = make_project(members=[developer])
        make_task(project, assignee_id=developer.id, end_date=today - timedelta(days=3))
        user = CurrentUser.from_user(developer)

        notifications.refresh_reminders(db, user, today)
        assert notifications.mark_all_read(db, developer.id) == 1

        assert notifications.refresh_reminders(db, user, today) == 1
        assert _count(db, developer) == 2

    def test_closed_and_future_tasks_ignored(self, db, make_project, make_task, developer):
        today = utcnow().date()
        project = make_project(members=[developer])
        make_task(project, assignee_id=developer.id, status="done", end_date=today - timedelta(days=1))
        make_task(project, assignee_id=developer.id, status="cancelled", end_date=today - timedelta(days=1))
        make_task(project, assignee_id=developer.id, end_date=today)

        assert notifications.refresh_reminders(db, CurrentUser.from_user(developer), today) == 0

    def test_collaborators_are_reminded(self, db, make_project, make_task, developer, make_user):
        helper = make_user(Role.QA)
        today = utcnow().date()
        project = make_project(members=[developer, helper])
        make_task(
            project,
            assignee_id=developer.id,
            collaborators=[helper.id],
            end_date=today - timedelta(days=1),
        )

        assert notifications.refresh_reminders(db, CurrentUser.from_user(helper), today) == 1

    def test_sprint_ending_for_managers_only(self, db, make_project, make_sprint, make_task, manager, developer):
        """Sprint-ending reminders go to managers, not developers."""
        today = utcnow().date()
        project = make_project(members=[developer])
        sprint = make_sprint(project, start_date=today - timedelta(days=12), end_date=today + timedelta(days=1))
        make_task(project, sprint_id=sprint.id, assignee_id=developer.id)

        assert notifications.refresh_reminders(db, CurrentUser.from_user(manager), today) == 1
        assert notifications.refresh_reminders(db, CurrentUser.from_user(manager), today) == 0
        assert notifications.refresh_reminders(db, CurrentUser.from_user(developer), today) == 0

        reminder = db.query(Notification).filter(Notification.recipient_id == manager.id).one()
        assert reminder.kind == NotificationKind.SPRINT_END
        assert reminder.message == "Tasks pending in Sprint 1"
        assert reminder.payload == {"sprint_id": str(sprint.id)}

    def test_finished_sprint_not_reminded(self, db, make_project, make_sprint, make_task, manager):
        today = utcnow().date()
        project = make_project()
        sprint = make_sprint(project, start_date=today - timedelta(days=12), end_date=today + timedelta(days=2))
        make_task(project, sprint_id=sprint.id, status="done")
        later = make_sprint(project, start_date=today, end_date=today + timedelta(days=10))
        make_task(project, sprint_id=later.id)

        assert notifications.refresh_reminders(db, CurrentUser.from_user(manager), today) == 0


class TestPushReminder:
    """Manual reminders from admins and managers."""

    def test_developer_cannot_push(self, db, developer, manager):
        with pytest.raises(AuthorizationError):
            notifications.push_reminder(db, CurrentUser.from_user(developer), [str(manager.id)], "Ping")

    def test_push_to_listed_users(self, db, manager, developer):
        sent = notifications.push_reminder(
            db, CurrentUser.from_user(manager), [str(developer.id)], "  Standup in 5  "
        )

        assert len(sent) == 1
        rows = notifications.list_notifications(db, developer.id)
        notification, sender_name, project_name, project_color = rows[0]
        assert notification.kind == NotificationKind.TAG
        assert notification.title == "New Reminder"
        assert notification.message == "Standup in 5"
        assert sender_name == "Maya Manager"
        assert project_name is None

    def test_everyone_reaches_active_users(self, db, manager, developer, make_user):
        """Pushing to @everyone skips inactive users."""
        make_user(Role.QA)
        make_user(Role.QA, is_active=False)

        sent = notifications.push_reminder(db, CurrentUser.from_user(manager), "@everyone".split(), "Release day")

        assert len(sent) == 3

    def test_unknown_recipient(self, db, manager):
        with pytest.raises(NotFoundError):
            notifications.push_reminder(db, CurrentUser.from_user(manager), [str(uuid4())], "Hello")

    def test_bad_recipient_and_empty_message(self, db, manager, developer):
        sender = CurrentUser.from_user(manager)
        with pytest.raises(ValidationError):
            notifications.push_reminder(db, sender, ["not-a-user"], "Hello")
        with pytest.raises(ValidationError):
            notifications.push_reminder(db, sender, [str(developer.id)], "   ")


class TestReadFlags:
    def test_mark_read_only_own(self, db, manager, developer):
        (sent,) = notifications.push_reminder(db, CurrentUser.from_user(manager), [str(developer.id)], "Ping")

        with pytest.raises(NotFoundError):
            notifications.mark_read(db, sent.id, manager.id)

        assert notifications.mark_read(db, sent.id, developer.id).is_read
        assert notifications.mark_all_read(db, developer.id) == 0
