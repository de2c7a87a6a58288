"""Tests for activity messages and the scoped activity feeds."""
from datetime import timedelta
from uuid import uuid4

from taskpulse_core import crud, schemas
from taskpulse_core.activity import (
    generate_activity_message,
    get_global_activity,
    get_project_activity,
    get_raw_changelogs,
    get_sprint_activity,
    raw_filter_clauses,
)
from taskpulse_core.auth import CurrentUser
from taskpulse_core.models import EntityType, Role, Task, utcnow


def _messages(feed):
    return sorted(entry["message"] for entry in feed)


def _task_code(db, title):
    return db.query(Task).filter(Task.title == title).one().task_code


class TestActivityMessages:
    """One-line rendering of change-log rows."""

    def test_task_messages(self):
        after = {"task_code": "RS/HRMS/R1/V1/S1/HR1/004", "title": "Login page", "status": "todo"}

        assert generate_activity_message("task", "created", None, after, "x") == \
            "#RS/HRMS/R1/V1/S1/HR1/004 Created task Login page"
        assert generate_activity_message("task", "updated", after, {**after, "status": "in_progress"}, "x") == \
            "#RS/HRMS/R1/V1/S1/HR1/004 Started task Login page"
        assert generate_activity_message("task", "updated", after, {**after, "status": "done"}, "x") == \
            "#RS/HRMS/R1/V1/S1/HR1/004 Completed task Login page"
        assert generate_activity_message("task", "updated", after, {**after, "status": "in_review"}, "x") == \
            "#RS/HRMS/R1/V1/S1/HR1/004 Moved task Login page to in review"
        assert generate_activity_message("task", "updated", after, {**after, "title": "Login page v2"}, "x") == \
            "#RS/HRMS/R1/V1/S1/HR1/004 Updated task Login page v2"

    def test_project_and_module_messages(self):
        project = {"project_code": "HRMS", "name": "HRMS"}

        assert generate_activity_message("project", "created", None, project, "x") == "#HRMS Created project HRMS"
        assert generate_activity_message("module", "created", None, {"name": "Auth"}, "m1") == \
            "#m1 Added module Auth to project"
        assert generate_activity_message("module", "deleted", {"name": "Auth"}, None, "m1") == \
            "#m1 Removed module Auth"

    def test_sprint_status_message(self):
        before = {"name": "Sprint 2", "status": "planned"}
        after = {"name": "Sprint 2", "status": "active"}

        assert generate_activity_message("sprint", "updated", before, after, "s2") == "#s2 Sprint Sprint 2 is now active"

    def test_deleted_entity_falls_back_to_before_name(self):
        """A deleted row has no after image, so the name comes from before."""
        assert generate_activity_message("task", "deleted", {"title": "Old"}, None, "t1") == "#t1 Deleted task Old"

    def test_unknown_entity_type(self):
        assert generate_activity_message("timesheet", "updated", None, None, "ts1") == "#ts1 Updated timesheet ts1"


class TestProjectAndSprintFeeds:
    """Scoped feeds include children and hide privileged actors from other roles."""

    def test_project_feed_includes_children(self, db, make_project, make_sprint, make_task, manager, developer):
        project = make_project(name="Payroll", members=[developer], modules=["Auth"])
        sprint = make_sprint(project)
        make_task(project, title="Login", sprint_id=sprint.id, assignee_id=developer.id)
        other = make_project(name="Other")
        make_task(other, title="Elsewhere")

        feed = get_project_activity(db, project.id, CurrentUser.from_user(manager))

        assert _messages(feed) == sorted([
            "#PAYR Created project Payroll",
            f"#{project.modules[0].id} Added module Auth to project",
            f"#{sprint.id} Created sprint Sprint 1",
            f"#{_task_code(db, 'Login')} Created task Login",
        ])
        assert all(entry["user_name"] == "Maya Manager" for entry in feed)

    def test_developer_does_not_see_manager_actions(self, db, make_project, make_task, developer):
        """Changes made by managers are hidden from developers."""
        project = make_project(members=[developer])
        task = make_task(project, title="Login", assignee_id=developer.id)
        crud.update_task(db, task.id, schemas.TaskUpdate(status="in_progress"), CurrentUser.from_user(developer))

        feed = get_project_activity(db, project.id, CurrentUser.from_user(developer))

        assert [entry["message"] for entry in feed] == [f"#{task.task_code} Started task Login"]
        assert feed[0]["meta"] == {"from_status": "todo", "to_status": "in_progress"}
        assert feed[0]["user"] == {"id": developer.id, "name": "Dev One"}

    def test_feed_window_is_two_days(self, db, make_project, manager):
        """Rows older than two days drop out of the feed."""
        project = make_project()
        viewer = CurrentUser.from_user(manager)

        assert get_project_activity(db, project.id, viewer)
        assert get_project_activity(db, project.id, viewer, now=utcnow() + timedelta(days=3)) == []

    def test_sprint_feed(self, db, make_project, make_sprint, make_task, manager):
        project = make_project()
        sprint = make_sprint(project)
        make_task(project, title="In sprint", sprint_id=sprint.id)
        make_task(project, title="Backlog")

        feed = get_sprint_activity(db, sprint.id, CurrentUser.from_user(manager))

        assert len(feed) == 2
        assert any("Created task In sprint" in entry["message"] for entry in feed)
        assert not any("Backlog" in entry["message"] for entry in feed)


class TestGlobalFeed:
    """Dashboard visibility by role, assignment and membership."""

    def test_privileged_sees_everything(self, db, make_project, make_user):
        make_project(name="Payroll")
        make_project(name="Billing")
        admin = make_user(Role.ADMIN)

        assert len(get_global_activity(db, CurrentUser.from_user(admin))) == 2

    def test_member_sees_project_rows(self, db, make_project, make_task, developer, make_user):
        outsider = make_user(Role.QA)
        project = make_project(name="Payroll", members=[developer])
        make_task(project, title="Unassigned")
        make_project(name="Billing")

        member_feed = get_global_activity(db, CurrentUser.from_user(developer))
        outsider_feed = get_global_activity(db, CurrentUser.from_user(outsider))

        assert _messages(member_feed) == sorted([
            "#PAYR Created project Payroll",
            f"#{_task_code(db, 'Unassigned')} Created task Unassigned",
        ])
        assert outsider_feed == []

    def test_assignee_sees_task_outside_membership(self, db, make_project, make_task, make_user):
        """Assignees see their task's changes even without project membership."""
        qa = make_user(Role.QA)
        project = make_project(name="Payroll")
        make_task(project, title="Verify export", assignee_id=qa.id)

        feed = get_global_activity(db, CurrentUser.from_user(qa))

        assert [entry["message"] for entry in feed] == [
            f"#{_task_code(db, 'Verify export')} Created task Verify export"
        ]


class TestRawChangelogs:
    """Operator view with typed filters."""

    def test_all_means_no_filter(self):
        assert raw_filter_clauses(project_id="all", sprint_id="all", member_id="all") == []

    def test_project_filter_includes_children(self, db, make_project, make_task):
        """Filtering by project also returns its sprints, modules and tasks."""
        project = make_project(name="Payroll", modules=["Auth"])
        make_task(project)
        make_project(name="Billing")

        rows = get_raw_changelogs(db, raw_filter_clauses(project_id=project.id))

        assert sorted(row["type"] for row in rows) == ["module", "project", "task"]

    def test_entity_type_and_member_filters(self, db, make_project, make_task, make_user, manager):
        other_manager = make_user(Role.MANAGER)
        project = make_project(name="Payroll")
        make_task(project)
        make_project(name="Billing", owner=other_manager)

        tasks = get_raw_changelogs(db, raw_filter_clauses(entity_type=EntityType.TASK))
        by_other = get_raw_changelogs(db, raw_filter_clauses(member_id=other_manager.id))

        assert [row["type"] for row in tasks] == ["task"]
        assert [row["message"] for row in by_other] == ["#BILL Created project Billing"]

    def test_date_range(self, db, make_project):
        make_project()
        today = utcnow().date()

        assert len(get_raw_changelogs(db, raw_filter_clauses(start_date=today, end_date=today))) == 1
        assert get_raw_changelogs(db, raw_filter_clauses(end_date=today - timedelta(days=1))) == []

    def test_unknown_entity_has_no_rows(self, db, make_project):
        make_project()

        assert get_raw_changelogs(db, raw_filter_clauses(entity_id=uuid4())) == []
