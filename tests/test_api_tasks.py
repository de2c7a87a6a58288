"""End-to-end API tests for projects, sprints, tasks and timesheets."""
from datetime import date, datetime, timedelta

import pytest

from taskpulse_core import crud, schemas
from taskpulse_core.auth import CurrentUser
from taskpulse_core.models import Role, Task, Timesheet, TimesheetSource, utcnow


def _data(response, status=200):
    assert response.status_code == status, response.text
    body = response.json()
    assert body["success"] is True
    return body["data"]


def _error(response, status):
    assert response.status_code == status, response.text
    body = response.json()
    assert body["success"] is False
    return body["error"]


class TestProjectSetup:
    """Projects, modules and sprints through the API."""

    def test_create_project_with_members_and_modules(self, api, login, manager, developer):
        """Creating a project derives its code and version and numbers its modules."""
        login(manager)
        project = _data(api.post("/api/v1/projects/", json={
            "name": "HRMS-2",
            "members": [str(developer.id)],
            "modules": [{"name": "Onboarding"}, {"name": "Payroll"}],
        }), 201)

        assert project["project_code"] == "HRMS"
        assert project["version"] == 2
        assert project["manager_id"] == str(manager.id)
        assert sorted(m["name"] for m in project["members"]) == ["Dev One", "Maya Manager"]
        assert [m["module_code"] for m in project["modules"]] == ["HRMSM1", "HRMSM2"]

    def test_developer_cannot_create_project(self, api, login, developer):
        login(developer)
        error = _error(api.post("/api/v1/projects/", json={"name": "Side project"}), 403)
        assert error["code"] == "FORBIDDEN"

    def test_non_member_cannot_read_project(self, api, login, make_project, make_user):
        """Outsiders get 403 on the project and do not see it listed."""
        project = make_project()
        login(make_user(Role.QA))

        _error(api.get(f"/api/v1/projects/{project.id}"), 403)
        assert _data(api.get("/api/v1/projects/")) == []

    def test_sprint_numbering(self, api, login, make_project, manager):
        """The next sprint number is previewed and then used."""
        project = make_project()
        login(manager)

        assert _data(api.get("/api/v1/sprints/next-number", params={"project_id": str(project.id)})) == {
            "sprint_number": 1,
            "name": "Sprint 1",
        }
        sprint = _data(api.post("/api/v1/sprints/", json={"project_id": str(project.id)}), 201)
        assert sprint["name"] == "Sprint 1"
        assert sprint["status"] == "planned"

    def test_invalid_body_is_a_validation_error(self, api, login, manager):
        login(manager)
        error = _error(api.post("/api/v1/projects/", json={"members": []}), 400)
        assert error["code"] == "VALIDATION_ERROR"

    def test_project_hierarchy(self, api, login, make_project, make_sprint, make_task, developer):
        """Members get the project with its modules, sprints and task lines."""
        project = make_project(members=[developer], modules=["Core"])
        sprint = make_sprint(project)
        make_task(project, title="Schema", sprint_id=sprint.id, module_id=project.modules[0].id,
                  assignee_id=developer.id)
        login(developer)

        tree = _data(api.get(f"/api/v1/projects/{project.id}/hierarchy"))

        assert tree["project"]["name"] == "Payroll"
        assert [m["name"] for m in tree["modules"]] == ["Core"]
        assert [s["name"] for s in tree["sprints"]] == ["Sprint 1"]
        assert [(t["title"], t["assignee_name"]) for t in tree["tasks"]] == [("Schema", "Dev One")]


class TestSprintVisibility:
    """Sprint reads follow membership of the sprint's project."""

    @pytest.fixture
    def sprint(self, make_project, make_sprint, make_task, developer):
        project = make_project(members=[developer])
        today = utcnow().date()
        sprint = make_sprint(project, start_date=today - timedelta(days=1), end_date=today + timedelta(days=5))
        make_task(project, actor=developer, title="Secret payroll export",
                  sprint_id=sprint.id, assignee_id=developer.id)
        return sprint

    @pytest.mark.parametrize("suffix", ["", "/activity", "/burndown", "/hierarchy"])
    def test_outsider_is_forbidden(self, api, login, make_user, sprint, suffix):
        """A developer outside the project cannot read its sprint or any sprint view."""
        login(make_user(Role.DEVELOPER, "Outsider"))

        error = _error(api.get(f"/api/v1/sprints/{sprint.id}{suffix}"), 403)

        assert error["code"] == "FORBIDDEN"

    def test_member_reads_sprint_activity(self, api, login, developer, sprint):
        """Project members read the sprint feed, including their own changes."""
        login(developer)

        rows = _data(api.get(f"/api/v1/sprints/{sprint.id}/activity"))

        assert any("Created task Secret payroll export" in r["message"] for r in rows)

    def test_sprint_hierarchy(self, api, login, developer, sprint):
        """Tasks without a module land in the General Tasks group."""
        login(developer)

        tree = _data(api.get(f"/api/v1/sprints/{sprint.id}/hierarchy"))

        assert tree["sprint"]["project_name"] == "Payroll"
        assert [(g["name"], [t["title"] for t in g["tasks"]]) for g in tree["modules"]] == [
            ("General Tasks", ["Secret payroll export"]),
        ]


class TestTaskLifecycleApi:
    """Status changes through PATCH drive durations and automatic timesheets."""

    def test_todo_to_done(self, db, api, login, make_project, manager, developer):
        """A developer's own task goes todo -> in_progress -> done over the API."""
        project = make_project(members=[developer])
        login(developer)

        task = _data(api.post("/api/v1/tasks/", json={
            "project_id": str(project.id),
            "title": "Payslip PDF",
            "assignee_id": str(developer.id),
            "potential": "medium",
        }), 201)
        assert task["status"] == "todo"
        assert task["potential"] == "Medium"
        assert task["potential_points"] == 3
        assert task["assignee_name"] == "Dev One"
        assert task["task_code"] == f"RS/PAYR/R{developer.resource_serial}/V1/S0/PA1/001"

        started = _data(api.patch(f"/api/v1/tasks/{task['id']}", json={"status": "In Progress"}))
        assert started["status"] == "in_progress"
        assert started["in_progress_at"] is not None

        # Pretend the work period began 90 minutes ago
        stored = db.query(Task).one()
        stored.current_period_start = utcnow() - timedelta(minutes=90)
        db.commit()

        done = _data(api.patch(f"/api/v1/tasks/{task['id']}", json={"status": "done"}))
        assert done["status"] == "done"
        assert done["completed_at"] is not None
        assert done["current_period_start"] is None
        assert done["task_duration_minutes"] == 90

        auto = db.query(Timesheet).filter(Timesheet.source == TimesheetSource.AUTO).all()
        assert sorted(t.minutes_logged for t in auto) == [30, 60]
        assert all(t.user_id == developer.id for t in auto)

    def test_transition_timestamps(self, db, make_project, developer):
        """Starting at T0 and finishing at T0+90min records exactly those times."""
        project = make_project(members=[developer])
        me = CurrentUser.from_user(developer)
        task = crud.create_task(db, schemas.TaskCreate(
            project_id=project.id, title="Payslip PDF", assignee_id=developer.id,
        ), me)
        t0 = datetime(2026, 3, 2, 9, 0)

        crud.update_task(db, task.id, schemas.TaskUpdate(status="in_progress"), me, now=t0)
        done = crud.update_task(db, task.id, schemas.TaskUpdate(status="done"), me, now=t0 + timedelta(minutes=90))

        assert done.in_progress_at == t0
        assert done.completed_at == t0 + timedelta(minutes=90)
        assert done.task_duration_minutes == 90
        assert done.current_period_start is None
        entries = db.query(Timesheet).filter(Timesheet.task_id == task.id).order_by(Timesheet.minutes_logged).all()
        assert [(e.minutes_logged, e.log_date, e.source) for e in entries] == [
            (30, t0.date(), TimesheetSource.AUTO),
            (60, t0.date(), TimesheetSource.AUTO),
        ]

    def test_developer_must_assign_self(self, api, login, make_project, manager, developer):
        project = make_project(members=[developer])
        login(developer)

        error = _error(api.post("/api/v1/tasks/", json={
            "project_id": str(project.id),
            "title": "For someone else",
            "assignee_id": str(manager.id),
        }), 403)
        assert "assigned to themselves" in error["message"]

    def test_developer_edits_only_own_tasks(self, api, login, make_project, make_task, make_user, developer):
        """Developers cannot edit someone else's task or hand their own to someone else."""
        colleague = make_user(Role.DEVELOPER, "Dev Two")
        project = make_project(members=[developer, colleague])
        mine = make_task(project, title="Mine", assignee_id=developer.id)
        theirs = make_task(project, title="Theirs", assignee_id=colleague.id)
        login(developer)

        error = _error(api.patch(f"/api/v1/tasks/{theirs.id}", json={"title": "Taken over"}), 403)
        assert "assigned to themselves" in error["message"]
        error = _error(api.patch(f"/api/v1/tasks/{mine.id}", json={"assignee_id": str(colleague.id)}), 403)
        assert "reassign" in error["message"]

        updated = _data(api.patch(f"/api/v1/tasks/{mine.id}", json={"title": "Mine, renamed"}))
        assert updated["title"] == "Mine, renamed"
        assert updated["assignee_id"] == str(developer.id)

    def test_unknown_project(self, api, login, manager):
        login(manager)
        error = _error(api.post("/api/v1/tasks/", json={
            "project_id": "00000000-0000-0000-0000-000000000001",
            "title": "Orphan",
        }), 404)
        assert error["code"] == "NOT_FOUND"

    def test_workload_exceeded(self, api, login, make_project, make_sprint, make_task, manager, developer):
        """A Large task on top of 16 points is refused and the load endpoint agrees."""
        project = make_project(members=[developer])
        sprint = make_sprint(project)
        make_task(project, title="Big one", sprint_id=sprint.id, assignee_id=developer.id, potential="Very Large")
        make_task(project, title="Big two", sprint_id=sprint.id, assignee_id=developer.id, potential="Very Large")
        login(manager)

        error = _error(api.post("/api/v1/tasks/", json={
            "project_id": str(project.id),
            "title": "One too many",
            "sprint_id": str(sprint.id),
            "assignee_id": str(developer.id),
            "potential": "Large",
        }), 400)
        assert error["code"] == "WORKLOAD_EXCEEDED"
        assert "21 pts" in error["message"]
        assert error["details"]["current_points"] == 16

        load = _data(api.get("/api/v1/tasks/workload", params={
            "assignee_id": str(developer.id),
            "sprint_id": str(sprint.id),
        }))
        assert load["points"] == 16
        assert load["remaining_points"] == 4

    def test_developer_sees_only_own_tasks(self, api, login, make_project, make_task, developer):
        project = make_project(members=[developer])
        make_task(project, title="Mine", assignee_id=developer.id)
        make_task(project, title="Not mine")
        login(developer)

        tasks = _data(api.get("/api/v1/tasks/", params={"project_id": str(project.id)}))
        assert [t["title"] for t in tasks] == ["Mine"]

    def test_only_privileged_delete(self, api, login, make_project, make_task, manager, developer):
        project = make_project(members=[developer])
        task = make_task(project, assignee_id=developer.id)

        login(developer)
        _error(api.delete(f"/api/v1/tasks/{task.id}"), 403)

        login(manager)
        assert _data(api.delete(f"/api/v1/tasks/{task.id}")) == {"message": "Task deleted successfully"}


class TestTimesheetsApi:
    """Manual time logging and approval."""

    def test_log_and_approve(self, api, login, make_project, make_task, manager, developer):
        """Developers log time; only managers approve it."""
        project = make_project(members=[developer])
        task = make_task(project, title="Payslip PDF", assignee_id=developer.id)

        login(developer)
        entry = _data(api.post("/api/v1/timesheets/", json={
            "task_id": str(task.id),
            "minutes_logged": 45,
            "notes": "pairing",
        }), 201)
        assert entry["source"] == "manual"
        _error(api.put(f"/api/v1/timesheets/{entry['id']}/approve"), 403)

        login(manager)
        approved = _data(api.put(f"/api/v1/timesheets/{entry['id']}/approve"))
        assert approved["approved_by"] == str(manager.id)

        rows = _data(api.get("/api/v1/timesheets/", params={"user_id": str(developer.id)}))
        assert [(r["minutes_logged"], r["task_title"], r["project_name"]) for r in rows] == [
            (45, "Payslip PDF", "Payroll")
        ]

    def test_non_positive_minutes_rejected(self, api, login, developer):
        login(developer)
        _error(api.post("/api/v1/timesheets/", json={"minutes_logged": 0}), 400)

    def test_developer_only_sees_own_entries(self, api, login, manager, developer):
        """Asking for another user's entries still returns only the caller's."""
        login(manager)
        _data(api.post("/api/v1/timesheets/", json={"minutes_logged": 30}), 201)

        login(developer)
        _data(api.post("/api/v1/timesheets/", json={"minutes_logged": 15}), 201)
        rows = _data(api.get("/api/v1/timesheets/", params={"user_id": str(manager.id)}))

        assert [r["minutes_logged"] for r in rows] == [15]

    def test_weekly_summary(self, api, login, manager, developer):
        today = utcnow().date()
        login(developer)
        _data(api.post("/api/v1/timesheets/", json={"minutes_logged": 20}), 201)
        _data(api.post("/api/v1/timesheets/", json={"minutes_logged": 40}), 201)

        login(manager)
        summary = _data(api.get("/api/v1/timesheets/summary/weekly", params={
            "week_start": (today - timedelta(days=6)).isoformat(),
            "week_end": today.isoformat(),
        }))
        assert summary == [{
            "user_id": str(developer.id),
            "full_name": "Dev One",
            "total_minutes": 60,
            "tasks_worked": 0,
        }]


class TestWeeklyTimesheetsApi:
    """Weekly sheets: preview, save and history."""

    def test_preview_then_save(self, api, login, make_project, make_task, manager, developer):
        """The preview's rows can be saved as-is and read back with display names."""
        project = make_project(members=[developer])
        make_task(project, title="Planned", assignee_id=developer.id,
                  start_date=date(2026, 3, 2), end_date=date(2026, 3, 6))
        login(developer)

        preview = _data(api.get("/api/v1/timesheets/preview", params={
            "start_date": "2026-03-02",
            "end_date": "2026-03-08",
            "project_id": str(project.id),
        }))
        assert len(preview["daily_data"]) == 7
        assert preview["total_hours"] == 40.0

        sheet = _data(api.post("/api/v1/timesheets/weekly", json={
            "user_id": str(developer.id),
            "project_id": str(project.id),
            "supervisor_id": str(manager.id),
            "week_start": preview["start_date"],
            "week_end": preview["end_date"],
            "daily_data": preview["daily_data"],
            "total_hours": preview["total_hours"],
            "status": "Submitted",
        }), 201)
        assert sheet["status"] == "submitted"
        assert (sheet["employee_name"], sheet["supervisor_name"], sheet["project_name"]) == (
            "Dev One", "Maya Manager", "Payroll",
        )
        assert sheet["daily_data"][0]["work_date"] == "2026-03-02"

        fetched = _data(api.get(f"/api/v1/timesheets/weekly/{sheet['id']}"))
        assert fetched["total_hours"] == 40.0

    def test_preview_of_someone_else_needs_privilege(self, api, login, manager, developer):
        params = {"start_date": "2026-03-02", "end_date": "2026-03-08", "user_id": str(manager.id)}

        login(developer)
        api_error = _error(api.get("/api/v1/timesheets/preview", params=params), 403)
        assert api_error["code"] == "FORBIDDEN"

        login(manager)
        assert _data(api.get("/api/v1/timesheets/preview", params=params))["employee"]["name"] == "Maya Manager"

    def test_developers_only_handle_own_sheets(self, api, login, make_user, manager, developer):
        """Saving, listing and reading sheets of other users is limited to admins and managers."""
        colleague = make_user(Role.DEVELOPER, "Dev Two")
        week = {"week_start": "2026-03-02", "week_end": "2026-03-08", "daily_data": [], "total_hours": 0}

        login(developer)
        _error(api.post("/api/v1/timesheets/weekly", json={**week, "user_id": str(colleague.id)}), 403)
        mine = _data(api.post("/api/v1/timesheets/weekly", json={**week, "user_id": str(developer.id)}), 201)

        login(manager)
        theirs = _data(api.post("/api/v1/timesheets/weekly", json={**week, "user_id": str(colleague.id)}), 201)
        assert sorted(s["employee_name"] for s in _data(api.get("/api/v1/timesheets/weekly"))) == [
            "Dev One", "Dev Two",
        ]

        login(developer)
        assert [s["id"] for s in _data(api.get("/api/v1/timesheets/weekly"))] == [mine["id"]]
        _error(api.get(f"/api/v1/timesheets/weekly/{theirs['id']}"), 403)

    def test_inverted_week_rejected(self, api, login, developer):
        login(developer)
        _error(api.post("/api/v1/timesheets/weekly", json={
            "user_id": str(developer.id),
            "week_start": "2026-03-08",
            "week_end": "2026-03-02",
            "daily_data": [],
        }), 400)
