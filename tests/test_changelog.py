"""Tests for the change-log recorder."""
from taskpulse_core import crud, schemas
from taskpulse_core.auth import CurrentUser
from taskpulse_core.changelog import record_change
from taskpulse_core.models import ChangeAction, ChangeLog, EntityType


def _logs(db, entity_type, action=None):
    query = db.query(ChangeLog).filter(ChangeLog.entity_type == entity_type)
    if action is not None:
        query = query.filter(ChangeLog.action == action)
    return query.order_by(ChangeLog.changed_at).all()


class TestRecordChange:
    """Every mutation appends one snapshot row."""

    def test_project_creation_logged_with_modules(self, db, make_project, manager):
        project = make_project(name="Payroll", modules=["Auth"])

        project_logs = _logs(db, EntityType.PROJECT)
        assert len(project_logs) == 1
        entry = project_logs[0]
        assert entry.action == ChangeAction.CREATED
        assert entry.entity_id == project.id
        assert entry.before_data is None
        assert entry.after_data["project_name"] == "Payroll"
        assert entry.after_data["project_code"] == "PAYR"
        assert entry.changed_by == manager.id

        module_logs = _logs(db, EntityType.MODULE)
        assert len(module_logs) == 1
        assert module_logs[0].after_data["project_id"] == str(project.id)

    def test_task_update_keeps_before_and_after(self, db, make_project, make_task, manager, developer):
        project = make_project(members=[developer])
        task = make_task(project, assignee_id=developer.id, collaborators=[manager.id])

        crud.update_task(db, task.id, schemas.TaskUpdate(status="In Progress"), CurrentUser.from_user(developer))

        (entry,) = _logs(db, EntityType.TASK, ChangeAction.UPDATED)
        assert entry.before_data["status"] == "todo"
        assert entry.after_data["status"] == "in_progress"
        assert entry.after_data["project_id"] == str(project.id)
        assert entry.after_data["sprint_id"] is None
        assert entry.after_data["assignee_name"] == "Dev One"
        assert entry.after_data["collaborators"] == [{"id": str(manager.id), "name": "Maya Manager"}]
        assert entry.changed_by == developer.id

    def test_delete_keeps_only_before(self, db, make_project, make_task, manager):
        project = make_project()
        task_id = make_task(project, title="Obsolete").id

        crud.delete_task(db, task_id, CurrentUser.from_user(manager))

        (entry,) = _logs(db, EntityType.TASK, ChangeAction.DELETED)
        assert entry.entity_id == task_id
        assert entry.before_data["title"] == "Obsolete"
        assert entry.after_data is None

    def test_failed_write_does_not_fail_mutation(self, db, make_project, make_sprint, monkeypatch):
        """The business change commits even when its log row cannot be written."""
        project = make_project()

        def broken(value):
            raise RuntimeError("serializer down")

        monkeypatch.setattr("taskpulse_core.changelog.to_jsonable_python", broken)
        sprint = make_sprint(project)

        assert sprint.id is not None
        assert sprint.name == "Sprint 1"
        assert _logs(db, EntityType.SPRINT) == []

    def test_rolled_back_with_business_change(self, db, make_project, manager):
        """A rolled-back mutation leaves no log row behind."""
        project = make_project()

        entry = record_change(db, EntityType.PROJECT, project.id, ChangeAction.UPDATED,
                              before={"name": "a"}, after={"name": "b"}, user_id=manager.id)
        assert entry is not None
        db.rollback()

        assert [e.action for e in _logs(db, EntityType.PROJECT)] == [ChangeAction.CREATED]
