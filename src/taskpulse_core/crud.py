"""CRUD operations for database models.

Every mutating function runs as one transaction on the given session: checks
first, then writes, then the change-log row, then a single commit. Anything
raised before the commit leaves nothing behind once the session is closed or
rolled back.
"""
import logging
from datetime import date, datetime
from typing import Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import exists, func, or_
from sqlalchemy.orm import Session, aliased

from . import schemas
from .auth import CurrentUser, normalize_role
from .changelog import (
    column_snapshot,
    module_snapshot,
    project_snapshot,
    record_change,
    sprint_snapshot,
    task_snapshot,
)
from .errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ProjectNotFoundError,
    ValidationError,
)
from .models import (
    PRIVILEGED_ROLES,
    ChangeAction,
    EntityType,
    Module,
    Note,
    Project,
    ProjectMember,
    Role,
    Sprint,
    Task,
    TaskStatus,
    Timesheet,
    TimesheetSource,
    User,
    WeeklyTimesheet,
    task_collaborators,
    utcnow,
)
from .task_codes import (
    generate_task_code,
    generate_unique_project_code,
    module_code,
    next_module_serial,
    next_sprint_number,
    parse_project_version,
)
from .task_lifecycle import apply_status_transition, auto_timesheets, normalize_status
from .workload import POTENTIAL_MAP, canonical_potential, enforce_workload_limit

logger = logging.getLogger("taskpulse-core.crud")

DEFAULT_NOTE_COLOR = "yellow"


def _require_privileged(user: CurrentUser, action: str) -> None:
    if user.role not in PRIVILEGED_ROLES:
        raise AuthorizationError(f"Only admins and managers can {action}")


def _users_by_id(db: Session, user_ids: Iterable[UUID]) -> list[User]:
    """Load users, preserving order and dropping duplicates."""
    wanted = list(dict.fromkeys(uid for uid in user_ids if uid))
    if not wanted:
        return []
    found = {u.id: u for u in db.query(User).filter(User.id.in_(wanted)).all()}
    missing = [uid for uid in wanted if uid not in found]
    if missing:
        raise NotFoundError("User", missing[0])
    return [found[uid] for uid in wanted]


def is_project_member(db: Session, project_id: UUID, user_id: UUID) -> bool:
    membership = (
        db.query(ProjectMember.id)
        .filter(
            ProjectMember.project_id == project_id,
            ProjectMember.user_id == user_id,
        )
        .first()
    )
    return membership is not None


# User CRUD

def get_user(db: Session, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def create_user(db: Session, user_data: schemas.UserCreate) -> User:
    """
    Create a user with a normalized role and the next resource serial.

    Raises:
        ConflictError: If the email is already registered
    """
    email = user_data.email.strip().lower()
    if db.query(User.id).filter(func.lower(User.email) == email).first() is not None:
        raise ConflictError(f"Email already registered: {email}")

    serial = (db.query(func.max(User.resource_serial)).scalar() or 0) + 1
    user = User(
        email=email,
        full_name=user_data.full_name.strip(),
        role=normalize_role(user_data.role),
        resource_serial=serial,
        is_active=user_data.is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created user {user.email} ({user.role.value}, R{serial})")
    return user


def list_users(db: Session, include_inactive: bool = False) -> Sequence[User]:
    query = db.query(User)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    return query.order_by(User.full_name).all()


def list_assignable_users(db: Session, project_id: Optional[UUID] = None) -> Sequence[User]:
    """Active developers and QA, optionally limited to a project's members."""
    query = db.query(User).filter(
        User.is_active.is_(True),
        User.role.in_([Role.DEVELOPER, Role.QA]),
    )
    if project_id is not None:
        query = query.filter(exists().where(
            ProjectMember.user_id == User.id,
            ProjectMember.project_id == project_id,
        ))
    return query.order_by(User.full_name).all()


# Project CRUD

def get_project(db: Session, project_id: UUID, user: Optional[CurrentUser] = None) -> Project:
    """
    Fetch a project, checking membership for non-privileged users.

    Raises:
        NotFoundError: If the project does not exist
        AuthorizationError: If the user may not see it
    """
    project = db.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project", project_id)
    if user is not None and user.role not in PRIVILEGED_ROLES:
        if not is_project_member(db, project_id, user.id):
            raise AuthorizationError("Project membership required")
    return project


def list_projects(db: Session, user: CurrentUser, status: Optional[str] = None) -> Sequence[Project]:
    """All projects for admins/managers, member projects for everyone else."""
    query = db.query(Project)
    if user.role not in PRIVILEGED_ROLES:
        query = query.join(ProjectMember, ProjectMember.project_id == Project.id).filter(
            ProjectMember.user_id == user.id
        )
    if status:
        query = query.filter(Project.status == status)
    return query.order_by(Project.created_at.desc()).all()


def list_my_projects(db: Session, user: CurrentUser) -> Sequence[Project]:
    """Projects the user is a member of, regardless of role."""
    return (
        db.query(Project)
        .join(ProjectMember, ProjectMember.project_id == Project.id)
        .filter(ProjectMember.user_id == user.id)
        .order_by(Project.created_at.desc())
        .all()
    )


def list_project_members(db: Session, project_id: UUID, user: CurrentUser) -> Sequence[User]:
    get_project(db, project_id, user)
    return (
        db.query(User)
        .join(ProjectMember, ProjectMember.user_id == User.id)
        .filter(ProjectMember.project_id == project_id)
        .order_by(User.full_name)
        .all()
    )


def _add_modules(
    db: Session,
    project: Project,
    modules: Sequence[schemas.ModuleInput],
) -> list[Module]:
    serial = next_module_serial(db, project.id)
    created = []
    for item in modules:
        name = item.name.strip()
        if not name:
            continue
        module = Module(
            project_id=project.id,
            name=name,
            description=item.description,
            module_code=module_code(project.project_code, serial),
            module_serial=serial,
        )
        db.add(module)
        created.append(module)
        serial += 1
    db.flush()
    return created


def create_project(db: Session, project_data: schemas.ProjectCreate, user: CurrentUser) -> Project:
    """
    Create a project with its members and inline modules.

    The creator becomes manager and member. The project code is derived from
    the name; a trailing "-N" in the name sets the version.
    """
    _require_privileged(user, "create projects")

    name = project_data.name.strip()
    if not name:
        raise ValidationError("Project name is required")

    members = _users_by_id(db, [*project_data.members, user.id])

    project = Project(
        name=name,
        description=project_data.description,
        project_code=generate_unique_project_code(db, name),
        org_code=(project_data.org_code or "RS").upper(),
        version=parse_project_version(name),
        status=project_data.status,
        color=project_data.color,
        start_date=project_data.start_date,
        end_date=project_data.end_date,
        manager_id=user.id,
        created_by=user.id,
    )
    db.add(project)
    db.flush()

    for member in members:
        db.add(ProjectMember(project_id=project.id, user_id=member.id))
    modules = _add_modules(db, project, project_data.modules)

    record_change(db, EntityType.PROJECT, project.id, ChangeAction.CREATED,
                  after=project_snapshot(db, project), user_id=user.id)
    for module in modules:
        record_change(db, EntityType.MODULE, module.id, ChangeAction.CREATED,
                      after=module_snapshot(db, module), user_id=user.id)

    db.commit()
    db.refresh(project)
    logger.info(f"Created project {project.project_code}: {project.name}")
    return project


def update_project(
    db: Session,
    project_id: UUID,
    project_data: schemas.ProjectUpdate,
    user: CurrentUser,
) -> Project:
    """
    Update project fields, replace members and append modules atomically.
    """
    _require_privileged(user, "update projects")
    project = get_project(db, project_id)
    changes = project_data.model_dump(exclude_unset=True, exclude={"members", "modules"})

    if "name" in changes and changes["name"] is None:
        raise ValidationError("Project name cannot be empty")
    if changes.get("manager_id"):
        get_user(db, changes["manager_id"])
    new_members = (
        _users_by_id(db, project_data.members) if project_data.members is not None else None
    )

    before = project_snapshot(db, project)

    for field, value in changes.items():
        if field == "status" and value is None:
            continue
        setattr(project, field, value.strip() if field == "name" else value)

    if new_members is not None:
        wanted = {m.id for m in new_members}
        for membership in list(project.members):
            if membership.user_id not in wanted:
                project.members.remove(membership)
        current = {m.user_id for m in project.members}
        for member in new_members:
            if member.id not in current:
                project.members.append(ProjectMember(user_id=member.id))

    db.flush()
    modules = _add_modules(db, project, project_data.modules or [])

    record_change(db, EntityType.PROJECT, project.id, ChangeAction.UPDATED,
                  before=before, after=project_snapshot(db, project), user_id=user.id)
    for module in modules:
        record_change(db, EntityType.MODULE, module.id, ChangeAction.CREATED,
                      after=module_snapshot(db, module), user_id=user.id)

    db.commit()
    db.refresh(project)
    logger.info(f"Updated project {project.project_code}")
    return project


def delete_project(db: Session, project_id: UUID, user: CurrentUser) -> None:
    """Delete a project with its modules, sprints, tasks and memberships."""
    _require_privileged(user, "delete projects")
    project = get_project(db, project_id)
    before = project_snapshot(db, project)

    db.delete(project)
    db.flush()
    record_change(db, EntityType.PROJECT, project_id, ChangeAction.DELETED,
                  before=before, user_id=user.id)
    db.commit()
    logger.info(f"Deleted project {before['project_code']}")


# Module CRUD

def get_module(db: Session, module_id: UUID) -> Module:
    module = db.get(Module, module_id)
    if module is None:
        raise NotFoundError("Module", module_id)
    return module


def list_modules(db: Session, project_id: UUID, user: CurrentUser) -> Sequence[Module]:
    get_project(db, project_id, user)
    return (
        db.query(Module)
        .filter(Module.project_id == project_id)
        .order_by(Module.module_serial)
        .all()
    )


def create_module(db: Session, module_data: schemas.ModuleCreate, user: CurrentUser) -> Module:
    _require_privileged(user, "create modules")
    project = get_project(db, module_data.project_id)
    module = _add_modules(db, project, [module_data])
    if not module:
        raise ValidationError("Module name is required")
    module = module[0]

    record_change(db, EntityType.MODULE, module.id, ChangeAction.CREATED,
                  after=module_snapshot(db, module), user_id=user.id)
    db.commit()
    db.refresh(module)
    logger.info(f"Created module {module.module_code}: {module.name}")
    return module


def update_module(
    db: Session,
    module_id: UUID,
    module_data: schemas.ModuleUpdate,
    user: CurrentUser,
) -> Module:
    _require_privileged(user, "update modules")
    module = get_module(db, module_id)
    before = module_snapshot(db, module)

    for field, value in module_data.model_dump(exclude_unset=True).items():
        if field == "name" and not value:
            raise ValidationError("Module name cannot be empty")
        setattr(module, field, value)

    db.flush()
    record_change(db, EntityType.MODULE, module.id, ChangeAction.UPDATED,
                  before=before, after=module_snapshot(db, module), user_id=user.id)
    db.commit()
    db.refresh(module)
    return module


def delete_module(db: Session, module_id: UUID, user: CurrentUser) -> None:
    """Delete a module. Its tasks stay, detached from any module."""
    _require_privileged(user, "delete modules")
    module = get_module(db, module_id)
    before = module_snapshot(db, module)

    for task in db.query(Task).filter(Task.module_id == module_id).all():
        task.module_id = None
    db.delete(module)
    db.flush()
    record_change(db, EntityType.MODULE, module_id, ChangeAction.DELETED,
                  before=before, user_id=user.id)
    db.commit()


# Sprint CRUD

def get_sprint(db: Session, sprint_id: UUID, user: Optional[CurrentUser] = None) -> Sprint:
    """
    Fetch a sprint, checking membership of its project for non-privileged users.

    Raises:
        NotFoundError: If the sprint does not exist
        AuthorizationError: If the user may not see its project
    """
    sprint = db.get(Sprint, sprint_id)
    if sprint is None:
        raise NotFoundError("Sprint", sprint_id)
    if user is not None:
        get_project(db, sprint.project_id, user)
    return sprint


def list_sprints(
    db: Session,
    user: CurrentUser,
    project_id: Optional[UUID] = None,
    status: Optional[str] = None,
) -> Sequence[Sprint]:
    query = db.query(Sprint)
    if project_id is not None:
        get_project(db, project_id, user)
        query = query.filter(Sprint.project_id == project_id)
    elif user.role not in PRIVILEGED_ROLES:
        query = query.join(ProjectMember, ProjectMember.project_id == Sprint.project_id).filter(
            ProjectMember.user_id == user.id
        )
    if status:
        query = query.filter(Sprint.status == status)
    return query.order_by(Sprint.project_id, Sprint.sprint_number).all()


def get_next_sprint_number(db: Session, project_id: UUID) -> int:
    get_project(db, project_id)
    return next_sprint_number(db, project_id)


def create_sprint(db: Session, sprint_data: schemas.SprintCreate, user: CurrentUser) -> Sprint:
    """Create the next numbered sprint of a project ("Sprint N" unless named)."""
    _require_privileged(user, "create sprints")
    get_project(db, sprint_data.project_id)
    if sprint_data.start_date and sprint_data.end_date and sprint_data.end_date < sprint_data.start_date:
        raise ValidationError("Sprint end_date must not be before start_date")

    number = next_sprint_number(db, sprint_data.project_id)
    sprint = Sprint(
        project_id=sprint_data.project_id,
        name=(sprint_data.name or "").strip() or f"Sprint {number}",
        sprint_number=number,
        goal=sprint_data.goal,
        status=sprint_data.status,
        start_date=sprint_data.start_date,
        end_date=sprint_data.end_date,
    )
    db.add(sprint)
    db.flush()

    record_change(db, EntityType.SPRINT, sprint.id, ChangeAction.CREATED,
                  after=sprint_snapshot(db, sprint), user_id=user.id)
    db.commit()
    db.refresh(sprint)
    logger.info(f"Created {sprint.name} for project {sprint.project_id}")
    return sprint


def update_sprint(
    db: Session,
    sprint_id: UUID,
    sprint_data: schemas.SprintUpdate,
    user: CurrentUser,
) -> Sprint:
    _require_privileged(user, "update sprints")
    sprint = get_sprint(db, sprint_id)
    changes = sprint_data.model_dump(exclude_unset=True)
    start = changes.get("start_date", sprint.start_date)
    end = changes.get("end_date", sprint.end_date)
    if start and end and end < start:
        raise ValidationError("Sprint end_date must not be before start_date")

    before = sprint_snapshot(db, sprint)
    for field, value in changes.items():
        if field in ("name", "status") and not value:
            continue
        setattr(sprint, field, value)

    db.flush()
    record_change(db, EntityType.SPRINT, sprint.id, ChangeAction.UPDATED,
                  before=before, after=sprint_snapshot(db, sprint), user_id=user.id)
    db.commit()
    db.refresh(sprint)
    return sprint


def delete_sprint(db: Session, sprint_id: UUID, user: CurrentUser) -> None:
    """Delete a sprint. Its tasks stay, moved out of any sprint."""
    _require_privileged(user, "delete sprints")
    sprint = get_sprint(db, sprint_id)
    before = sprint_snapshot(db, sprint)

    for task in db.query(Task).filter(Task.sprint_id == sprint_id).all():
        task.sprint_id = None
    db.delete(sprint)
    db.flush()
    record_change(db, EntityType.SPRINT, sprint_id, ChangeAction.DELETED,
                  before=before, user_id=user.id)
    db.commit()


# Task CRUD

def get_task(db: Session, task_id: UUID) -> Task:
    task = db.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


def list_tasks(
    db: Session,
    user: CurrentUser,
    project_id: Optional[UUID] = None,
    sprint_id: Optional[UUID] = None,
    assignee_id: Optional[UUID] = None,
    status: Optional[str] = None,
) -> Sequence[Task]:
    """
    List tasks, newest first.

    Developers only see tasks they are assigned to or collaborate on.
    """
    query = db.query(Task)
    if user.role == Role.DEVELOPER:
        is_collaborator = exists().where(
            task_collaborators.c.task_id == Task.id,
            task_collaborators.c.user_id == user.id,
        )
        query = query.filter(or_(Task.assignee_id == user.id, is_collaborator))
    if project_id is not None:
        query = query.filter(Task.project_id == project_id)
    if sprint_id is not None:
        query = query.filter(Task.sprint_id == sprint_id)
    if assignee_id is not None:
        query = query.filter(Task.assignee_id == assignee_id)
    if status:
        query = query.filter(Task.status == normalize_status(status))
    return query.order_by(Task.created_at.desc()).all()


def _check_task_refs(
    db: Session,
    project_id: UUID,
    sprint_id: Optional[UUID],
    module_id: Optional[UUID],
    assignee_id: Optional[UUID],
) -> None:
    if sprint_id is not None and get_sprint(db, sprint_id).project_id != project_id:
        raise ValidationError("Sprint does not belong to the task's project")
    if module_id is not None and get_module(db, module_id).project_id != project_id:
        raise ValidationError("Module does not belong to the task's project")
    if assignee_id is not None:
        get_user(db, assignee_id)


def create_task(
    db: Session,
    task_data: schemas.TaskCreate,
    user: CurrentUser,
    now: Optional[datetime] = None,
) -> Task:
    """
    Create a task.

    Developers may only create tasks assigned to themselves, and everyone but
    admins/managers must be a member of the project. The sprint workload cap
    is enforced when assignee, sprint and size are all given.

    Raises:
        ProjectNotFoundError: If the project does not exist
        AuthorizationError: On role or membership violations
        WorkloadExceededError: If the assignee would go over the caps
    """
    if db.get(Project, task_data.project_id) is None:
        raise ProjectNotFoundError(task_data.project_id)

    if user.role == Role.DEVELOPER and task_data.assignee_id != user.id:
        raise AuthorizationError("Developers can only create tasks assigned to themselves")
    if user.role not in PRIVILEGED_ROLES and not is_project_member(db, task_data.project_id, user.id):
        raise AuthorizationError("Project membership required")

    _check_task_refs(db, task_data.project_id, task_data.sprint_id, task_data.module_id, task_data.assignee_id)
    collaborators = _users_by_id(db, task_data.collaborators)

    potential = canonical_potential(task_data.potential)
    enforce_workload_limit(db, task_data.assignee_id, task_data.sprint_id, potential)

    task_code, task_serial = generate_task_code(
        db, task_data.project_id, task_data.sprint_id, task_data.module_id, task_data.assignee_id
    )
    size = POTENTIAL_MAP[potential] if potential else None

    task = Task(
        task_code=task_code,
        task_serial=task_serial,
        title=task_data.title.strip(),
        description=task_data.description,
        priority=task_data.priority,
        potential=potential,
        potential_points=size.points if size else None,
        target_hours=size.hours if size else None,
        est_hours=task_data.est_hours,
        project_id=task_data.project_id,
        sprint_id=task_data.sprint_id,
        module_id=task_data.module_id,
        assignee_id=task_data.assignee_id,
        created_by=user.id,
        start_date=task_data.start_date,
        end_date=task_data.end_date,
        task_duration_minutes=0,
    )
    # Initial status goes through the same hooks as a change from nothing
    apply_status_transition(task, task_data.status or TaskStatus.TODO.value, now)
    task.collaborators = collaborators

    db.add(task)
    db.flush()
    record_change(db, EntityType.TASK, task.id, ChangeAction.CREATED,
                  after=task_snapshot(db, task), user_id=user.id)
    db.commit()
    db.refresh(task)
    logger.info(f"Created task {task.task_code}: {task.title}")
    return task


# Columns that may not be cleared through a partial update
_REQUIRED_TASK_FIELDS = {"title", "priority", "status"}


def update_task(
    db: Session,
    task_id: UUID,
    task_data: schemas.TaskUpdate,
    user: CurrentUser,
    now: Optional[datetime] = None,
) -> Task:
    """
    Partially update a task.

    Only fields present in the request are touched. Workload caps are checked
    against the resulting assignee/sprint/size, excluding this task's current
    contribution. Status changes run the lifecycle hooks and write the
    automatic timesheet entries in the same transaction.

    Raises:
        NotFoundError: If the task or a referenced entity does not exist
        AuthorizationError: If a developer edits someone else's task or reassigns it
        WorkloadExceededError: If the assignee would go over the caps
    """
    task = get_task(db, task_id)
    changes = task_data.model_dump(exclude_unset=True)

    if user.role == Role.DEVELOPER:
        if task.assignee_id != user.id:
            raise AuthorizationError("Developers can only edit tasks assigned to themselves")
        if "assignee_id" in changes and changes["assignee_id"] != user.id:
            raise AuthorizationError("Developers cannot reassign tasks to others")

    for field in _REQUIRED_TASK_FIELDS:
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be empty")

    potential = task.potential
    if "potential" in changes:
        potential = canonical_potential(changes["potential"])

    target_assignee = changes.get("assignee_id", task.assignee_id)
    target_sprint = changes.get("sprint_id", task.sprint_id)
    _check_task_refs(
        db,
        task.project_id,
        changes.get("sprint_id"),
        changes.get("module_id"),
        changes.get("assignee_id"),
    )
    collaborators = (
        _users_by_id(db, changes["collaborators"]) if changes.get("collaborators") is not None else None
    )
    enforce_workload_limit(db, target_assignee, target_sprint, potential, exclude_task_id=task.id)

    before = task_snapshot(db, task)
    new_status = changes.pop("status", None)
    changes.pop("collaborators", None)

    for field, value in changes.items():
        if field == "potential":
            size = POTENTIAL_MAP[potential] if potential else None
            task.potential = potential
            task.potential_points = size.points if size else None
            task.target_hours = size.hours if size else None
            continue
        if field == "title":
            value = value.strip()
        setattr(task, field, value)

    transition = apply_status_transition(task, new_status, now) if new_status else None
    if collaborators is not None:
        task.collaborators = collaborators

    log_date = (now or utcnow()).date()
    for entry in auto_timesheets(task, transition, user.id, log_date):
        db.add(entry)

    db.flush()
    record_change(db, EntityType.TASK, task.id, ChangeAction.UPDATED,
                  before=before, after=task_snapshot(db, task), user_id=user.id)
    db.commit()
    db.refresh(task)
    if transition is not None:
        logger.info(f"Task {task.task_code}: {transition.from_status} -> {transition.to_status}")
    return task


def delete_task(db: Session, task_id: UUID, user: CurrentUser) -> None:
    """Delete a task together with its timesheets and collaborator rows."""
    _require_privileged(user, "delete tasks")
    task = get_task(db, task_id)
    before = task_snapshot(db, task)

    db.delete(task)
    db.flush()
    record_change(db, EntityType.TASK, task_id, ChangeAction.DELETED,
                  before=before, user_id=user.id)
    db.commit()
    logger.info(f"Deleted task {before['task_code']}")


# Timesheet CRUD

def log_time(db: Session, timesheet_data: schemas.TimesheetCreate, user: CurrentUser) -> Timesheet:
    """Record a manual timesheet entry for the calling user."""
    if timesheet_data.task_id is not None:
        get_task(db, timesheet_data.task_id)

    timesheet = Timesheet(
        user_id=user.id,
        task_id=timesheet_data.task_id,
        log_date=timesheet_data.log_date or utcnow().date(),
        minutes_logged=timesheet_data.minutes_logged,
        source=TimesheetSource.MANUAL,
        notes=timesheet_data.notes,
    )
    db.add(timesheet)
    db.commit()
    db.refresh(timesheet)
    return timesheet


def get_timesheet(db: Session, timesheet_id: UUID) -> Timesheet:
    timesheet = db.get(Timesheet, timesheet_id)
    if timesheet is None:
        raise NotFoundError("Timesheet", timesheet_id)
    return timesheet


def list_timesheets(
    db: Session,
    user: CurrentUser,
    user_id: Optional[UUID] = None,
    week_start: Optional[date] = None,
    week_end: Optional[date] = None,
    task_id: Optional[UUID] = None,
):
    """
    Timesheet rows with user, task and project names, newest first.

    Non-privileged users only see their own entries.
    """
    query = (
        db.query(Timesheet, User.full_name, Task.title, Project.name)
        .select_from(Timesheet)
        .outerjoin(User, User.id == Timesheet.user_id)
        .outerjoin(Task, Task.id == Timesheet.task_id)
        .outerjoin(Project, Project.id == Task.project_id)
    )
    if user.role not in PRIVILEGED_ROLES:
        user_id = user.id
    if user_id is not None:
        query = query.filter(Timesheet.user_id == user_id)
    if task_id is not None:
        query = query.filter(Timesheet.task_id == task_id)
    if week_start is not None and week_end is not None:
        query = query.filter(Timesheet.log_date.between(week_start, week_end))
    return query.order_by(Timesheet.log_date.desc(), Timesheet.created_at.desc()).all()


def approve_timesheet(db: Session, timesheet_id: UUID, user: CurrentUser) -> Timesheet:
    """Mark a timesheet entry approved by the calling admin/manager."""
    _require_privileged(user, "approve timesheets")
    timesheet = get_timesheet(db, timesheet_id)
    before = column_snapshot(timesheet)

    timesheet.approved_by = user.id
    timesheet.approved_at = utcnow()
    db.flush()
    record_change(db, EntityType.TIMESHEET, timesheet.id, ChangeAction.UPDATED,
                  before=before, after=column_snapshot(timesheet), user_id=user.id)
    db.commit()
    db.refresh(timesheet)
    return timesheet


# Weekly timesheet sheets

def save_weekly_timesheet(
    db: Session,
    sheet_data: schemas.WeeklyTimesheetCreate,
    user: CurrentUser,
) -> WeeklyTimesheet:
    """
    Save a weekly timesheet sheet.

    Admins and managers may save sheets for anyone, other roles only for
    themselves.

    Raises:
        AuthorizationError: If a non-privileged user saves someone else's sheet
        ValidationError: If week_end is before week_start
        NotFoundError: If the user, supervisor or project does not exist
    """
    if user.role not in PRIVILEGED_ROLES and sheet_data.user_id != user.id:
        raise AuthorizationError("You can only save your own timesheets")
    if sheet_data.week_end < sheet_data.week_start:
        raise ValidationError("week_end must not be before week_start")
    get_user(db, sheet_data.user_id)
    if sheet_data.supervisor_id is not None:
        get_user(db, sheet_data.supervisor_id)
    if sheet_data.project_id is not None:
        get_project(db, sheet_data.project_id)

    sheet = WeeklyTimesheet(
        project_id=sheet_data.project_id,
        user_id=sheet_data.user_id,
        supervisor_id=sheet_data.supervisor_id,
        week_start=sheet_data.week_start,
        week_end=sheet_data.week_end,
        daily_data=[row.model_dump(mode="json") for row in sheet_data.daily_data],
        total_hours=sheet_data.total_hours,
        status=sheet_data.status.strip().lower(),
    )
    db.add(sheet)
    db.commit()
    db.refresh(sheet)
    logger.info(f"Saved weekly timesheet {sheet.week_start}..{sheet.week_end} for user {sheet.user_id}")
    return sheet


def _weekly_timesheet_query(db: Session):
    employee = aliased(User)
    supervisor = aliased(User)
    return (
        db.query(WeeklyTimesheet, employee.full_name, supervisor.full_name, Project.name)
        .select_from(WeeklyTimesheet)
        .outerjoin(employee, employee.id == WeeklyTimesheet.user_id)
        .outerjoin(supervisor, supervisor.id == WeeklyTimesheet.supervisor_id)
        .outerjoin(Project, Project.id == WeeklyTimesheet.project_id)
    )


def list_weekly_timesheets(db: Session, user: CurrentUser):
    """
    Saved sheets with employee, supervisor and project names, newest first.

    Non-privileged users only see their own sheets.
    """
    query = _weekly_timesheet_query(db)
    if user.role not in PRIVILEGED_ROLES:
        query = query.filter(WeeklyTimesheet.user_id == user.id)
    return query.order_by(WeeklyTimesheet.created_at.desc()).all()


def get_weekly_timesheet(db: Session, sheet_id: UUID, user: CurrentUser):
    row = _weekly_timesheet_query(db).filter(WeeklyTimesheet.id == sheet_id).first()
    if row is None:
        raise NotFoundError("Weekly timesheet", sheet_id)
    if user.role not in PRIVILEGED_ROLES and row[0].user_id != user.id:
        raise AuthorizationError("You can only view your own timesheets")
    return row


# Note CRUD

def _get_own_note(db: Session, note_id: UUID, user: CurrentUser) -> Note:
    # Someone else's note is reported exactly like a missing one
    note = db.query(Note).filter(Note.id == note_id, Note.user_id == user.id).first()
    if note is None:
        raise NotFoundError("Note", note_id)
    return note


def list_notes(db: Session, user: CurrentUser) -> Sequence[Note]:
    return db.query(Note).filter(Note.user_id == user.id).order_by(Note.created_at.desc()).all()


def create_note(db: Session, note_data: schemas.NoteCreate, user: CurrentUser) -> Note:
    if not note_data.content_html.strip():
        raise ValidationError("Content is required")
    note = Note(
        user_id=user.id,
        content_html=note_data.content_html,
        color_id=note_data.color_id or DEFAULT_NOTE_COLOR,
    )
    db.add(note)
    db.commit()
    db.refresh(note)
    return note


def update_note(db: Session, note_id: UUID, note_data: schemas.NoteUpdate, user: CurrentUser) -> Note:
    """Change a note's content and/or color; fields left out keep their value."""
    note = _get_own_note(db, note_id, user)
    for field, value in note_data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(note, field, value)
    db.commit()
    db.refresh(note)
    return note


def delete_note(db: Session, note_id: UUID, user: CurrentUser) -> UUID:
    note = _get_own_note(db, note_id, user)
    db.delete(note)
    db.commit()
    return note_id
