"""SQLAlchemy database models."""
from datetime import datetime, timezone
from uuid import uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Float,
    Date,
    DateTime,
    ForeignKey,
    Enum,
    Boolean,
    UniqueConstraint,
    CheckConstraint,
    Table,
    JSON,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# Association table for task collaborators (many-to-many)
task_collaborators = Table(
    'task_collaborators',
    Base.metadata,
    Column('task_id', Uuid, ForeignKey('tasks.id', ondelete='CASCADE'), primary_key=True),
    Column('user_id', Uuid, ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
    Column('created_at', DateTime, nullable=False, default=utcnow),
)


class Role(str, enum.Enum):
    """Closed set of user roles.

    Raw role text from any source is mapped onto these values once, at the
    authentication boundary (see auth.normalize_role).
    """

    ADMIN = "admin"
    MANAGER = "manager"
    DEVELOPER = "developer"
    QA = "qa"


PRIVILEGED_ROLES = frozenset({Role.ADMIN, Role.MANAGER})


class TaskPriority(str, enum.Enum):
    """Task priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TaskStatus(str, enum.Enum):
    """Well-known task statuses.

    The status column is free text; deployments may add their own values.
    Only IN_PROGRESS and DONE drive lifecycle side effects.
    """

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


# Statuses that count as delivered work in progress figures
COMPLETED_TASK_STATUSES = ("done", "completed")

# Statuses that count as finished for reminders and open-task checks
CLOSED_TASK_STATUSES = COMPLETED_TASK_STATUSES + ("cancelled",)


class EntityType(str, enum.Enum):
    """Entities tracked by the change-log."""

    PROJECT = "project"
    SPRINT = "sprint"
    MODULE = "module"
    TASK = "task"
    TIMESHEET = "timesheet"


class ChangeAction(str, enum.Enum):
    """Change-log actions."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class NotificationKind(str, enum.Enum):
    """Notification kinds."""

    TAG = "tag"
    OVERDUE_TASK = "overdue_task"
    SPRINT_END = "sprint_end"


class TimesheetSource(str, enum.Enum):
    """How a timesheet entry was produced."""

    MANUAL = "manual"
    AUTO = "auto"


class User(Base):
    """A person who can log in, be assigned tasks and act on entities."""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(255), nullable=False)
    role = Column(
        Enum(Role, name="user_role", values_callable=_enum_values),
        nullable=False,
        default=Role.DEVELOPER,
    )
    resource_serial = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class AccessToken(Base):
    """
    Bearer token used to authenticate API requests.

    Only the SHA-256 hash of the token is stored.
    """

    __tablename__ = "access_tokens"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    last_used_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    revoked_at = Column(DateTime, nullable=True)

    user = relationship("User")

    @property
    def is_active(self) -> bool:
        """Check if token is active (not revoked and not expired)."""
        if self.revoked_at:
            return False
        if self.expires_at and self.expires_at < utcnow():
            return False
        return True

    def __repr__(self) -> str:
        return f"<AccessToken {self.name} for user_id={self.user_id}>"


class Project(Base):
    """A project groups modules, sprints, tasks and a member list."""

    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    project_code = Column(String(20), nullable=False, unique=True, index=True)
    org_code = Column(String(20), nullable=False, default="RS")
    version = Column(Integer, nullable=False, default=1)
    status = Column(String(50), nullable=False, default="active")
    color = Column(String(20), nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    manager_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    manager = relationship("User", foreign_keys=[manager_id])
    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")
    modules = relationship(
        "Module", back_populates="project", cascade="all, delete-orphan", order_by="Module.module_serial"
    )
    sprints = relationship(
        "Sprint", back_populates="project", cascade="all, delete-orphan", order_by="Sprint.sprint_number"
    )
    tasks = relationship("Task", back_populates="project", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Project {self.project_code}: {self.name}>"


class ProjectMember(Base):
    """Membership of a user in a project; defines visibility scope."""

    __tablename__ = "project_members"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint('project_id', 'user_id', name='uq_project_member'),
    )

    project = relationship("Project", back_populates="members")
    user = relationship("User")

    def __repr__(self) -> str:
        return f"<ProjectMember project_id={self.project_id} user_id={self.user_id}>"


class Module(Base):
    """A functional area of a project. Deleting it detaches its tasks."""

    __tablename__ = "modules"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    module_code = Column(String(40), nullable=False)
    module_serial = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="modules")

    def __repr__(self) -> str:
        return f"<Module {self.module_code}: {self.name}>"


class Sprint(Base):
    """A numbered time-box within a project. Deleting it detaches its tasks."""

    __tablename__ = "sprints"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    sprint_number = Column(Integer, nullable=False)
    goal = Column(Text, nullable=True)
    status = Column(String(50), nullable=False, default="planned")
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('project_id', 'sprint_number', name='uq_sprint_number_per_project'),
    )

    project = relationship("Project", back_populates="sprints")

    def __repr__(self) -> str:
        return f"<Sprint {self.name} of project_id={self.project_id}>"


class Task(Base):
    """
    A unit of work.

    Lifecycle bookkeeping (in_progress_at, current_period_start, completed_at,
    task_duration_minutes) is maintained by task_lifecycle on status changes.
    """

    __tablename__ = "tasks"

    id = Column(Uuid, primary_key=True, default=uuid4)
    task_code = Column(String(120), nullable=False, index=True)
    task_serial = Column(Integer, nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(50), nullable=False, default=TaskStatus.TODO.value, index=True)
    priority = Column(
        Enum(TaskPriority, name="task_priority", values_callable=_enum_values),
        nullable=False,
        default=TaskPriority.MEDIUM,
    )

    # Sizing
    potential = Column(String(20), nullable=True)
    potential_points = Column(Integer, nullable=True)
    target_hours = Column(Float, nullable=True)
    est_hours = Column(Float, nullable=True)
    actual_hours = Column(Float, nullable=True)

    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    sprint_id = Column(Uuid, ForeignKey("sprints.id", ondelete="SET NULL"), nullable=True, index=True)
    module_id = Column(Uuid, ForeignKey("modules.id", ondelete="SET NULL"), nullable=True, index=True)
    assignee_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)  # due date

    # Lifecycle bookkeeping
    in_progress_at = Column(DateTime, nullable=True)
    current_period_start = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    task_duration_minutes = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint('task_duration_minutes >= 0', name='task_duration_non_negative'),
    )

    project = relationship("Project", back_populates="tasks")
    sprint = relationship("Sprint")
    module = relationship("Module")
    assignee = relationship("User", foreign_keys=[assignee_id])
    creator = relationship("User", foreign_keys=[created_by])
    collaborators = relationship("User", secondary=task_collaborators, order_by="User.full_name")
    timesheets = relationship("Timesheet", back_populates="task", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Task {self.task_code}: {self.title[:50]}>"


class Timesheet(Base):
    """Time logged by a user, optionally against a task."""

    __tablename__ = "timesheets"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)
    log_date = Column(Date, nullable=False)
    minutes_logged = Column(Integer, nullable=False)
    source = Column(
        Enum(TimesheetSource, name="timesheet_source", values_callable=_enum_values),
        nullable=False,
        default=TimesheetSource.MANUAL,
    )
    notes = Column(Text, nullable=True)
    approved_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint('minutes_logged > 0', name='minutes_logged_positive'),
    )

    user = relationship("User", foreign_keys=[user_id])
    task = relationship("Task", back_populates="timesheets")

    def __repr__(self) -> str:
        return f"<Timesheet {self.minutes_logged}m by user_id={self.user_id} on {self.log_date}>"


class Notification(Base):
    """In-app notification. Only the read flag ever changes after insert."""

    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid4)
    recipient_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    kind = Column(
        Enum(NotificationKind, name="notification_kind", values_callable=_enum_values),
        nullable=False,
        default=NotificationKind.TAG,
    )
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON(none_as_null=True), nullable=True)  # dedup keys: task_id / sprint_id
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    sender = relationship("User", foreign_keys=[sender_id])
    project = relationship("Project")

    def __repr__(self) -> str:
        return f"<Notification {self.kind} to user_id={self.recipient_id}>"


class WeeklyTimesheet(Base):
    """
    A saved weekly timesheet sheet.

    daily_data holds the day rows as generated by the preview (possibly
    edited before saving); it is stored as-is.
    """

    __tablename__ = "weekly_timesheets"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    supervisor_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    week_start = Column(Date, nullable=False)
    week_end = Column(Date, nullable=False)
    daily_data = Column(JSON, nullable=False)
    total_hours = Column(Float, nullable=False, default=0)
    approved_hours = Column(Float, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="draft")
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint('week_end >= week_start', name='weekly_timesheet_range'),
    )

    user = relationship("User", foreign_keys=[user_id])
    supervisor = relationship("User", foreign_keys=[supervisor_id])
    project = relationship("Project")

    def __repr__(self) -> str:
        return f"<WeeklyTimesheet {self.week_start}..{self.week_end} for user_id={self.user_id}>"


class Note(Base):
    """A personal sticky note. Only its owner can see or change it."""

    __tablename__ = "notes"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content_html = Column(Text, nullable=False)
    color_id = Column(String(20), nullable=False, default="yellow")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Note {self.color_id} for user_id={self.user_id}>"


class ChangeLog(Base):
    """
    Append-only audit entry: one row per create/update/delete.

    before_data / after_data are opaque JSON snapshots. Task snapshots always
    carry project_id and sprint_id so scoped feeds can filter without joining
    back to a task row that may no longer exist.
    """

    __tablename__ = "change_logs"

    id = Column(Uuid, primary_key=True, default=uuid4)
    entity_type = Column(
        Enum(EntityType, name="change_entity_type", values_callable=_enum_values),
        nullable=False,
        index=True,
    )
    entity_id = Column(Uuid, nullable=False, index=True)
    action = Column(
        Enum(ChangeAction, name="change_action", values_callable=_enum_values),
        nullable=False,
    )
    before_data = Column(JSON(none_as_null=True), nullable=True)
    after_data = Column(JSON(none_as_null=True), nullable=True)
    changed_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    changed_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    actor = relationship("User")

    def __repr__(self) -> str:
        return f"<ChangeLog {self.entity_type} {self.action} {self.entity_id}>"
