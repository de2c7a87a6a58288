"""Pydantic schemas for request/response validation."""
from datetime import date, datetime
from typing import Any, Generic, Optional, TypeVar, Union
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, field_validator

from .models import (
    ChangeAction,
    EntityType,
    NotificationKind,
    Role,
    TaskPriority,
    TaskStatus,
    TimesheetSource,
)
from .task_lifecycle import normalize_status

T = TypeVar("T")


# Envelope

class ErrorInfo(BaseModel):
    """Error payload of a failed response."""

    code: str
    message: str
    details: Optional[Any] = None


class ApiResponse(BaseModel, Generic[T]):
    """Envelope wrapping every API response."""

    success: bool = True
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None


class MessageData(BaseModel):
    message: str


# User Schemas

class UserSummary(BaseModel):
    """Minimal user reference used inside other records."""

    id: Optional[UUID] = None
    name: Optional[str] = None


class UserCreate(BaseModel):
    """Schema for creating a user. Any common role spelling is accepted."""

    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    full_name: str = Field(..., min_length=1, max_length=255)
    role: str = Field("developer", description="admin, manager (pm / Project Manager), developer, qa")
    is_active: bool = True


class UserResponse(BaseModel):
    """Schema for user response."""

    id: UUID
    email: str
    full_name: str
    role: Role
    resource_serial: int
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Module Schemas

class ModuleInput(BaseModel):
    """Module defined inline while creating or updating a project."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class ModuleCreate(ModuleInput):
    project_id: UUID


class ModuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None


class ModuleResponse(BaseModel):
    """Schema for module response."""

    id: UUID
    project_id: UUID
    name: str
    description: Optional[str] = None
    module_code: str
    module_serial: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Project Schemas

class ProjectCreate(BaseModel):
    """Schema for creating a project.

    The creator is always added as a member. Modules listed here are created
    with serials 1..n.
    """

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: str = Field("active", max_length=50)
    color: Optional[str] = Field("#4F7DFF", max_length=20)
    org_code: Optional[str] = Field(None, max_length=20)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    members: list[UUID] = Field(default_factory=list, description="Member user ids")
    modules: list[ModuleInput] = Field(default_factory=list)


class ProjectUpdate(BaseModel):
    """Schema for updating a project.

    members, when given, replaces the member list; modules are appended.
    """

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[str] = Field(None, max_length=50)
    color: Optional[str] = Field(None, max_length=20)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    manager_id: Optional[UUID] = None
    members: Optional[list[UUID]] = None
    modules: Optional[list[ModuleInput]] = None


class ProjectResponse(BaseModel):
    """Schema for project response."""

    id: UUID
    name: str
    description: Optional[str] = None
    project_code: str
    org_code: str
    version: int
    status: str
    color: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    manager_id: Optional[UUID] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProjectDetailResponse(ProjectResponse):
    """Project with its members and modules."""

    members: list[UserSummary] = Field(default_factory=list)
    modules: list[ModuleResponse] = Field(default_factory=list)


class ProjectMemberResponse(BaseModel):
    user_id: UUID
    full_name: str
    email: str
    role: Role


class SprintProgress(BaseModel):
    id: UUID
    name: str
    sprint_number: int
    status: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_tasks: int
    completed_tasks: int


class ProjectSummary(BaseModel):
    """Headline numbers for a project dashboard."""

    project_id: UUID
    project_name: str
    total_modules: int
    total_sprints: int
    total_tasks: int
    completed_tasks: int
    in_progress_tasks: int
    overdue_tasks: int
    total_points: int
    completed_points: int
    completion_percent: float
    status_counts: dict[str, int]
    current_sprint: Optional[SprintProgress] = None


# Sprint Schemas

class SprintCreate(BaseModel):
    """Schema for creating a sprint. Number and default name are assigned."""

    project_id: UUID
    name: Optional[str] = Field(None, max_length=255)
    goal: Optional[str] = None
    status: str = Field("planned", max_length=50)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class SprintUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    goal: Optional[str] = None
    status: Optional[str] = Field(None, max_length=50)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class SprintResponse(BaseModel):
    """Schema for sprint response."""

    id: UUID
    project_id: UUID
    name: str
    sprint_number: int
    goal: Optional[str] = None
    status: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NextSprintNumber(BaseModel):
    sprint_number: int
    name: str


class HierarchyTask(BaseModel):
    """Task line inside a project or sprint tree."""

    id: UUID
    task_code: str
    title: str
    status: str
    module_id: Optional[UUID] = None
    sprint_id: Optional[UUID] = None
    assignee_id: Optional[UUID] = None
    assignee_name: Optional[str] = None


class ProjectHierarchy(BaseModel):
    """A project with its modules, sprints and tasks as flat lists."""

    project: ProjectResponse
    modules: list[ModuleResponse]
    sprints: list[SprintResponse]
    tasks: list[HierarchyTask]


class SprintWithProject(SprintResponse):
    project_name: str
    project_color: Optional[str] = None


class ModuleTasks(BaseModel):
    """Tasks of a sprint grouped under one module. module_id is None for the "General Tasks" group."""

    module_id: Optional[UUID] = None
    module_code: Optional[str] = None
    name: str
    tasks: list[HierarchyTask]


class SprintHierarchy(BaseModel):
    sprint: SprintWithProject
    modules: list[ModuleTasks]
    tasks: list[HierarchyTask]


class BurndownPoint(BaseModel):
    """One day of a sprint burndown chart (hours). Future days carry no actuals."""

    day: date
    display_date: str
    ideal: float
    remaining_est: Optional[float] = None
    remaining_actual: Optional[float] = None


# Task Schemas

def _lower_priority(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


class TaskCreate(BaseModel):
    """Schema for creating a task.

    potential is one of Very Small, Small, Medium, Large, Very Large and sets
    potential_points / target_hours.
    """

    project_id: UUID
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    status: str = Field(TaskStatus.TODO.value, min_length=1, max_length=50)
    priority: TaskPriority = TaskPriority.MEDIUM
    potential: Optional[str] = Field(None, description="Size tag")
    sprint_id: Optional[UUID] = None
    module_id: Optional[UUID] = None
    assignee_id: Optional[UUID] = None
    collaborators: list[UUID] = Field(default_factory=list)
    est_hours: Optional[float] = Field(None, ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = Field(None, description="Due date")

    normalize_priority = field_validator("priority", mode="before")(_lower_priority)

    @field_validator("status")
    @classmethod
    def _normalize_status(cls, value: str) -> str:
        return normalize_status(value)


class TaskUpdate(BaseModel):
    """Schema for partially updating a task. Only fields sent are applied."""

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[str] = Field(None, min_length=1, max_length=50)
    priority: Optional[TaskPriority] = None
    potential: Optional[str] = None
    sprint_id: Optional[UUID] = None
    module_id: Optional[UUID] = None
    assignee_id: Optional[UUID] = None
    collaborators: Optional[list[UUID]] = None
    est_hours: Optional[float] = Field(None, ge=0)
    actual_hours: Optional[float] = Field(None, ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    normalize_priority = field_validator("priority", mode="before")(_lower_priority)


class TaskResponse(BaseModel):
    """Task joined with project, module, assignee and collaborator names."""

    id: UUID
    task_code: str
    task_serial: int
    title: str
    description: Optional[str] = None
    status: str
    priority: TaskPriority
    potential: Optional[str] = None
    potential_points: Optional[int] = None
    target_hours: Optional[float] = None
    est_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    project_id: UUID
    sprint_id: Optional[UUID] = None
    module_id: Optional[UUID] = None
    assignee_id: Optional[UUID] = None
    created_by: Optional[UUID] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    in_progress_at: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    task_duration_minutes: int = 0
    created_at: datetime
    updated_at: datetime
    project_name: Optional[str] = None
    project_color: Optional[str] = None
    module_name: Optional[str] = None
    assignee_name: Optional[str] = None
    created_by_name: Optional[str] = None
    collaborators: list[UserSummary] = Field(default_factory=list)


class WorkloadResponse(BaseModel):
    """A developer's committed size in one sprint against the caps."""

    assignee_id: UUID
    sprint_id: UUID
    points: int
    hours: float
    max_points: int
    max_hours: float
    remaining_points: int
    remaining_hours: float


# Timesheet Schemas

class TimesheetCreate(BaseModel):
    task_id: Optional[UUID] = None
    minutes_logged: int = Field(..., gt=0, description="Minutes worked, greater than 0")
    log_date: Optional[date] = None
    notes: Optional[str] = None


class TimesheetResponse(BaseModel):
    """Schema for timesheet response."""

    id: UUID
    user_id: UUID
    task_id: Optional[UUID] = None
    log_date: date
    minutes_logged: int
    source: TimesheetSource
    notes: Optional[str] = None
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    created_at: datetime
    user_name: Optional[str] = None
    task_title: Optional[str] = None
    project_name: Optional[str] = None


class WeeklySummaryRow(BaseModel):
    user_id: UUID
    full_name: str
    total_minutes: int
    tasks_worked: int


class TimesheetDay(BaseModel):
    """One row of a weekly timesheet sheet. Hours are decimal hours."""

    work_date: date
    day: str
    task_code: str = "N/A"
    start_time: str = ""
    end_time: str = ""
    regular_hrs: float = 0.0
    overtime_hrs: float = 0.0
    sick_hrs: float = 0.0
    vacation_hrs: float = 0.0
    holiday_hrs: float = 0.0
    other_hrs: float = 0.0
    total_hrs: float = 0.0


class AssignedTaskWindow(BaseModel):
    task_code: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ProjectRef(BaseModel):
    id: Optional[UUID] = None
    name: str


class TimesheetPreview(BaseModel):
    """A weekly sheet generated from logged time, or from assigned task dates where nothing was logged."""

    employee: UserSummary
    resource_serial: int
    project: ProjectRef
    start_date: date
    end_date: date
    daily_data: list[TimesheetDay]
    assigned_tasks: list[AssignedTaskWindow]
    total_hours: float


class WeeklyTimesheetCreate(BaseModel):
    """Schema for saving a weekly timesheet sheet."""

    user_id: UUID
    project_id: Optional[UUID] = None
    supervisor_id: Optional[UUID] = None
    week_start: date
    week_end: date
    daily_data: list[TimesheetDay]
    total_hours: float = Field(0, ge=0)
    status: str = Field("draft", min_length=1, max_length=20)


class WeeklyTimesheetResponse(BaseModel):
    """Schema for a saved weekly timesheet with display names."""

    id: UUID
    user_id: UUID
    project_id: Optional[UUID] = None
    supervisor_id: Optional[UUID] = None
    week_start: date
    week_end: date
    daily_data: list[dict[str, Any]]
    total_hours: float
    approved_hours: float
    status: str
    created_at: datetime
    updated_at: datetime
    employee_name: Optional[str] = None
    supervisor_name: Optional[str] = None
    project_name: Optional[str] = None


# Note Schemas

class NoteCreate(BaseModel):
    content_html: str = Field(..., min_length=1)
    color_id: Optional[str] = Field(None, max_length=20)


class NoteUpdate(BaseModel):
    """Only the fields sent are changed."""

    content_html: Optional[str] = Field(None, min_length=1)
    color_id: Optional[str] = Field(None, min_length=1, max_length=20)


class NoteResponse(BaseModel):
    id: UUID
    user_id: UUID
    content_html: str
    color_id: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NoteDeleted(BaseModel):
    message: str
    id: UUID


# Notification Schemas

class NotificationResponse(BaseModel):
    """Schema for notification response."""

    id: UUID
    kind: NotificationKind
    title: str
    message: str
    payload: Optional[dict[str, Any]] = None
    is_read: bool
    created_at: datetime
    project_id: Optional[UUID] = None
    sender_id: Optional[UUID] = None
    sender_name: Optional[str] = None
    project_name: Optional[str] = None
    project_color: Optional[str] = None


class PushReminderRequest(BaseModel):
    """Manual reminder. recipient_ids may be a list of user ids or "everyone"."""

    recipient_ids: Union[list[str], str]
    message: str = Field(..., min_length=1)
    project_id: Optional[UUID] = None
    task_id: Optional[UUID] = None


class RefreshResult(BaseModel):
    created: int


# Activity Schemas

class ActivityEntry(BaseModel):
    """A change-log row rendered for display."""

    id: UUID
    type: EntityType
    action: ChangeAction
    entity_id: str
    message: str
    user_name: str
    user_id: Optional[UUID] = None
    user: UserSummary
    project_name: Optional[str] = None
    module_name: Optional[str] = None
    meta: dict[str, Any] = Field(default_factory=dict)
    changed_at: datetime
    created_at: datetime


# Q&A Assistant Schemas

class BotAskRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000)


class BotAnswer(BaseModel):
    answer: str
