"""Human-readable codes for projects, modules, sprints and tasks.

Task code layout, joined with "/":

    ORG / PROJ / R<resource serial> / V<version> / S<sprint number> / <PR><module serial> / <NNN>

e.g. ``RS/HRMS/R4/V2/S3/HR1/007``. Missing references fall back to fixed
defaults so a code can always be produced for a valid project.

Serials are computed count-then-insert without locking; concurrent creations
in the same project can collide.
"""
import logging
import re
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import ConflictError, ProjectNotFoundError
from .models import Module, Project, Sprint, Task, User

logger = logging.getLogger("taskpulse-core.task_codes")

DEFAULT_ORG_CODE = "RS"
DEFAULT_PROJECT_CODE = "PROJ"
DEFAULT_RESOURCE_SERIAL = 0
DEFAULT_VERSION = 1
DEFAULT_SPRINT_NUMBER = 0
DEFAULT_MODULE_SERIAL = 1

MAX_PROJECT_CODE_ATTEMPTS = 20

_VERSION_SUFFIX = re.compile(r"-(\d+)$")


def format_task_code(
    org_code: Optional[str],
    project_code: Optional[str],
    resource_serial: Optional[int],
    version: Optional[int],
    sprint_number: Optional[int],
    module_serial: Optional[int],
    task_serial: int,
) -> str:
    """Assemble a task code from its parts, applying defaults for empty parts."""
    org = (org_code or DEFAULT_ORG_CODE).upper()
    proj = (project_code or DEFAULT_PROJECT_CODE).split("/")[0].upper()
    version_part = str(version or DEFAULT_VERSION).upper()
    if not version_part.startswith("V"):
        version_part = "V" + version_part

    parts = [
        org,
        proj,
        f"R{resource_serial or DEFAULT_RESOURCE_SERIAL}",
        version_part,
        f"S{sprint_number or DEFAULT_SPRINT_NUMBER}",
        f"{proj[:2]}{module_serial or DEFAULT_MODULE_SERIAL}",
        f"{task_serial:03d}",
    ]
    return "/".join(parts)


def generate_task_code(
    db: Session,
    project_id: UUID,
    sprint_id: Optional[UUID] = None,
    module_id: Optional[UUID] = None,
    assignee_id: Optional[UUID] = None,
) -> tuple[str, int]:
    """
    Generate the next task code for a project.

    Args:
        db: Database session
        project_id: Owning project
        sprint_id: Sprint (optional)
        module_id: Module (optional)
        assignee_id: Assignee whose resource serial goes into the code (optional)

    Returns:
        Tuple of (task_code, task_serial)

    Raises:
        ProjectNotFoundError: If the project does not exist
    """
    project = db.get(Project, project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)

    sprint = db.get(Sprint, sprint_id) if sprint_id else None
    module = db.get(Module, module_id) if module_id else None
    assignee = db.get(User, assignee_id) if assignee_id else None

    count = db.scalar(select(func.count(Task.id)).where(Task.project_id == project_id)) or 0
    serial = count + 1

    code = format_task_code(
        org_code=project.org_code,
        project_code=project.project_code,
        resource_serial=assignee.resource_serial if assignee else None,
        version=project.version,
        sprint_number=sprint.sprint_number if sprint else None,
        module_serial=module.module_serial if module else None,
        task_serial=serial,
    )
    return code, serial


def parse_project_version(name: str) -> int:
    """Read the version from a trailing "-N" in a project name ("HRMS-2" -> 2)."""
    match = _VERSION_SUFFIX.search(name.strip())
    return int(match.group(1)) if match else DEFAULT_VERSION


def _project_code_candidates(name: str):
    letters = re.sub(r"[^A-Z]", "", name.strip().upper())
    base = letters[:4]
    if len(base) < 3:
        base = (base + "PRJ")[:3]

    yield base
    for attempt in range(1, MAX_PROJECT_CODE_ATTEMPTS):
        if len(letters) >= 4 + attempt:
            # Slide the 4-letter window along the name
            yield letters[attempt:attempt + 4]
        elif attempt <= 26:
            yield base[:3] + chr(64 + attempt)
    for n in range(1, 100):
        yield f"{base}{n}"


def generate_unique_project_code(db: Session, name: str) -> str:
    """
    Derive a unique project code from a project name.

    Uses the first four letters of the name, then slides along the name or
    appends a letter until the code is free.

    Raises:
        ConflictError: If no free code can be found
    """
    for candidate in _project_code_candidates(name):
        taken = db.scalar(select(Project.id).where(Project.project_code == candidate))
        if taken is None:
            return candidate
    raise ConflictError(f"Could not derive a unique project code from '{name}'")


def next_module_serial(db: Session, project_id: UUID) -> int:
    current = db.scalar(select(func.max(Module.module_serial)).where(Module.project_id == project_id))
    return (current or 0) + 1


def module_code(project_code: str, serial: int) -> str:
    return f"{project_code}M{serial}"


def next_sprint_number(db: Session, project_id: UUID) -> int:
    """Next sprint number for a project (max + 1, starting at 1)."""
    current = db.scalar(select(func.max(Sprint.sprint_number)).where(Sprint.project_id == project_id))
    return (current or 0) + 1
