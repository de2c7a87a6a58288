"""Q&A assistant over a read-only snapshot of the tracker.

The snapshot (active projects, active sprints, upcoming deadlines, team
workload) is serialized into the system prompt of an OpenAI-compatible chat
completion call. The model is a black box; only transport and response shape
are checked here.
"""
import json
import logging
import re
from typing import Any, Optional

import httpx
from pydantic_core import to_jsonable_python
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .errors import OracleError
from .models import CLOSED_TASK_STATUSES, COMPLETED_TASK_STATUSES, Project, Sprint, Task, User, Role, utcnow

logger = logging.getLogger("taskpulse-core.oracle")

DEADLINE_LIMIT = 15
FALLBACK_ANSWER = "I couldn't generate an answer."

SYSTEM_PROMPT = """You are ProjectBot, a project management assistant with read-only access to the tracker.

CURRENT DATA SNAPSHOT:
{snapshot}

INSTRUCTIONS:
- Answer only from the snapshot; say so when data is missing.
- Project status: completion is completed_tasks / total_tasks * 100; mention points when relevant.
- Sprint status: use total_tasks, completed_tasks, sprint_number and dates.
- Risks: high priority tasks with close deadlines, low completion rates.
- Team workload: overloaded means 4+ active tasks or 12+ points; underutilized means 0 tasks.
- Keep answers short and data-driven.
- Plain text only: no markdown bold, italics, headers or code spans. Use dashes for lists.
"""

_MARKDOWN_RULES = [
    (re.compile(r"\*\*([^*]+)\*\*"), r"\1"),
    (re.compile(r"\*([^*]+)\*"), r"\1"),
    (re.compile(r"__([^_]+)__"), r"\1"),
    (re.compile(r"(?<!\w)_([^_]+)_(?!\w)"), r"\1"),
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"`([^`]+)`"), r"\1"),
]


def strip_markdown(text: str) -> str:
    """Remove markdown emphasis, headers and code spans the model let slip."""
    for pattern, replacement in _MARKDOWN_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


def _task_counts(db: Session, column, entity_id) -> tuple[int, int, int]:
    tasks = db.execute(
        select(Task.status, Task.potential_points).where(column == entity_id)
    ).all()
    total = len(tasks)
    completed = sum(1 for status, _ in tasks if status in COMPLETED_TASK_STATUSES)
    points = sum(p or 0 for _, p in tasks)
    return total, completed, points


def build_snapshot(db: Session) -> dict[str, Any]:
    """Collect the read-only state the assistant answers from."""
    today = utcnow().date()

    projects = []
    for project in db.scalars(
        select(Project).where(Project.status == "active").order_by(Project.created_at.desc())
    ):
        total, completed, points = _task_counts(db, Task.project_id, project.id)
        completed_points = db.scalar(
            select(func.coalesce(func.sum(Task.potential_points), 0)).where(
                Task.project_id == project.id, Task.status.in_(COMPLETED_TASK_STATUSES)
            )
        )
        projects.append({
            "id": project.id,
            "name": project.name,
            "code": project.project_code,
            "start_date": project.start_date,
            "end_date": project.end_date,
            "total_tasks": total,
            "completed_tasks": completed,
            "total_points": points,
            "completed_points": int(completed_points or 0),
        })

    sprints = []
    for sprint, project_name in db.execute(
        select(Sprint, Project.name)
        .join(Project, Project.id == Sprint.project_id)
        .where(Sprint.status == "active")
        .order_by(Sprint.end_date)
    ):
        total, completed, points = _task_counts(db, Task.sprint_id, sprint.id)
        sprints.append({
            "id": sprint.id,
            "name": sprint.name,
            "sprint_number": sprint.sprint_number,
            "project_name": project_name,
            "start_date": sprint.start_date,
            "end_date": sprint.end_date,
            "total_tasks": total,
            "completed_tasks": completed,
            "total_points": points,
        })

    deadlines = [
        {
            "id": task.id,
            "code": task.task_code,
            "title": task.title,
            "priority": task.priority,
            "status": task.status,
            "end_date": task.end_date,
            "project_name": project_name,
            "assignee_name": assignee_name,
        }
        for task, project_name, assignee_name in db.execute(
            select(Task, Project.name, User.full_name)
            .join(Project, Project.id == Task.project_id)
            .outerjoin(User, User.id == Task.assignee_id)
            .where(Task.end_date >= today, Task.status.not_in(COMPLETED_TASK_STATUSES))
            .order_by(Task.end_date)
            .limit(DEADLINE_LIMIT)
        )
    ]

    open_tasks = func.count(Task.id).label("active_tasks")
    team = [
        {
            "id": user_id,
            "full_name": full_name,
            "role": role,
            "active_tasks": int(active or 0),
            "total_points": int(points or 0),
        }
        for user_id, full_name, role, active, points in db.execute(
            select(User.id, User.full_name, User.role, open_tasks,
                   func.coalesce(func.sum(Task.potential_points), 0))
            .outerjoin(Task, (Task.assignee_id == User.id) & Task.status.not_in(CLOSED_TASK_STATUSES))
            .where(User.is_active.is_(True), User.role != Role.MANAGER)
            .group_by(User.id, User.full_name, User.role)
            .order_by(open_tasks.desc())
        )
    ]

    return to_jsonable_python({
        "projects_summary": projects,
        "active_sprints": sprints,
        "upcoming_deadlines": deadlines,
        "team_workload": team,
    })


class QAOracle:
    """Client for an OpenAI-compatible chat completion endpoint."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    def _client(self) -> httpx.Client:
        headers = {"Content-Type": "application/json"}
        if self.settings.llm_api_key:
            headers["Authorization"] = f"Bearer {self.settings.llm_api_key}"
        return httpx.Client(
            base_url=self.settings.llm_base_url.rstrip("/"),
            headers=headers,
            timeout=self.settings.llm_timeout_seconds,
            transport=self._transport,
        )

    def ask(self, question: str, snapshot: dict[str, Any]) -> str:
        """
        Answer a question about the snapshot.

        Raises:
            OracleError: If the service is unreachable, errors, or replies
                with an unexpected shape
        """
        body = {
            "model": self.settings.llm_model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT.format(snapshot=json.dumps(snapshot, indent=2))},
                {"role": "user", "content": question},
            ],
            "temperature": 0.1,
            "max_tokens": 1024,
        }
        try:
            with self._client() as client:
                response = client.post("/chat/completions", json=body)
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Assistant returned HTTP {e.response.status_code}")
            raise OracleError(f"Assistant service returned HTTP {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Assistant request failed: {e}", exc_info=True)
            raise OracleError(f"Assistant service unavailable: {e}")

        try:
            choices = result["choices"]
            content = (choices[0].get("message") or {}).get("content") if choices else None
        except (KeyError, TypeError, AttributeError, IndexError):
            raise OracleError("Assistant service returned an unexpected response")
        answer = strip_markdown(content) if content else ""
        logger.info(f"Assistant answered {len(question)}-char question")
        return answer or FALLBACK_ANSWER
