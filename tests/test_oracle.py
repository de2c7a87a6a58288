"""Tests for the Q&A assistant client and snapshot."""
import json

import httpx
import pytest

from taskpulse_core.api.main import app
from taskpulse_core.api.routers.bot import get_oracle
from taskpulse_core.config import Settings
from taskpulse_core.errors import OracleError
from taskpulse_core.oracle import FALLBACK_ANSWER, QAOracle, build_snapshot, strip_markdown


def _oracle(handler):
    settings = Settings(llm_api_key="test-key", llm_base_url="https://llm.example.com/v1", llm_model="test-model")
    return QAOracle(settings=settings, transport=httpx.MockTransport(handler))


def _completion(content):
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


class TestStripMarkdown:
    def test_emphasis_headers_and_code(self):
        text = "## Status\n**Payroll** is *on track*; run `make report`"
        assert strip_markdown(text) == "Status\nPayroll is on track; run make report"

    def test_snake_case_is_kept(self):
        """Underscores inside words are not treated as emphasis."""
        assert strip_markdown("sprint_number is 3") == "sprint_number is 3"


class TestQAOracle:
    """Transport and response-shape handling around the chat completion call."""

    def test_request_carries_snapshot_and_question(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return _completion("All **good**")

        answer = _oracle(handler).ask("How is Payroll?", {"projects_summary": [{"name": "Payroll"}]})

        assert answer == "All good"
        assert seen["url"] == "https://llm.example.com/v1/chat/completions"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"]["model"] == "test-model"
        system, user = seen["body"]["messages"]
        assert '"name": "Payroll"' in system["content"]
        assert user == {"role": "user", "content": "How is Payroll?"}

    def test_empty_answer_falls_back(self):
        """An empty answer becomes the fallback text."""
        assert _oracle(lambda request: _completion("")).ask("?", {}) == FALLBACK_ANSWER
        assert _oracle(lambda request: httpx.Response(200, json={"choices": []})).ask("?", {}) == FALLBACK_ANSWER

    def test_http_error(self):
        with pytest.raises(OracleError) as exc_info:
            _oracle(lambda request: httpx.Response(503, json={"error": "busy"})).ask("?", {})
        assert "503" in exc_info.value.message

    def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(OracleError):
            _oracle(handler).ask("?", {})

    def test_unexpected_shape(self):
        """A payload without choices is a backend error."""
        with pytest.raises(OracleError):
            _oracle(lambda request: httpx.Response(200, json={"result": "nope"})).ask("?", {})
        with pytest.raises(OracleError):
            _oracle(lambda request: httpx.Response(200, text="not json")).ask("?", {})

    def test_choice_that_is_not_an_object(self):
        """A choice given as a bare string is a malformed reply, not a crash."""
        with pytest.raises(OracleError):
            _oracle(lambda request: httpx.Response(200, json={"choices": ["All good"]})).ask("?", {})
        with pytest.raises(OracleError):
            _oracle(lambda request: httpx.Response(200, json={"choices": [{"message": "All good"}]})).ask("?", {})


class TestSnapshot:
    def test_snapshot_sections(self, db, make_project, make_sprint, make_task, developer):
        """The snapshot summarizes each project with task and point totals."""
        project = make_project(name="Payroll", members=[developer])
        sprint = make_sprint(project)
        make_task(project, sprint_id=sprint.id, assignee_id=developer.id, potential="Large")
        make_task(project, status="done", potential="Small")

        snapshot = build_snapshot(db)

        (summary,) = snapshot["projects_summary"]
        assert summary["name"] == "Payroll"
        assert (summary["total_tasks"], summary["completed_tasks"]) == (2, 1)
        assert (summary["total_points"], summary["completed_points"]) == (7, 2)
        assert snapshot["active_sprints"][0]["total_tasks"] == 1
        assert snapshot["upcoming_deadlines"] == []
        workload = {row["full_name"]: row for row in snapshot["team_workload"]}
        assert workload["Dev One"]["active_tasks"] == 1
        assert workload["Dev One"]["total_points"] == 5
        assert "Maya Manager" not in workload
        json.dumps(snapshot)


class TestAskEndpoint:
    def test_ask(self, api, login, developer):
        app.dependency_overrides[get_oracle] = lambda: _oracle(lambda request: _completion("Two projects"))
        login(developer)

        response = api.post("/api/v1/bot/ask", json={"query": "How many projects?"})

        assert response.status_code == 200
        assert response.json()["data"] == {"answer": "Two projects"}

    def test_backend_failure(self, api, login, developer):
        app.dependency_overrides[get_oracle] = lambda: _oracle(lambda request: httpx.Response(500))
        login(developer)

        response = api.post("/api/v1/bot/ask", json={"query": "Anything?"})

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "ASSISTANT_UNAVAILABLE"
