from __future__ import annotations

from collections.abc import Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from issue_relay.core.auth import USER_SCOPES, Principal, PrincipalType
from issue_relay.core.config import get_settings
from issue_relay.core.security import get_user_principal
from issue_relay.main import app
from issue_relay.services.github import get_github_client
from issue_relay.services.llm import LLMClient, LLMError, get_llm_client
from issue_relay.services.retry import ActionResult
from issue_relay.services.titles import TitleSuggestion

USER = Principal(
    principal_type=PrincipalType.HUMAN,
    subject="1001",
    scopes=set(USER_SCOPES),
    login="octocat",
    access_token="gho_token",
)

ISSUE_BODY = {"title": "Add dark mode toggle", "body": "## Overview", "repository": "acme/app", "labels": ["feature"]}


class ScriptedGitHub:
    def __init__(self, results: list[ActionResult]) -> None:
        self.results = list(results)
        self.calls: list[dict] = []

    async def create_issue(self, **kwargs) -> ActionResult:
        self.calls.append(kwargs)
        return self.results.pop(0)


class FakeTitleLLM:
    configured = True

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    async def suggest_title(self, prompt: str) -> TitleSuggestion:
        if self.error is not None:
            raise self.error
        return TitleSuggestion(title="Add dark mode toggle", is_generated=True, alternatives=["Support dark theme"])


@pytest.fixture
def client() -> Iterator[TestClient]:
    get_settings.cache_clear()
    app.dependency_overrides[get_user_principal] = lambda: USER
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    get_settings.cache_clear()


def test_publish_issue_returns_created_issue(client: TestClient) -> None:
    github = ScriptedGitHub([ActionResult.ok({"issue_url": "https://github.com/acme/app/issues/9", "issue_number": 9})])
    app.dependency_overrides[get_github_client] = lambda: github

    response = client.post("/issues", json=ISSUE_BODY)

    assert response.status_code == 201
    assert response.json() == {
        "success": True,
        "issue_url": "https://github.com/acme/app/issues/9",
        "issue_number": 9,
    }
    assert github.calls[0]["access_token"] == "gho_token"
    assert github.calls[0]["labels"] == ["feature"]


def test_publish_issue_reports_terminal_failure_without_retrying(client: TestClient) -> None:
    github = ScriptedGitHub([ActionResult.fail("GitHub authentication failed. Please reconnect your account")])
    app.dependency_overrides[get_github_client] = lambda: github

    response = client.post("/issues", json=ISSUE_BODY)

    assert response.status_code == 400
    assert response.json()["detail"] == "GitHub authentication failed. Please reconnect your account"
    assert len(github.calls) == 1


def test_publish_issue_requires_authentication() -> None:
    get_settings.cache_clear()
    with TestClient(app) as client:
        response = client.post("/issues", json=ISSUE_BODY)
    assert response.status_code == 401


def test_title_uses_model_suggestion(client: TestClient) -> None:
    app.dependency_overrides[get_llm_client] = lambda: FakeTitleLLM()

    response = client.post("/titles", json={"prompt": "Users want a dark mode toggle in settings"})

    assert response.status_code == 200
    assert response.json() == {
        "title": "Add dark mode toggle",
        "alternatives": ["Support dark theme"],
        "is_generated": True,
        "warning": None,
    }


def test_title_falls_back_when_model_is_not_configured(client: TestClient) -> None:
    app.dependency_overrides[get_llm_client] = lambda: LLMClient(api_key=None)

    response = client.post("/titles", json={"prompt": "Add dark mode toggle. It should persist."})

    body = response.json()
    assert response.status_code == 200
    assert body["title"] == "Add dark mode toggle"
    assert body["is_generated"] is False
    assert body["warning"]


def test_title_falls_back_when_model_fails(client: TestClient) -> None:
    app.dependency_overrides[get_llm_client] = lambda: FakeTitleLLM(error=LLMError("chat completion failed status=500"))

    response = client.post("/titles", json={"prompt": "Add dark mode toggle. It should persist."})

    assert response.json()["is_generated"] is False
    assert response.json()["warning"] == "Failed to generate AI title. Using fallback."


def test_title_rejects_short_prompt(client: TestClient) -> None:
    app.dependency_overrides[get_llm_client] = lambda: FakeTitleLLM()
    assert client.post("/titles", json={"prompt": "short"}).status_code == 422


def test_title_falls_back_when_model_returns_html(client: TestClient) -> None:
    gateway = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway timeout</html>"))
    app.dependency_overrides[get_llm_client] = lambda: LLMClient(api_key="sk-test", transport=gateway)

    response = client.post("/titles", json={"prompt": "Add dark mode toggle. It should persist."})

    assert response.status_code == 200
    assert response.json()["title"] == "Add dark mode toggle"
    assert response.json()["is_generated"] is False
    assert response.json()["warning"] == "Failed to generate AI title. Using fallback."
