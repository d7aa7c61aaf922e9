from __future__ import annotations

from functools import lru_cache
import logging
from typing import Any

import httpx

from issue_relay.core.config import get_settings
from issue_relay.services.retry import ActionResult

logger = logging.getLogger(__name__)

GITHUB_ACCEPT = "application/vnd.github+json"
GITHUB_API_VERSION = "2022-11-28"


class GitHubAuthError(Exception):
    """Raised when a token cannot be verified against the GitHub API."""


class GitHubUnavailableError(Exception):
    """Raised when the GitHub API cannot be reached for token verification."""


def split_repository(repository: str) -> tuple[str, str] | None:
    owner, separator, name = repository.strip().partition("/")
    if not separator or not owner or not name or "/" in name:
        return None
    return owner, name


class GitHubClient:
    def __init__(
        self,
        base_url: str = "https://api.github.com",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport)

    @staticmethod
    def _headers(access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": GITHUB_ACCEPT,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }

    async def get_authenticated_user(self, access_token: str) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.get(f"{self.base_url}/user", headers=self._headers(access_token))
        except httpx.HTTPError as exc:  # pragma: no cover - network dependent
            raise GitHubUnavailableError("GitHub token verification unavailable") from exc

        if response.status_code in {401, 403}:
            raise GitHubAuthError("invalid GitHub token")
        if response.status_code != 200:
            raise GitHubUnavailableError(f"GitHub token verification failed status={response.status_code}")
        return response.json()

    async def create_issue(
        self,
        *,
        access_token: str,
        repository: str,
        title: str,
        body: str,
        labels: list[str] | None = None,
        assignees: list[str] | None = None,
    ) -> ActionResult:
        parts = split_repository(repository)
        if parts is None:
            return ActionResult.fail('Invalid repository format. Expected "owner/repo"')
        owner, name = parts

        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = labels
        if assignees:
            payload["assignees"] = assignees

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/repos/{owner}/{name}/issues",
                    json=payload,
                    headers=self._headers(access_token),
                )
        except httpx.HTTPError as exc:
            logger.warning("GitHub issue publish transport error repository=%s: %s", repository, exc)
            return ActionResult.fail(f"GitHub request failed: {exc.__class__.__name__}")

        if response.status_code == 201:
            issue = response.json()
            return ActionResult.ok(
                {
                    "issue_url": issue.get("html_url"),
                    "issue_number": issue.get("number"),
                }
            )

        logger.warning("GitHub issue publish failed repository=%s status=%s", repository, response.status_code)
        return ActionResult.fail(_describe_failure(response))


def _describe_failure(response: httpx.Response) -> str:
    if response.status_code == 404:
        return "Repository not found or access denied"
    if response.status_code == 403:
        return "GitHub API rate limit exceeded or insufficient permissions"
    if response.status_code == 401:
        return "GitHub authentication failed. Please reconnect your account"
    try:
        data = response.json()
    except ValueError:
        data = None
    message = data.get("message") if isinstance(data, dict) else None
    if isinstance(message, str) and message:
        return message
    return "Failed to publish issue"


@lru_cache
def get_github_client() -> GitHubClient:
    settings = get_settings()
    return GitHubClient(base_url=settings.github_api_url, timeout_seconds=settings.github_timeout_seconds)
