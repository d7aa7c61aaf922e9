from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from issue_relay.services.github import GitHubClient
from issue_relay.services.llm import LLMClient
from issue_relay.services.repository import JobRepository


@dataclass(slots=True)
class JobContext:
    """Collaborators a job handler may call."""

    repository: JobRepository
    github: GitHubClient
    llm: LLMClient
    publish_max_attempts: int = 3
    publish_initial_delay_seconds: float = 1.0
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep


@dataclass(slots=True, frozen=True)
class JobOutcome:
    status: Literal["completed", "failed"]
    result: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def completed(cls, result: dict[str, Any]) -> JobOutcome:
        return cls(status="completed", result=result)

    @classmethod
    def failed(cls, error: str) -> JobOutcome:
        return cls(status="failed", error=error)
