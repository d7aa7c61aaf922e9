"""Retry policy for unreliable external actions.

The wrapped action reports failure through ``ActionResult`` rather than by
raising. Authentication and access-denied failures are terminal; every other
reported failure is retried with exponential backoff. Exceptions raised by the
action are not caught here.

The publish action is not idempotent on the remote side: a retry after a
failure that happened once the remote record was already written can create a
duplicate issue. GitHub offers no idempotency key for issue creation, so this
risk is accepted rather than hidden.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
from typing import Any

logger = logging.getLogger(__name__)

TERMINAL_ERROR_MARKERS = ("authentication", "access denied")
EXHAUSTED_ERROR = "Failed after multiple attempts"


@dataclass(slots=True)
class ActionResult:
    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def ok(cls, data: dict[str, Any]) -> ActionResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> ActionResult:
        return cls(success=False, error=error)


def is_terminal_error(error: str | None) -> bool:
    if not error:
        return False
    lowered = error.lower()
    return any(marker in lowered for marker in TERMINAL_ERROR_MARKERS)


def compute_backoff_seconds(attempt: int, initial_delay_seconds: float) -> float:
    return initial_delay_seconds * (2**attempt)


async def perform_with_retry(
    action: Callable[[], Awaitable[ActionResult]],
    *,
    max_attempts: int = 3,
    initial_delay_seconds: float = 1.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> ActionResult:
    attempts = max(1, max_attempts)
    last_error: str | None = None

    for attempt in range(attempts):
        result = await action()
        if result.success:
            return result

        last_error = result.error
        if is_terminal_error(result.error):
            logger.info("terminal action failure on attempt=%s: %s", attempt + 1, result.error)
            return result

        if attempt < attempts - 1:
            delay = compute_backoff_seconds(attempt, initial_delay_seconds)
            logger.warning(
                "action failed attempt=%s/%s error=%s; retry in %.1fs",
                attempt + 1,
                attempts,
                result.error,
                delay,
            )
            await sleep(delay)

    return ActionResult.fail(last_error or EXHAUSTED_ERROR)
