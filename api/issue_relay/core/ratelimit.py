"""Fixed-window request limiting keyed by caller address.

The limiter owns its counter table and the sweep task that evicts expired
windows. One instance is created in the application lifespan and handed to
request handlers through ``get_rate_limiter``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import time

from fastapi import Depends, HTTPException, Request, Response, status

from issue_relay.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

UNKNOWN_CALLER = "unknown"


@dataclass(slots=True)
class RateLimitEntry:
    count: int
    reset_at: float


@dataclass(slots=True, frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime


def caller_key(forwarded_for: str | None) -> str:
    # First hop only; callers without the header share one bucket.
    if not forwarded_for:
        return UNKNOWN_CALLER
    first_hop = forwarded_for.split(",")[0].strip()
    return first_hop or UNKNOWN_CALLER


class RateLimiter:
    def __init__(
        self,
        *,
        display_limit: int,
        sweep_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.display_limit = display_limit
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}
        self._sweep_task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def check(self, key: str, limit: int, window_seconds: float) -> RateLimitResult:
        now = self._clock()
        if limit <= 0:
            return RateLimitResult(allowed=False, remaining=0, reset_at=_to_datetime(now + window_seconds))

        entry = self._entries.get(key)
        if entry is None or entry.reset_at <= now:
            entry = RateLimitEntry(count=1, reset_at=now + window_seconds)
            self._entries[key] = entry
            return RateLimitResult(allowed=True, remaining=max(0, limit - 1), reset_at=_to_datetime(entry.reset_at))

        if entry.count >= limit:
            return RateLimitResult(allowed=False, remaining=0, reset_at=_to_datetime(entry.reset_at))

        entry.count += 1
        return RateLimitResult(allowed=True, remaining=limit - entry.count, reset_at=_to_datetime(entry.reset_at))

    def headers(self, result: RateLimitResult) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.display_limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": _isoformat(result.reset_at),
        }

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.reset_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def start(self) -> None:
        if self._sweep_task is not None:
            return
        self._sweep_task = asyncio.create_task(self._sweep_forever(), name="rate-limit-sweep")

    async def stop(self) -> None:
        task = self._sweep_task
        if task is None:
            return
        self._sweep_task = None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            removed = self.sweep()
            if removed:
                logger.debug("rate limit sweep removed=%s remaining=%s", removed, len(self._entries))


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        raise RuntimeError("rate limiter is not initialised; the application lifespan has not run")
    return limiter


def enforce_rate_limit(
    request: Request,
    response: Response,
    limiter: RateLimiter,
    *,
    scope: str,
    limit: int,
    window_seconds: float,
) -> RateLimitResult:
    key = f"rate-limit:{scope}:{caller_key(request.headers.get('x-forwarded-for'))}"
    result = limiter.check(key, limit, window_seconds)
    headers = limiter.headers(result)
    if not result.allowed:
        logger.warning("rate limit exceeded key=%s reset_at=%s", key, headers["X-RateLimit-Reset"])
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "Rate limit exceeded. Please try again later.",
                "reset_at": headers["X-RateLimit-Reset"],
            },
            headers=headers,
        )
    response.headers.update(headers)
    return result


def rate_limit(scope: str, limit_setting: str = "rate_limit_requests_per_hour"):
    """Build a route dependency enforcing the limit named by ``limit_setting``."""

    async def dependency(
        request: Request,
        response: Response,
        limiter: RateLimiter = Depends(get_rate_limiter),
        settings: Settings = Depends(get_settings),
    ) -> RateLimitResult:
        return enforce_rate_limit(
            request,
            response,
            limiter,
            scope=scope,
            limit=int(getattr(settings, limit_setting)),
            window_seconds=settings.rate_limit_window_seconds,
        )

    return dependency


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def _isoformat(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")
