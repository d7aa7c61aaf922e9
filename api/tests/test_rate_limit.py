from __future__ import annotations

import asyncio

from issue_relay.core.ratelimit import RateLimiter, caller_key


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_remaining_decreases_until_denied() -> None:
    limiter = RateLimiter(display_limit=20, clock=FakeClock())

    remaining = [limiter.check("ip-1", 3, 60.0) for _ in range(3)]
    assert [result.allowed for result in remaining] == [True, True, True]
    assert [result.remaining for result in remaining] == [2, 1, 0]

    for _ in range(2):
        blocked = limiter.check("ip-1", 3, 60.0)
        assert blocked.allowed is False
        assert blocked.remaining == 0


def test_denied_calls_do_not_move_the_window() -> None:
    clock = FakeClock()
    limiter = RateLimiter(display_limit=20, clock=clock)
    first = limiter.check("ip-1", 1, 60.0)

    clock.now += 30
    blocked = limiter.check("ip-1", 1, 60.0)

    assert blocked.allowed is False
    assert blocked.reset_at == first.reset_at


def test_window_expiry_starts_a_fresh_window() -> None:
    clock = FakeClock()
    limiter = RateLimiter(display_limit=20, clock=clock)
    for _ in range(4):
        limiter.check("ip-1", 3, 60.0)

    clock.now += 61
    result = limiter.check("ip-1", 3, 60.0)

    assert result.allowed is True
    assert result.remaining == 2
    assert result.reset_at.timestamp() == clock.now + 60


def test_non_positive_limit_denies_without_opening_a_window() -> None:
    limiter = RateLimiter(display_limit=20, clock=FakeClock())

    result = limiter.check("ip-1", 0, 60.0)

    assert result.allowed is False
    assert result.remaining == 0
    assert len(limiter) == 0


def test_keys_are_counted_independently() -> None:
    limiter = RateLimiter(display_limit=20, clock=FakeClock())
    limiter.check("ip-1", 1, 60.0)

    assert limiter.check("ip-1", 1, 60.0).allowed is False
    assert limiter.check("ip-2", 1, 60.0).allowed is True


def test_sweep_removes_only_expired_entries() -> None:
    clock = FakeClock()
    limiter = RateLimiter(display_limit=20, clock=clock)
    limiter.check("short", 5, 10.0)
    limiter.check("long", 5, 120.0)

    clock.now += 30
    assert limiter.sweep() == 1
    assert len(limiter) == 1


def test_headers_use_display_limit_and_iso_reset() -> None:
    limiter = RateLimiter(display_limit=20, clock=FakeClock(0.0))
    result = limiter.check("ip-1", 5, 60.0)

    headers = limiter.headers(result)
    assert headers == {
        "X-RateLimit-Limit": "20",
        "X-RateLimit-Remaining": "4",
        "X-RateLimit-Reset": "1970-01-01T00:01:00.000Z",
    }


def test_caller_key_uses_first_forwarded_hop() -> None:
    assert caller_key("203.0.113.7, 10.0.0.1") == "203.0.113.7"
    assert caller_key(None) == "unknown"
    assert caller_key("") == "unknown"


def test_sweep_task_starts_and_stops() -> None:
    async def run() -> int:
        clock = FakeClock()
        limiter = RateLimiter(display_limit=20, sweep_interval_seconds=0.01, clock=clock)
        limiter.check("ip-1", 5, 1.0)
        clock.now += 5
        limiter.start()
        await asyncio.sleep(0.05)
        await limiter.stop()
        return len(limiter)

    assert asyncio.run(run()) == 0
