from __future__ import annotations

from datetime import datetime, timedelta, timezone

STALE_JOB_ERROR = "Job processing timed out"


def stale_cutoff(stale_after_seconds: float, now: datetime | None = None) -> datetime:
    """Claims last touched at or before this instant belong to a run that died."""
    now = now or datetime.now(timezone.utc)
    return now - timedelta(seconds=stale_after_seconds)
