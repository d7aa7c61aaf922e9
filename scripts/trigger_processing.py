#!/usr/bin/env python3
"""Invoke the job processing trigger once; meant to be run by cron."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

import httpx

logger = logging.getLogger("trigger_processing")


async def trigger(
    base_url: str,
    *,
    secret: str | None = None,
    timeout_seconds: float = 300.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    headers = {"Authorization": f"Bearer {secret}"} if secret else {}
    async with httpx.AsyncClient(timeout=timeout_seconds, transport=transport) as client:
        response = await client.post(f"{base_url.rstrip('/')}/jobs/process", headers=headers)
        response.raise_for_status()
        payload = response.json()
    return int(payload.get("processed_count", 0))


def main() -> int:
    parser = argparse.ArgumentParser(description="Run one batch of pending issue jobs.")
    parser.add_argument(
        "--base-url",
        default=os.getenv("IR_TRIGGER_BASE_URL", "http://localhost:8000"),
        help="Base URL of the issue-relay API",
    )
    parser.add_argument(
        "--secret",
        default=os.getenv("IR_CRON_SECRET"),
        help="Shared secret sent as a bearer token (defaults to IR_CRON_SECRET)",
    )
    parser.add_argument("--timeout", type=float, default=300.0, help="Request timeout in seconds")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    try:
        processed = asyncio.run(trigger(args.base_url, secret=args.secret, timeout_seconds=args.timeout))
    except httpx.HTTPError as exc:
        # Remaining jobs stay pending for the next scheduled run.
        logger.error("trigger failed: %s", exc)
        return 1

    print(f"processed_count={processed}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
