from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import asyncpg  # type: ignore[import-untyped]
import pytest

from issue_relay.schemas.jobs import CreateAndPublishIssuePayload
from issue_relay.services.repository import (
    SCHEMA_SQL,
    PostgresJobRepository,
    RepositoryConflictError,
    RepositoryValidationError,
)


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("IR_DATABASE_URL")
    if not url:
        pytest.skip("integration tests require IR_DATABASE_URL")
    return url


@pytest.fixture(autouse=True)
def reset_tables(database_url: str) -> None:
    asyncio.run(_reset_tables(database_url))


def _payload(prompt: str = "Add dark mode toggle") -> CreateAndPublishIssuePayload:
    return CreateAndPublishIssuePayload(prompt=prompt, repository="acme/app")


def _with_repository(database_url: str, scenario: Callable[[PostgresJobRepository], Awaitable[Any]]) -> Any:
    # The asyncpg pool is bound to the loop that created it.
    async def run() -> Any:
        repository = PostgresJobRepository(database_url=database_url, min_pool_size=1, max_pool_size=2)
        try:
            return await scenario(repository)
        finally:
            await repository.close()

    return asyncio.run(run())


def test_create_claim_and_complete(database_url: str) -> None:
    async def scenario(repository: PostgresJobRepository) -> None:
        job = await repository.create_job("user-1", "create-and-publish-issue", _payload(), max_retries=3)
        assert job.status == "pending"
        assert job.payload.prompt == "Add dark mode toggle"

        claimed = await repository.claim_job(job.id)
        assert claimed is not None and claimed.status == "processing"
        assert await repository.claim_job(job.id) is None

        completed = await repository.update_job(
            job.id,
            {
                "status": "completed",
                "result": {"issue_url": "https://github.com/acme/app/issues/1", "issue_number": 1},
                "completed_at": datetime.now(timezone.utc),
            },
        )
        assert completed.result == {"issue_url": "https://github.com/acme/app/issues/1", "issue_number": 1}

        with pytest.raises(RepositoryConflictError):
            await repository.update_job(job.id, {"status": "pending"})

    _with_repository(database_url, scenario)


def test_requeued_job_goes_behind_newer_pending_jobs(database_url: str) -> None:
    async def scenario(repository: PostgresJobRepository) -> None:
        older = await repository.create_job("user-1", "create-and-publish-issue", _payload("older"))
        newer = await repository.create_job("user-1", "create-and-publish-issue", _payload("newer"))
        await repository.claim_job(older.id)
        await repository.update_job(older.id, {"status": "pending", "retry_count": 1})

        pending = await repository.list_pending_jobs(10)
        assert [job.id for job in pending] == [newer.id, older.id]

    _with_repository(database_url, scenario)


def test_retry_ceiling_is_enforced_by_the_table(database_url: str) -> None:
    async def scenario(repository: PostgresJobRepository) -> None:
        job = await repository.create_job("user-1", "create-and-publish-issue", _payload(), max_retries=1)
        with pytest.raises(RepositoryValidationError):
            await repository.update_job(job.id, {"retry_count": 2})

    _with_repository(database_url, scenario)


def test_stale_claims_are_requeued_or_failed(database_url: str) -> None:
    async def scenario(repository: PostgresJobRepository) -> None:
        retried = await repository.create_job("user-1", "create-and-publish-issue", _payload("a"), max_retries=3)
        exhausted = await repository.create_job("user-1", "create-and-publish-issue", _payload("b"), max_retries=1)
        for job in (retried, exhausted):
            await repository.claim_job(job.id)

        requeued = await repository.requeue_stale_jobs(
            older_than=datetime.now(timezone.utc) + timedelta(seconds=5),
            limit=10,
            error="Job processing timed out",
        )
        assert requeued == 2

        retried_after = await repository.get_job(retried.id)
        assert (retried_after.status, retried_after.retry_count) == ("pending", 1)
        exhausted_after = await repository.get_job(exhausted.id)
        assert (exhausted_after.status, exhausted_after.error) == ("failed", "Job processing timed out")

    _with_repository(database_url, scenario)


def test_unknown_job_id_is_not_found(database_url: str) -> None:
    async def scenario(repository: PostgresJobRepository) -> None:
        assert await repository.get_job("not-a-uuid") is None
        assert await repository.get_job("00000000-0000-0000-0000-000000000000") is None

    _with_repository(database_url, scenario)


def test_github_connection_upsert(database_url: str) -> None:
    async def scenario(repository: PostgresJobRepository) -> None:
        await repository.upsert_github_connection("user-1", "token-a", "octocat")
        await repository.upsert_github_connection("user-1", "token-b")
        connection = await repository.get_github_connection("user-1")
        assert connection is not None
        assert (connection.access_token, connection.login) == ("token-b", "octocat")

    _with_repository(database_url, scenario)


async def _reset_tables(database_url: str) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(SCHEMA_SQL)
        await conn.execute("truncate table jobs, github_connections")
    finally:
        await conn.close()
