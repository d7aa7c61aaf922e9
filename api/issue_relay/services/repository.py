from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from functools import lru_cache
import json
from typing import Any
from uuid import uuid4

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from issue_relay.core.config import get_settings
from issue_relay.schemas.jobs import Job, JobPayload, JobType


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


@dataclass(slots=True)
class GitHubConnectionRecord:
    user_id: str
    access_token: str
    login: str | None
    created_at: datetime
    updated_at: datetime


UPDATABLE_JOB_FIELDS = {"status", "result", "error", "retry_count", "completed_at"}
JOB_STATUSES = {"pending", "processing", "completed", "failed"}

SCHEMA_SQL = """
create table if not exists jobs (
  id uuid primary key,
  user_id text not null,
  type text not null,
  payload jsonb not null,
  status text not null default 'pending'
    check (status in ('pending', 'processing', 'completed', 'failed')),
  retry_count integer not null default 0,
  max_retries integer not null default 3,
  result jsonb,
  error text,
  created_at timestamptz not null default now(),
  updated_at timestamptz not null default now(),
  completed_at timestamptz,
  pending_since timestamptz,
  constraint jobs_retry_ceiling check (retry_count <= max_retries)
);

create index if not exists jobs_pending_idx
  on jobs (pending_since asc, created_at asc)
  where status = 'pending';

create index if not exists jobs_user_created_idx
  on jobs (user_id, created_at desc);

create index if not exists jobs_processing_idx
  on jobs (updated_at asc)
  where status = 'processing';

create table if not exists github_connections (
  user_id text primary key,
  access_token text not null,
  login text,
  created_at timestamptz not null default now(),
  updated_at timestamptz not null default now()
);
"""

JOB_COLUMNS = """
  id::text as id,
  user_id,
  type,
  payload,
  status,
  retry_count,
  max_retries,
  result,
  error,
  created_at,
  updated_at,
  completed_at
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_patch(patch: dict[str, Any]) -> dict[str, Any]:
    unknown = set(patch) - UPDATABLE_JOB_FIELDS
    if unknown:
        raise RepositoryValidationError(f"fields cannot be updated: {sorted(unknown)}")
    status = patch.get("status")
    if status is not None and status not in JOB_STATUSES:
        raise RepositoryValidationError(f"invalid job status: {status}")
    return patch


def _validate_max_retries(max_retries: int) -> int:
    if max_retries < 1:
        raise RepositoryValidationError("max_retries must be at least 1")
    return max_retries


class InMemoryJobRepository:
    """Process-local store for development and tests; state is lost on restart."""

    def __init__(self) -> None:
        self.jobs: dict[str, Job] = {}
        self.pending: OrderedDict[str, None] = OrderedDict()
        self.connections: dict[str, GitHubConnectionRecord] = {}

    async def close(self) -> None:
        return None

    async def create_job(
        self,
        user_id: str,
        job_type: JobType,
        payload: JobPayload,
        max_retries: int = 3,
    ) -> Job:
        now = _utcnow()
        job = Job(
            id=str(uuid4()),
            user_id=user_id,
            type=job_type,
            payload=payload,
            status="pending",
            retry_count=0,
            max_retries=_validate_max_retries(max_retries),
            created_at=now,
            updated_at=now,
        )
        self.jobs[job.id] = job
        self.pending[job.id] = None
        return job.model_copy(deep=True)

    async def get_job(self, job_id: str) -> Job | None:
        job = self.jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list_pending_jobs(self, limit: int) -> list[Job]:
        selected: list[Job] = []
        for job_id in self.pending:
            if len(selected) >= limit:
                break
            selected.append(self.jobs[job_id].model_copy(deep=True))
        return selected

    async def list_user_jobs(self, user_id: str, limit: int = 10) -> list[Job]:
        owned = [job for job in self.jobs.values() if job.user_id == user_id]
        owned.sort(key=lambda job: job.created_at, reverse=True)
        return [job.model_copy(deep=True) for job in owned[:limit]]

    async def claim_job(self, job_id: str) -> Job | None:
        job = self.jobs.get(job_id)
        if job is None or job.status != "pending":
            return None
        claimed = job.model_copy(update={"status": "processing", "updated_at": _utcnow()})
        self.jobs[job_id] = claimed
        self.pending.pop(job_id, None)
        return claimed.model_copy(deep=True)

    async def update_job(self, job_id: str, patch: dict[str, Any]) -> Job:
        _validate_patch(patch)
        job = self.jobs.get(job_id)
        if job is None:
            raise RepositoryNotFoundError("job not found")
        if job.is_terminal:
            raise RepositoryConflictError("job is already in a terminal state")

        updated = Job.model_validate({**job.model_dump(), **patch, "updated_at": _utcnow()})
        if updated.retry_count > updated.max_retries:
            raise RepositoryValidationError("retry_count cannot exceed max_retries")
        self.jobs[job_id] = updated
        if updated.status == "pending":
            self.pending.pop(job_id, None)
            self.pending[job_id] = None
        else:
            self.pending.pop(job_id, None)
        return updated.model_copy(deep=True)

    async def requeue_stale_jobs(self, *, older_than: datetime, limit: int, error: str) -> int:
        stale = sorted(
            (job for job in self.jobs.values() if job.status == "processing" and job.updated_at <= older_than),
            key=lambda job: job.updated_at,
        )[: max(1, limit)]
        for job in stale:
            retry_count = job.retry_count + 1
            if retry_count < job.max_retries:
                await self.update_job(job.id, {"status": "pending", "retry_count": retry_count})
            else:
                await self.update_job(
                    job.id,
                    {
                        "status": "failed",
                        "retry_count": retry_count,
                        "error": error,
                        "completed_at": _utcnow(),
                    },
                )
        return len(stale)

    async def get_github_connection(self, user_id: str) -> GitHubConnectionRecord | None:
        record = self.connections.get(user_id)
        return replace(record) if record else None

    async def upsert_github_connection(
        self,
        user_id: str,
        access_token: str,
        login: str | None = None,
    ) -> GitHubConnectionRecord:
        now = _utcnow()
        existing = self.connections.get(user_id)
        record = GitHubConnectionRecord(
            user_id=user_id,
            access_token=access_token,
            login=login,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self.connections[user_id] = record
        return replace(record)


class PostgresJobRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def create_job(
        self,
        user_id: str,
        job_type: JobType,
        payload: JobPayload,
        max_retries: int = 3,
    ) -> Job:
        _validate_max_retries(max_retries)
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            insert into jobs (
              id,
              user_id,
              type,
              payload,
              status,
              retry_count,
              max_retries,
              created_at,
              updated_at,
              pending_since
            )
            values ($1::uuid, $2, $3, $4::jsonb, 'pending', 0, $5, now(), now(), now())
            returning {JOB_COLUMNS}
            """,
            str(uuid4()),
            user_id,
            job_type,
            payload.model_dump_json(),
            max_retries,
        )
        return self._job_row_to_model(row)

    async def get_job(self, job_id: str) -> Job | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(f"select {JOB_COLUMNS} from jobs where id = $1::uuid", job_id)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return None
        return self._job_row_to_model(row) if row else None

    async def list_pending_jobs(self, limit: int) -> list[Job]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {JOB_COLUMNS}
            from jobs
            where status = 'pending'
            order by pending_since asc, created_at asc
            limit $1
            """,
            max(1, limit),
        )
        return [self._job_row_to_model(row) for row in rows]

    async def list_user_jobs(self, user_id: str, limit: int = 10) -> list[Job]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {JOB_COLUMNS}
            from jobs
            where user_id = $1
            order by created_at desc
            limit $2
            """,
            user_id,
            max(1, limit),
        )
        return [self._job_row_to_model(row) for row in rows]

    async def claim_job(self, job_id: str) -> Job | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            update jobs
            set
              status = 'processing',
              updated_at = now()
            where id = $1::uuid and status = 'pending'
            returning {JOB_COLUMNS}
            """,
            job_id,
        )
        return self._job_row_to_model(row) if row else None

    async def update_job(self, job_id: str, patch: dict[str, Any]) -> Job:
        _validate_patch(patch)
        assignments: list[str] = []
        values: list[Any] = [job_id]
        for field_name in sorted(patch):
            value = patch[field_name]
            values.append(json.dumps(value) if field_name == "result" and value is not None else value)
            cast = "::jsonb" if field_name == "result" else ""
            assignments.append(f"{field_name} = ${len(values)}{cast}")
        if patch.get("status") == "pending":
            assignments.append("pending_since = now()")
        assignments.append("updated_at = now()")

        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                try:
                    row = await conn.fetchrow(
                        f"""
                        update jobs
                        set {", ".join(assignments)}
                        where id = $1::uuid and status not in ('completed', 'failed')
                        returning {JOB_COLUMNS}
                        """,
                        *values,
                    )
                except pg_exc.CheckViolationError as exc:
                    raise RepositoryValidationError(str(exc)) from exc
                if row:
                    return self._job_row_to_model(row)

                exists = await conn.fetchval("select 1 from jobs where id = $1::uuid", job_id)
                if not exists:
                    raise RepositoryNotFoundError("job not found")
                raise RepositoryConflictError("job is already in a terminal state")

    async def requeue_stale_jobs(self, *, older_than: datetime, limit: int, error: str) -> int:
        pool = await self._get_pool()
        bounded_limit = max(1, min(limit, 1000))
        rows = await pool.fetch(
            """
            with stale as (
              select id
              from jobs
              where status = 'processing'
                and updated_at <= $1
              order by updated_at asc
              limit $2
              for update skip locked
            )
            update jobs j
            set
              retry_count = j.retry_count + 1,
              status = case when j.retry_count + 1 < j.max_retries then 'pending' else 'failed' end,
              error = case when j.retry_count + 1 < j.max_retries then null else $3 end,
              completed_at = case when j.retry_count + 1 < j.max_retries then null else now() end,
              pending_since = case when j.retry_count + 1 < j.max_retries then now() else j.pending_since end,
              updated_at = now()
            from stale s
            where j.id = s.id
            returning j.id::text as id
            """,
            older_than,
            bounded_limit,
            error,
        )
        return len(rows)

    async def get_github_connection(self, user_id: str) -> GitHubConnectionRecord | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select user_id, access_token, login, created_at, updated_at
            from github_connections
            where user_id = $1
            """,
            user_id,
        )
        return self._connection_row_to_record(row) if row else None

    async def upsert_github_connection(
        self,
        user_id: str,
        access_token: str,
        login: str | None = None,
    ) -> GitHubConnectionRecord:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            insert into github_connections (user_id, access_token, login)
            values ($1, $2, $3)
            on conflict (user_id) do update
            set
              access_token = excluded.access_token,
              login = coalesce(excluded.login, github_connections.login),
              updated_at = now()
            returning user_id, access_token, login, created_at, updated_at
            """,
            user_id,
            access_token,
            login,
        )
        return self._connection_row_to_record(row)

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("IR_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            async with pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc
        self._pool = pool
        return pool

    @staticmethod
    def _job_row_to_model(row: asyncpg.Record) -> Job:
        return Job.model_validate(
            {
                "id": row["id"],
                "user_id": row["user_id"],
                "type": row["type"],
                "payload": _coerce_json_dict(row["payload"]),
                "status": row["status"],
                "retry_count": row["retry_count"],
                "max_retries": row["max_retries"],
                "result": _coerce_json_dict(row["result"]) if row["result"] is not None else None,
                "error": row["error"],
                "created_at": row["created_at"],
                "updated_at": row["updated_at"],
                "completed_at": row["completed_at"],
            }
        )

    @staticmethod
    def _connection_row_to_record(row: asyncpg.Record) -> GitHubConnectionRecord:
        return GitHubConnectionRecord(
            user_id=row["user_id"],
            access_token=row["access_token"],
            login=row["login"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def _coerce_json_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return {}
    if isinstance(value, dict):
        return value
    return {}


JobRepository = PostgresJobRepository | InMemoryJobRepository


@lru_cache
def get_repository() -> JobRepository:
    settings = get_settings()
    if settings.job_store_backend == "memory":
        return InMemoryJobRepository()
    return PostgresJobRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
