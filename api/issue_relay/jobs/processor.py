"""Batch-pull job processing.

Each call to ``process_pending_jobs`` is one bounded, sequential pass over the
oldest pending jobs. Nothing survives between calls except what is written to
the job store, so every claimed job is left in a well-defined state before the
call returns. Jobs go back to ``pending`` for job-level retries and are picked
up by a later pass.
"""

from __future__ import annotations

from collections.abc import Awaitable
from datetime import datetime, timezone
import logging

from opentelemetry import trace

from issue_relay.core.telemetry import bind_job_id
from issue_relay.jobs.context import JobContext, JobOutcome
from issue_relay.jobs.executor import execute_job
from issue_relay.jobs.stale import STALE_JOB_ERROR, stale_cutoff
from issue_relay.schemas.jobs import Job
from issue_relay.services.repository import JobRepository, RepositoryConflictError, RepositoryUnavailableError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MAX_RETRIES_ERROR = "Max retries exceeded"


class JobProcessor:
    def __init__(self, context: JobContext, *, stale_after_seconds: float = 600.0) -> None:
        self.context = context
        self.stale_after_seconds = stale_after_seconds

    @property
    def repository(self) -> JobRepository:
        return self.context.repository

    async def process_pending_jobs(self, batch_size: int = 5) -> int:
        with tracer.start_as_current_span("processor.run") as span:
            requeued = await self.repository.requeue_stale_jobs(
                older_than=stale_cutoff(self.stale_after_seconds),
                limit=max(1, batch_size),
                error=STALE_JOB_ERROR,
            )
            if requeued:
                logger.warning("requeued stale processing jobs: %s", requeued)

            jobs = await self.repository.list_pending_jobs(max(1, batch_size))
            processed = 0
            for job in jobs:
                claimed = await self.repository.claim_job(job.id)
                if claimed is None:
                    logger.info("job already claimed by another run id=%s", job.id)
                    continue
                processed += 1
                await self._process_job(claimed)

            span.set_attribute("jobs.requeued", requeued)
            span.set_attribute("jobs.processed", processed)
            return processed

    async def _process_job(self, job: Job) -> None:
        with bind_job_id(job.id), tracer.start_as_current_span("processor.process_job") as job_span:
            job_span.set_attribute("job.id", job.id)
            job_span.set_attribute("job.type", job.type)
            logger.info("processing job id=%s type=%s attempt=%s", job.id, job.type, job.retry_count + 1)
            try:
                outcome = await execute_job(job, context=self.context)
            except RepositoryUnavailableError:
                raise
            except Exception as exc:
                logger.exception("job execution failed for id=%s", job.id)
                job_span.record_exception(exc)
                await self._record(self._record_unexpected_failure(job), job)
                return

            job_span.set_attribute("job.status", outcome.status)
            await self._record(self._record_outcome(job, outcome), job)

    async def _record(self, update: Awaitable[None], job: Job) -> None:
        try:
            await update
        except RepositoryConflictError:
            # An overlapping run already settled this job; its state wins.
            logger.warning("job settled by another run; dropping result id=%s", job.id)

    async def _record_outcome(self, job: Job, outcome: JobOutcome) -> None:
        completed_at = datetime.now(timezone.utc)
        if outcome.status == "completed":
            await self.repository.update_job(
                job.id,
                {"status": "completed", "result": outcome.result or {}, "completed_at": completed_at},
            )
            logger.info("job completed id=%s", job.id)
            return

        await self.repository.update_job(
            job.id,
            {"status": "failed", "error": outcome.error or "Job failed", "completed_at": completed_at},
        )
        logger.info("job failed id=%s error=%s", job.id, outcome.error)

    async def _record_unexpected_failure(self, job: Job) -> None:
        retry_count = job.retry_count + 1
        if retry_count < job.max_retries:
            await self.repository.update_job(job.id, {"status": "pending", "retry_count": retry_count})
            logger.info("job requeued id=%s retry_count=%s/%s", job.id, retry_count, job.max_retries)
            return

        await self.repository.update_job(
            job.id,
            {
                "status": "failed",
                "retry_count": retry_count,
                "error": MAX_RETRIES_ERROR,
                "completed_at": datetime.now(timezone.utc),
            },
        )
        logger.info("job exhausted retries id=%s retry_count=%s", job.id, retry_count)
