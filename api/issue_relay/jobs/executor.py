from __future__ import annotations

from typing import assert_never

from issue_relay.jobs.context import JobContext, JobOutcome
from issue_relay.jobs.issues import execute_create_and_publish_issue
from issue_relay.schemas.jobs import CreateAndPublishIssuePayload, Job


async def execute_job(job: Job, *, context: JobContext) -> JobOutcome:
    match job.payload:
        case CreateAndPublishIssuePayload():
            return await execute_create_and_publish_issue(job, job.payload, context=context)
        case _:
            assert_never(job.payload)
