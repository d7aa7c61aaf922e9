from __future__ import annotations

import logging

from issue_relay.jobs.context import JobContext, JobOutcome
from issue_relay.schemas.jobs import CreateAndPublishIssuePayload, Job
from issue_relay.services.retry import perform_with_retry
from issue_relay.services.titles import resolve_title

logger = logging.getLogger(__name__)


class GitHubNotConnectedError(Exception):
    """Raised when the job owner has no stored GitHub token."""


async def execute_create_and_publish_issue(
    job: Job,
    payload: CreateAndPublishIssuePayload,
    *,
    context: JobContext,
) -> JobOutcome:
    content = payload.generated_content
    if content is None:
        content = await context.llm.generate_issue_content(payload.prompt)

    # Derived from the prompt; generated markdown opens with section headings.
    title = resolve_title(payload.prompt, payload.title).title

    connection = await context.repository.get_github_connection(job.user_id)
    if connection is None:
        raise GitHubNotConnectedError("GitHub not connected")

    labels = [content.summary.type] if content.summary.type else []
    publish = await perform_with_retry(
        lambda: context.github.create_issue(
            access_token=connection.access_token,
            repository=payload.repository,
            title=title,
            body=content.markdown,
            labels=labels,
        ),
        max_attempts=context.publish_max_attempts,
        initial_delay_seconds=context.publish_initial_delay_seconds,
        sleep=context.sleep,
    )

    if not publish.success:
        logger.info(
            "issue publish failed job_id=%s repository=%s error=%s",
            job.id,
            payload.repository,
            publish.error,
        )
        return JobOutcome.failed(publish.error or "Failed to publish to GitHub")

    data = publish.data or {}
    return JobOutcome.completed(
        {
            "issue_url": data.get("issue_url"),
            "issue_number": data.get("issue_number"),
            "repository": payload.repository,
            "title": title,
        }
    )
