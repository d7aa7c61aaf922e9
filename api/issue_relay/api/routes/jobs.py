import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from issue_relay.core.auth import Principal
from issue_relay.core.config import Settings, get_settings
from issue_relay.core.ratelimit import RateLimiter, enforce_rate_limit, get_rate_limiter, rate_limit
from issue_relay.core.security import get_trigger_principal, get_user_principal
from issue_relay.jobs.context import JobContext
from issue_relay.jobs.processor import JobProcessor
from issue_relay.schemas.jobs import JobAccepted, JobCreateRequest, JobStatusOut, ProcessJobsOut
from issue_relay.services.github import GitHubClient, get_github_client
from issue_relay.services.llm import LLMClient, get_llm_client
from issue_relay.services.repository import (
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def get_job_processor(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    github: GitHubClient = Depends(get_github_client),
    llm: LLMClient = Depends(get_llm_client),
) -> JobProcessor:
    context = JobContext(
        repository=repository,
        github=github,
        llm=llm,
        publish_max_attempts=settings.publish_max_attempts,
        publish_initial_delay_seconds=settings.publish_initial_delay_seconds,
    )
    return JobProcessor(context, stale_after_seconds=settings.job_stale_after_seconds)


@router.post(
    "",
    response_model=JobAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(rate_limit("jobs"))],
)
async def create_job(
    payload: JobCreateRequest,
    principal: Principal = Depends(get_user_principal),
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> JobAccepted:
    try:
        principal.require_scopes({"jobs:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        if principal.access_token:
            await repository.upsert_github_connection(principal.subject, principal.access_token, principal.login)
        job = await repository.create_job(
            principal.subject,
            payload.type,
            payload.payload,
            max_retries=settings.job_max_retries,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    logger.info("job created id=%s type=%s user_id=%s", job.id, job.type, job.user_id)
    return JobAccepted(job_id=job.id, status=job.status)


@router.get("", response_model=list[JobStatusOut])
async def list_jobs(
    principal: Principal = Depends(get_user_principal),
    repository=Depends(get_repository),
    limit: int = Query(default=10, ge=1, le=100),
) -> list[JobStatusOut]:
    try:
        principal.require_scopes({"jobs:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        jobs = await repository.list_user_jobs(principal.subject, limit=limit)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [JobStatusOut(**job.model_dump(include=set(JobStatusOut.model_fields))) for job in jobs]


async def _run_processor(
    request: Request,
    response: Response,
    principal: Principal | None,
    processor: JobProcessor,
    limiter: RateLimiter,
    settings: Settings,
) -> ProcessJobsOut:
    if principal is None:
        # No shared secret configured: the trigger is public, so throttle it.
        enforce_rate_limit(
            request,
            response,
            limiter,
            scope="trigger",
            limit=settings.trigger_rate_limit_per_hour,
            window_seconds=settings.rate_limit_window_seconds,
        )
    else:
        try:
            principal.require_scopes({"jobs:process"})
        except PermissionError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        processed_count = await processor.process_pending_jobs(settings.job_batch_size)
    except RepositoryUnavailableError as exc:
        logger.exception("job processing aborted: store unavailable")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    logger.info("job processing run finished processed_count=%s", processed_count)
    return ProcessJobsOut(success=True, processed_count=processed_count)


@router.post("/process", response_model=ProcessJobsOut)
async def process_jobs(
    request: Request,
    response: Response,
    principal: Principal | None = Depends(get_trigger_principal),
    processor: JobProcessor = Depends(get_job_processor),
    limiter: RateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_settings),
) -> ProcessJobsOut:
    return await _run_processor(request, response, principal, processor, limiter, settings)


@router.get("/process", response_model=ProcessJobsOut)
async def process_jobs_manual(
    request: Request,
    response: Response,
    principal: Principal | None = Depends(get_trigger_principal),
    processor: JobProcessor = Depends(get_job_processor),
    limiter: RateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_settings),
) -> ProcessJobsOut:
    return await _run_processor(request, response, principal, processor, limiter, settings)


@router.get("/{job_id}", response_model=JobStatusOut)
async def get_job(
    job_id: str,
    principal: Principal = Depends(get_user_principal),
    repository=Depends(get_repository),
) -> JobStatusOut:
    try:
        principal.require_scopes({"jobs:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        job = await repository.get_job(job_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="job not found")
    if job.user_id != principal.subject:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="job belongs to another user")

    return JobStatusOut(
        id=job.id,
        status=job.status,
        result=job.result,
        error=job.error,
        created_at=job.created_at,
        completed_at=job.completed_at,
    )
