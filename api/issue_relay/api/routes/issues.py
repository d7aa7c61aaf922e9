import logging

from fastapi import APIRouter, Depends, HTTPException, status

from issue_relay.core.auth import Principal
from issue_relay.core.config import Settings, get_settings
from issue_relay.core.ratelimit import rate_limit
from issue_relay.core.security import get_user_principal
from issue_relay.schemas.issues import IssuePublished, IssuePublishRequest
from issue_relay.services.github import GitHubClient, get_github_client
from issue_relay.services.retry import perform_with_retry

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "",
    response_model=IssuePublished,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("issues"))],
)
async def publish_issue(
    payload: IssuePublishRequest,
    principal: Principal = Depends(get_user_principal),
    github: GitHubClient = Depends(get_github_client),
    settings: Settings = Depends(get_settings),
) -> IssuePublished:
    try:
        principal.require_scopes({"issues:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.access_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="GitHub not connected")
    access_token = principal.access_token

    result = await perform_with_retry(
        lambda: github.create_issue(
            access_token=access_token,
            repository=payload.repository,
            title=payload.title,
            body=payload.body,
            labels=payload.labels,
            assignees=payload.assignees,
        ),
        max_attempts=settings.publish_max_attempts,
        initial_delay_seconds=settings.publish_initial_delay_seconds,
    )
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)

    data = result.data or {}
    logger.info("issue published repository=%s number=%s", payload.repository, data.get("issue_number"))
    return IssuePublished(issue_url=data["issue_url"], issue_number=data["issue_number"])
