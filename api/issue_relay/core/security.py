import hmac

from fastapi import Depends, Header, HTTPException, status

from issue_relay.core.auth import TRIGGER_SCOPES, USER_SCOPES, Principal, PrincipalType, parse_bearer_token
from issue_relay.core.config import Settings, get_settings
from issue_relay.services.github import (
    GitHubAuthError,
    GitHubClient,
    GitHubUnavailableError,
    get_github_client,
)


async def get_user_principal(
    github: GitHubClient = Depends(get_github_client),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="user auth requires a GitHub bearer token",
        )

    token = parse_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")

    try:
        user = await github.get_authenticated_user(token)
    except GitHubAuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except GitHubUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    user_id = user.get("id")
    if user_id is None or isinstance(user_id, bool):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    login = user.get("login")
    return Principal(
        principal_type=PrincipalType.HUMAN,
        subject=str(user_id),
        scopes=set(USER_SCOPES),
        login=login if isinstance(login, str) else None,
        access_token=token,
    )


async def get_trigger_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal | None:
    """Return the cron principal, or ``None`` when no shared secret is configured."""
    if not settings.cron_secret:
        return None

    token = parse_bearer_token(authorization)
    if not token or not hmac.compare_digest(token.encode("utf-8"), settings.cron_secret.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    return Principal(principal_type=PrincipalType.MACHINE, subject="cron", scopes=set(TRIGGER_SCOPES))
