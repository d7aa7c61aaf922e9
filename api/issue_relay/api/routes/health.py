from fastapi import APIRouter, Depends

from issue_relay.core.config import Settings, get_settings

router = APIRouter()


@router.get("/")
async def root(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    return {"service": settings.app_name, "status": "ok"}


@router.get("/healthz")
async def healthz(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    # Liveness only; the job store is not probed.
    return {"status": "ok", "job_store": settings.job_store_backend}
