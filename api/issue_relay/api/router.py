from fastapi import APIRouter

from issue_relay.api.routes import health, issues, jobs, titles

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
api_router.include_router(issues.router, prefix="/issues", tags=["issues"])
api_router.include_router(titles.router, prefix="/titles", tags=["titles"])
