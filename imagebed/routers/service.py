import os
import subprocess  # nosec B404
from functools import lru_cache

from fastapi import APIRouter, Request

from imagebed.schemas.service import HealthResponse, VersionResponse
from imagebed.settings import settings

router = APIRouter(tags=["service"])
version_router = APIRouter(tags=["service"])


@lru_cache(maxsize=1)
def _git_sha() -> str:
    try:
        return (
            subprocess.check_output(  # nosec
                ["git", "rev-parse", "--short", "HEAD"],
                stderr=subprocess.DEVNULL,
            )
            .decode()
            .strip()
        )
    except Exception:
        return "unknown"


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    store = getattr(request.app.state, "upload_store", None)
    return HealthResponse(
        status="ok",
        version=settings.app_version,
        uploading=store.snapshot.is_uploading if store else False,
        in_flight=store.scheduler.in_flight if store else 0,
    )


@version_router.get("/version", response_model=VersionResponse)
async def get_version() -> VersionResponse:
    return VersionResponse(
        name=settings.app_name,
        version=settings.app_version,
        git_sha=_git_sha(),
        build_time=os.environ.get("BUILD_TIME", "unknown"),
    )
