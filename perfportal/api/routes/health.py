from fastapi import APIRouter

from perfportal import __version__
from perfportal.core.config import settings

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Liveness probe")
def healthcheck() -> dict[str, str]:
    return {"status": "ok", "version": __version__, "environment": settings.environment}
