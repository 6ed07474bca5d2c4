"""Probes for the load balancer and the container orchestrator."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from quizmint.api.deps import get_app_settings, get_db
from quizmint.config import Settings
from quizmint.db.session import ping
from quizmint.errors import ApiError, ApiErrorCode
from quizmint.responses import success_response

router = APIRouter()


@router.get("/health")
async def liveness() -> dict:
    """200 while the process serves requests. Touches nothing else."""
    return success_response({"status": "ok"})


@router.get("/health/ready")
def readiness(
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> dict:
    """503 until the database answers."""
    if not ping(db):
        raise ApiError(ApiErrorCode.E_DATABASE_UNAVAILABLE, "Database unavailable")
    return success_response(
        {"status": "ok", "database": "ok", "job_transport": settings.job_transport.value}
    )
