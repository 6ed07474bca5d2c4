"""Card set routes.

Routes are transport-only:
- Take the viewer from request.state
- Call exactly one service function
- Return success(...) or raise ApiError

No domain logic or raw DB access in routes.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from quizmint.api.deps import (
    get_app_settings,
    get_db,
    get_lock_policy,
    get_ocr,
    get_rate_limiter,
    get_scheduler,
    get_storage,
)
from quizmint.auth.middleware import Viewer, get_viewer
from quizmint.config import Settings
from quizmint.responses import success_response
from quizmint.schemas.card_set import CreateCardSetRequest, CreateSubmissionRequest
from quizmint.services import card_sets as card_sets_service
from quizmint.services import submissions as submissions_service
from quizmint.services.jobs import JobScheduler
from quizmint.services.ocr import OcrClientBase
from quizmint.services.rate_limit import RateLimiter
from quizmint.services.resolver import PreviewLockPolicy
from quizmint.storage import StorageClientBase

router = APIRouter()


@router.get("/card-sets")
def list_card_sets(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """The viewer's card sets, newest first. Empty for anonymous callers."""
    result = card_sets_service.find_all(db, viewer)
    return success_response([item.model_dump(mode="json") for item in result])


@router.post("/card-sets", status_code=201)
def create_card_set(
    body: CreateCardSetRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    ocr: Annotated[OcrClientBase, Depends(get_ocr)],
    rate_limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> dict:
    """Create a card set from an uploaded document."""
    result = card_sets_service.create_card_set(
        db,
        viewer,
        body.file_key,
        body.title,
        storage=storage,
        ocr=ocr,
        rate_limiter=rate_limiter,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/card-sets/{card_set_id}")
def get_card_set(
    card_set_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    lock_policy: Annotated[PreviewLockPolicy, Depends(get_lock_policy)],
    submission_id: Annotated[UUID | None, Query()] = None,
) -> dict:
    """Resolved card set, scored against a submission when there is one."""
    result = card_sets_service.find_one(
        db, viewer, card_set_id, submission_id, lock_policy=lock_policy
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/card-sets/{card_set_id}/recreate", status_code=201)
def recreate_card_set(
    card_set_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = card_sets_service.recreate_card_set(db, viewer, card_set_id)
    return success_response(result.model_dump(mode="json"))


@router.post("/card-sets/{card_set_id}/prepare")
async def prepare_card_set(
    card_set_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    scheduler: Annotated[JobScheduler, Depends(get_scheduler)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> dict:
    """Start question generation, redeeming the viewer's tokens if enough."""
    result = await card_sets_service.prepare_card_set(
        db,
        viewer,
        card_set_id,
        scheduler=scheduler,
        lock_wait_ms=settings.ledger_lock_wait_ms,
        timeout_ms=settings.ledger_timeout_ms,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/card-sets/{card_set_id}/unlock")
def unlock_card_set(
    card_set_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> dict:
    result = card_sets_service.unlock_card_set(
        db,
        viewer,
        card_set_id,
        lock_wait_ms=settings.ledger_lock_wait_ms,
        timeout_ms=settings.ledger_timeout_ms,
    )
    return success_response(result.model_dump(mode="json", exclude_none=True))


@router.post("/card-sets/{card_set_id}/submissions", status_code=201)
def create_submission(
    card_set_id: UUID,
    body: CreateSubmissionRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    lock_policy: Annotated[PreviewLockPolicy, Depends(get_lock_policy)],
) -> dict:
    """Submit answers; returns the card set scored against them."""
    result = submissions_service.create_submission(
        db,
        viewer,
        card_set_id,
        [answer.option_id for answer in body.answers],
        lock_policy=lock_policy,
    )
    return success_response(result.model_dump(mode="json"))
