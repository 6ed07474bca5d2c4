"""Upload routes."""

from typing import Annotated

from fastapi import APIRouter, Depends

from quizmint.api.deps import get_app_settings, get_storage
from quizmint.config import Settings
from quizmint.responses import success_response
from quizmint.schemas.auth import CreateSignedUrlRequest
from quizmint.services import upload as upload_service
from quizmint.storage import StorageClientBase

router = APIRouter()


@router.post("/uploads/signed-url")
def create_signed_url(
    body: CreateSignedUrlRequest,
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> dict:
    """Presigned PUT URL for uploading a PDF or Word document."""
    result = upload_service.create_signed_url(
        body.content_type, storage=storage, expires_in=settings.signed_url_expiry_s
    )
    return success_response(result.model_dump(mode="json"))
