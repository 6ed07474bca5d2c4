"""Direct-to-storage upload signing."""

from quizmint.errors import ApiError, ApiErrorCode
from quizmint.logging import get_logger
from quizmint.schemas.auth import SignedUrlOut
from quizmint.services.extraction import ALLOWED_CONTENT_TYPES
from quizmint.storage import StorageClientBase, StorageError, new_upload_key

logger = get_logger(__name__)

DEFAULT_EXPIRY_S = 3600


def create_signed_url(
    content_type: str,
    *,
    storage: StorageClientBase,
    expires_in: int = DEFAULT_EXPIRY_S,
) -> SignedUrlOut:
    """Presigned PUT URL for a new upload under a fresh key.

    Raises:
        ApiError(E_INVALID_CONTENT_TYPE): Not a PDF or Word document.
        ApiError(E_SIGN_UPLOAD_FAILED): Storage refused to sign.
    """
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ApiError(ApiErrorCode.E_INVALID_CONTENT_TYPE, "Document type is not supported")

    key = new_upload_key()
    try:
        signed = storage.sign_upload(key, content_type=content_type, expires_in=expires_in)
    except StorageError as e:
        raise ApiError(ApiErrorCode.E_SIGN_UPLOAD_FAILED, "Could not prepare the upload") from e

    logger.info("upload_signed", key=key, content_type=content_type)
    return SignedUrlOut(signed_url=signed.url, key=signed.key)
