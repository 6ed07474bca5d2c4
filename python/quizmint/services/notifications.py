"""OCR completion notifications (SNS -> /webhooks/textract).

SNS wraps each notification in an envelope whose ``Message`` is the
Textract payload as a JSON string; with raw message delivery enabled the
payload arrives bare. Both are accepted. A subscription confirmation is
answered by fetching its SubscribeURL.
"""

import json
from urllib.parse import urlparse

import httpx
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from quizmint.errors import ApiError, ApiErrorCode
from quizmint.logging import get_logger
from quizmint.schemas.webhooks import OcrCompletion, SnsEnvelope
from quizmint.services.card_sets import complete_ocr
from quizmint.services.ocr import OcrClientBase

logger = get_logger(__name__)

SUBSCRIPTION_CONFIRMATION = "SubscriptionConfirmation"
NOTIFICATION = "Notification"


def _is_sns_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme == "https" and (parsed.hostname or "").endswith(".amazonaws.com")


async def _confirm_subscription(client: httpx.AsyncClient, url: str | None) -> None:
    if not url or not _is_sns_url(url):
        raise ApiError(ApiErrorCode.E_INVALID_REQUEST, "Invalid subscription URL")
    try:
        response = await client.get(url, timeout=10.0)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("sns_subscription_confirm_failed", error=str(e))
        raise ApiError(ApiErrorCode.E_UPSTREAM_ERROR, "Could not confirm subscription") from e
    logger.info("sns_subscription_confirmed")


def _parse(body: bytes) -> tuple[str | None, dict]:
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        raise ApiError(ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body") from e
    if not isinstance(payload, dict):
        raise ApiError(ApiErrorCode.E_INVALID_REQUEST, "Invalid notification")
    if "Type" not in payload:
        return None, payload
    try:
        return payload["Type"], SnsEnvelope.model_validate(payload).model_dump()
    except ValidationError as e:
        raise ApiError(ApiErrorCode.E_INVALID_REQUEST, "Invalid notification") from e


async def handle_ocr_notification(
    db: Session,
    body: bytes,
    *,
    ocr: OcrClientBase,
    http_client: httpx.AsyncClient,
) -> str | None:
    """Route one SNS delivery.

    Returns:
        The OCR job id that was applied, None for subscription traffic.

    Raises:
        ApiError(E_INVALID_REQUEST): Unparseable payload.
    """
    message_type, payload = _parse(body)

    if message_type == SUBSCRIPTION_CONFIRMATION:
        await _confirm_subscription(http_client, payload.get("subscribe_url"))
        return None
    if message_type is not None and message_type != NOTIFICATION:
        logger.info("sns_message_ignored", message_type=message_type)
        return None

    raw = payload.get("message") if message_type == NOTIFICATION else payload
    try:
        if isinstance(raw, str):
            notification = OcrCompletion.model_validate_json(raw)
        else:
            notification = OcrCompletion.model_validate(raw)
    except ValidationError as e:
        logger.error("ocr_notification_invalid", error=str(e))
        raise ApiError(ApiErrorCode.E_INVALID_REQUEST, "Invalid OCR notification") from e

    # Paging through OCR results is blocking I/O
    await run_in_threadpool(complete_ocr, db, notification.job_id, notification.status, ocr=ocr)
    return notification.job_id
