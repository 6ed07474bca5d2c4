"""Inbound webhook routes.

These endpoints are called by other services, never by the browser, and
authenticate the caller by signature instead of by session:
- /webhooks/question-builder: scheduled-message delivery of a generation job
- /webhooks/stripe: payment processor events
- /webhooks/textract: OCR job completion via SNS
"""

from typing import Annotated

import httpx
from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from quizmint.api.deps import (
    get_app_settings,
    get_completion,
    get_db,
    get_http_client,
    get_identity_provider,
    get_ocr,
    get_payment_gateway,
    get_scheduler,
    get_signature_verifier,
)
from quizmint.auth.identity import IdentityProviderBase
from quizmint.config import Settings
from quizmint.errors import ApiError, ApiErrorCode
from quizmint.logging import configure_task_logging
from quizmint.responses import success_response
from quizmint.schemas.jobs import GenerationJob
from quizmint.services import billing as billing_service
from quizmint.services.generation import run_generation_step
from quizmint.services.jobs import JobScheduler
from quizmint.services.llm import CompletionClient
from quizmint.services.notifications import handle_ocr_notification
from quizmint.services.ocr import OcrClientBase
from quizmint.services.payments import PaymentGatewayBase
from quizmint.services.signature import SIGNATURE_HEADER, SignatureVerifier

router = APIRouter()

MESSAGE_ID_HEADER = "Upstash-Message-Id"
STRIPE_SIGNATURE_HEADER = "Stripe-Signature"


@router.post("/webhooks/question-builder")
async def question_builder(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
    verifier: Annotated[SignatureVerifier, Depends(get_signature_verifier)],
    completion: Annotated[CompletionClient, Depends(get_completion)],
    scheduler: Annotated[JobScheduler, Depends(get_scheduler)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> dict:
    """Run one generation step.

    Expected failures are absorbed into the outcome and answered with 200;
    only unexpected errors return 5xx, which makes the sender redeliver.
    """
    body = await request.body()
    verifier.verify(request.headers.get(SIGNATURE_HEADER), body, settings.question_builder_url)

    try:
        job = GenerationJob.model_validate_json(body)
    except ValidationError as e:
        raise ApiError(ApiErrorCode.E_INVALID_REQUEST, "Invalid job body") from e

    configure_task_logging(
        request_id=getattr(request.state, "request_id", None),
        task_name="build_questions",
        task_id=request.headers.get(MESSAGE_ID_HEADER),
    )
    result = await run_generation_step(
        db,
        job,
        completion=completion,
        scheduler=scheduler,
        retry_delay_s=settings.overload_retry_delay_s,
    )
    return success_response(
        {"outcome": result.outcome.value, "question_count": result.question_count}
    )


@router.post("/webhooks/stripe")
async def stripe_events(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
    gateway: Annotated[PaymentGatewayBase, Depends(get_payment_gateway)],
    identity_provider: Annotated[IdentityProviderBase, Depends(get_identity_provider)],
) -> dict:
    # The signature covers the raw body; the processor and identity calls block
    body = await request.body()
    event_type = await run_in_threadpool(
        billing_service.handle_payment_webhook,
        db,
        body,
        request.headers.get(STRIPE_SIGNATURE_HEADER),
        gateway=gateway,
        identity_provider=identity_provider,
    )
    return success_response({"received": True, "type": event_type})


@router.post("/webhooks/textract")
async def textract_events(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
    ocr: Annotated[OcrClientBase, Depends(get_ocr)],
    http_client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> dict:
    body = await request.body()
    job_id = await handle_ocr_notification(db, body, ocr=ocr, http_client=http_client)
    return success_response({"job_id": job_id})
