"""Billing routes.

Routes are transport-only: each calls exactly one service function.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from quizmint.api.deps import (
    get_app_settings,
    get_db,
    get_identity_provider,
    get_payment_gateway,
)
from quizmint.auth.identity import IdentityProviderBase
from quizmint.auth.middleware import Viewer, get_viewer
from quizmint.config import Settings
from quizmint.responses import success_response
from quizmint.schemas.billing import CreateCheckoutSessionRequest
from quizmint.services import billing as billing_service
from quizmint.services.payments import PaymentGatewayBase

router = APIRouter()


@router.post("/billing/checkout-sessions")
def create_checkout_session(
    body: CreateCheckoutSessionRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    gateway: Annotated[PaymentGatewayBase, Depends(get_payment_gateway)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> dict:
    """Open a hosted checkout. Anonymous buyers are identified by email later."""
    result = billing_service.create_checkout_session(
        viewer, body, gateway=gateway, min_quantity=settings.min_token_purchase
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/billing/checkout-sessions/status")
def checkout_session_status(
    rid: Annotated[str, Query(min_length=1, max_length=64)],
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    identity_provider: Annotated[IdentityProviderBase, Depends(get_identity_provider)],
) -> dict:
    result = billing_service.checkout_session_status(
        db, viewer, rid, identity_provider=identity_provider
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/billing/payments")
def list_payments(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = billing_service.find_all_payments(db, viewer)
    return success_response([p.model_dump(mode="json") for p in result])


@router.post("/billing/payments/{payment_id}/refund")
def refund_payment(
    payment_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    gateway: Annotated[PaymentGatewayBase, Depends(get_payment_gateway)],
) -> dict:
    """Refund a payment made less than 24 hours ago, with everything it funded."""
    result = billing_service.refund_payment(db, viewer, payment_id, gateway=gateway)
    return success_response(result.model_dump(mode="json"))


@router.get("/billing/tokens")
def available_tokens(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = billing_service.available_token_count(db, viewer)
    return success_response(result.model_dump(mode="json"))
