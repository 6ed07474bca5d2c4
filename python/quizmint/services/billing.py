"""Billing service layer.

Checkout happens on the payment processor's hosted page. The tokens are
minted only when the processor's webhook confirms the payment, so the
checkout-status endpoint polls for the Payment row by reconciliation id.

Refunds can start from either side: refund_payment() issues one for the
owner, and the charge.refunded webhook covers refunds issued from the
processor's dashboard. ledger.refund() is idempotent, so whichever lands
second is a no-op.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import httpx
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from quizmint.auth.identity import IdentityProviderBase, IdentityUnavailableError
from quizmint.auth.middleware import Viewer
from quizmint.db.models import Payment, Token, User, utcnow
from quizmint.errors import ApiError, ApiErrorCode, ForbiddenError
from quizmint.logging import get_logger
from quizmint.schemas.billing import (
    CheckoutSessionOut,
    CheckoutSessionStatusOut,
    CheckoutStatus,
    CreateCheckoutSessionRequest,
    PaymentOut,
    RefundResponse,
    RequireLogin,
    TokenBalanceOut,
)
from quizmint.schemas.webhooks import CheckoutMetadata
from quizmint.services import ledger
from quizmint.services.payments import (
    PaymentGatewayBase,
    PaymentGatewayError,
    WebhookSignatureError,
)

logger = get_logger(__name__)

DEFAULT_MIN_TOKEN_PURCHASE = 5

CHECKOUT_COMPLETED = "checkout.session.completed"
CHARGE_REFUNDED = "charge.refunded"


def create_checkout_session(
    viewer: Viewer,
    request: CreateCheckoutSessionRequest,
    *,
    gateway: PaymentGatewayBase,
    min_quantity: int = DEFAULT_MIN_TOKEN_PURCHASE,
) -> CheckoutSessionOut:
    """Open a hosted checkout for ``quantity`` tokens.

    The success URL carries ``success=1`` and the reconciliation id, which
    the client polls with checkout_session_status().

    Raises:
        ApiError(E_INVALID_REQUEST): Quantity below the minimum purchase.
        ApiError(E_UPSTREAM_ERROR): The processor rejected the session.
    """
    if request.quantity < min_quantity:
        raise ApiError(
            ApiErrorCode.E_INVALID_REQUEST, f"At least {min_quantity} tokens must be purchased"
        )

    reconciliation_id = uuid4().hex
    success_url = httpx.URL(str(request.next_url)).copy_merge_params(
        {"success": "1", "rid": reconciliation_id}
    )

    try:
        session = gateway.create_checkout_session(
            price=request.price,
            quantity=request.quantity,
            min_quantity=request.quantity,
            success_url=str(success_url),
            cancel_url=str(request.cancel_url),
            reconciliation_id=reconciliation_id,
            customer_email=viewer.email,
        )
    except PaymentGatewayError as e:
        raise ApiError(ApiErrorCode.E_UPSTREAM_ERROR, "Could not start checkout") from e

    logger.info("checkout_session_created", reconciliation_id=reconciliation_id)
    return CheckoutSessionOut(url=session.url)


def checkout_session_status(
    db: Session,
    viewer: Viewer,
    reconciliation_id: str,
    *,
    identity_provider: IdentityProviderBase,
) -> CheckoutSessionStatusOut:
    payment = db.scalar(select(Payment).where(Payment.reconciliation_id == reconciliation_id))
    if payment is None:
        return CheckoutSessionStatusOut(status=CheckoutStatus.UNPAID)

    require_login = None
    if viewer.is_anonymous:
        user = db.get(User, payment.user_id)
        email = user.email if user is not None else None
        if email is None:
            try:
                email = identity_provider.get_user_email(payment.user_id)
            except IdentityUnavailableError as e:
                raise ApiError(
                    ApiErrorCode.E_AUTH_UNAVAILABLE, "Sign-in service unavailable"
                ) from e
        if email is not None:
            require_login = RequireLogin(email=email)

    return CheckoutSessionStatusOut(status=CheckoutStatus.PAID, require_login=require_login)


def refund_payment(
    db: Session,
    viewer: Viewer,
    payment_id: str,
    *,
    gateway: PaymentGatewayBase,
    now: datetime | None = None,
) -> RefundResponse:
    """Refund one of the viewer's payments and everything it funded.

    Raises:
        ForbiddenError: Missing payment, or someone else's.
        ApiError(E_REFUND_WINDOW_CLOSED): The payment is 24 hours old or more.
        ApiError(E_UPSTREAM_ERROR): The processor call failed; nothing changed.
    """
    payment = db.get(Payment, payment_id)
    if payment is None or payment.user_id != viewer.user_id:
        raise ForbiddenError(message="You don't have the permissions to refund this transaction")

    if payment.refunded_at is not None:
        return RefundResponse(success=True)

    if not ledger.can_refund(payment, now):
        raise ApiError(
            ApiErrorCode.E_REFUND_WINDOW_CLOSED,
            "The refunds can be processed within the first 24 hours",
        )

    try:
        amounts = gateway.payment_amounts(payment_id)
        refund = gateway.create_refund(
            payment_id, ledger.refundable_amount(payment, gross=amounts.gross, net=amounts.net)
        )
    except PaymentGatewayError as e:
        logger.error("payment_refund_failed", payment_id=payment_id, error=str(e))
        raise ApiError(
            ApiErrorCode.E_UPSTREAM_ERROR, "Error communicating with the payment processor"
        ) from e

    ledger.refund(
        db, payment_id, refunded_amount=refund.amount, refunded_at=refund.created_at
    )
    return RefundResponse(success=True)


def find_all_payments(
    db: Session, viewer: Viewer, now: datetime | None = None
) -> list[PaymentOut]:
    if viewer.is_anonymous:
        return []

    now = now or utcnow()
    token_counts = (
        select(Token.payment_id, func.count(Token.id).label("tokens"))
        .group_by(Token.payment_id)
        .subquery()
    )
    stmt = (
        select(Payment, func.coalesce(token_counts.c.tokens, 0))
        .outerjoin(token_counts, token_counts.c.payment_id == Payment.id)
        .where(Payment.user_id == viewer.user_id)
        .order_by(Payment.created_at.desc())
    )
    return [
        PaymentOut(
            id=payment.id,
            amount=payment.amount,
            created_at=payment.created_at,
            refunded_at=payment.refunded_at,
            tokens=tokens,
            can_refund=ledger.can_refund(payment, now),
        )
        for payment, tokens in db.execute(stmt).all()
    ]


def available_token_count(db: Session, viewer: Viewer) -> TokenBalanceOut:
    if viewer.is_anonymous:
        return TokenBalanceOut(available=0)
    return TokenBalanceOut(available=ledger.available_count(db, viewer.user_id))


# =============================================================================
# Processor webhook
# =============================================================================


def _handle_checkout_completed(
    db: Session,
    session: dict[str, Any],
    *,
    gateway: PaymentGatewayBase,
    identity_provider: IdentityProviderBase,
) -> None:
    payment_id = session.get("payment_intent")
    reconciliation_id = session.get("client_reference_id")
    if not reconciliation_id or not payment_id:
        logger.warning("checkout_missing_reconciliation_id", payment_id=payment_id)
        return

    try:
        item = gateway.first_line_item(session["id"])
    except PaymentGatewayError as e:
        raise ApiError(ApiErrorCode.E_UPSTREAM_ERROR, "Could not read checkout line items") from e
    if item is None:
        logger.warning("checkout_missing_line_item", payment_id=payment_id)
        return

    email = (session.get("customer_details") or {}).get("email") or session.get("customer_email")
    if not email:
        raise ApiError(ApiErrorCode.E_INTERNAL, "Couldn't create or find the user for payment")

    try:
        metadata = CheckoutMetadata.model_validate(session.get("metadata") or {})
    except ValidationError as e:
        logger.error("checkout_metadata_invalid", payment_id=payment_id, error=str(e))
        raise ApiError(ApiErrorCode.E_INTERNAL, "Incorrect checkout metadata") from e

    try:
        user_id = identity_provider.get_or_create_user(email)
    except IdentityUnavailableError as e:
        raise ApiError(ApiErrorCode.E_AUTH_UNAVAILABLE, "Sign-in service unavailable") from e

    ledger.purchase(
        db,
        payment_id=payment_id,
        user_id=user_id,
        quantity=item.quantity,
        amount=item.amount_total,
        reconciliation_id=reconciliation_id,
        is_costless_refund_applied=metadata.is_costless_refund_applied == 1,
        email=email,
    )


def _handle_charge_refunded(db: Session, charge: dict[str, Any]) -> None:
    payment_id = charge.get("payment_intent")
    payment = db.get(Payment, payment_id) if payment_id else None
    if payment is None or payment.refunded_at is not None:
        logger.info("charge_refunded_ignored", payment_id=payment_id)
        return

    refunds = (charge.get("refunds") or {}).get("data") or []
    if refunds:
        refunded_at = datetime.fromtimestamp(refunds[0]["created"], tz=UTC)
        refunded_amount = refunds[0]["amount"]
    else:
        refunded_at = utcnow()
        refunded_amount = charge.get("amount_refunded") or 0

    ledger.refund(db, payment_id, refunded_amount=refunded_amount, refunded_at=refunded_at)


def handle_payment_webhook(
    db: Session,
    payload: bytes,
    signature: str | None,
    *,
    gateway: PaymentGatewayBase,
    identity_provider: IdentityProviderBase,
) -> str:
    """Verify and apply a processor event.

    Unknown event types are acknowledged and ignored.

    Returns:
        The event type.

    Raises:
        ApiError(E_INVALID_SIGNATURE): Missing or bad signature.
    """
    try:
        event = gateway.construct_event(payload, signature)
    except WebhookSignatureError as e:
        logger.warning("payment_webhook_rejected", error=str(e))
        raise ApiError(ApiErrorCode.E_INVALID_SIGNATURE, "Request is invalid") from e

    event_type = event.get("type", "")
    obj = (event.get("data") or {}).get("object") or {}
    logger.info("payment_webhook_received", event_type=event_type, event_id=event.get("id"))

    if event_type == CHECKOUT_COMPLETED:
        _handle_checkout_completed(
            db, obj, gateway=gateway, identity_provider=identity_provider
        )
    elif event_type == CHARGE_REFUNDED:
        _handle_charge_refunded(db, obj)
    return event_type
