"""Payment processor gateway (Stripe).

Thin wrapper around the stripe library so billing logic can be exercised
against FakePaymentGateway in tests. The secret key is passed per call;
nothing here touches ``stripe.api_key``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import stripe

from quizmint.logging import get_logger

logger = get_logger(__name__)


class PaymentGatewayError(Exception):
    """The payment processor rejected or failed a call."""


class WebhookSignatureError(Exception):
    """A webhook payload failed signature verification."""


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


@dataclass(frozen=True)
class LineItem:
    quantity: int
    amount_total: int


@dataclass(frozen=True)
class PaymentAmounts:
    """Gross charge and net of processing fees, in the smallest currency unit."""

    gross: int
    net: int


@dataclass(frozen=True)
class RefundResult:
    amount: int
    created_at: datetime


class PaymentGatewayBase(ABC):
    @abstractmethod
    def create_checkout_session(
        self,
        *,
        price: str,
        quantity: int,
        min_quantity: int,
        success_url: str,
        cancel_url: str,
        reconciliation_id: str,
        customer_email: str | None,
    ) -> CheckoutSession: ...

    @abstractmethod
    def first_line_item(self, session_id: str) -> LineItem | None: ...

    @abstractmethod
    def payment_amounts(self, payment_id: str) -> PaymentAmounts: ...

    @abstractmethod
    def create_refund(self, payment_id: str, amount: int) -> RefundResult: ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]: ...


class StripeGateway(PaymentGatewayBase):
    def __init__(self, secret_key: str, webhook_secret: str | None):
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret

    def create_checkout_session(
        self,
        *,
        price: str,
        quantity: int,
        min_quantity: int,
        success_url: str,
        cancel_url: str,
        reconciliation_id: str,
        customer_email: str | None,
    ) -> CheckoutSession:
        params: dict[str, Any] = {
            "mode": "payment",
            "customer_creation": "if_required",
            "client_reference_id": reconciliation_id,
            "line_items": [
                {
                    "price": price,
                    "quantity": quantity,
                    "adjustable_quantity": {"enabled": True, "minimum": min_quantity},
                }
            ],
            "metadata": {"isCostlessRefundApplied": "0"},
            "allow_promotion_codes": True,
            "automatic_tax": {"enabled": True},
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            session = stripe.checkout.Session.create(api_key=self._secret_key, **params)
        except stripe.StripeError as e:
            logger.error("stripe_checkout_failed", error=str(e))
            raise PaymentGatewayError(str(e)) from e
        return CheckoutSession(id=session.id, url=session.url)

    def first_line_item(self, session_id: str) -> LineItem | None:
        try:
            items = stripe.checkout.Session.list_line_items(
                session_id, limit=1, api_key=self._secret_key
            )
        except stripe.StripeError as e:
            raise PaymentGatewayError(str(e)) from e
        if not items.data or not items.data[0].quantity:
            return None
        item = items.data[0]
        return LineItem(quantity=item.quantity, amount_total=item.amount_total)

    def payment_amounts(self, payment_id: str) -> PaymentAmounts:
        try:
            intent = stripe.PaymentIntent.retrieve(
                payment_id,
                expand=["latest_charge.balance_transaction"],
                api_key=self._secret_key,
            )
        except stripe.StripeError as e:
            raise PaymentGatewayError(str(e)) from e

        charge = intent.latest_charge
        if not charge or not charge.balance_transaction:
            raise PaymentGatewayError(f"payment {payment_id} has no settled charge")
        balance = charge.balance_transaction
        return PaymentAmounts(gross=balance.amount, net=balance.net)

    def create_refund(self, payment_id: str, amount: int) -> RefundResult:
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_id,
                amount=amount,
                reason="requested_by_customer",
                api_key=self._secret_key,
            )
        except stripe.StripeError as e:
            logger.error("stripe_refund_failed", payment_id=payment_id, error=str(e))
            raise PaymentGatewayError(str(e)) from e
        return RefundResult(
            amount=refund.amount,
            created_at=datetime.fromtimestamp(refund.created, tz=UTC),
        )

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        if not self._webhook_secret or not signature:
            raise WebhookSignatureError("missing signature or webhook secret")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise WebhookSignatureError(str(e)) from e
        return event.to_dict() if hasattr(event, "to_dict") else dict(event)


@dataclass
class FakePaymentGateway(PaymentGatewayBase):
    """In-memory gateway for tests.

    ``events`` maps a signature string to the event it authenticates.
    """

    amounts: dict[str, PaymentAmounts] = field(default_factory=dict)
    line_items: dict[str, LineItem] = field(default_factory=dict)
    events: dict[str, dict[str, Any]] = field(default_factory=dict)
    sessions: list[dict[str, Any]] = field(default_factory=list)
    refunds: list[tuple[str, int]] = field(default_factory=list)

    def create_checkout_session(self, **params: Any) -> CheckoutSession:
        self.sessions.append(params)
        session_id = f"cs_test_{len(self.sessions)}"
        return CheckoutSession(id=session_id, url=f"https://checkout.test/{session_id}")

    def first_line_item(self, session_id: str) -> LineItem | None:
        return self.line_items.get(session_id)

    def payment_amounts(self, payment_id: str) -> PaymentAmounts:
        if payment_id not in self.amounts:
            raise PaymentGatewayError(f"unknown payment {payment_id}")
        return self.amounts[payment_id]

    def create_refund(self, payment_id: str, amount: int) -> RefundResult:
        self.refunds.append((payment_id, amount))
        return RefundResult(amount=amount, created_at=datetime.now(UTC))

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        if signature not in self.events:
            raise WebhookSignatureError("bad signature")
        return self.events[signature]
