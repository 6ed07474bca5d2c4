"""Billing Pydantic schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, HttpUrl


class CheckoutStatus(str, Enum):
    PAID = "PAID"
    UNPAID = "UNPAID"


class CreateCheckoutSessionRequest(BaseModel):
    """Request schema for POST /billing/checkout-sessions.

    ``quantity`` is also the minimum the buyer may adjust down to.
    """

    price: str = Field(min_length=1, max_length=255)
    quantity: int = Field(ge=1, le=10000)
    next_url: HttpUrl
    cancel_url: HttpUrl


class CheckoutSessionOut(BaseModel):
    url: str


class RequireLogin(BaseModel):
    email: str


class CheckoutSessionStatusOut(BaseModel):
    """Whether the checkout identified by a reconciliation id has been paid.

    ``require_login`` is set when an anonymous buyer paid: the account the
    tokens went to is the one for this email.
    """

    status: CheckoutStatus
    require_login: RequireLogin | None = None


class RefundResponse(BaseModel):
    success: bool


class PaymentOut(BaseModel):
    id: str
    amount: int
    created_at: datetime
    refunded_at: datetime | None = None
    tokens: int
    can_refund: bool


class TokenBalanceOut(BaseModel):
    available: int
