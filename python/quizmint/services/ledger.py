"""Token ledger.

Tokens are purchased in batches (one Payment owns N Tokens), redeemed by
card sets, released on pipeline failure, and invalidated by refunds.

A token is *available* to a user when it is unredeemed and its payment
belongs to the user and has not been refunded.

Transaction ownership:
- reserve() and release() run inside the caller's transaction so they can
  share it with other state changes (the prepare guard, the error marker).
  Reservations must run under ledger_transaction().
- purchase() and refund() own their transaction.
"""

from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quizmint.db.models import CardSet, Payment, Token, utcnow
from quizmint.db.session import TransactionTimeout, bounded_transaction, transaction
from quizmint.errors import ApiError, ApiErrorCode
from quizmint.logging import get_logger
from quizmint.services.users import ensure_user

logger = get_logger(__name__)

DEFAULT_LOCK_WAIT_MS = 4000
DEFAULT_TIMEOUT_MS = 10000
REFUND_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class Reservation:
    """Result of a reservation attempt.

    Attributes:
        reserved: Tokens marked redeemed by this call.
        available: Unlocked available tokens seen when the call ran.
    """

    reserved: int
    available: int

    @property
    def ok(self) -> bool:
        return self.reserved > 0


@contextmanager
def ledger_transaction(
    db: Session,
    *,
    lock_wait_ms: int = DEFAULT_LOCK_WAIT_MS,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> Generator[None, None, None]:
    """Bounded transaction for token reservation.

    Raises:
        ApiError(E_LEDGER_BUSY): The transaction timed out and was rolled back.
    """
    try:
        with bounded_transaction(db, lock_wait_ms=lock_wait_ms, timeout_ms=timeout_ms):
            yield
    except TransactionTimeout as exc:
        logger.warning(
            "ledger_transaction_timeout",
            elapsed_ms=round(exc.elapsed_ms, 2),
            budget_ms=exc.budget_ms,
        )
        raise ApiError(
            ApiErrorCode.E_LEDGER_BUSY, "Token balance is busy; please try again."
        ) from exc


def _available_predicate(user_id: str):
    return (
        Token.redeemed_at.is_(None),
        Payment.refunded_at.is_(None),
        Payment.user_id == user_id,
    )


def reserve(
    db: Session,
    user_id: str,
    card_set_id: UUID,
    count: int,
    *,
    require_all: bool = True,
    now: datetime | None = None,
) -> Reservation:
    """Mark up to ``count`` of the user's available tokens as redeemed.

    Rows are claimed with ``FOR UPDATE SKIP LOCKED`` so concurrent
    reservations for the same user never claim the same token. With
    ``require_all`` nothing is redeemed unless ``count`` tokens are claimable.

    Must run inside ledger_transaction(). Does NOT commit.
    """
    if count <= 0:
        return Reservation(reserved=0, available=0)

    stmt = (
        select(Token.id)
        .join(Payment, Token.payment_id == Payment.id)
        .where(*_available_predicate(user_id))
        .order_by(Token.created_at, Token.id)
        .limit(count)
        .with_for_update(skip_locked=True, of=Token)
    )
    token_ids = list(db.scalars(stmt).all())

    if not token_ids or (require_all and len(token_ids) < count):
        logger.info(
            "ledger_reserve_insufficient",
            card_set_id=str(card_set_id),
            requested=count,
            available=len(token_ids),
        )
        return Reservation(reserved=0, available=len(token_ids))

    result = db.execute(
        update(Token)
        .where(Token.id.in_(token_ids), Token.redeemed_at.is_(None))
        .values(redeemed_at=now or utcnow(), redeemed_by_card_set_id=card_set_id)
        .execution_options(synchronize_session=False)
    )
    reserved = result.rowcount

    logger.info(
        "ledger_reserved",
        card_set_id=str(card_set_id),
        requested=count,
        reserved=reserved,
    )
    return Reservation(reserved=reserved, available=len(token_ids))


def release(db: Session, card_set_id: UUID) -> int:
    """Return every token redeemed by the card set to its payment.

    Idempotent. Does NOT commit.

    Returns:
        Number of tokens released by this call.
    """
    result = db.execute(
        update(Token)
        .where(Token.redeemed_by_card_set_id == card_set_id)
        .values(redeemed_at=None, redeemed_by_card_set_id=None)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("ledger_released", card_set_id=str(card_set_id), released=result.rowcount)
    return result.rowcount


def purchase(
    db: Session,
    *,
    payment_id: str,
    user_id: str,
    quantity: int,
    amount: int,
    reconciliation_id: str,
    is_costless_refund_applied: bool = False,
    email: str | None = None,
) -> bool:
    """Record a payment and mint ``quantity`` fresh tokens for it.

    Idempotent on ``payment_id``: duplicate webhook deliveries are no-ops.

    Returns:
        True if the payment was recorded by this call.
    """
    if db.get(Payment, payment_id) is not None:
        logger.info("ledger_purchase_duplicate", payment_id=payment_id)
        return False

    try:
        with transaction(db):
            ensure_user(db, user_id, email)
            payment = Payment(
                id=payment_id,
                amount=amount,
                user_id=user_id,
                reconciliation_id=reconciliation_id,
                is_costless_refund_applied=is_costless_refund_applied,
            )
            db.add(payment)
            db.flush()
            db.add_all(Token(payment_id=payment_id) for _ in range(quantity))
    except IntegrityError:
        # Concurrent delivery of the same event won the insert
        if db.get(Payment, payment_id) is not None:
            logger.info("ledger_purchase_duplicate", payment_id=payment_id)
            return False
        raise

    logger.info(
        "ledger_purchased",
        payment_id=payment_id,
        user_id=user_id,
        quantity=quantity,
        amount=amount,
    )
    return True


def refund(
    db: Session,
    payment_id: str,
    *,
    refunded_amount: int,
    refunded_at: datetime | None = None,
) -> bool:
    """Invalidate a payment and everything it funded.

    In one transaction: marks the payment refunded, marks every card set
    that redeemed one of its tokens as refunded, and releases all tokens of
    those card sets. No-op when the payment is already refunded.

    Returns:
        True if this call applied the refund.
    """
    refunded_at = refunded_at or utcnow()

    with transaction(db):
        payment = db.scalar(select(Payment).where(Payment.id == payment_id).with_for_update())
        if payment is None:
            raise ApiError(ApiErrorCode.E_PAYMENT_NOT_FOUND, "Payment not found")
        if payment.refunded_at is not None:
            logger.info("ledger_refund_duplicate", payment_id=payment_id)
            return False

        payment.refunded_at = refunded_at
        payment.refunded_amount = refunded_amount

        card_set_ids = list(
            db.scalars(
                select(Token.redeemed_by_card_set_id)
                .where(
                    Token.payment_id == payment_id,
                    Token.redeemed_by_card_set_id.is_not(None),
                )
                .distinct()
            ).all()
        )
        if card_set_ids:
            db.execute(
                update(CardSet)
                .where(CardSet.id.in_(card_set_ids), CardSet.refunded_at.is_(None))
                .values(refunded_at=refunded_at)
                .execution_options(synchronize_session=False)
            )
            db.execute(
                update(Token)
                .where(Token.redeemed_by_card_set_id.in_(card_set_ids))
                .values(redeemed_at=None, redeemed_by_card_set_id=None)
                .execution_options(synchronize_session=False)
            )

    logger.info(
        "ledger_refunded",
        payment_id=payment_id,
        refunded_amount=refunded_amount,
        card_sets=len(card_set_ids),
    )
    return True


def refundable_amount(payment: Payment, *, gross: int, net: int) -> int:
    """Amount to return for a payment.

    The gross amount when the processing-fee deduction was waived at
    purchase time, the net amount otherwise.
    """
    return gross if payment.is_costless_refund_applied else net


def can_refund(payment: Payment, now: datetime | None = None) -> bool:
    """Whether the owner may still refund this payment."""
    now = now or utcnow()
    return payment.refunded_at is None and now - payment.created_at < REFUND_WINDOW


def available_count(db: Session, user_id: str) -> int:
    """Count of tokens the user could reserve right now."""
    stmt = (
        select(func.count(Token.id))
        .join(Payment, Token.payment_id == Payment.id)
        .where(*_available_predicate(user_id))
    )
    return db.scalar(stmt) or 0


def redeemed_count(db: Session, card_set_id: UUID) -> int:
    """Tokens currently redeemed by a card set from unrefunded payments."""
    stmt = (
        select(func.count(Token.id))
        .join(Payment, Token.payment_id == Payment.id)
        .where(Token.redeemed_by_card_set_id == card_set_id, Payment.refunded_at.is_(None))
    )
    return db.scalar(stmt) or 0
