"""Tests for the token ledger.

Covers reservation (all-or-nothing, skip-locked), release, purchase
idempotency, refund cascade, and the refund window.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from quizmint.db.models import CardSet, Payment, Token, User
from quizmint.errors import ApiError, ApiErrorCode
from quizmint.services import ledger
from tests.factories import (
    create_test_card_set,
    create_test_payment,
    create_test_user,
    redeem_test_tokens,
    token_states,
)


class TestReserve:
    def test_reserves_exact_count_across_payments(self, db_session: Session):
        user_id = create_test_user(db_session)
        first = create_test_payment(db_session, user_id, tokens=2)
        second = create_test_payment(db_session, user_id, tokens=2)
        card_set_id = create_test_card_set(db_session, required_tokens=3)

        with ledger.ledger_transaction(db_session):
            reservation = ledger.reserve(db_session, user_id, card_set_id, 3)

        assert reservation.ok
        assert reservation.reserved == 3
        assert ledger.available_count(db_session, user_id) == 1
        assert ledger.redeemed_count(db_session, card_set_id) == 3
        assert token_states(db_session, first)[1] + token_states(db_session, second)[1] == 3

    def test_all_or_nothing_when_short(self, db_session: Session):
        user_id = create_test_user(db_session)
        create_test_payment(db_session, user_id, tokens=2)
        card_set_id = create_test_card_set(db_session, required_tokens=3)

        with ledger.ledger_transaction(db_session):
            reservation = ledger.reserve(db_session, user_id, card_set_id, 3)

        assert not reservation.ok
        assert reservation.available == 2
        assert ledger.available_count(db_session, user_id) == 2
        assert ledger.redeemed_count(db_session, card_set_id) == 0

    def test_partial_reservation_when_allowed(self, db_session: Session):
        user_id = create_test_user(db_session)
        create_test_payment(db_session, user_id, tokens=2)
        card_set_id = create_test_card_set(db_session)

        with ledger.ledger_transaction(db_session):
            reservation = ledger.reserve(db_session, user_id, card_set_id, 3, require_all=False)

        assert reservation.reserved == 2

    def test_refunded_and_foreign_tokens_are_not_available(self, db_session: Session):
        user_id = create_test_user(db_session)
        other_id = create_test_user(db_session)
        create_test_payment(db_session, user_id, tokens=3, refunded=True)
        create_test_payment(db_session, other_id, tokens=3)
        card_set_id = create_test_card_set(db_session)

        assert ledger.available_count(db_session, user_id) == 0
        with ledger.ledger_transaction(db_session):
            assert not ledger.reserve(db_session, user_id, card_set_id, 1).ok

    def test_zero_count_is_a_noop(self, db_session: Session):
        user_id = create_test_user(db_session)
        create_test_payment(db_session, user_id, tokens=1)

        reservation = ledger.reserve(db_session, user_id, uuid4(), 0)

        assert reservation.reserved == 0
        assert ledger.available_count(db_session, user_id) == 1

    def test_redeemed_tokens_are_not_reserved_twice(self, db_session: Session):
        user_id = create_test_user(db_session)
        create_test_payment(db_session, user_id, tokens=1)
        first = create_test_card_set(db_session)
        second = create_test_card_set(db_session)

        with ledger.ledger_transaction(db_session):
            assert ledger.reserve(db_session, user_id, first, 1).ok
        with ledger.ledger_transaction(db_session):
            assert not ledger.reserve(db_session, user_id, second, 1).ok


class TestLedgerTransaction:
    def test_timeout_rolls_back_and_reports_busy(self, db_session: Session):
        user_id = create_test_user(db_session)
        create_test_payment(db_session, user_id, tokens=2)
        card_set_id = create_test_card_set(db_session)

        with pytest.raises(ApiError) as exc_info:
            with ledger.ledger_transaction(db_session, timeout_ms=0):
                ledger.reserve(db_session, user_id, card_set_id, 2)

        assert exc_info.value.code == ApiErrorCode.E_LEDGER_BUSY
        assert exc_info.value.status_code == 503
        assert ledger.available_count(db_session, user_id) == 2


class TestRelease:
    def test_release_returns_tokens(self, db_session: Session):
        user_id = create_test_user(db_session)
        payment_id = create_test_payment(db_session, user_id, tokens=3)
        card_set_id = create_test_card_set(db_session)
        redeem_test_tokens(db_session, payment_id, card_set_id, 2)

        released = ledger.release(db_session, card_set_id)
        db_session.commit()

        assert released == 2
        assert ledger.available_count(db_session, user_id) == 3
        assert token_states(db_session, payment_id) == (3, 0)

    def test_release_is_idempotent(self, db_session: Session):
        card_set_id = create_test_card_set(db_session)
        assert ledger.release(db_session, card_set_id) == 0
        assert ledger.release(db_session, card_set_id) == 0


class TestPurchase:
    def test_purchase_mints_tokens_and_creates_user(self, db_session: Session):
        recorded = ledger.purchase(
            db_session,
            payment_id="pi_new",
            user_id="uid-buyer",
            quantity=7,
            amount=700,
            reconciliation_id="rid-1",
            email="buyer@example.com",
        )

        assert recorded is True
        assert db_session.get(User, "uid-buyer").email == "buyer@example.com"
        assert ledger.available_count(db_session, "uid-buyer") == 7

    def test_duplicate_delivery_is_a_noop(self, db_session: Session):
        kwargs = dict(
            payment_id="pi_dup",
            user_id="uid-buyer",
            quantity=5,
            amount=500,
            reconciliation_id="rid-dup",
        )
        assert ledger.purchase(db_session, **kwargs) is True
        assert ledger.purchase(db_session, **kwargs) is False
        assert ledger.available_count(db_session, "uid-buyer") == 5


class TestRefund:
    def test_refund_cascades_to_funded_card_sets(self, db_session: Session):
        user_id = create_test_user(db_session)
        refunded_payment = create_test_payment(db_session, user_id, tokens=2)
        other_payment = create_test_payment(db_session, user_id, tokens=2)
        card_set_id = create_test_card_set(db_session, owner_user_id=user_id, required_tokens=2)
        untouched_id = create_test_card_set(db_session, owner_user_id=user_id)
        # One token from each payment funds the same card set
        redeem_test_tokens(db_session, refunded_payment, card_set_id, 1)
        redeem_test_tokens(db_session, other_payment, card_set_id, 1)
        redeem_test_tokens(db_session, other_payment, untouched_id, 1)

        applied = ledger.refund(db_session, refunded_payment, refunded_amount=450)

        assert applied is True
        db_session.expire_all()
        payment = db_session.get(Payment, refunded_payment)
        assert payment.refunded_at is not None
        assert payment.refunded_amount == 450
        assert db_session.get(CardSet, card_set_id).refunded_at is not None
        assert db_session.get(CardSet, untouched_id).refunded_at is None
        assert ledger.redeemed_count(db_session, card_set_id) == 0
        # The other payment's token came back; its second token still funds untouched_id
        assert token_states(db_session, other_payment) == (1, 1)
        assert ledger.available_count(db_session, user_id) == 1

    def test_refund_is_idempotent(self, db_session: Session):
        user_id = create_test_user(db_session)
        payment_id = create_test_payment(db_session, user_id)

        assert ledger.refund(db_session, payment_id, refunded_amount=500) is True
        assert ledger.refund(db_session, payment_id, refunded_amount=500) is False

    def test_unknown_payment(self, db_session: Session):
        with pytest.raises(ApiError) as exc_info:
            ledger.refund(db_session, "pi_missing", refunded_amount=1)
        assert exc_info.value.code == ApiErrorCode.E_PAYMENT_NOT_FOUND


class TestRefundPolicy:
    def test_window_is_24_hours(self, db_session: Session):
        user_id = create_test_user(db_session)
        payment_id = create_test_payment(db_session, user_id)
        payment = db_session.get(Payment, payment_id)
        created = payment.created_at

        assert ledger.can_refund(payment, created + timedelta(hours=23, minutes=59))
        assert not ledger.can_refund(payment, created + timedelta(hours=24))

    def test_refunded_payment_cannot_be_refunded(self, db_session: Session):
        user_id = create_test_user(db_session)
        payment_id = create_test_payment(db_session, user_id, refunded=True)
        assert not ledger.can_refund(db_session.get(Payment, payment_id))

    def test_refundable_amount_prefers_gross_when_fee_waived(self, db_session: Session):
        user_id = create_test_user(db_session)
        waived = db_session.get(
            Payment, create_test_payment(db_session, user_id, is_costless_refund_applied=True)
        )
        normal = db_session.get(Payment, create_test_payment(db_session, user_id))

        assert ledger.refundable_amount(waived, gross=500, net=450) == 500
        assert ledger.refundable_amount(normal, gross=500, net=450) == 450


@pytest.mark.postgres
class TestConcurrentReservations:
    """Needs real row locks, so runs against PostgreSQL only."""

    def test_skip_locked_never_hands_out_a_token_twice(self, committed_rows):
        user_id = f"uid-{uuid4().hex[:12]}"
        first_id, second_id = uuid4(), uuid4()
        payment_id = f"pi_{user_id}"
        committed_rows.track("users", "id", user_id)
        committed_rows.track("card_sets", "id", first_id)
        committed_rows.track("card_sets", "id", second_id)
        committed_rows.track("payments", "id", payment_id)
        committed_rows.track("tokens", "payment_id", payment_id)

        with committed_rows.session() as s:
            s.add(User(id=user_id))
            s.add_all(
                [
                    CardSet(id=first_id, title="a", source_text="x"),
                    CardSet(id=second_id, title="b", source_text="x"),
                ]
            )
            s.add(
                Payment(
                    id=payment_id, amount=300, user_id=user_id, reconciliation_id=user_id
                )
            )
            s.flush()
            s.add_all(Token(payment_id=payment_id) for _ in range(3))
            s.commit()

        holder = committed_rows.session()
        contender = committed_rows.session()
        try:
            with ledger.ledger_transaction(holder):
                assert ledger.reserve(holder, user_id, first_id, 2).reserved == 2
                # While the holder's rows are locked the contender only sees one token
                with ledger.ledger_transaction(contender):
                    assert not ledger.reserve(contender, user_id, second_id, 2).ok
                with ledger.ledger_transaction(contender):
                    assert ledger.reserve(contender, user_id, second_id, 1).reserved == 1
        finally:
            holder.close()
            contender.close()

        with committed_rows.session() as s:
            redeemed = s.scalars(
                select(Token.redeemed_by_card_set_id).where(Token.redeemed_at.is_not(None))
                .where(Token.payment_id == payment_id)
            ).all()
            assert sorted(str(r) for r in redeemed) == sorted(
                [str(first_id), str(first_id), str(second_id)]
            )
