"""Engine factory, session helpers and transaction scopes."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from quizmint.db.engine import create_db_engine
from quizmint.db.models import CardSet
from quizmint.db.session import TransactionTimeout, bounded_transaction, ping, transaction


class TestCreateDbEngine:
    def test_in_memory_sqlite_shares_one_connection(self):
        engine = create_db_engine("sqlite+pysqlite://")
        try:
            assert isinstance(engine.pool, StaticPool)
        finally:
            engine.dispose()

    def test_postgres_pings_before_reusing_connections(self):
        engine = create_db_engine("postgresql+psycopg://u:p@localhost:5432/quizmint")
        try:
            assert engine.dialect.name == "postgresql"
            assert engine.pool._pre_ping
        finally:
            engine.dispose()


def test_ping(db_session: Session):
    assert ping(db_session)


def _count(db: Session) -> int:
    return db.scalar(select(func.count()).select_from(CardSet))


class TestTransaction:
    def test_commits_on_success(self, db_session: Session):
        before = _count(db_session)
        with transaction(db_session):
            db_session.add(CardSet(title="kept"))
        assert _count(db_session) == before + 1

    def test_rolls_back_on_error(self, db_session: Session):
        before = _count(db_session)
        with pytest.raises(RuntimeError):
            with transaction(db_session):
                db_session.add(CardSet(title="dropped"))
                db_session.flush()
                raise RuntimeError("boom")
        assert _count(db_session) == before


class TestBoundedTransaction:
    def test_commits_within_budget(self, db_session: Session):
        before = _count(db_session)
        with bounded_transaction(db_session, lock_wait_ms=1000, timeout_ms=5000):
            db_session.add(CardSet(title="quick"))
        assert _count(db_session) == before + 1

    def test_overrunning_the_budget_rolls_back(self, db_session: Session, monkeypatch):
        before = _count(db_session)
        ticks = [100.0, 100.5]
        monkeypatch.setattr(
            "quizmint.db.session.time.monotonic",
            lambda: ticks.pop(0) if len(ticks) > 1 else ticks[0],
        )

        with pytest.raises(TransactionTimeout) as exc_info:
            with bounded_transaction(db_session, lock_wait_ms=100, timeout_ms=200):
                db_session.add(CardSet(title="slow"))
                db_session.flush()

        assert exc_info.value.budget_ms == 200
        assert exc_info.value.elapsed_ms == pytest.approx(500)
        assert _count(db_session) == before
