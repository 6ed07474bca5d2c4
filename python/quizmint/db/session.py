"""Sessions and transaction scopes.

Routes get one Session per request from get_db(). Writes go through
``transaction`` or, for token ledger mutations that take row locks,
``bounded_transaction``, which gives up instead of queueing behind a
slow holder.
"""

import time
from collections.abc import Generator
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from quizmint.db.engine import get_engine
from quizmint.logging import get_logger

logger = get_logger(__name__)

# lock_not_available, query_canceled
_TIMEOUT_SQLSTATES = frozenset({"55P03", "57014"})


class TransactionTimeout(Exception):
    """A bounded transaction exceeded its lock-wait or absolute budget.

    Nothing inside the transaction was applied.
    """

    def __init__(self, elapsed_ms: float, budget_ms: int):
        self.elapsed_ms = elapsed_ms
        self.budget_ms = budget_ms
        super().__init__(f"transaction exceeded budget ({elapsed_ms:.0f}ms > {budget_ms}ms)")


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    """Factory on the process engine.

    Objects stay loaded after commit so services can keep returning the
    rows they just wrote.
    """
    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session, closed once the response is sent."""
    with get_session_factory()() as db:
        yield db


@contextmanager
def transaction(db: Session) -> Generator[None, None, None]:
    """Commit what the block did, or roll all of it back."""
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def _is_timeout(exc: OperationalError) -> bool:
    return getattr(exc.orig, "sqlstate", None) in _TIMEOUT_SQLSTATES


@contextmanager
def bounded_transaction(
    db: Session, *, lock_wait_ms: int, timeout_ms: int
) -> Generator[None, None, None]:
    """Transaction that gives up instead of waiting indefinitely.

    On PostgreSQL the budgets are pushed down as ``SET LOCAL lock_timeout``
    and ``statement_timeout``. The absolute budget is also checked before
    commit, so a transaction that ran too long rolls back rather than
    committing late.

    Raises:
        TransactionTimeout: Either budget was exceeded. The transaction is
            rolled back.
    """
    started = time.monotonic()
    try:
        if db.get_bind().dialect.name == "postgresql":
            db.execute(text(f"SET LOCAL lock_timeout = {int(lock_wait_ms)}"))
            db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
        yield
        elapsed_ms = (time.monotonic() - started) * 1000
        if elapsed_ms > timeout_ms:
            raise TransactionTimeout(elapsed_ms, timeout_ms)
        db.commit()
    except OperationalError as exc:
        db.rollback()
        if _is_timeout(exc):
            elapsed_ms = (time.monotonic() - started) * 1000
            raise TransactionTimeout(elapsed_ms, timeout_ms) from exc
        raise
    except Exception:
        db.rollback()
        raise


def ping(db: Session) -> bool:
    """True when the database answers ``SELECT 1``."""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("database_unreachable", error=str(e))
        db.rollback()
        return False
    return True
