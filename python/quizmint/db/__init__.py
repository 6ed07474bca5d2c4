"""Persistence: engine, sessions, transaction scopes and the ORM models."""

from quizmint.db.engine import create_db_engine, get_engine
from quizmint.db.models import (
    Answer,
    Base,
    CardSet,
    GenerationStep,
    Option,
    Payment,
    Question,
    Submission,
    Token,
    User,
)
from quizmint.db.session import (
    TransactionTimeout,
    bounded_transaction,
    get_db,
    ping,
    transaction,
)

__all__ = [
    "create_db_engine",
    "get_engine",
    "get_db",
    "ping",
    "transaction",
    "bounded_transaction",
    "TransactionTimeout",
    "Base",
    "User",
    "CardSet",
    "Question",
    "Option",
    "Payment",
    "Token",
    "Submission",
    "Answer",
    "GenerationStep",
]
