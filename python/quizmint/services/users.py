"""User row bootstrap.

Users are created lazily: on session creation, and when a payment webhook
arrives for an email that has never signed in.
"""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quizmint.db.models import User
from quizmint.logging import get_logger

logger = get_logger(__name__)


def ensure_user(db: Session, user_id: str, email: str | None = None) -> User:
    """Return the user row, inserting it if missing.

    Race-safe: a concurrent insert of the same id is absorbed by a savepoint.
    Does NOT commit; callers own the transaction.
    """
    user = db.get(User, user_id)
    if user is None:
        try:
            with db.begin_nested():
                user = User(id=user_id, email=email)
                db.add(user)
            logger.info("user_created", user_id=user_id)
        except IntegrityError:
            user = db.get(User, user_id, populate_existing=True)
            if user is None:
                raise
    if email and user.email != email:
        user.email = email
    return user
