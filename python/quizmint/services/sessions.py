"""Session creation.

The browser signs in with the identity provider and posts the ID token
here. Only a sign-in less than an hour old may be exchanged.
"""

import time
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import Session

from quizmint.auth.identity import IdentityError, IdentityProviderBase, IdentityUnavailableError
from quizmint.db.session import transaction
from quizmint.errors import ApiError, ApiErrorCode
from quizmint.logging import get_logger
from quizmint.services.users import ensure_user

logger = get_logger(__name__)

DEFAULT_SESSION_MAX_AGE_S = 60 * 60 * 24 * 14
DEFAULT_MAX_SIGN_IN_AGE_S = 60 * 60


@dataclass(frozen=True)
class SessionCookie:
    value: str
    max_age_s: int


def create_session(
    db: Session,
    id_token: str,
    *,
    identity_provider: IdentityProviderBase,
    session_max_age_s: int = DEFAULT_SESSION_MAX_AGE_S,
    max_sign_in_age_s: int = DEFAULT_MAX_SIGN_IN_AGE_S,
    now: float | None = None,
) -> SessionCookie:
    """Exchange a sign-in token for a session cookie value.

    Raises:
        ApiError(E_UNAUTHENTICATED): The token was rejected.
        ApiError(E_SIGN_IN_EXPIRED): The sign-in is too old.
        ApiError(E_AUTH_UNAVAILABLE): The identity provider is unreachable.
    """
    now = time.time() if now is None else now
    try:
        identity = identity_provider.verify_id_token(id_token)
        if identity.auth_time is None or now - identity.auth_time >= max_sign_in_age_s:
            raise ApiError(ApiErrorCode.E_SIGN_IN_EXPIRED, "Please login again")
        cookie = identity_provider.create_session_cookie(
            id_token, expires_in=timedelta(seconds=session_max_age_s)
        )
    except IdentityError as e:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid sign-in token") from e
    except IdentityUnavailableError as e:
        logger.warning("identity_provider_unavailable", error=str(e))
        raise ApiError(ApiErrorCode.E_AUTH_UNAVAILABLE, "Sign-in service unavailable") from e

    with transaction(db):
        ensure_user(db, identity.uid, identity.email)

    logger.info("session_created", user_id=identity.uid)
    return SessionCookie(value=cookie, max_age_s=session_max_age_s)
