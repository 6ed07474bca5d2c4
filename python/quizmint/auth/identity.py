"""Identity provider (Firebase Authentication).

The browser signs in with Firebase and posts the resulting ID token to
/auth/session; the API swaps it for a long-lived session cookie. Every
later request is identified by verifying that cookie.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta

import firebase_admin
from firebase_admin import auth, credentials
from firebase_admin.exceptions import FirebaseError

from quizmint.config import Settings
from quizmint.logging import get_logger

logger = get_logger(__name__)

FIREBASE_APP_NAME = "quizmint"


class IdentityError(Exception):
    """A sign-in token or session cookie was rejected."""


class IdentityUnavailableError(Exception):
    """The identity provider could not be reached."""


@dataclass(frozen=True)
class Identity:
    """Verified identity claims.

    Attributes:
        uid: Provider user id.
        email: Email address, when the account has one.
        auth_time: Unix time of the sign-in that produced the token.
    """

    uid: str
    email: str | None = None
    auth_time: int | None = None


class IdentityProviderBase(ABC):
    @abstractmethod
    def verify_id_token(self, id_token: str) -> Identity:
        """Verify a short-lived sign-in token. Raises IdentityError."""
        ...

    @abstractmethod
    def create_session_cookie(self, id_token: str, expires_in: timedelta) -> str:
        """Exchange a sign-in token for a session cookie value."""
        ...

    @abstractmethod
    def verify_session_cookie(self, cookie: str) -> Identity:
        """Verify a session cookie. Raises IdentityError."""
        ...

    @abstractmethod
    def get_or_create_user(self, email: str) -> str:
        """Provider uid for an email, creating the account if needed."""
        ...

    @abstractmethod
    def get_user_email(self, uid: str) -> str | None:
        """Email address of an account, None if unknown."""
        ...


class FirebaseIdentityProvider(IdentityProviderBase):
    """firebase-admin backed provider."""

    def __init__(self, app: firebase_admin.App):
        self._app = app

    @classmethod
    def from_settings(cls, settings: Settings) -> "FirebaseIdentityProvider":
        try:
            app = firebase_admin.get_app(FIREBASE_APP_NAME)
        except ValueError:
            if settings.firebase_credentials_file:
                credential = credentials.Certificate(settings.firebase_credentials_file)
            else:
                credential = credentials.ApplicationDefault()
            options = None
            if settings.firebase_project_id:
                options = {"projectId": settings.firebase_project_id}
            app = firebase_admin.initialize_app(credential, options, name=FIREBASE_APP_NAME)
        return cls(app)

    def verify_id_token(self, id_token: str) -> Identity:
        try:
            claims = auth.verify_id_token(id_token, app=self._app)
        except (auth.InvalidIdTokenError, ValueError) as e:
            raise IdentityError("invalid sign-in token") from e
        except FirebaseError as e:
            raise IdentityUnavailableError(str(e)) from e
        return _identity_from_claims(claims)

    def create_session_cookie(self, id_token: str, expires_in: timedelta) -> str:
        try:
            cookie = auth.create_session_cookie(id_token, expires_in=expires_in, app=self._app)
        except (auth.InvalidIdTokenError, ValueError) as e:
            raise IdentityError("invalid sign-in token") from e
        except FirebaseError as e:
            raise IdentityUnavailableError(str(e)) from e
        return cookie.decode() if isinstance(cookie, bytes) else cookie

    def verify_session_cookie(self, cookie: str) -> Identity:
        try:
            claims = auth.verify_session_cookie(cookie, check_revoked=True, app=self._app)
        except (auth.InvalidSessionCookieError, auth.RevokedSessionCookieError, ValueError) as e:
            raise IdentityError("invalid session") from e
        except FirebaseError as e:
            raise IdentityUnavailableError(str(e)) from e
        return _identity_from_claims(claims)

    def get_or_create_user(self, email: str) -> str:
        try:
            return auth.get_user_by_email(email, app=self._app).uid
        except auth.UserNotFoundError:
            user = auth.create_user(email=email, app=self._app)
            logger.info("identity_user_created", user_id=user.uid)
            return user.uid
        except FirebaseError as e:
            raise IdentityUnavailableError(str(e)) from e

    def get_user_email(self, uid: str) -> str | None:
        try:
            return auth.get_user(uid, app=self._app).email
        except auth.UserNotFoundError:
            return None
        except FirebaseError as e:
            raise IdentityUnavailableError(str(e)) from e


def _identity_from_claims(claims: dict) -> Identity:
    return Identity(uid=claims["uid"], email=claims.get("email"), auth_time=claims.get("auth_time"))


@dataclass
class FakeIdentityProvider(IdentityProviderBase):
    """Deterministic provider for tests.

    Tokens and cookies are registered up front; anything else is rejected.
    """

    id_tokens: dict[str, Identity] = field(default_factory=dict)
    sessions: dict[str, Identity] = field(default_factory=dict)
    users_by_email: dict[str, str] = field(default_factory=dict)

    def verify_id_token(self, id_token: str) -> Identity:
        if id_token not in self.id_tokens:
            raise IdentityError("invalid sign-in token")
        return self.id_tokens[id_token]

    def create_session_cookie(self, id_token: str, expires_in: timedelta) -> str:
        identity = self.verify_id_token(id_token)
        cookie = f"session-{identity.uid}"
        self.sessions[cookie] = identity
        return cookie

    def verify_session_cookie(self, cookie: str) -> Identity:
        if cookie not in self.sessions:
            raise IdentityError("invalid session")
        return self.sessions[cookie]

    def get_or_create_user(self, email: str) -> str:
        return self.users_by_email.setdefault(email, f"uid-{len(self.users_by_email) + 1}")

    def get_user_email(self, uid: str) -> str | None:
        return next((e for e, u in self.users_by_email.items() if u == uid), None)

    def sign_in(self, uid: str, email: str | None = None) -> str:
        """Register a session for ``uid`` and return the cookie value (test helper)."""
        cookie = f"session-{uid}"
        self.sessions[cookie] = Identity(uid=uid, email=email)
        return cookie
