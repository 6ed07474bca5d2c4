"""Session middleware for FastAPI.

Provides:
- SessionMiddleware: resolves the session cookie to a Viewer on every request
- get_viewer: Dependency for the (possibly anonymous) viewer

A missing, invalid or expired cookie is not an error: the request simply
proceeds anonymously. Card sets can be created, taken and submitted
without an account.
"""

from dataclasses import dataclass

from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from quizmint.auth.identity import IdentityError, IdentityProviderBase, IdentityUnavailableError
from quizmint.logging import get_logger, set_user_id

logger = get_logger(__name__)

DEFAULT_COOKIE_NAME = "session"

# Paths that never look at the session
SKIP_PATHS = ("/health", "/docs", "/redoc", "/openapi.json", "/webhooks/")


@dataclass(frozen=True)
class Viewer:
    """Caller identity.

    Attributes:
        user_id: Provider uid, None for anonymous callers.
        email: Email address when known.
    """

    user_id: str | None = None
    email: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None


ANONYMOUS = Viewer()


class SessionMiddleware(BaseHTTPMiddleware):
    """Attach a Viewer to ``request.state`` from the session cookie."""

    def __init__(
        self,
        app: ASGIApp,
        identity_provider: IdentityProviderBase,
        cookie_name: str = DEFAULT_COOKIE_NAME,
    ):
        super().__init__(app)
        self.identity_provider = identity_provider
        self.cookie_name = cookie_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.viewer = ANONYMOUS

        if not request.url.path.startswith(SKIP_PATHS):
            cookie = request.cookies.get(self.cookie_name)
            if cookie:
                request.state.viewer = await self._resolve(cookie, request.url.path)

        if request.state.viewer.user_id:
            set_user_id(request.state.viewer.user_id)

        return await call_next(request)

    async def _resolve(self, cookie: str, path: str) -> Viewer:
        try:
            identity = await run_in_threadpool(
                self.identity_provider.verify_session_cookie, cookie
            )
        except IdentityError:
            logger.info("session_invalid", request_path=path)
            return ANONYMOUS
        except IdentityUnavailableError as e:
            logger.warning("session_check_unavailable", request_path=path, error=str(e))
            return ANONYMOUS
        return Viewer(user_id=identity.uid, email=identity.email)


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency for the caller; anonymous when not signed in."""
    return getattr(request.state, "viewer", ANONYMOUS)

