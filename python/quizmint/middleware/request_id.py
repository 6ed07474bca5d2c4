"""Request correlation via the X-Request-ID header.

A caller-supplied id is kept when it is short and made of safe
characters (UUIDs are lowercased); otherwise a fresh UUID4 is used. The
id is bound into the logging context for the whole request, echoed on
the response and written into error envelopes.

Registered last so it wraps everything else, including SessionMiddleware.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from quizmint.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"

_SAFE_ID = re.compile(r"[A-Za-z0-9._-]{1,128}")
_UUID = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)

logger = get_logger(__name__)


def is_valid_request_id(value: str) -> bool:
    return _SAFE_ID.fullmatch(value) is not None


def normalize_request_id(value: str) -> str:
    return value.lower() if _UUID.fullmatch(value) else value


def resolve_request_id(header_value: str | None) -> str:
    """The id to use for a request carrying ``header_value``."""
    if header_value and is_valid_request_id(header_value):
        return normalize_request_id(header_value)
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.monotonic()
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)
        except Exception:
            # Rendered by unhandled_exception_handler; log here while context is bound
            logger.exception("request_failed")
            raise
        else:
            response.headers[REQUEST_ID_HEADER] = request_id
            if self.log_requests:
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - started) * 1000, 2),
                )
            return response
        finally:
            clear_request_context()
