"""Response envelopes and the exception handlers that produce them.

    success: {"data": ...}
    failure: {"error": {"code": "E_...", "message": "...", "request_id": "..."}}

The request id comes from the logging context set by RequestIDMiddleware,
so handlers never need the request object to fill it in.
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from quizmint.errors import DEFAULT_CODE_FOR_STATUS, ApiError, ApiErrorCode
from quizmint.logging import get_logger, get_request_id

logger = get_logger(__name__)


def success_response(data: Any) -> dict[str, Any]:
    return {"data": data}


def error_response(
    code: ApiErrorCode, message: str, request_id: str | None = None
) -> dict[str, Any]:
    """Error envelope; ``request_id`` defaults to the current request's."""
    error = {"code": code.value, "message": message}
    request_id = request_id or get_request_id()
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def _error_json(status_code: int, code: ApiErrorCode, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_response(code, message))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("api_error", code=exc.code.value, message=exc.message)
    return _error_json(exc.status_code, exc.code, exc.message)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors (unknown path, wrong method) raised by the framework."""
    code = DEFAULT_CODE_FOR_STATUS.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    return _error_json(exc.status_code, code, str(exc.detail or "An error occurred"))


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Body or query validation failures, reported as 400 rather than 422."""
    if any(err.get("type") == "json_invalid" for err in exc.errors()):
        message = "Malformed JSON body"
    else:
        message = "Invalid request body"
    return _error_json(400, ApiErrorCode.E_INVALID_REQUEST, message)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Details stay in the log; the client only sees E_INTERNAL
    logger.exception("unhandled_exception", error_type=type(exc).__name__)
    return _error_json(500, ApiErrorCode.E_INTERNAL, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
