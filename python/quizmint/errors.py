"""Error codes returned in the ``{"error": {...}}`` envelope.

Each code belongs to exactly one HTTP status. Services raise ApiError
(or one of the shorthands below) and the handlers in quizmint.responses
render it.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_OPTION = "E_INVALID_OPTION"
    E_INVALID_CONTENT_TYPE = "E_INVALID_CONTENT_TYPE"
    E_INVALID_SIGNATURE = "E_INVALID_SIGNATURE"
    E_CARD_SET_NOT_PREPARABLE = "E_CARD_SET_NOT_PREPARABLE"
    E_REFUND_WINDOW_CLOSED = "E_REFUND_WINDOW_CLOSED"

    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"
    E_SIGN_IN_EXPIRED = "E_SIGN_IN_EXPIRED"

    E_FORBIDDEN = "E_FORBIDDEN"

    E_NOT_FOUND = "E_NOT_FOUND"
    E_CARD_SET_NOT_FOUND = "E_CARD_SET_NOT_FOUND"
    E_PAYMENT_NOT_FOUND = "E_PAYMENT_NOT_FOUND"

    E_RATE_LIMITED = "E_RATE_LIMITED"

    E_INTERNAL = "E_INTERNAL"
    E_EXTRACTION_FAILED = "E_EXTRACTION_FAILED"
    E_SIGN_UPLOAD_FAILED = "E_SIGN_UPLOAD_FAILED"
    E_STORAGE_ERROR = "E_STORAGE_ERROR"

    E_UPSTREAM_ERROR = "E_UPSTREAM_ERROR"

    E_LEDGER_BUSY = "E_LEDGER_BUSY"
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"
    E_DATABASE_UNAVAILABLE = "E_DATABASE_UNAVAILABLE"


_CODES_BY_STATUS: dict[int, tuple[ApiErrorCode, ...]] = {
    400: (
        ApiErrorCode.E_INVALID_REQUEST,
        ApiErrorCode.E_INVALID_OPTION,
        ApiErrorCode.E_INVALID_CONTENT_TYPE,
        ApiErrorCode.E_INVALID_SIGNATURE,
        ApiErrorCode.E_CARD_SET_NOT_PREPARABLE,
        ApiErrorCode.E_REFUND_WINDOW_CLOSED,
    ),
    401: (ApiErrorCode.E_UNAUTHENTICATED, ApiErrorCode.E_SIGN_IN_EXPIRED),
    403: (ApiErrorCode.E_FORBIDDEN,),
    404: (
        ApiErrorCode.E_NOT_FOUND,
        ApiErrorCode.E_CARD_SET_NOT_FOUND,
        ApiErrorCode.E_PAYMENT_NOT_FOUND,
    ),
    429: (ApiErrorCode.E_RATE_LIMITED,),
    500: (
        ApiErrorCode.E_INTERNAL,
        ApiErrorCode.E_EXTRACTION_FAILED,
        ApiErrorCode.E_SIGN_UPLOAD_FAILED,
        ApiErrorCode.E_STORAGE_ERROR,
    ),
    502: (ApiErrorCode.E_UPSTREAM_ERROR,),
    503: (
        ApiErrorCode.E_LEDGER_BUSY,
        ApiErrorCode.E_AUTH_UNAVAILABLE,
        ApiErrorCode.E_DATABASE_UNAVAILABLE,
    ),
}

ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    code: status for status, codes in _CODES_BY_STATUS.items() for code in codes
}

# Generic code for a bare HTTPException with one of these statuses
DEFAULT_CODE_FOR_STATUS: dict[int, ApiErrorCode] = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    401: ApiErrorCode.E_UNAUTHENTICATED,
    403: ApiErrorCode.E_FORBIDDEN,
    404: ApiErrorCode.E_NOT_FOUND,
    405: ApiErrorCode.E_INVALID_REQUEST,
    429: ApiErrorCode.E_RATE_LIMITED,
}


class ApiError(Exception):
    """An error the client is meant to see.

    ``status_code`` follows from ``code``; unknown codes render as 500.
    """

    def __init__(self, code: ApiErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)


class NotFoundError(ApiError):
    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Missing resources the caller may not learn about are also reported this way."""

    def __init__(self, message: str = "Forbidden"):
        super().__init__(ApiErrorCode.E_FORBIDDEN, message)
