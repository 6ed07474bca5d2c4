"""Failure taxonomy for completion calls.

A generation step only cares about one distinction: an overloaded
provider is worth another attempt a few seconds later, anything else
ends the run and returns the reserved tokens.
"""

from enum import Enum

import httpx


class CompletionFailure(str, Enum):
    OVERLOADED = "E_LLM_OVERLOADED"
    INVALID_KEY = "E_LLM_INVALID_KEY"
    RATE_LIMIT = "E_LLM_RATE_LIMIT"
    CONTEXT_TOO_LARGE = "E_LLM_CONTEXT_TOO_LARGE"
    TIMEOUT = "E_LLM_TIMEOUT"
    PROVIDER_DOWN = "E_LLM_PROVIDER_DOWN"
    MODEL_NOT_AVAILABLE = "E_MODEL_NOT_AVAILABLE"
    BAD_RESPONSE = "E_LLM_BAD_RESPONSE"


class CompletionError(Exception):
    """Raised by CompletionClient for every failed call."""

    def __init__(self, failure: CompletionFailure, message: str, provider: str | None = None):
        super().__init__(message)
        self.failure = failure
        self.message = message
        self.provider = provider

    @property
    def is_retriable(self) -> bool:
        return self.failure is CompletionFailure.OVERLOADED


_STATUS_FAILURES = {
    401: CompletionFailure.INVALID_KEY,
    403: CompletionFailure.INVALID_KEY,
    404: CompletionFailure.MODEL_NOT_AVAILABLE,
    429: CompletionFailure.RATE_LIMIT,
    503: CompletionFailure.OVERLOADED,
}

_CONTEXT_MARKERS = ("context_length_exceeded", "maximum context length")


def classify_status(status_code: int, body: dict | None = None) -> CompletionFailure:
    """Map a non-2xx provider response onto a failure."""
    if status_code in _STATUS_FAILURES:
        return _STATUS_FAILURES[status_code]
    if status_code == 400 and body:
        detail = body.get("error") or {}
        haystack = f"{detail.get('code') or ''} {detail.get('message') or ''}".lower()
        if any(marker in haystack for marker in _CONTEXT_MARKERS):
            return CompletionFailure.CONTEXT_TOO_LARGE
    return CompletionFailure.PROVIDER_DOWN


def classify_transport(exc: Exception) -> CompletionFailure:
    """Map an exception raised before any response arrived."""
    if isinstance(exc, httpx.TimeoutException):
        return CompletionFailure.TIMEOUT
    return CompletionFailure.PROVIDER_DOWN
