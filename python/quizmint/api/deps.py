"""FastAPI dependencies for route handlers.

Collaborator handles are built once in the app lifespan and stored on
``app.state``; these dependencies hand them to routes.
"""

import httpx
from fastapi import Request

from quizmint.auth.identity import IdentityProviderBase
from quizmint.config import Settings, get_settings
from quizmint.db.session import get_db
from quizmint.services.jobs import JobScheduler
from quizmint.services.llm import CompletionClient
from quizmint.services.ocr import OcrClientBase
from quizmint.services.payments import PaymentGatewayBase
from quizmint.services.rate_limit import RateLimiter
from quizmint.services.resolver import PreviewLockPolicy
from quizmint.services.signature import SignatureVerifier
from quizmint.storage import StorageClientBase

__all__ = [
    "get_db",
    "get_app_settings",
    "get_storage",
    "get_ocr",
    "get_rate_limiter",
    "get_scheduler",
    "get_completion",
    "get_identity_provider",
    "get_payment_gateway",
    "get_signature_verifier",
    "get_lock_policy",
    "get_http_client",
]


def get_app_settings() -> Settings:
    return get_settings()


def get_storage(request: Request) -> StorageClientBase:
    return request.app.state.storage


def get_ocr(request: Request) -> OcrClientBase:
    return request.app.state.ocr


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_scheduler(request: Request) -> JobScheduler:
    return request.app.state.scheduler


def get_completion(request: Request) -> CompletionClient:
    """Shared completion client (pooled httpx.AsyncClient underneath)."""
    return request.app.state.completion


def get_identity_provider(request: Request) -> IdentityProviderBase:
    return request.app.state.identity_provider


def get_payment_gateway(request: Request) -> PaymentGatewayBase:
    return request.app.state.payment_gateway


def get_signature_verifier(request: Request) -> SignatureVerifier:
    return request.app.state.signature_verifier


def get_lock_policy(request: Request) -> PreviewLockPolicy:
    return request.app.state.lock_policy


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.httpx_client
