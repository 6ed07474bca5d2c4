"""Quizmint HTTP application.

``create_app`` wires routes, middleware and exception handlers. Upstream
clients (object store, OCR, payments, scheduler, completion model) are
attached to ``app.state``: tests pass fakes in, and whatever is missing
is built from settings when the lifespan starts.

Middleware runs in reverse order of registration, so RequestIDMiddleware
is registered last. Per request:
1. RequestIDMiddleware binds request_id and starts the timer
2. SessionMiddleware resolves the session cookie to a Viewer
3. The route handler runs
4. RequestIDMiddleware logs the access entry and sets X-Request-ID
"""

from contextlib import asynccontextmanager

import httpx
import redis
from fastapi import FastAPI

from quizmint.api.routes import create_api_router
from quizmint.auth.identity import FirebaseIdentityProvider, IdentityProviderBase
from quizmint.auth.middleware import SessionMiddleware
from quizmint.config import Environment, Settings, get_settings
from quizmint.logging import configure_logging, get_logger
from quizmint.middleware.request_id import RequestIDMiddleware
from quizmint.responses import register_exception_handlers
from quizmint.services.jobs import JobScheduler, create_scheduler
from quizmint.services.llm import create_completion_client
from quizmint.services.ocr import OcrClientBase, create_ocr_client
from quizmint.services.payments import PaymentGatewayBase, StripeGateway
from quizmint.services.rate_limit import RateLimiter
from quizmint.services.resolver import PreviewLockPolicy
from quizmint.services.signature import SignatureVerifier
from quizmint.storage import StorageClientBase, create_storage_client

configure_logging()

logger = get_logger(__name__)

# Attributes on app.state that the lifespan fills when create_app left them empty
COLLABORATORS = (
    "httpx_client",
    "rate_limiter",
    "storage",
    "ocr",
    "scheduler",
    "completion",
    "payment_gateway",
    "signature_verifier",
    "lock_policy",
)


def _connect_redis(settings: Settings) -> redis.Redis | None:
    """Rate-limit backend. The limiter fails open when this is None."""
    if not settings.redis_url:
        return None
    client = redis.Redis.from_url(settings.redis_url, decode_responses=True, socket_timeout=5)
    try:
        client.ping()
    except redis.RedisError as e:
        logger.warning("redis_unavailable", error=str(e))
        return None
    return client


def _build_defaults(settings: Settings, state) -> dict:
    """Factories for every collaborator, keyed by app.state attribute."""
    return {
        "httpx_client": lambda: httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=10.0),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        ),
        "rate_limiter": lambda: RateLimiter(
            _connect_redis(settings), ocr_limit_per_hour=settings.ocr_trigger_limit_per_hour
        ),
        "storage": lambda: create_storage_client(settings),
        "ocr": lambda: create_ocr_client(settings),
        "scheduler": lambda: create_scheduler(settings, state.httpx_client),
        "completion": lambda: create_completion_client(settings, state.httpx_client),
        "payment_gateway": lambda: StripeGateway(
            settings.stripe_secret_key or "", settings.stripe_webhook_secret
        ),
        "signature_verifier": lambda: SignatureVerifier(
            settings.qstash_current_signing_key,
            settings.qstash_next_signing_key,
            clock_tolerance_s=settings.qstash_clock_tolerance_s,
        ),
        "lock_policy": lambda: PreviewLockPolicy(
            enabled=settings.preview_lock_enabled,
            free_preview_count=settings.free_preview_questions,
        ),
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    factories = _build_defaults(settings, app.state)

    built = []
    for name in COLLABORATORS:
        if getattr(app.state, name, None) is None:
            setattr(app.state, name, factories[name]())
            built.append(name)
    logger.info(
        "app_started",
        built=built,
        job_transport=settings.job_transport.value,
        preview_lock_enabled=app.state.lock_policy.enabled,
    )

    yield

    # Only release what this lifespan created
    if "httpx_client" in built:
        await app.state.httpx_client.aclose()
    if "rate_limiter" in built and app.state.rate_limiter.redis is not None:
        app.state.rate_limiter.redis.close()
    logger.info("app_stopped")


def create_app(
    *,
    identity_provider: IdentityProviderBase | None = None,
    storage: StorageClientBase | None = None,
    ocr: OcrClientBase | None = None,
    scheduler: JobScheduler | None = None,
    completion=None,
    payment_gateway: PaymentGatewayBase | None = None,
    signature_verifier: SignatureVerifier | None = None,
    rate_limiter: RateLimiter | None = None,
    lock_policy: PreviewLockPolicy | None = None,
    http_client: httpx.AsyncClient | None = None,
    log_requests: bool = True,
) -> FastAPI:
    settings = get_settings()
    show_docs = settings.quizmint_env != Environment.PROD

    app = FastAPI(
        title="Quizmint API",
        description="Turns uploaded documents into multiple-choice quizzes",
        version="0.1.0",
        docs_url="/docs" if show_docs else None,
        redoc_url="/redoc" if show_docs else None,
        lifespan=lifespan,
    )

    identity_provider = identity_provider or FirebaseIdentityProvider.from_settings(settings)
    app.state.identity_provider = identity_provider
    app.state.httpx_client = http_client
    app.state.rate_limiter = rate_limiter
    app.state.storage = storage
    app.state.ocr = ocr
    app.state.scheduler = scheduler
    app.state.completion = completion
    app.state.payment_gateway = payment_gateway
    app.state.signature_verifier = signature_verifier
    app.state.lock_policy = lock_policy

    register_exception_handlers(app)
    app.include_router(create_api_router())

    app.add_middleware(
        SessionMiddleware,
        identity_provider=identity_provider,
        cookie_name=settings.session_cookie_name,
    )
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)

    return app
