"""Pytest configuration and fixtures for Quizmint tests.

Test isolation strategy:
- Tests that use db_session get a nested transaction (savepoint) that rolls back
- Without a PostgreSQL DATABASE_URL the suite runs on in-memory SQLite;
  tests that need row locks or statement timeouts are marked ``postgres``
  and skipped there
- Tests needing multiple connections use the committed_rows fixture
- API tests use a TestClient whose app gets every upstream as a fake
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")
os.environ.setdefault("QUIZMINT_ENV", "test")

from collections.abc import Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from quizmint.api.deps import get_db
from quizmint.app import create_app
from quizmint.auth.identity import FakeIdentityProvider
from quizmint.config import clear_settings_cache
from quizmint.services.jobs import RecordingScheduler
from quizmint.services.ocr import FakeOcrClient
from quizmint.services.payments import FakePaymentGateway
from quizmint.services.rate_limit import RateLimiter
from quizmint.services.resolver import PreviewLockPolicy
from quizmint.services.signature import SignatureVerifier
from quizmint.storage import FakeStorageClient
from tests.helpers import (
    QUESTION_BUILDER_KEYS,
    FakeRedis,
    ScriptedCompletion,
)
from tests.utils.db import CommittedRows, create_test_engine, rollback_session


def get_test_database_url() -> str:
    return os.environ["DATABASE_URL"]


def is_postgres() -> bool:
    return get_test_database_url().startswith("postgresql")


def pytest_collection_modifyitems(config, items):
    if is_postgres():
        return
    skip = pytest.mark.skip(reason="needs a PostgreSQL DATABASE_URL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    """One engine, with the schema created, for the whole run."""
    engine = create_test_engine(get_test_database_url())
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine: Engine) -> Generator[Session, None, None]:
    """Session whose writes vanish when the test ends."""
    with rollback_session(engine) as session:
        yield session


@pytest.fixture
def committed_rows(engine: Engine) -> Generator[CommittedRows, None, None]:
    """Sessions that really commit, for tests spanning several connections."""
    rows = CommittedRows(engine)
    yield rows
    rows.purge()


# =============================================================================
# Upstream fakes
# =============================================================================


@pytest.fixture
def storage() -> FakeStorageClient:
    return FakeStorageClient()


@pytest.fixture
def ocr() -> FakeOcrClient:
    return FakeOcrClient()


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def completion() -> ScriptedCompletion:
    return ScriptedCompletion()


@pytest.fixture
def redis_client() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def rate_limiter(redis_client: FakeRedis) -> RateLimiter:
    return RateLimiter(redis_client, ocr_limit_per_hour=3)


@pytest.fixture
def lock_policy() -> PreviewLockPolicy:
    return PreviewLockPolicy()


@pytest.fixture
def signature_verifier() -> SignatureVerifier:
    current_key, next_key = QUESTION_BUILDER_KEYS
    return SignatureVerifier(current_key, next_key)


# =============================================================================
# Application
# =============================================================================


@pytest.fixture
def app(
    db_session: Session,
    identity_provider,
    storage,
    ocr,
    scheduler,
    completion,
    gateway,
    signature_verifier,
    rate_limiter,
    lock_policy,
) -> FastAPI:
    """App wired to the fakes and the test session."""
    app = create_app(
        identity_provider=identity_provider,
        storage=storage,
        ocr=ocr,
        scheduler=scheduler,
        completion=completion,
        payment_gateway=gateway,
        signature_verifier=signature_verifier,
        rate_limiter=rate_limiter,
        lock_policy=lock_policy,
        log_requests=False,
    )

    def _get_test_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = _get_test_db
    return app


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Anonymous test client. Use tests.helpers.sign_in() to authenticate."""
    with TestClient(app) as client:
        yield client


@pytest.fixture(autouse=True)
def reset_settings_cache():
    clear_settings_cache()
    yield
    clear_settings_cache()
