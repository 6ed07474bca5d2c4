"""Application settings loaded from environment variables.

Environment Configuration:
    QUIZMINT_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: PostgreSQL connection string (required)
    PUBLIC_BASE_URL: Externally reachable base URL, used for job callbacks

Redis / Celery Configuration:
    REDIS_URL: Redis connection string (rate limiting, worker broker)
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)
    JOB_TRANSPORT: How generation jobs are chained (qstash | celery)

Scheduled messages (QStash):
    QSTASH_URL, QSTASH_TOKEN: Publish endpoint and bearer token
    QSTASH_CURRENT_SIGNING_KEY, QSTASH_NEXT_SIGNING_KEY: Signature keys

Upstream services:
    OPENAI_API_KEY, OPENAI_MODEL: Completion model used for question generation
    AWS_REGION, AWS_UPLOAD_BUCKET, AWS_SNS_TOPIC_ARN, AWS_ROLE_ARN: S3 + Textract
    STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET: Payments
    FIREBASE_PROJECT_ID, FIREBASE_CREDENTIALS_FILE: Identity provider

Staging and prod refuse to start without the upstream secrets set.
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class JobTransport(str, Enum):
    """Transport used to chain generation jobs."""

    QSTASH = "qstash"
    CELERY = "celery"


class Settings(BaseSettings):
    """Application configuration.

    Validation rules:
    - DATABASE_URL is always required
    - Upstream secrets are required in staging and prod only
    - QSTASH_* is required in staging/prod when JOB_TRANSPORT=qstash
    """

    quizmint_env: Environment = Field(default=Environment.LOCAL, alias="QUIZMINT_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    public_base_url: str = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")

    # Redis / Celery settings
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")
    job_transport: JobTransport = Field(default=JobTransport.QSTASH, alias="JOB_TRANSPORT")

    # Scheduled messages
    qstash_url: str = Field(default="https://qstash.upstash.io", alias="QSTASH_URL")
    qstash_token: str | None = Field(default=None, alias="QSTASH_TOKEN")
    qstash_current_signing_key: str | None = Field(
        default=None, alias="QSTASH_CURRENT_SIGNING_KEY"
    )
    qstash_next_signing_key: str | None = Field(default=None, alias="QSTASH_NEXT_SIGNING_KEY")
    qstash_clock_tolerance_s: int = Field(default=300, alias="QSTASH_CLOCK_TOLERANCE_S")
    overload_retry_delay_s: int = Field(default=5, alias="OVERLOAD_RETRY_DELAY_S")

    # Completion model
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-3.5-turbo", alias="OPENAI_MODEL")
    llm_timeout_s: float = Field(default=120.0, alias="LLM_TIMEOUT_S")

    # AWS (S3 uploads + Textract OCR)
    aws_region: str = Field(default="us-east-1", alias="AWS_REGION")
    aws_upload_bucket: str = Field(default="quizmint-uploads", alias="AWS_UPLOAD_BUCKET")
    aws_sns_topic_arn: str | None = Field(default=None, alias="AWS_SNS_TOPIC_ARN")
    aws_role_arn: str | None = Field(default=None, alias="AWS_ROLE_ARN")
    signed_url_expiry_s: int = Field(default=3600, alias="SIGNED_URL_EXPIRY_S")  # 1 hour
    ocr_trigger_limit_per_hour: int = Field(default=200, alias="OCR_TRIGGER_LIMIT_PER_HOUR")

    # Payments
    stripe_secret_key: str | None = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str | None = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    min_token_purchase: int = Field(default=5, alias="MIN_TOKEN_PURCHASE")

    # Identity provider
    firebase_project_id: str | None = Field(default=None, alias="FIREBASE_PROJECT_ID")
    firebase_credentials_file: str | None = Field(
        default=None, alias="FIREBASE_CREDENTIALS_FILE"
    )
    session_cookie_name: str = Field(default="session", alias="SESSION_COOKIE_NAME")
    session_cookie_secure: bool = Field(default=True, alias="SESSION_COOKIE_SECURE")
    session_max_age_s: int = Field(default=60 * 60 * 24 * 14, alias="SESSION_MAX_AGE_S")
    max_sign_in_age_s: int = Field(default=60 * 60, alias="MAX_SIGN_IN_AGE_S")

    # Question preview lock
    preview_lock_enabled: bool = Field(default=False, alias="PREVIEW_LOCK_ENABLED")
    free_preview_questions: int = Field(default=3, alias="FREE_PREVIEW_QUESTIONS")

    # Token ledger transaction budgets
    ledger_lock_wait_ms: int = Field(default=4000, alias="LEDGER_LOCK_WAIT_MS")
    ledger_timeout_ms: int = Field(default=10000, alias="LEDGER_TIMEOUT_MS")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure upstream secrets are present outside local/test."""
        if self.quizmint_env not in (Environment.STAGING, Environment.PROD):
            return self

        required = {
            "OPENAI_API_KEY": self.openai_api_key,
            "STRIPE_SECRET_KEY": self.stripe_secret_key,
            "STRIPE_WEBHOOK_SECRET": self.stripe_webhook_secret,
            "FIREBASE_PROJECT_ID": self.firebase_project_id,
            "AWS_SNS_TOPIC_ARN": self.aws_sns_topic_arn,
            "AWS_ROLE_ARN": self.aws_role_arn,
        }
        if self.job_transport == JobTransport.QSTASH:
            required.update(
                {
                    "QSTASH_TOKEN": self.qstash_token,
                    "QSTASH_CURRENT_SIGNING_KEY": self.qstash_current_signing_key,
                    "QSTASH_NEXT_SIGNING_KEY": self.qstash_next_signing_key,
                }
            )
        else:
            required["REDIS_URL"] = self.redis_url or self.celery_broker_url

        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ValueError(
                f"Missing required settings for QUIZMINT_ENV={self.quizmint_env.value}: "
                f"{', '.join(missing)}"
            )

        return self

    @property
    def question_builder_url(self) -> str:
        """Public URL that receives generation jobs."""
        return f"{self.public_base_url.rstrip('/')}/webhooks/question-builder"

    @property
    def effective_celery_broker_url(self) -> str | None:
        return self.celery_broker_url or self.redis_url

    @property
    def effective_celery_result_backend(self) -> str | None:
        return self.celery_result_backend or self.redis_url


@lru_cache
def get_settings() -> Settings:
    """Settings from the environment, read once per process.

    Raises:
        ValidationError: A required value is missing for QUIZMINT_ENV.
    """
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
