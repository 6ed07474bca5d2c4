"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from quizmint.schemas.auth import (
    CreateSessionRequest,
    CreateSignedUrlRequest,
    LogoutOut,
    SessionOut,
    SignedUrlOut,
)
from quizmint.schemas.billing import (
    CheckoutSessionOut,
    CheckoutSessionStatusOut,
    CheckoutStatus,
    CreateCheckoutSessionRequest,
    PaymentOut,
    RefundResponse,
    RequireLogin,
    TokenBalanceOut,
)
from quizmint.schemas.card_set import (
    LOCKED_PLACEHOLDER,
    AnswerIn,
    AnswerOut,
    CardSetListItem,
    CardSetStatus,
    CardSetView,
    CreateCardSetRequest,
    CreateCardSetResponse,
    CreateSubmissionRequest,
    OptionOut,
    PrepareResponse,
    QuestionOut,
    UnlockResponse,
)
from quizmint.schemas.jobs import GenerationJob, JobIterator
from quizmint.schemas.webhooks import CheckoutMetadata, OcrCompletion, SnsEnvelope

__all__ = [
    # Auth / upload
    "CreateSessionRequest",
    "SessionOut",
    "LogoutOut",
    "CreateSignedUrlRequest",
    "SignedUrlOut",
    # Billing
    "CheckoutStatus",
    "CreateCheckoutSessionRequest",
    "CheckoutSessionOut",
    "CheckoutSessionStatusOut",
    "RequireLogin",
    "RefundResponse",
    "PaymentOut",
    "TokenBalanceOut",
    # Card sets
    "CardSetStatus",
    "LOCKED_PLACEHOLDER",
    "OptionOut",
    "AnswerOut",
    "QuestionOut",
    "CardSetView",
    "CardSetListItem",
    "CreateCardSetRequest",
    "CreateCardSetResponse",
    "PrepareResponse",
    "UnlockResponse",
    "AnswerIn",
    "CreateSubmissionRequest",
    # Jobs
    "GenerationJob",
    "JobIterator",
    # Webhooks
    "CheckoutMetadata",
    "SnsEnvelope",
    "OcrCompletion",
]
