"""Card set service layer.

Service functions correspond 1:1 with route handlers.
Routes are transport-only and call exactly one service function.

Access rules:
- Reads (find_one) are open to anyone holding the id; refunded card sets
  are reported as not found.
- unlock and recreate use E_FORBIDDEN for missing card sets as well, so the
  two cases cannot be told apart.
- prepare is open to anyone; the first signed-in caller to prepare or
  unlock an unowned card set becomes its creator.
"""

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload
from starlette.concurrency import run_in_threadpool

from quizmint.auth.middleware import Viewer
from quizmint.db.models import CardSet, Question, Submission, utcnow
from quizmint.db.session import transaction
from quizmint.errors import ApiError, ApiErrorCode, ForbiddenError, NotFoundError
from quizmint.logging import bind_card_set, get_logger
from quizmint.schemas.card_set import (
    CardSetListItem,
    CardSetView,
    CreateCardSetResponse,
    PrepareResponse,
    UnlockResponse,
)
from quizmint.schemas.jobs import GenerationJob
from quizmint.services import ledger
from quizmint.services.chunking import calculate_required_tokens
from quizmint.services.extraction import (
    ALLOWED_CONTENT_TYPES,
    ExtractionError,
    extract_text,
    is_pdf,
)
from quizmint.services.generation.pipeline import SCHEDULING_FAILED_MESSAGE, fail_card_set
from quizmint.services.jobs import JobScheduler, SchedulerError
from quizmint.services.ocr import OcrClientBase, OcrError
from quizmint.services.rate_limit import RateLimiter
from quizmint.services.resolver import (
    NO_LOCKING,
    PreviewLockPolicy,
    resolve_card_set,
    resolve_status,
)
from quizmint.services.users import ensure_user
from quizmint.storage import StorageClientBase, StorageError, is_valid_upload_key

logger = get_logger(__name__)

WORD_EXTRACTION_FAILED_MESSAGE = "Couldn't extract text from a Word document"
OCR_FAILED_PREFIX = "Error processing PDF file: "
OCR_SUCCEEDED = "SUCCEEDED"
OCR_NO_TEXT_MESSAGE = "no text was found in the document"


# =============================================================================
# Shared Helpers
# =============================================================================


def get_card_set_or_404(db: Session, card_set_id: UUID) -> CardSet:
    """Load a card set that has not been refunded.

    Raises:
        NotFoundError(E_CARD_SET_NOT_FOUND): Missing or refunded.
    """
    card_set = db.get(CardSet, card_set_id)
    if card_set is None or card_set.refunded_at is not None:
        raise NotFoundError(ApiErrorCode.E_CARD_SET_NOT_FOUND, "Card set not found")
    return card_set


def _load_questions(db: Session, card_set_id: UUID) -> list[Question]:
    stmt = (
        select(Question)
        .where(Question.card_set_id == card_set_id)
        .options(selectinload(Question.options))
        .order_by(Question.created_at, Question.index)
    )
    return list(db.scalars(stmt).all())


def _load_submission(
    db: Session, card_set_id: UUID, viewer: Viewer, submission_id: UUID | None
) -> Submission | None:
    """The requested submission, or the viewer's latest one for the card set."""
    stmt = (
        select(Submission)
        .where(Submission.card_set_id == card_set_id)
        .options(selectinload(Submission.answers))
    )
    if submission_id is not None:
        submission = db.scalar(stmt.where(Submission.id == submission_id))
        if submission is None:
            raise NotFoundError(ApiErrorCode.E_NOT_FOUND, "Submission not found")
        return submission
    if viewer.is_anonymous:
        return None
    return db.scalar(
        stmt.where(Submission.user_id == viewer.user_id)
        .order_by(Submission.created_at.desc())
        .limit(1)
    )


def _to_created(card_set: CardSet) -> CreateCardSetResponse:
    return CreateCardSetResponse(
        id=card_set.id,
        status=resolve_status(card_set),
        required_tokens=card_set.required_tokens,
    )


# =============================================================================
# Reads
# =============================================================================


def find_one(
    db: Session,
    viewer: Viewer,
    card_set_id: UUID,
    submission_id: UUID | None = None,
    *,
    lock_policy: PreviewLockPolicy = NO_LOCKING,
) -> CardSetView:
    """Resolve a card set for display.

    Questions are loaded only once the card set is ready. The funding
    lookup runs only when the preview lock is enabled.
    """
    card_set = get_card_set_or_404(db, card_set_id)
    bind_card_set(card_set.id)

    submission = _load_submission(db, card_set.id, viewer, submission_id)
    questions = _load_questions(db, card_set.id) if card_set.ready_at is not None else []

    # Any redeemed token lifts the preview lock
    funded = True
    if lock_policy.enabled:
        funded = ledger.redeemed_count(db, card_set.id) > 0

    return resolve_card_set(
        card_set, questions, submission, funded=funded, lock_policy=lock_policy
    )


def find_all(db: Session, viewer: Viewer) -> list[CardSetListItem]:
    """The viewer's card sets, newest first. Errored and refunded ones are hidden."""
    if viewer.is_anonymous:
        return []

    stmt = (
        select(CardSet)
        .where(
            CardSet.created_by_user_id == viewer.user_id,
            CardSet.refunded_at.is_(None),
            CardSet.error.is_(None),
        )
        .order_by(CardSet.created_at.desc())
    )
    return [
        CardSetListItem(
            id=card_set.id,
            title=card_set.title,
            status=resolve_status(card_set),
            required_tokens=card_set.required_tokens,
            created_at=card_set.created_at,
        )
        for card_set in db.scalars(stmt).all()
    ]


# =============================================================================
# Creation
# =============================================================================


def create_card_set(
    db: Session,
    viewer: Viewer,
    file_key: str,
    title: str,
    *,
    storage: StorageClientBase,
    ocr: OcrClientBase,
    rate_limiter: RateLimiter,
) -> CreateCardSetResponse:
    """Create a card set from an uploaded document.

    Text is extracted synchronously. A PDF without a text layer is sent to
    OCR instead and the card set waits in ANALYZING until the OCR callback.

    Raises:
        ApiError(E_INVALID_REQUEST): Unknown key or missing upload.
        ApiError(E_INVALID_CONTENT_TYPE): Not a PDF or Word document.
        ApiError(E_EXTRACTION_FAILED): A Word document yielded no text.
        ApiError(E_RATE_LIMITED): Too many OCR jobs this hour.
        ApiError(E_UPSTREAM_ERROR): OCR could not be started.
    """
    if not is_valid_upload_key(file_key):
        raise ApiError(ApiErrorCode.E_INVALID_REQUEST, "Invalid file key")

    try:
        metadata = storage.head_object(file_key)
        if metadata is None:
            raise ApiError(ApiErrorCode.E_INVALID_REQUEST, "Uploaded file not found")
        content_type = metadata.content_type.split(";")[0].strip().lower()
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise ApiError(ApiErrorCode.E_INVALID_CONTENT_TYPE, "Unsupported file type")
        content = storage.get_object(file_key)
    except StorageError as e:
        logger.error("card_set_source_read_failed", key=file_key, error=e.message)
        raise ApiError(ApiErrorCode.E_STORAGE_ERROR, "Could not read the uploaded file") from e

    try:
        source_text = extract_text(content, content_type)
    except ExtractionError as e:
        logger.warning("card_set_extraction_failed", key=file_key, error=str(e))
        if not is_pdf(content_type):
            raise ApiError(ApiErrorCode.E_EXTRACTION_FAILED, WORD_EXTRACTION_FAILED_MESSAGE) from e
        source_text = ""

    with transaction(db):
        if not viewer.is_anonymous:
            ensure_user(db, viewer.user_id, viewer.email)

        if source_text:
            card_set = CardSet(
                title=title,
                source_file_key=file_key,
                source_text=source_text,
                required_tokens=calculate_required_tokens(len(source_text)),
                created_by_user_id=viewer.user_id,
            )
            db.add(card_set)
            db.flush()
            logger.info(
                "card_set_created",
                card_set_id=str(card_set.id),
                source_chars=len(source_text),
                required_tokens=card_set.required_tokens,
            )
            return _to_created(card_set)

        if not is_pdf(content_type):
            raise ApiError(ApiErrorCode.E_EXTRACTION_FAILED, WORD_EXTRACTION_FAILED_MESSAGE)

        rate_limiter.check_ocr_limit()
        try:
            job_id = ocr.start_text_detection(storage.bucket, file_key)
        except OcrError as e:
            raise ApiError(
                ApiErrorCode.E_UPSTREAM_ERROR, "Could not start processing the scanned document"
            ) from e

        # The upload key is the OCR idempotency token: same key, same job
        existing = db.scalar(select(CardSet).where(CardSet.textract_job_id == job_id))
        if existing is not None:
            return _to_created(existing)

        card_set = CardSet(
            title=title,
            source_file_key=file_key,
            textract_job_id=job_id,
            created_by_user_id=viewer.user_id,
        )
        db.add(card_set)
        db.flush()
        logger.info("card_set_created", card_set_id=str(card_set.id), ocr_job_id=job_id)
        return _to_created(card_set)


def recreate_card_set(db: Session, viewer: Viewer, card_set_id: UUID) -> CreateCardSetResponse:
    """Start over from an existing card set's source text.

    Raises:
        ForbiddenError: Missing card set, or one owned by someone else.
        ApiError(E_INVALID_REQUEST): The card set has no source text yet.
    """
    original = db.get(CardSet, card_set_id)
    if original is None or (
        original.created_by_user_id is not None and original.created_by_user_id != viewer.user_id
    ):
        raise ForbiddenError(
            message="You don't have the permissions to recreate this card set"
        )
    if original.source_text is None:
        raise ApiError(ApiErrorCode.E_INVALID_REQUEST, "This card set has no text yet")

    with transaction(db):
        card_set = CardSet(
            title=original.title,
            source_file_key=original.source_file_key,
            source_text=original.source_text,
            required_tokens=original.required_tokens,
            created_by_user_id=viewer.user_id,
        )
        db.add(card_set)
        db.flush()

    logger.info("card_set_recreated", card_set_id=str(card_set.id), source_id=str(card_set_id))
    return _to_created(card_set)


def complete_ocr(db: Session, job_id: str, status: str, *, ocr: OcrClientBase) -> UUID:
    """Apply a finished OCR job to its card set.

    Returns:
        The card set id.

    Raises:
        ApiError(E_INTERNAL): No card set has this job yet. The notification
            may have beaten the creating transaction, so the caller should
            answer with a status the notifier retries.
    """
    card_set = db.scalar(select(CardSet).where(CardSet.textract_job_id == job_id))
    if card_set is None:
        logger.warning("ocr_callback_unknown_job", job_id=job_id)
        raise ApiError(ApiErrorCode.E_INTERNAL, "Not ready to process this request")
    bind_card_set(card_set.id)

    if card_set.source_text is not None or card_set.error is not None:
        logger.info("ocr_callback_duplicate", job_id=job_id)
        return card_set.id

    if status != OCR_SUCCEEDED:
        message = ocr.status_message(job_id) or status
        with transaction(db):
            card_set.error = OCR_FAILED_PREFIX + message
        logger.error("ocr_failed", job_id=job_id, status=status, reason=message)
        return card_set.id

    try:
        source_text = "".join(f"{line}\n" for line in ocr.iter_lines(job_id))
    except OcrError as e:
        logger.error("ocr_results_unavailable", job_id=job_id, error=str(e))
        raise ApiError(ApiErrorCode.E_UPSTREAM_ERROR, "Could not read OCR results") from e

    if not source_text.strip():
        with transaction(db):
            card_set.error = OCR_FAILED_PREFIX + OCR_NO_TEXT_MESSAGE
        logger.warning("ocr_no_text", job_id=job_id)
        return card_set.id

    with transaction(db):
        card_set.source_text = source_text
        card_set.required_tokens = calculate_required_tokens(len(source_text))

    logger.info(
        "ocr_completed",
        job_id=job_id,
        source_chars=len(source_text),
        required_tokens=card_set.required_tokens,
    )
    return card_set.id


# =============================================================================
# Funding and generation
# =============================================================================


async def prepare_card_set(
    db: Session,
    viewer: Viewer,
    card_set_id: UUID,
    *,
    scheduler: JobScheduler,
    lock_wait_ms: int = ledger.DEFAULT_LOCK_WAIT_MS,
    timeout_ms: int = ledger.DEFAULT_TIMEOUT_MS,
) -> PrepareResponse:
    """Start question generation.

    The WAITING -> PREPARING transition is a conditional update, so of two
    concurrent calls exactly one proceeds. In the same transaction the
    caller's tokens are redeemed, all or nothing; generation starts
    whether or not tokens were available. The first job is published after
    commit.

    Raises:
        ApiError(E_CARD_SET_NOT_PREPARABLE): Not in WAITING.
        ApiError(E_LEDGER_BUSY): The reservation timed out; nothing changed.
        ApiError(E_UPSTREAM_ERROR): The first job could not be published.
            The card set is marked failed and its tokens released.
    """
    bind_card_set(card_set_id)
    used_tokens = await run_in_threadpool(
        _start_preparation, db, viewer, card_set_id, lock_wait_ms, timeout_ms
    )
    logger.info("card_set_prepare_started", used_tokens=used_tokens)

    try:
        await scheduler.publish(GenerationJob(card_set_id=card_set_id))
    except SchedulerError as e:
        logger.error("card_set_prepare_publish_failed", error=str(e))
        await run_in_threadpool(fail_card_set, db, card_set_id, SCHEDULING_FAILED_MESSAGE)
        raise ApiError(
            ApiErrorCode.E_UPSTREAM_ERROR, "Could not start question generation"
        ) from e

    return PrepareResponse(success=True, used_tokens=used_tokens)


def _start_preparation(
    db: Session, viewer: Viewer, card_set_id: UUID, lock_wait_ms: int, timeout_ms: int
) -> int:
    """Guarded WAITING -> PREPARING transition plus token redemption.

    Returns the number of tokens redeemed.
    """
    values: dict = {"prepare_started_at": utcnow()}
    if not viewer.is_anonymous:
        values["created_by_user_id"] = func.coalesce(CardSet.created_by_user_id, viewer.user_id)

    with ledger.ledger_transaction(db, lock_wait_ms=lock_wait_ms, timeout_ms=timeout_ms):
        if not viewer.is_anonymous:
            ensure_user(db, viewer.user_id, viewer.email)

        result = db.execute(
            update(CardSet)
            .where(
                CardSet.id == card_set_id,
                CardSet.prepare_started_at.is_(None),
                func.trim(CardSet.source_text) != "",
                CardSet.ready_at.is_(None),
                CardSet.error.is_(None),
                CardSet.refunded_at.is_(None),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ApiError(
                ApiErrorCode.E_CARD_SET_NOT_PREPARABLE, "This card set cannot be prepared"
            )

        used_tokens = 0
        if not viewer.is_anonymous:
            required = db.scalar(select(CardSet.required_tokens).where(CardSet.id == card_set_id))
            used_tokens = ledger.reserve(db, viewer.user_id, card_set_id, required).reserved
    return used_tokens


def unlock_card_set(
    db: Session,
    viewer: Viewer,
    card_set_id: UUID,
    *,
    lock_wait_ms: int = ledger.DEFAULT_LOCK_WAIT_MS,
    timeout_ms: int = ledger.DEFAULT_TIMEOUT_MS,
) -> UnlockResponse:
    """Fund a card set with the viewer's tokens.

    Only the shortfall is redeemed, all or nothing. On failure nothing
    changes and ``required_tokens`` is how many more tokens are needed.

    Raises:
        ForbiddenError: Missing, refunded, or owned by someone else.
        ApiError(E_CARD_SET_NOT_PREPARABLE): Generation failed; tokens redeemed
            now would never be used.
        ApiError(E_LEDGER_BUSY): The reservation timed out; nothing changed.
    """
    bind_card_set(card_set_id)
    card_set = db.get(CardSet, card_set_id)
    if (
        card_set is None
        or card_set.refunded_at is not None
        or (
            card_set.created_by_user_id is not None
            and card_set.created_by_user_id != viewer.user_id
        )
    ):
        raise ForbiddenError(message="You don't have the permissions to unlock this card set")
    if card_set.error is not None:
        raise ApiError(
            ApiErrorCode.E_CARD_SET_NOT_PREPARABLE, "This card set failed and cannot be unlocked"
        )

    required = card_set.required_tokens
    redeemed = ledger.redeemed_count(db, card_set_id)
    if redeemed >= required:
        return UnlockResponse(success=True, used_tokens=0)

    needed = required - redeemed
    if viewer.is_anonymous:
        return UnlockResponse(success=False, required_tokens=needed)

    with ledger.ledger_transaction(db, lock_wait_ms=lock_wait_ms, timeout_ms=timeout_ms):
        ensure_user(db, viewer.user_id, viewer.email)
        reservation = ledger.reserve(db, viewer.user_id, card_set_id, needed)
        if reservation.ok:
            db.execute(
                update(CardSet)
                .where(CardSet.id == card_set_id, CardSet.created_by_user_id.is_(None))
                .values(created_by_user_id=viewer.user_id)
                .execution_options(synchronize_session=False)
            )

    if not reservation.ok:
        return UnlockResponse(success=False, required_tokens=needed - reservation.available)

    logger.info("card_set_unlocked", used_tokens=reservation.reserved)
    return UnlockResponse(success=True, used_tokens=reservation.reserved)