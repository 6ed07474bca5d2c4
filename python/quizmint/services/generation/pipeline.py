"""Question generation pipeline.

One invocation processes one chunk of a card set's source text:

1. Guard: the card set exists, has source text, and is not ready,
   errored or refunded. Otherwise the job is a no-op.
2. Idempotency: a GenerationStep keyed on (card set, chunk start) means
   this chunk was already persisted by an earlier delivery.
3. Call the completion model and validate its output.
4. In one transaction, record the GenerationStep and persist the chunk's
   questions (and set ready_at on the last chunk).
5. Publish the job for the next chunk.

Failure handling:
- Overloaded model: the identical job is re-published after a delay.
- Any other model failure, or unusable output: terminal.
- Publish failure: terminal.
Terminal failures set the card set's error and release its tokens in one
transaction.
"""

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Protocol
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from quizmint.db.models import CardSet, GenerationStep, Option, Question, utcnow
from quizmint.db.session import transaction
from quizmint.logging import bind_card_set, get_logger
from quizmint.schemas.jobs import GenerationJob, JobIterator
from quizmint.services import ledger
from quizmint.services.chunking import Chunk, ChunkIterator, advance, next_chunk
from quizmint.services.generation.prompt import build_prompt
from quizmint.services.generation.response import (
    GenerationPayload,
    GenerationResponseError,
    parse_generation_response,
)
from quizmint.services.jobs import JobScheduler, SchedulerError
from quizmint.services.llm import Completion, CompletionError

logger = get_logger(__name__)

COMPLETION_FAILED_MESSAGE = (
    "Question generation failed. Your tokens have been refunded; please try again later."
)
SCHEDULING_FAILED_MESSAGE = (
    "Something went wrong. Your tokens have been refunded; please try again later."
)
DEFAULT_RETRY_DELAY_S = 5


class CompletionSource(Protocol):
    async def complete(self, prompt: str) -> Completion: ...


class StepOutcome(str, Enum):
    CONTINUED = "continued"
    READY = "ready"
    RETRY_SCHEDULED = "retry_scheduled"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True)
class StepResult:
    outcome: StepOutcome
    card_set_id: UUID
    question_count: int = 0


def idempotency_key(card_set_id: UUID, chunk_start: int) -> str:
    """Key identifying one chunk of one card set."""
    return hashlib.sha256(f"{card_set_id}:{chunk_start}".encode()).hexdigest()


def is_processable(card_set: CardSet | None) -> bool:
    return (
        card_set is not None
        and bool(card_set.source_text and card_set.source_text.strip())
        and card_set.ready_at is None
        and card_set.error is None
        and card_set.refunded_at is None
    )


def fail_card_set(db: Session, card_set_id: UUID, message: str) -> bool:
    """Record a terminal error and release the card set's tokens.

    Both effects commit together. A card set that already reached a
    terminal state is left untouched.

    Returns:
        True if this call recorded the error.
    """
    with transaction(db):
        result = db.execute(
            update(CardSet)
            .where(
                CardSet.id == card_set_id,
                CardSet.ready_at.is_(None),
                CardSet.error.is_(None),
            )
            .values(error=message)
            .execution_options(synchronize_session=False)
        )
        recorded = result.rowcount == 1
        released = ledger.release(db, card_set_id) if recorded else 0

    if recorded:
        logger.warning("card_set_failed", card_set_id=str(card_set_id), released_tokens=released)
    # The bulk update bypassed the identity map
    card_set = db.get(CardSet, card_set_id)
    if card_set is not None:
        db.refresh(card_set)
    return recorded


def _persist_questions(
    db: Session, card_set_id: UUID, payload: GenerationPayload
) -> list[Question]:
    # One timestamp per batch keeps chunk arrival order, index orders within it
    created_at = utcnow()
    questions = []
    for question_index, item in enumerate(payload.d):
        question = Question(
            card_set_id=card_set_id,
            text=item.q,
            index=question_index,
            created_at=created_at,
            options=[
                Option(text=text, index=option_index, is_correct=option_index == item.a)
                for option_index, text in enumerate(item.o)
            ],
        )
        db.add(question)
        questions.append(question)
    return questions


async def _publish_or_fail(
    db: Session,
    scheduler: JobScheduler,
    job: GenerationJob,
    *,
    delay_s: int = 0,
) -> bool:
    try:
        await scheduler.publish(job, delay_s=delay_s)
    except SchedulerError as e:
        logger.error("generation_publish_failed", error=str(e), delay_s=delay_s)
        await run_in_threadpool(fail_card_set, db, job.card_set_id, SCHEDULING_FAILED_MESSAGE)
        return False
    return True


def _plan_step(db: Session, job: GenerationJob) -> tuple[Chunk | None, GenerationStep | None]:
    """Find the chunk this job covers and whether it was already persisted.

    Returns (None, None) when the card set is not processable. Ends the
    read transaction so none is held open across the model call.
    """
    card_set = db.get(CardSet, job.card_set_id)
    if not is_processable(card_set):
        logger.info("generation_step_skipped", reason="not_processable", found=card_set is not None)
        db.commit()
        return None, None

    chunk = next_chunk(card_set.source_text, job.chunk_iterator())
    existing = db.scalar(
        select(GenerationStep).where(
            GenerationStep.idempotency_key == idempotency_key(job.card_set_id, chunk.start)
        )
    )
    db.commit()
    return chunk, existing


def _continuation_of(db: Session, step: GenerationStep) -> GenerationJob | None:
    """Job for the chunk after ``step``, unless that chunk is already persisted."""
    logger.info("generation_step_duplicate", chunk_start=step.chunk_start)
    if not step.has_more or step.next_last_index is None:
        return None

    next_key = idempotency_key(step.card_set_id, step.next_last_index)
    next_done = db.scalar(
        select(GenerationStep.id).where(GenerationStep.idempotency_key == next_key)
    )
    job = None
    if next_done is None:
        job = GenerationJob(
            card_set_id=step.card_set_id,
            iterator=JobIterator(
                last_index=step.next_last_index, incomplete_chunk=step.incomplete_chunk
            ),
        )
    db.commit()
    return job


def _record_step(
    db: Session,
    card_set_id: UUID,
    chunk: Chunk,
    payload: GenerationPayload,
    next_iterator: ChunkIterator | None,
) -> StepOutcome:
    """Persist a chunk's questions together with its GenerationStep.

    Returns READY or CONTINUED when written, SKIPPED when the card set
    changed state during the model call, DUPLICATE when a concurrent
    delivery won the idempotency key.
    """
    try:
        with transaction(db):
            card_set = db.scalar(
                select(CardSet).where(CardSet.id == card_set_id).with_for_update()
            )
            if not is_processable(card_set):
                # Refunded or failed while the model was running
                logger.info("generation_step_skipped", reason="state_changed")
                return StepOutcome.SKIPPED

            db.add(
                GenerationStep(
                    card_set_id=card_set_id,
                    chunk_start=chunk.start,
                    idempotency_key=idempotency_key(card_set_id, chunk.start),
                    has_more=chunk.has_more,
                    next_last_index=next_iterator.last_index if next_iterator else None,
                    incomplete_chunk=next_iterator.incomplete_chunk if next_iterator else "",
                    question_count=len(payload.d),
                )
            )
            db.flush()
            _persist_questions(db, card_set_id, payload)
            if not chunk.has_more:
                card_set.ready_at = utcnow()
    except IntegrityError:
        logger.info("generation_step_duplicate", chunk_start=chunk.start, raced=True)
        return StepOutcome.DUPLICATE
    return StepOutcome.CONTINUED if chunk.has_more else StepOutcome.READY


async def run_generation_step(
    db: Session,
    job: GenerationJob,
    *,
    completion: CompletionSource,
    scheduler: JobScheduler,
    retry_delay_s: int = DEFAULT_RETRY_DELAY_S,
) -> StepResult:
    """Process one chunk of a card set.

    Database phases run in the threadpool; only the model call and the
    publishes are awaited on the event loop.

    Never raises for expected failures: the outcome tells the transport
    whether anything happened. Only unexpected errors (database outages)
    propagate, so the transport redelivers.
    """
    card_set_id = job.card_set_id
    bind_card_set(card_set_id)

    chunk, existing = await run_in_threadpool(_plan_step, db, job)
    if chunk is None:
        return StepResult(StepOutcome.SKIPPED, card_set_id)
    if existing is not None:
        next_job = await run_in_threadpool(_continuation_of, db, existing)
        if next_job is not None:
            if not await _publish_or_fail(db, scheduler, next_job):
                return StepResult(StepOutcome.FAILED, card_set_id)
            logger.info("generation_step_resumed", next_last_index=next_job.iterator.last_index)
        return StepResult(StepOutcome.DUPLICATE, card_set_id)

    logger.info(
        "generation_step_started",
        chunk_start=chunk.start,
        chunk_chars=len(chunk.text),
        has_more=chunk.has_more,
    )

    prompt = build_prompt(chunk)
    try:
        response = await completion.complete(prompt.text)
        payload = parse_generation_response(response.text)
    except CompletionError as e:
        if e.is_retriable:
            logger.info("generation_step_overloaded", delay_s=retry_delay_s)
            if not await _publish_or_fail(db, scheduler, job, delay_s=retry_delay_s):
                return StepResult(StepOutcome.FAILED, card_set_id)
            return StepResult(StepOutcome.RETRY_SCHEDULED, card_set_id)
        logger.error("generation_step_failed", error_class=e.failure.value, reason=e.message)
        await run_in_threadpool(fail_card_set, db, card_set_id, COMPLETION_FAILED_MESSAGE)
        return StepResult(StepOutcome.FAILED, card_set_id)
    except GenerationResponseError as e:
        logger.error(
            "generation_step_failed",
            error_class="invalid_response",
            reason=e.message,
            raw_length=e.raw_length,
        )
        await run_in_threadpool(fail_card_set, db, card_set_id, COMPLETION_FAILED_MESSAGE)
        return StepResult(StepOutcome.FAILED, card_set_id)

    next_iterator = advance(chunk, payload.ic) if chunk.has_more else None
    outcome = await run_in_threadpool(
        _record_step, db, card_set_id, chunk, payload, next_iterator
    )
    question_count = len(payload.d)
    if outcome == StepOutcome.READY:
        logger.info("generation_completed", question_count=question_count)
    if outcome != StepOutcome.CONTINUED:
        written = outcome == StepOutcome.READY
        return StepResult(outcome, card_set_id, question_count if written else 0)

    next_job = GenerationJob(
        card_set_id=card_set_id, iterator=JobIterator.from_chunk_iterator(next_iterator)
    )
    if not await _publish_or_fail(db, scheduler, next_job):
        return StepResult(StepOutcome.FAILED, card_set_id, question_count)

    logger.info(
        "generation_step_completed",
        question_count=question_count,
        next_last_index=next_iterator.last_index,
    )
    return StepResult(StepOutcome.CONTINUED, card_set_id, question_count)
