"""Celery task running one question generation step.

The Celery counterpart of POST /webhooks/question-builder, used when
JOB_TRANSPORT=celery. The step itself decides what a failure means; the
task never retries on its own (max_retries=0). Overload retries are
re-published by the step with a countdown.
"""

import asyncio

import httpx

from quizmint.celery import celery_app
from quizmint.config import get_settings
from quizmint.db.session import get_session_factory
from quizmint.logging import clear_task_context, configure_task_logging, get_logger
from quizmint.schemas.jobs import GenerationJob
from quizmint.services.generation import StepResult, run_generation_step
from quizmint.services.jobs import CeleryScheduler
from quizmint.services.llm import create_completion_client

logger = get_logger(__name__)


async def _run(job: GenerationJob) -> StepResult:
    settings = get_settings()
    db = get_session_factory()()
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0)) as client:
            return await run_generation_step(
                db,
                job,
                completion=create_completion_client(settings, client),
                scheduler=CeleryScheduler(),
                retry_delay_s=settings.overload_retry_delay_s,
            )
    finally:
        db.close()


def run_build_questions_sync(payload: dict) -> dict:
    """Validate the job payload and run one step to completion."""
    job = GenerationJob.model_validate(payload)
    result = asyncio.run(_run(job))
    return {
        "card_set_id": str(result.card_set_id),
        "outcome": result.outcome.value,
        "question_count": result.question_count,
    }


@celery_app.task(bind=True, max_retries=0, name="build_questions")
def build_questions(self, payload: dict, request_id: str | None = None) -> dict:
    """Run one generation step.

    Args:
        payload: GenerationJob as JSON.
        request_id: Optional request ID for log correlation.
    """
    configure_task_logging(
        request_id=request_id, task_name="build_questions", task_id=self.request.id
    )
    try:
        result = run_build_questions_sync(payload)
        logger.info("build_questions_finished", outcome=result["outcome"])
        return result
    finally:
        clear_task_context()
