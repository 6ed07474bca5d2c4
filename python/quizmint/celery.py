"""Celery app for the ``JOB_TRANSPORT=celery`` generation transport.

The API only enqueues (CeleryScheduler); apps/worker runs the tasks.
Generation steps wait on a completion model for tens of seconds, so
workers take one message at a time and acknowledge it only once the
step has run: a worker lost mid-step means the step is redelivered.
"""

from celery import Celery

from quizmint.config import Settings, get_settings

GENERATION_QUEUE = "generation"


def create_celery_app(settings: Settings) -> Celery:
    app = Celery(
        "quizmint",
        broker=settings.effective_celery_broker_url,
        backend=settings.effective_celery_result_backend,
    )
    app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        enable_utc=True,
        timezone="UTC",
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        # Give the completion call its whole timeout before the hard kill
        task_time_limit=int(settings.llm_timeout_s) + 60,
        result_expires=24 * 3600,
        task_default_queue="default",
        task_routes={"build_questions": {"queue": GENERATION_QUEUE}},
    )
    return app


celery_app = create_celery_app(get_settings())
