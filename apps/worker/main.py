"""Generation worker.

    celery -A apps.worker.main:celery_app worker -Q generation --loglevel=info

Needed only with JOB_TRANSPORT=celery. With scheduled messages the same
step runs inside the API behind /webhooks/question-builder.
"""

from celery.signals import worker_process_init

from quizmint.celery import GENERATION_QUEUE, celery_app
from quizmint.logging import configure_logging, get_logger
from quizmint.tasks import build_questions

__all__ = ["build_questions", "celery_app"]


@worker_process_init.connect
def _init_worker_process(**kwargs):
    configure_logging()
    get_logger(__name__).info("worker_process_started", queue=GENERATION_QUEUE)
