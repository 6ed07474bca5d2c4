"""Generation job scheduling.

Each generation step ends by publishing the next job (or the same job again
after an overload). Delivery is at-least-once.

Transports:
- QStashScheduler: publishes to the scheduled-message service, which POSTs
  the body back to /webhooks/question-builder (signed).
- CeleryScheduler: enqueues the build_questions task on the worker queue.
- RecordingScheduler: in-memory, for tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from quizmint.config import JobTransport, Settings
from quizmint.logging import get_logger
from quizmint.schemas.jobs import GenerationJob

logger = get_logger(__name__)


class SchedulerError(Exception):
    """A job could not be handed to the transport."""


class JobScheduler(ABC):
    """Abstract transport for generation jobs."""

    @abstractmethod
    async def publish(self, job: GenerationJob, *, delay_s: int = 0) -> str | None:
        """Publish a job, optionally delayed.

        Returns:
            Transport message id, when the transport provides one.

        Raises:
            SchedulerError: The job was not accepted.
        """
        ...


class QStashScheduler(JobScheduler):
    """Publishes jobs through the QStash HTTP API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        token: str,
        destination_url: str,
        timeout_s: float = 10.0,
    ):
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._destination_url = destination_url
        self._timeout_s = timeout_s

    async def publish(self, job: GenerationJob, *, delay_s: int = 0) -> str | None:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }
        if delay_s > 0:
            headers["Upstash-Delay"] = f"{delay_s}s"

        try:
            response = await self._client.post(
                f"{self._base_url}/v2/publish/{self._destination_url}",
                headers=headers,
                content=job.model_dump_json(),
                timeout=self._timeout_s,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SchedulerError(f"publish rejected: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise SchedulerError(f"publish failed: {type(e).__name__}") from e

        message_id = response.json().get("messageId")
        logger.info(
            "job_published",
            transport="qstash",
            card_set_id=str(job.card_set_id),
            message_id=message_id,
            delay_s=delay_s,
        )
        return message_id


class CeleryScheduler(JobScheduler):
    """Enqueues jobs on the Celery worker."""

    async def publish(self, job: GenerationJob, *, delay_s: int = 0) -> str | None:
        from quizmint.tasks.build_questions import build_questions

        try:
            result = build_questions.apply_async(
                args=[job.model_dump(mode="json")],
                countdown=delay_s or None,
            )
        except Exception as e:
            raise SchedulerError(f"enqueue failed: {type(e).__name__}") from e

        logger.info(
            "job_published",
            transport="celery",
            card_set_id=str(job.card_set_id),
            task_id=result.id,
            delay_s=delay_s,
        )
        return result.id


@dataclass
class PublishedJob:
    job: GenerationJob
    delay_s: int


class RecordingScheduler(JobScheduler):
    """In-memory scheduler that records published jobs.

    Set ``fail`` to make publish raise SchedulerError.
    """

    def __init__(self, fail: bool = False):
        self.published: list[PublishedJob] = []
        self.fail = fail

    async def publish(self, job: GenerationJob, *, delay_s: int = 0) -> str | None:
        if self.fail:
            raise SchedulerError("publish failed")
        self.published.append(PublishedJob(job=job, delay_s=delay_s))
        return f"msg_{len(self.published)}"

    def pop(self) -> PublishedJob:
        return self.published.pop(0)

    def clear(self) -> None:
        self.published.clear()


def create_scheduler(settings: Settings, http_client: httpx.AsyncClient) -> JobScheduler:
    """Scheduler for the configured JOB_TRANSPORT."""
    if settings.job_transport == JobTransport.CELERY:
        return CeleryScheduler()
    return QStashScheduler(
        http_client,
        base_url=settings.qstash_url,
        token=settings.qstash_token or "",
        destination_url=settings.question_builder_url,
    )
