"""Asynchronous OCR for scanned PDFs (AWS Textract).

start_text_detection() kicks off a job; Textract notifies an SNS topic when
it finishes, SNS posts to /webhooks/textract, and the handler pages through
the job's LINE blocks.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from quizmint.config import Settings
from quizmint.logging import get_logger

logger = get_logger(__name__)

PAGE_SIZE = 1000


class OcrError(Exception):
    """OCR service call failed."""


class OcrClientBase(ABC):
    @abstractmethod
    def start_text_detection(self, bucket: str, key: str) -> str:
        """Start a detection job for an uploaded object and return its job id.

        The object key is also the idempotency token, so starting the same
        upload twice returns the same job.
        """
        ...

    @abstractmethod
    def iter_lines(self, job_id: str) -> Iterator[str]:
        """Yield the text of every LINE block of a finished job, in order."""
        ...

    @abstractmethod
    def status_message(self, job_id: str) -> str | None:
        """Provider explanation for a failed job, if it gave one."""
        ...


class TextractClient(OcrClientBase):
    def __init__(
        self,
        *,
        region: str,
        sns_topic_arn: str | None,
        role_arn: str | None,
        client=None,
    ):
        self._textract = client or boto3.client("textract", region_name=region)
        self._sns_topic_arn = sns_topic_arn
        self._role_arn = role_arn

    def start_text_detection(self, bucket: str, key: str) -> str:
        params: dict = {
            "DocumentLocation": {"S3Object": {"Bucket": bucket, "Name": key}},
            "ClientRequestToken": key,
        }
        if self._sns_topic_arn and self._role_arn:
            params["NotificationChannel"] = {
                "SNSTopicArn": self._sns_topic_arn,
                "RoleArn": self._role_arn,
            }
        try:
            response = self._textract.start_document_text_detection(**params)
        except (BotoCoreError, ClientError) as e:
            logger.error("ocr_start_failed", key=key, error=str(e))
            raise OcrError(f"Failed to start text detection: {e}") from e

        job_id = response["JobId"]
        logger.info("ocr_started", key=key, job_id=job_id)
        return job_id

    def iter_lines(self, job_id: str) -> Iterator[str]:
        next_token: str | None = None
        while True:
            params: dict = {"JobId": job_id, "MaxResults": PAGE_SIZE}
            if next_token:
                params["NextToken"] = next_token
            try:
                response = self._textract.get_document_text_detection(**params)
            except (BotoCoreError, ClientError) as e:
                raise OcrError(f"Failed to read text detection results: {e}") from e

            for block in response.get("Blocks", []):
                if block.get("BlockType") == "LINE" and block.get("Text"):
                    yield block["Text"]

            next_token = response.get("NextToken")
            if not next_token:
                return

    def status_message(self, job_id: str) -> str | None:
        try:
            response = self._textract.get_document_text_detection(JobId=job_id, MaxResults=1)
        except (BotoCoreError, ClientError) as e:
            logger.warning("ocr_status_lookup_failed", job_id=job_id, error=str(e))
            return None
        return response.get("StatusMessage")


@dataclass
class FakeOcrClient(OcrClientBase):
    """In-memory OCR client for tests."""

    lines: dict[str, list[str]] = field(default_factory=dict)
    started: list[tuple[str, str]] = field(default_factory=list)
    fail: bool = False
    messages: dict[str, str] = field(default_factory=dict)

    def start_text_detection(self, bucket: str, key: str) -> str:
        if self.fail:
            raise OcrError("ocr unavailable")
        self.started.append((bucket, key))
        return f"job-{key}"

    def iter_lines(self, job_id: str) -> Iterator[str]:
        if job_id not in self.lines:
            raise OcrError(f"unknown job {job_id}")
        yield from self.lines[job_id]

    def status_message(self, job_id: str) -> str | None:
        return self.messages.get(job_id)


def create_ocr_client(settings: Settings) -> OcrClientBase:
    return TextractClient(
        region=settings.aws_region,
        sns_topic_arn=settings.aws_sns_topic_arn,
        role_arn=settings.aws_role_arn,
    )
