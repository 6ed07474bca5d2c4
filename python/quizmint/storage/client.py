"""Object storage client abstraction.

Uploads go straight from the browser to S3 through a presigned PUT URL.
The API only ever reads uploads back (content type and bytes) when a card
set is created from them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from quizmint.config import Settings
from quizmint.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SignedUpload:
    """Presigned PUT target for a browser upload."""

    url: str
    key: str


@dataclass(frozen=True)
class ObjectMetadata:
    """Storage object metadata.

    Advisory only: the content type is whatever the uploader declared.
    """

    content_type: str
    size_bytes: int


class StorageError(Exception):
    """Storage operation error."""

    def __init__(self, message: str, code: str = "E_STORAGE_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class StorageClientBase(ABC):
    """Abstract base class for storage client implementations."""

    bucket: str

    @abstractmethod
    def sign_upload(self, key: str, *, content_type: str, expires_in: int = 3600) -> SignedUpload:
        """Create a presigned upload URL.

        Raises:
            StorageError: If signing fails.
        """
        ...

    @abstractmethod
    def head_object(self, key: str) -> ObjectMetadata | None:
        """Object metadata, or None if the object does not exist."""
        ...

    @abstractmethod
    def get_object(self, key: str) -> bytes:
        """Full object content.

        Raises:
            StorageError: If the object doesn't exist or the read fails.
        """
        ...


class S3StorageClient(StorageClientBase):
    """Production S3 client."""

    def __init__(self, bucket: str, *, region: str, client=None):
        self.bucket = bucket
        self._s3 = client or boto3.client("s3", region_name=region)

    def sign_upload(self, key: str, *, content_type: str, expires_in: int = 3600) -> SignedUpload:
        try:
            url = self._s3.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("storage_sign_upload_failed", key=key, error=str(e))
            raise StorageError(f"Failed to sign upload: {e}", code="E_SIGN_UPLOAD_FAILED") from e
        return SignedUpload(url=url, key=key)

    def head_object(self, key: str) -> ObjectMetadata | None:
        try:
            response = self._s3.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return None
            raise StorageError(f"Failed to read object metadata: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read object metadata: {e}") from e

        return ObjectMetadata(
            content_type=response.get("ContentType", "application/octet-stream"),
            size_bytes=int(response.get("ContentLength", 0)),
        )

    def get_object(self, key: str) -> bytes:
        try:
            response = self._s3.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey"):
                raise StorageError(f"Object not found: {key}", code="E_STORAGE_MISSING") from e
            raise StorageError(f"Failed to read object: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read object: {e}") from e


class FakeStorageClient(StorageClientBase):
    """In-memory storage client for tests."""

    def __init__(self, bucket: str = "test-bucket"):
        self.bucket = bucket
        self._objects: dict[str, tuple[bytes, str]] = {}

    def sign_upload(self, key: str, *, content_type: str, expires_in: int = 3600) -> SignedUpload:
        return SignedUpload(
            url=f"https://fake-storage.test/{self.bucket}/{key}?expires={expires_in}",
            key=key,
        )

    def head_object(self, key: str) -> ObjectMetadata | None:
        if key not in self._objects:
            return None
        content, content_type = self._objects[key]
        return ObjectMetadata(content_type=content_type, size_bytes=len(content))

    def get_object(self, key: str) -> bytes:
        if key not in self._objects:
            raise StorageError(f"Object not found: {key}", code="E_STORAGE_MISSING")
        return self._objects[key][0]

    # Test helper methods

    def put_object(self, key: str, content: bytes, content_type: str = "application/pdf") -> None:
        self._objects[key] = (content, content_type)

    def clear(self) -> None:
        self._objects.clear()


def create_storage_client(settings: Settings) -> StorageClientBase:
    """Build the S3 client from settings."""
    return S3StorageClient(settings.aws_upload_bucket, region=settings.aws_region)
