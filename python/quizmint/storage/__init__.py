"""Object storage for uploaded documents."""

from quizmint.storage.client import (
    FakeStorageClient,
    ObjectMetadata,
    S3StorageClient,
    SignedUpload,
    StorageClientBase,
    StorageError,
    create_storage_client,
)
from quizmint.storage.paths import is_valid_upload_key, new_upload_key

__all__ = [
    "StorageClientBase",
    "S3StorageClient",
    "FakeStorageClient",
    "SignedUpload",
    "ObjectMetadata",
    "StorageError",
    "create_storage_client",
    "new_upload_key",
    "is_valid_upload_key",
]
