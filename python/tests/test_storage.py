"""Tests for the S3 storage client against a stubbed boto3 client."""

import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from quizmint.storage import S3StorageClient, StorageError


@pytest.fixture
def s3():
    client = boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


class TestS3StorageClient:
    def test_sign_upload_is_presigned_put(self, s3):
        client, _ = s3
        storage = S3StorageClient("uploads", region="us-east-1", client=client)

        signed = storage.sign_upload("abc123", content_type="application/pdf", expires_in=600)

        assert signed.key == "abc123"
        assert "uploads" in signed.url
        assert "abc123" in signed.url
        assert "Expires=600" in signed.url or "X-Amz-Expires=600" in signed.url

    def test_head_object(self, s3):
        client, stubber = s3
        stubber.add_response(
            "head_object",
            {"ContentType": "application/pdf", "ContentLength": 2048},
            {"Bucket": "uploads", "Key": "abc123"},
        )
        storage = S3StorageClient("uploads", region="us-east-1", client=client)

        metadata = storage.head_object("abc123")

        assert metadata.content_type == "application/pdf"
        assert metadata.size_bytes == 2048

    def test_head_missing_object(self, s3):
        client, stubber = s3
        stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)
        storage = S3StorageClient("uploads", region="us-east-1", client=client)

        assert storage.head_object("missing") is None

    def test_head_other_error(self, s3):
        client, stubber = s3
        stubber.add_client_error(
            "head_object", service_error_code="AccessDenied", http_status_code=403
        )
        storage = S3StorageClient("uploads", region="us-east-1", client=client)

        with pytest.raises(StorageError):
            storage.head_object("abc123")

    def test_get_object(self, s3):
        client, stubber = s3
        body = b"%PDF-1.4 tiny"
        stubber.add_response(
            "get_object",
            {"Body": StreamingBody(io.BytesIO(body), len(body))},
            {"Bucket": "uploads", "Key": "abc123"},
        )
        storage = S3StorageClient("uploads", region="us-east-1", client=client)

        assert storage.get_object("abc123") == body

    def test_get_missing_object(self, s3):
        client, stubber = s3
        stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
        storage = S3StorageClient("uploads", region="us-east-1", client=client)

        with pytest.raises(StorageError) as exc_info:
            storage.get_object("missing")
        assert exc_info.value.code == "E_STORAGE_MISSING"
