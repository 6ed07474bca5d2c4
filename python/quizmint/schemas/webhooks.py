"""Inbound webhook payload schemas."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class CheckoutMetadata(BaseModel):
    """Metadata attached to a checkout session when it was created."""

    is_costless_refund_applied: int = Field(alias="isCostlessRefundApplied", ge=0, le=1)


class SnsEnvelope(BaseModel):
    """SNS HTTP delivery wrapper (absent with raw message delivery)."""

    type: str = Field(alias="Type")
    message: str | None = Field(default=None, alias="Message")
    subscribe_url: str | None = Field(default=None, alias="SubscribeURL")


class OcrDocumentLocation(BaseModel):
    s3_object_name: str = Field(alias="S3ObjectName")
    s3_bucket: str = Field(alias="S3Bucket")


class OcrCompletion(BaseModel):
    """Textract job completion notification."""

    job_id: str = Field(alias="JobId", min_length=1)
    status: Literal["IN_PROGRESS", "SUCCEEDED", "FAILED", "PARTIAL_SUCCESS"] = Field(
        alias="Status"
    )
    api: str | None = Field(default=None, alias="API")
    timestamp: int | None = Field(default=None, alias="Timestamp")
    document_location: OcrDocumentLocation | None = Field(default=None, alias="DocumentLocation")

    model_config = ConfigDict(populate_by_name=True)
