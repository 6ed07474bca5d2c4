"""Session and upload Pydantic schemas."""

from pydantic import BaseModel, Field


class CreateSessionRequest(BaseModel):
    id_token: str = Field(min_length=1)


class SessionOut(BaseModel):
    expires_in: int


class LogoutOut(BaseModel):
    success: bool = True


class CreateSignedUrlRequest(BaseModel):
    content_type: str = Field(min_length=1, max_length=255)


class SignedUrlOut(BaseModel):
    signed_url: str
    key: str
