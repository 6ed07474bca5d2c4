"""Scheduled-message signature verification.

The scheduler signs every delivery with an HS256 JWT in the
``Upstash-Signature`` header:
- iss = "Upstash"
- sub = destination URL
- body = base64url(sha256(raw body))
- exp / nbf checked with a clock tolerance

Two keys are configured so signing keys can rotate: the current key is
tried first, then the next key.
"""

import base64
import hashlib

import jwt

from quizmint.errors import ApiError, ApiErrorCode
from quizmint.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "Upstash-Signature"
SIGNATURE_ISSUER = "Upstash"
DEFAULT_CLOCK_TOLERANCE_S = 300


def body_digest(body: bytes) -> str:
    """base64url SHA-256 of the body, without padding."""
    return base64.urlsafe_b64encode(hashlib.sha256(body).digest()).decode().rstrip("=")


class SignatureVerifier:
    """Verifies scheduled-message signatures against a rotating key pair."""

    def __init__(
        self,
        current_key: str | None,
        next_key: str | None,
        *,
        clock_tolerance_s: int = DEFAULT_CLOCK_TOLERANCE_S,
    ):
        self._keys = [k for k in (current_key, next_key) if k]
        self._clock_tolerance_s = clock_tolerance_s

    def verify(self, signature: str | None, body: bytes, url: str | None = None) -> dict:
        """Verify a delivery and return its claims.

        Args:
            signature: Value of the signature header.
            body: Raw request body.
            url: Expected destination URL. Skipped when None.

        Raises:
            ApiError(E_INVALID_SIGNATURE): No key accepts the signature.
        """
        if not signature:
            raise ApiError(ApiErrorCode.E_INVALID_SIGNATURE, "Missing signature")
        if not self._keys:
            logger.error("signature_keys_not_configured")
            raise ApiError(ApiErrorCode.E_INVALID_SIGNATURE, "Signature keys not configured")

        last_error: Exception | None = None
        for key in self._keys:
            try:
                claims = self._verify_with_key(signature, body, url, key)
            except jwt.InvalidTokenError as e:
                last_error = e
                continue
            return claims

        logger.warning("signature_invalid", error=str(last_error))
        raise ApiError(ApiErrorCode.E_INVALID_SIGNATURE, "Invalid signature") from last_error

    def _verify_with_key(self, signature: str, body: bytes, url: str | None, key: str) -> dict:
        claims = jwt.decode(
            signature,
            key,
            algorithms=["HS256"],
            issuer=SIGNATURE_ISSUER,
            leeway=self._clock_tolerance_s,
            options={"require": ["iss", "sub", "exp", "nbf", "body"], "verify_aud": False},
        )
        if url is not None and claims["sub"] != url:
            raise jwt.InvalidTokenError(f"sub mismatch: {claims['sub']!r}")
        if claims["body"].rstrip("=") != body_digest(body):
            raise jwt.InvalidTokenError("body hash mismatch")
        return claims
