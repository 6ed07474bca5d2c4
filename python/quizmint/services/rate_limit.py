"""Global cap on OCR job starts.

OCR is billed per page, so scanned uploads are limited across all users
with a sliding one-hour window kept in a Redis sorted set (``rate:ocr``,
one member per start, scored by its timestamp).

Without Redis, or when Redis errors, the check lets the request through.
"""

import time
from uuid import uuid4

import redis

from quizmint.errors import ApiError, ApiErrorCode
from quizmint.logging import get_logger

logger = get_logger(__name__)

DEFAULT_OCR_LIMIT_PER_HOUR = 200
OCR_WINDOW_SECONDS = 3600
OCR_KEY = "rate:ocr"


class RateLimiter:
    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        ocr_limit_per_hour: int = DEFAULT_OCR_LIMIT_PER_HOUR,
    ):
        self._redis = redis_client
        self._ocr_limit = ocr_limit_per_hour

    @property
    def redis(self) -> redis.Redis | None:
        return self._redis

    def _count_hit(self, key: str, window_s: int) -> int:
        """Add one member for now and return how many fall inside the window."""
        now = time.time()
        since = now - window_s
        pipe = self._redis.pipeline()
        pipe.zremrangebyscore(key, 0, since)
        pipe.zadd(key, {f"{now}:{uuid4().hex}": now})
        pipe.zcount(key, since, now)
        pipe.expire(key, window_s * 2)
        _, _, count, _ = pipe.execute()
        return count

    def check_ocr_limit(self) -> None:
        """Record one OCR start.

        Raises:
            ApiError(E_RATE_LIMITED): More than the hourly limit started already.
        """
        if self._redis is None:
            logger.warning("rate_limit_skipped", check="ocr", reason="no_redis")
            return
        try:
            count = self._count_hit(OCR_KEY, OCR_WINDOW_SECONDS)
        except redis.RedisError as e:
            logger.warning("rate_limit_skipped", check="ocr", reason="redis_error", error=str(e))
            return

        if count > self._ocr_limit:
            logger.warning("rate_limit.blocked", limit_type="ocr", limit=self._ocr_limit)
            raise ApiError(
                ApiErrorCode.E_RATE_LIMITED,
                "Too many scanned documents are being processed; please try again later.",
            )
