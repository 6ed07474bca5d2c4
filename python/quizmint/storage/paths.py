"""Upload key generation.

Keys double as the OCR idempotency token, which only allows
``[a-zA-Z0-9_-]`` and at most 64 characters.
"""

import re
from uuid import uuid4

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def new_upload_key() -> str:
    return uuid4().hex


def is_valid_upload_key(key: str) -> bool:
    return bool(_KEY_PATTERN.match(key))
