"""Test helpers shared across test modules.

Provides:
- Session sign-in for the TestClient
- Scheduled-message signature minting
- A scripted completion model
- A recorder for whether sync service code ran on the event loop
- A minimal in-memory Redis for the rate limiter
- Small PDF and Word documents built in memory
"""

import asyncio
import io
import json
import time
from collections.abc import Callable, Iterable

import jwt
import redis
from docx import Document
from fastapi.testclient import TestClient
from PyPDF2 import PdfWriter

from quizmint.auth.identity import FakeIdentityProvider
from quizmint.config import get_settings
from quizmint.services.llm import Completion, CompletionError, CompletionFailure
from quizmint.services.signature import SIGNATURE_ISSUER, body_digest

QUESTION_BUILDER_KEYS = ("test-current-signing-key", "test-next-signing-key")


def sign_in(
    client: TestClient,
    identity_provider: FakeIdentityProvider,
    uid: str,
    email: str | None = None,
) -> str:
    """Give the client a valid session cookie for ``uid``."""
    cookie = identity_provider.sign_in(uid, email)
    client.cookies.set(get_settings().session_cookie_name, cookie)
    return cookie


def mint_job_signature(
    body: bytes,
    /,
    *,
    key: str = QUESTION_BUILDER_KEYS[0],
    url: str | None = None,
    expires_in: int = 300,
    **overrides,
) -> str:
    """Sign a job body the way the scheduled-message service does."""
    now = int(time.time())
    claims = {
        "iss": SIGNATURE_ISSUER,
        "sub": url or get_settings().question_builder_url,
        "iat": now,
        "nbf": now,
        "exp": now + expires_in,
        "body": body_digest(body),
    }
    claims.update(overrides)
    return jwt.encode(claims, key, algorithm="HS256")


def generation_output(
    questions: Iterable[tuple[str, list[str], int]] | None = None,
    ic: str | None = None,
) -> str:
    """Completion text shaped like the model's JSON answer."""
    if questions is None:
        questions = [
            ("What is 2 + 2?", ["3", "4", "5"], 1),
            ("Capital of France?", ["Paris", "Rome", "Berlin"], 0),
            ("Largest planet?", ["Mars", "Venus", "Jupiter", "Earth"], 2),
        ]
    payload: dict = {"d": [{"q": q, "o": o, "a": a} for q, o, a in questions]}
    if ic is not None:
        payload["ic"] = ic
    return json.dumps(payload)


class ScriptedCompletion:
    """Completion model that replays queued outputs.

    Queue strings for successful completions and CompletionError instances for
    failures. An empty queue answers with generation_output().
    """

    def __init__(self):
        self.outputs: list[str | CompletionError] = []
        self.prompts: list[str] = []

    def queue(self, *outputs: str | CompletionError) -> None:
        self.outputs.extend(outputs)

    def overloaded(self) -> CompletionError:
        return CompletionError(
            CompletionFailure.OVERLOADED, "Provider returned HTTP 503", provider="openai"
        )

    async def complete(self, prompt: str) -> Completion:
        self.prompts.append(prompt)
        output = self.outputs.pop(0) if self.outputs else generation_output()
        if isinstance(output, CompletionError):
            raise output
        return Completion(text=output, model="scripted")


def on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def record_loop_usage(func: Callable, calls: list[bool]) -> Callable:
    """Wrap ``func`` so each call appends whether it ran on the event loop."""

    def wrapper(*args, **kwargs):
        calls.append(on_event_loop())
        return func(*args, **kwargs)

    return wrapper


class _FakePipeline:
    def __init__(self, redis: "FakeRedis"):
        self._redis = redis
        self._ops: list[tuple] = []

    def zremrangebyscore(self, key, low, high):
        self._ops.append(("zremrangebyscore", key, low, high))

    def zadd(self, key, mapping):
        self._ops.append(("zadd", key, mapping))

    def zcount(self, key, low, high):
        self._ops.append(("zcount", key, low, high))

    def expire(self, key, seconds):
        self._ops.append(("expire", key, seconds))

    def execute(self) -> list:
        if self._redis.broken:
            raise redis.ConnectionError("redis down")
        results = []
        for op, key, *args in self._ops:
            members = self._redis.sorted_sets.setdefault(key, {})
            if op == "zremrangebyscore":
                low, high = args
                doomed = [m for m, s in members.items() if low <= s <= high]
                for member in doomed:
                    del members[member]
                results.append(len(doomed))
            elif op == "zadd":
                members.update(args[0])
                results.append(len(args[0]))
            elif op == "zcount":
                low, high = args
                results.append(sum(1 for s in members.values() if low <= s <= high))
            else:
                results.append(True)
        return results


class FakeRedis:
    """Sorted-set subset of the redis client used by RateLimiter."""

    def __init__(self):
        self.sorted_sets: dict[str, dict[str, float]] = {}
        self.broken = False

    def pipeline(self) -> _FakePipeline:
        return _FakePipeline(self)


# =============================================================================
# Documents
# =============================================================================


def make_pdf(text: str) -> bytes:
    """Single-page PDF with ``text`` in its text layer (Helvetica)."""
    stream = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode()
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        b"/Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = io.BytesIO()
    out.write(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(out.tell())
        out.write(b"%d 0 obj\n" % number + body + b"\nendobj\n")
    xref_offset = out.tell()
    out.write(b"xref\n0 %d\n" % (len(objects) + 1))
    out.write(b"0000000000 65535 f \n")
    for offset in offsets:
        out.write(b"%010d 00000 n \n" % offset)
    out.write(b"trailer\n<< /Size %d /Root 1 0 R >>\n" % (len(objects) + 1))
    out.write(b"startxref\n%d\n%%%%EOF\n" % xref_offset)
    return out.getvalue()


def make_scanned_pdf() -> bytes:
    """PDF with a page but no text layer, like a scan."""
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


def make_docx(*paragraphs: str) -> bytes:
    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    out = io.BytesIO()
    document.save(out)
    return out.getvalue()
