"""Completion layer for question generation.

    client = create_completion_client(settings, http_client)
    completion = await client.complete(prompt)

Only CompletionError escapes ``complete``; check ``is_retriable`` to
decide between rescheduling and failing the card set.
"""

from quizmint.services.llm.client import CompletionClient, create_completion_client
from quizmint.services.llm.errors import (
    CompletionError,
    CompletionFailure,
    classify_status,
    classify_transport,
)
from quizmint.services.llm.providers import CompletionProvider, OpenAIChatProvider
from quizmint.services.llm.types import Completion, CompletionRequest

__all__ = [
    "Completion",
    "CompletionClient",
    "CompletionError",
    "CompletionFailure",
    "CompletionProvider",
    "CompletionRequest",
    "OpenAIChatProvider",
    "classify_status",
    "classify_transport",
    "create_completion_client",
]
