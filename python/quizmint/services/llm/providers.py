"""Chat model providers.

A provider turns a CompletionRequest into one HTTP call and parses the
body. It never retries, never logs prompts and lets httpx errors escape
so CompletionClient can classify them in one place.
"""

from abc import ABC, abstractmethod

import httpx

from quizmint.services.llm.errors import CompletionError, CompletionFailure
from quizmint.services.llm.types import Completion, CompletionRequest

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


class CompletionProvider(ABC):
    name: str = "unknown"

    def __init__(self, http: httpx.AsyncClient):
        self._http = http

    @abstractmethod
    async def send(self, req: CompletionRequest, *, api_key: str, timeout_s: float) -> Completion:
        """Perform the call. Raises httpx errors untouched."""


class OpenAIChatProvider(CompletionProvider):
    """POST /v1/chat/completions with a single user message."""

    name = "openai"

    def __init__(self, http: httpx.AsyncClient, url: str = OPENAI_CHAT_URL):
        super().__init__(http)
        self.url = url

    async def send(self, req: CompletionRequest, *, api_key: str, timeout_s: float) -> Completion:
        payload: dict = {
            "model": req.model,
            "messages": [{"role": "user", "content": req.prompt}],
            "stream": False,
        }
        if req.temperature is not None:
            payload["temperature"] = req.temperature
        if req.max_output_tokens is not None:
            payload["max_tokens"] = req.max_output_tokens

        response = await self._http.post(
            self.url,
            json=payload,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(timeout_s, connect=10.0),
        )
        response.raise_for_status()
        data = response.json()

        choices = data.get("choices") or []
        if not choices:
            raise CompletionError(
                CompletionFailure.BAD_RESPONSE, "Response has no choices", provider=self.name
            )
        first = choices[0]
        usage = data.get("usage") or {}
        return Completion(
            text=(first.get("message") or {}).get("content") or "",
            model=data.get("model") or req.model,
            request_id=response.headers.get("x-request-id") or data.get("id"),
            finish_reason=first.get("finish_reason"),
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
        )
