"""Completion client used by the generation pipeline.

Holds one provider with its credentials and model name, logs an
``llm.request.*`` event pair per call and converts every failure into a
CompletionError.
"""

import time

import httpx

from quizmint.config import Settings
from quizmint.logging import get_logger
from quizmint.services.llm.errors import (
    CompletionError,
    CompletionFailure,
    classify_status,
    classify_transport,
)
from quizmint.services.llm.providers import CompletionProvider, OpenAIChatProvider
from quizmint.services.llm.types import Completion, CompletionRequest

logger = get_logger(__name__)


def _error_body(response: httpx.Response) -> dict | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


class CompletionClient:
    def __init__(
        self,
        provider: CompletionProvider,
        *,
        api_key: str,
        model_name: str,
        timeout_s: float = 120.0,
        temperature: float | None = 0.0,
    ):
        self._provider = provider
        self._api_key = api_key
        self.model_name = model_name
        self._timeout_s = timeout_s
        self._temperature = temperature

    async def complete(self, prompt: str) -> Completion:
        """Send ``prompt`` as a single user message.

        Raises:
            CompletionError: On any provider, transport or parsing failure.
        """
        req = CompletionRequest(model=self.model_name, prompt=prompt, temperature=self._temperature)
        provider = self._provider.name
        log = logger.bind(provider=provider, model_name=self.model_name)
        log.info("llm.request.started", prompt_chars=len(prompt))
        started = time.monotonic()

        def failed(failure: CompletionFailure, status: int | None = None) -> None:
            log.error(
                "llm.request.failed",
                outcome="error",
                error_class=failure.value,
                status_code=status,
                latency_ms=int((time.monotonic() - started) * 1000),
            )

        try:
            completion = await self._provider.send(
                req, api_key=self._api_key, timeout_s=self._timeout_s
            )
        except CompletionError as e:
            failed(e.failure)
            raise
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            failure = classify_status(status, _error_body(e.response))
            failed(failure, status)
            raise CompletionError(
                failure, f"Provider returned HTTP {status}", provider=provider
            ) from e
        except httpx.HTTPError as e:
            failure = classify_transport(e)
            failed(failure)
            raise CompletionError(
                failure, f"{type(e).__name__} calling {provider}", provider=provider
            ) from e
        except ValueError as e:
            failed(CompletionFailure.BAD_RESPONSE)
            raise CompletionError(
                CompletionFailure.BAD_RESPONSE, "Response body is not JSON", provider=provider
            ) from e

        log.info(
            "llm.request.finished",
            outcome="success",
            latency_ms=int((time.monotonic() - started) * 1000),
            tokens_input=completion.prompt_tokens,
            tokens_output=completion.completion_tokens,
            finish_reason=completion.finish_reason,
            provider_request_id=completion.request_id,
        )
        return completion


def create_completion_client(
    settings: Settings, http_client: httpx.AsyncClient
) -> CompletionClient:
    return CompletionClient(
        OpenAIChatProvider(http_client),
        api_key=settings.openai_api_key or "",
        model_name=settings.openai_model,
        timeout_s=settings.llm_timeout_s,
    )
