"""Value types passed between the completion client and its providers."""

from dataclasses import dataclass


@dataclass(frozen=True)
class CompletionRequest:
    """One single-turn prompt sent to a chat model."""

    model: str
    prompt: str
    temperature: float | None = 0.0
    max_output_tokens: int | None = None


@dataclass(frozen=True)
class Completion:
    """Text returned by the model plus the bookkeeping we log.

    ``request_id`` is whatever the provider hands back for support
    tickets; token counts are None when the provider omits usage.
    """

    text: str
    model: str
    request_id: str | None = None
    finish_reason: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "length"
