"""Chunked question generation."""

from quizmint.services.generation.pipeline import (
    COMPLETION_FAILED_MESSAGE,
    SCHEDULING_FAILED_MESSAGE,
    StepOutcome,
    StepResult,
    fail_card_set,
    idempotency_key,
    run_generation_step,
)
from quizmint.services.generation.prompt import GenerationPrompt, build_prompt
from quizmint.services.generation.response import (
    GeneratedQuestion,
    GenerationPayload,
    GenerationResponseError,
    parse_generation_response,
)

__all__ = [
    "run_generation_step",
    "fail_card_set",
    "idempotency_key",
    "StepOutcome",
    "StepResult",
    "COMPLETION_FAILED_MESSAGE",
    "SCHEDULING_FAILED_MESSAGE",
    "build_prompt",
    "GenerationPrompt",
    "parse_generation_response",
    "GenerationPayload",
    "GeneratedQuestion",
    "GenerationResponseError",
]
