"""Validation of the completion model's output.

Everything downstream of the completion call sees a GenerationPayload or
nothing: any parse or shape problem raises GenerationResponseError.
"""

import json

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    ValidationError,
    model_validator,
)


class GenerationResponseError(Exception):
    """The completion could not be read as a generation payload."""

    def __init__(self, message: str, raw_length: int = 0):
        self.message = message
        self.raw_length = raw_length
        super().__init__(message)


class GeneratedQuestion(BaseModel):
    """One generated question: text, options and the correct option index.

    Types are strict: an answer index sent as "1" or true is rejected, not
    coerced.
    """

    model_config = ConfigDict(extra="ignore")

    q: StrictStr = Field(min_length=1)
    o: list[StrictStr] = Field(min_length=1)
    a: StrictInt

    @model_validator(mode="after")
    def answer_in_range(self) -> "GeneratedQuestion":
        if not 0 <= self.a < len(self.o):
            raise ValueError(f"answer index {self.a} out of range for {len(self.o)} options")
        return self


class GenerationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    d: list[GeneratedQuestion]
    ic: StrictStr | None = None


def _load_json_object(text: str) -> object:
    stripped = text.strip()
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    # Tolerate prose or code fences around a single object
    start, end = stripped.find("{"), stripped.rfind("}")
    if start == -1 or end <= start:
        raise GenerationResponseError("no JSON object in completion", len(text))
    try:
        return json.loads(stripped[start : end + 1])
    except json.JSONDecodeError as e:
        raise GenerationResponseError(f"invalid JSON: {e.msg}", len(text)) from e


def parse_generation_response(text: str) -> GenerationPayload:
    """Parse and validate a completion.

    Raises:
        GenerationResponseError: Not JSON, or not shaped like
            ``{d: [{q, o, a}], ic?}`` with ``0 <= a < len(o)``.
    """
    data = _load_json_object(text)
    try:
        return GenerationPayload.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise GenerationResponseError(
            f"invalid payload at {location or '<root>'}: {first['msg']}", len(text)
        ) from e
