"""Card set, question and submission Pydantic schemas."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CardSetStatus(str, Enum):
    """Derived lifecycle status of a card set.

    STARTING -> ANALYZING -> WAITING -> PREPARING -> READY | ERROR
    """

    STARTING = "STARTING"
    ANALYZING = "ANALYZING"
    WAITING = "WAITING"
    PREPARING = "PREPARING"
    READY = "READY"
    ERROR = "ERROR"


LOCKED_PLACEHOLDER = "[LOCKED]"


class OptionOut(BaseModel):
    id: UUID
    text: str
    index: int

    model_config = ConfigDict(from_attributes=True)


class AnswerOut(BaseModel):
    """Per-question comparison for the resolved submission."""

    user_choice: UUID | None
    correct_choice: UUID

    @property
    def is_correct(self) -> bool:
        return self.user_choice == self.correct_choice


class QuestionOut(BaseModel):
    id: UUID
    text: str
    index: int
    locked: bool = False
    options: list[OptionOut]
    answer: AnswerOut | None = None


class CardSetView(BaseModel):
    """Resolved, presentable view of a card set.

    ``questions`` is empty unless ``status`` is READY.
    """

    id: UUID
    status: CardSetStatus
    title: str
    created_at: datetime
    required_tokens: int
    is_locked: bool
    error: str | None = None
    submission_id: UUID | None = None
    score: int | None = None
    questions: list[QuestionOut] = Field(default_factory=list)


class CardSetListItem(BaseModel):
    id: UUID
    title: str
    status: CardSetStatus
    required_tokens: int
    created_at: datetime


# =============================================================================
# Requests / action results
# =============================================================================


class CreateCardSetRequest(BaseModel):
    """Request schema for POST /card-sets."""

    file_key: str = Field(min_length=1, max_length=255)
    title: str = Field(min_length=1, max_length=255)


class CreateCardSetResponse(BaseModel):
    id: UUID
    status: CardSetStatus
    required_tokens: int


class PrepareResponse(BaseModel):
    success: bool
    used_tokens: int


class UnlockResponse(BaseModel):
    """Result of an unlock attempt.

    On failure, ``required_tokens`` is the number of additional tokens the
    caller must buy.
    """

    success: bool
    used_tokens: int | None = None
    required_tokens: int | None = None


class AnswerIn(BaseModel):
    option_id: UUID


class CreateSubmissionRequest(BaseModel):
    """Request schema for POST /card-sets/{id}/submissions."""

    answers: list[AnswerIn] = Field(min_length=1, max_length=1000)
