"""Card-set state resolver.

Pure projection from persisted rows to a CardSetView. Loading the rows is
the card-set service's job; nothing here touches the database.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from quizmint.db.models import CardSet, Option, Question, Submission
from quizmint.schemas.card_set import (
    LOCKED_PLACEHOLDER,
    AnswerOut,
    CardSetStatus,
    CardSetView,
    OptionOut,
    QuestionOut,
)


@dataclass(frozen=True)
class PreviewLockPolicy:
    """Which questions of an unfunded card set are hidden.

    With the policy enabled, a card set nobody has paid tokens for shows
    only its first ``free_preview_count`` questions. Disabled by default.
    """

    enabled: bool = False
    free_preview_count: int = 3

    def is_locked(self, funded: bool) -> bool:
        return self.enabled and not funded

    def hides(self, position: int, locked: bool) -> bool:
        return locked and position >= self.free_preview_count


NO_LOCKING = PreviewLockPolicy()


def resolve_status(card_set: CardSet) -> CardSetStatus:
    """Derive the lifecycle status from which fields are set."""
    if card_set.ready_at is not None:
        return CardSetStatus.READY
    if card_set.error is not None:
        return CardSetStatus.ERROR
    if card_set.prepare_started_at is not None:
        return CardSetStatus.PREPARING
    if card_set.source_text is not None:
        return CardSetStatus.WAITING
    if card_set.textract_job_id is not None:
        return CardSetStatus.ANALYZING
    return CardSetStatus.STARTING


def correct_choice_for(options: Sequence[Option]) -> Option:
    """First-option fallback rule.

    The option flagged correct, or the first option when the generation
    step flagged none. Options must be ordered by index.

    Raises:
        ValueError: The question has no options.
    """
    if not options:
        raise ValueError("question has no options")
    for option in options:
        if option.is_correct:
            return option
    return options[0]


def _resolve_question(
    question: Question,
    position: int,
    chosen: set | None,
    locked: bool,
    policy: PreviewLockPolicy,
) -> QuestionOut:
    options = sorted(question.options, key=lambda o: o.index)

    if policy.hides(position, locked):
        return QuestionOut(
            id=question.id,
            text=LOCKED_PLACEHOLDER,
            index=question.index,
            locked=True,
            options=[OptionOut(id=o.id, text=LOCKED_PLACEHOLDER, index=o.index) for o in options],
        )

    answer = None
    if chosen is not None:
        user_choice = next((o.id for o in options if o.id in chosen), None)
        answer = AnswerOut(user_choice=user_choice, correct_choice=correct_choice_for(options).id)

    return QuestionOut(
        id=question.id,
        text=question.text,
        index=question.index,
        options=[OptionOut.model_validate(o) for o in options],
        answer=answer,
    )


def score(view: CardSetView) -> int | None:
    """Number of correctly answered questions, None without a submission."""
    if view.submission_id is None:
        return None
    return sum(1 for q in view.questions if q.answer is not None and q.answer.is_correct)


def resolve_card_set(
    card_set: CardSet,
    questions: Sequence[Question] = (),
    submission: Submission | None = None,
    *,
    funded: bool = True,
    lock_policy: PreviewLockPolicy = NO_LOCKING,
) -> CardSetView:
    """Project a card set, its questions and a submission into a view.

    Args:
        card_set: The card set row.
        questions: Questions ordered by (created_at, index), options loaded.
        submission: The submission to compare against, answers loaded.
        funded: Whether unrefunded tokens are redeemed for the card set.
        lock_policy: Preview lock policy.
    """
    status = resolve_status(card_set)
    locked = lock_policy.is_locked(funded)

    resolved: list[QuestionOut] = []
    if status == CardSetStatus.READY:
        chosen = {a.option_id for a in submission.answers} if submission is not None else None
        resolved = [
            _resolve_question(q, position, chosen, locked, lock_policy)
            for position, q in enumerate(questions)
        ]

    view = CardSetView(
        id=card_set.id,
        status=status,
        title=card_set.title,
        created_at=card_set.created_at,
        required_tokens=card_set.required_tokens,
        is_locked=locked,
        error=card_set.error,
        submission_id=submission.id if submission is not None else None,
        questions=resolved,
    )
    view.score = score(view)
    return view
