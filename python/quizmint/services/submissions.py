"""Submission service.

A submission is one attempt at a card set: a set of chosen options. It is
stored as-is and scored on every read by the resolver, so a submission
never carries a stale score.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from quizmint.auth.middleware import Viewer
from quizmint.db.models import Answer, Option, Question, Submission
from quizmint.db.session import transaction
from quizmint.errors import ApiError, ApiErrorCode
from quizmint.logging import bind_card_set, get_logger
from quizmint.schemas.card_set import CardSetView
from quizmint.services.card_sets import find_one, get_card_set_or_404
from quizmint.services.resolver import NO_LOCKING, PreviewLockPolicy
from quizmint.services.users import ensure_user

logger = get_logger(__name__)


def _option_ids(db: Session, card_set_id: UUID) -> set[UUID]:
    stmt = select(Option.id).join(Question, Option.question_id == Question.id).where(
        Question.card_set_id == card_set_id
    )
    return set(db.scalars(stmt).all())


def create_submission(
    db: Session,
    viewer: Viewer,
    card_set_id: UUID,
    option_ids: list[UUID],
    *,
    lock_policy: PreviewLockPolicy = NO_LOCKING,
) -> CardSetView:
    """Record a submission and return the card set resolved against it.

    Every option must belong to the card set; the first one that doesn't
    rejects the whole submission.

    Raises:
        NotFoundError(E_CARD_SET_NOT_FOUND): Missing or refunded card set.
        ApiError(E_INVALID_OPTION): An option is not part of this card set.
    """
    card_set = get_card_set_or_404(db, card_set_id)
    bind_card_set(card_set.id)

    valid = _option_ids(db, card_set.id)
    for option_id in option_ids:
        if option_id not in valid:
            raise ApiError(
                ApiErrorCode.E_INVALID_OPTION, f"Invalid options id provided: {option_id}"
            )

    with transaction(db):
        if not viewer.is_anonymous:
            ensure_user(db, viewer.user_id, viewer.email)
        submission = Submission(
            card_set_id=card_set.id,
            user_id=viewer.user_id,
            answers=[Answer(option_id=option_id) for option_id in option_ids],
        )
        db.add(submission)
        db.flush()
        submission_id = submission.id

    logger.info("submission_created", submission_id=str(submission_id), answers=len(option_ids))
    return find_one(db, viewer, card_set.id, submission_id, lock_policy=lock_policy)
