"""SQLAlchemy ORM models for Quizmint.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Column types are kept portable (``Uuid``, ``UTCDateTime``) so the same
metadata backs both PostgreSQL and the SQLite engine used by the test suite.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    TypeDecorator,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always reads back as UTC.

    SQLite drops tzinfo on storage; values coming back naive are UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


def _created_at() -> Mapped[datetime]:
    return mapped_column(
        UTCDateTime(),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )


# =============================================================================
# Models
# =============================================================================


class User(Base):
    """User account model.

    The user ID is the identity provider's uid.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)
    created_at: Mapped[datetime] = _created_at()

    payments: Mapped[list["Payment"]] = relationship("Payment", back_populates="user")


class CardSet(Base):
    """One quiz derived from one uploaded document.

    Lifecycle status is never stored. It is derived from which of the
    nullable fields are set (see services.resolver).
    """

    __tablename__ = "card_sets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    source_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_file_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    required_tokens: Mapped[int] = mapped_column(
        Integer, default=1, server_default="1", nullable=False
    )
    textract_job_id: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)
    prepare_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    ready_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_by_user_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = _created_at()

    questions: Mapped[list["Question"]] = relationship(
        "Question",
        back_populates="card_set",
        cascade="all, delete-orphan",
        order_by="(Question.created_at, Question.index)",
    )

    __table_args__ = (
        CheckConstraint(
            "NOT (ready_at IS NOT NULL AND error IS NOT NULL)",
            name="ck_card_sets_ready_xor_error",
        ),
        CheckConstraint(
            "prepare_started_at IS NULL OR source_text IS NOT NULL",
            name="ck_card_sets_source_before_prepare",
        ),
        CheckConstraint("required_tokens >= 1", name="ck_card_sets_required_tokens"),
        Index("idx_card_sets_creator_created", "created_by_user_id", "created_at"),
    )


class Question(Base):
    """A generated multiple-choice question."""

    __tablename__ = "questions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    card_set_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("card_sets.id", ondelete="CASCADE"), nullable=False
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    index: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = _created_at()

    card_set: Mapped["CardSet"] = relationship("CardSet", back_populates="questions")
    options: Mapped[list["Option"]] = relationship(
        "Option",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="Option.index",
    )

    __table_args__ = (Index("idx_questions_card_set_order", "card_set_id", "created_at", "index"),)


class Option(Base):
    """One answer choice of a question."""

    __tablename__ = "options"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    question_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    index: Mapped[int] = mapped_column(Integer, nullable=False)

    question: Mapped["Question"] = relationship("Question", back_populates="options")


class Payment(Base):
    """A completed checkout. The id is the processor's payment-intent id."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[str] = mapped_column(
        Text, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    reconciliation_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    is_costless_refund_applied: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    refunded_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    refunded_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = _created_at()

    user: Mapped["User"] = relationship("User", back_populates="payments")
    tokens: Mapped[list["Token"]] = relationship("Token", back_populates="payment")

    __table_args__ = (Index("idx_payments_user_created", "user_id", "created_at"),)


class Token(Base):
    """A redeemable generation credit."""

    __tablename__ = "tokens"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    payment_id: Mapped[str] = mapped_column(
        Text, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False
    )
    redeemed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    redeemed_by_card_set_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("card_sets.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = _created_at()

    payment: Mapped["Payment"] = relationship("Payment", back_populates="tokens")

    __table_args__ = (
        CheckConstraint(
            "(redeemed_at IS NULL) = (redeemed_by_card_set_id IS NULL)",
            name="ck_tokens_redeemed_together",
        ),
        Index("idx_tokens_payment", "payment_id"),
        Index("idx_tokens_card_set", "redeemed_by_card_set_id"),
    )


class Submission(Base):
    """One completed attempt at a card set. Immutable once created."""

    __tablename__ = "submissions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    card_set_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("card_sets.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = _created_at()

    answers: Mapped[list["Answer"]] = relationship(
        "Answer", back_populates="submission", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_submissions_card_set_user", "card_set_id", "user_id", "created_at"),
    )


class Answer(Base):
    """The option a submission chose for one question."""

    __tablename__ = "answers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    submission_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
    )
    option_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("options.id", ondelete="CASCADE"), nullable=False
    )

    submission: Mapped["Submission"] = relationship("Submission", back_populates="answers")


class GenerationStep(Base):
    """Marker that one chunk of a card set has been turned into questions.

    Written in the same transaction as the chunk's questions. The unique
    idempotency key lets a redelivered job detect that its chunk is done.
    """

    __tablename__ = "generation_steps"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    card_set_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("card_sets.id", ondelete="CASCADE"), nullable=False
    )
    chunk_start: Mapped[int] = mapped_column(Integer, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    has_more: Mapped[bool] = mapped_column(Boolean, nullable=False)
    next_last_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    incomplete_chunk: Mapped[str] = mapped_column(
        Text, default="", server_default="", nullable=False
    )
    question_count: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = _created_at()
