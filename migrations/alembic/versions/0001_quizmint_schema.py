"""Quizmint schema - users, card sets, questions, payments, tokens, submissions

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Card set status is derived from nullable timestamp/error columns; the
check constraints below keep the combinations that are never valid out
of the table.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    # ==========================================================================
    # users table (id is the identity provider uid)
    # ==========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    # ==========================================================================
    # card_sets table
    # ==========================================================================
    op.create_table(
        "card_sets",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("source_text", sa.Text(), nullable=True),
        sa.Column("source_file_key", sa.Text(), nullable=True),
        sa.Column("required_tokens", sa.Integer(), server_default="1", nullable=False),
        sa.Column("textract_job_id", sa.Text(), nullable=True),
        sa.Column("prepare_started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("ready_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("refunded_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_by_user_id", sa.Text(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("textract_job_id", name="uq_card_sets_textract_job_id"),
        sa.CheckConstraint(
            "NOT (ready_at IS NOT NULL AND error IS NOT NULL)",
            name="ck_card_sets_ready_xor_error",
        ),
        sa.CheckConstraint(
            "prepare_started_at IS NULL OR source_text IS NOT NULL",
            name="ck_card_sets_source_before_prepare",
        ),
        sa.CheckConstraint("required_tokens >= 1", name="ck_card_sets_required_tokens"),
    )
    op.create_index(
        "idx_card_sets_creator_created", "card_sets", ["created_by_user_id", "created_at"]
    )

    # ==========================================================================
    # questions + options tables
    # ==========================================================================
    op.create_table(
        "questions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("card_set_id", sa.UUID(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("index", sa.Integer(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["card_set_id"], ["card_sets.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "idx_questions_card_set_order", "questions", ["card_set_id", "created_at", "index"]
    )

    op.create_table(
        "options",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("question_id", sa.UUID(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("is_correct", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("index", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["question_id"], ["questions.id"], ondelete="CASCADE"),
    )

    # ==========================================================================
    # payments + tokens tables
    # ==========================================================================
    op.create_table(
        "payments",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("reconciliation_id", sa.Text(), nullable=False),
        sa.Column(
            "is_costless_refund_applied", sa.Boolean(), server_default="false", nullable=False
        ),
        sa.Column("refunded_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("refunded_amount", sa.Integer(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("reconciliation_id", name="uq_payments_reconciliation_id"),
    )
    op.create_index("idx_payments_user_created", "payments", ["user_id", "created_at"])

    op.create_table(
        "tokens",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("payment_id", sa.Text(), nullable=False),
        sa.Column("redeemed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("redeemed_by_card_set_id", sa.UUID(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["redeemed_by_card_set_id"], ["card_sets.id"], ondelete="SET NULL"
        ),
        sa.CheckConstraint(
            "(redeemed_at IS NULL) = (redeemed_by_card_set_id IS NULL)",
            name="ck_tokens_redeemed_together",
        ),
    )
    op.create_index("idx_tokens_payment", "tokens", ["payment_id"])
    op.create_index("idx_tokens_card_set", "tokens", ["redeemed_by_card_set_id"])

    # ==========================================================================
    # submissions + answers tables
    # ==========================================================================
    op.create_table(
        "submissions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("card_set_id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["card_set_id"], ["card_sets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "idx_submissions_card_set_user", "submissions", ["card_set_id", "user_id", "created_at"]
    )

    op.create_table(
        "answers",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("submission_id", sa.UUID(), nullable=False),
        sa.Column("option_id", sa.UUID(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["submission_id"], ["submissions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["option_id"], ["options.id"], ondelete="CASCADE"),
    )

    # ==========================================================================
    # generation_steps table (one row per generated chunk)
    # ==========================================================================
    op.create_table(
        "generation_steps",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("card_set_id", sa.UUID(), nullable=False),
        sa.Column("chunk_start", sa.Integer(), nullable=False),
        sa.Column("idempotency_key", sa.Text(), nullable=False),
        sa.Column("has_more", sa.Boolean(), nullable=False),
        sa.Column("next_last_index", sa.Integer(), nullable=True),
        sa.Column("incomplete_chunk", sa.Text(), server_default="", nullable=False),
        sa.Column("question_count", sa.Integer(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["card_set_id"], ["card_sets.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("idempotency_key", name="uq_generation_steps_idempotency_key"),
    )


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign key dependencies)
    op.drop_table("generation_steps")
    op.drop_table("answers")
    op.drop_index("idx_submissions_card_set_user", table_name="submissions")
    op.drop_table("submissions")
    op.drop_index("idx_tokens_card_set", table_name="tokens")
    op.drop_index("idx_tokens_payment", table_name="tokens")
    op.drop_table("tokens")
    op.drop_index("idx_payments_user_created", table_name="payments")
    op.drop_table("payments")
    op.drop_table("options")
    op.drop_index("idx_questions_card_set_order", table_name="questions")
    op.drop_table("questions")
    op.drop_index("idx_card_sets_creator_created", table_name="card_sets")
    op.drop_table("card_sets")
    op.drop_table("users")
