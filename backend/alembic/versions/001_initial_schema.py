"""Initial review scheduler schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Creates the following tables:
- questions: Practice problem catalog
- review_cards: SM-2 scheduling record per (learner, question)
- learner_settings: Per-learner daily new-card limit
- review_history: One row per submitted or skipped review
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "questions",
        sa.Column("id", sa.String(255), nullable=False),
        sa.Column("leetcode_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("slug", sa.String(255), nullable=True),
        sa.Column("difficulty", sa.String(20), nullable=False),
        sa.Column("description_markdown", sa.Text(), nullable=True),
        sa.Column("topics", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )
    op.create_index("ix_questions_leetcode_id", "questions", ["leetcode_id"])
    op.create_index("ix_questions_difficulty", "questions", ["difficulty"])

    op.create_table(
        "review_cards",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("learner_id", sa.String(255), nullable=False),
        sa.Column("question_id", sa.String(255), nullable=False),
        sa.Column("state", sa.String(20), nullable=False, server_default="new"),
        sa.Column("easiness_factor", sa.Float(), nullable=False, server_default="2.5"),
        sa.Column("interval_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_step", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("repetitions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quality", sa.Integer(), nullable=True),
        sa.Column(
            "next_review_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("last_reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_reviews", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_lapses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.ForeignKeyConstraint(["question_id"], ["questions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "learner_id", "question_id", name="uq_review_cards_learner_question"
        ),
    )
    op.create_index("ix_review_cards_learner_id", "review_cards", ["learner_id"])
    op.create_index("ix_review_cards_question_id", "review_cards", ["question_id"])
    op.create_index("ix_review_cards_state", "review_cards", ["state"])
    op.create_index("ix_review_cards_next_review_at", "review_cards", ["next_review_at"])
    op.create_index("ix_review_cards_created_at", "review_cards", ["created_at"])
    # Selection queries filter by learner + state and order by due time
    op.create_index(
        "ix_review_cards_learner_state_due",
        "review_cards",
        ["learner_id", "state", "next_review_at"],
    )

    op.create_table(
        "learner_settings",
        sa.Column("learner_id", sa.String(255), nullable=False),
        sa.Column("new_cards_limit", sa.Integer(), nullable=False, server_default="5"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("learner_id"),
    )

    op.create_table(
        "review_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("learner_id", sa.String(255), nullable=False),
        sa.Column("question_id", sa.String(255), nullable=False),
        sa.Column("card_id", sa.Integer(), nullable=True),
        sa.Column("answer", sa.Text(), nullable=True),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("sub_scores", sa.JSON(), nullable=True),
        sa.Column("skipped", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("time_spent_seconds", sa.Integer(), nullable=True),
        sa.Column("state_after", sa.String(20), nullable=False),
        sa.Column(
            "interval_minutes_after", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "easiness_factor_after", sa.Float(), nullable=False, server_default="2.5"
        ),
        sa.Column(
            "reviewed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.ForeignKeyConstraint(["question_id"], ["questions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["card_id"], ["review_cards.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_review_history_learner_id", "review_history", ["learner_id"])
    op.create_index("ix_review_history_question_id", "review_history", ["question_id"])
    op.create_index("ix_review_history_reviewed_at", "review_history", ["reviewed_at"])


def downgrade() -> None:
    op.drop_table("review_history")
    op.drop_table("learner_settings")
    op.drop_table("review_cards")
    op.drop_table("questions")
