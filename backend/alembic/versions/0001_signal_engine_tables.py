"""create signal engine tables

Revision ID: 0001_signal_engine_tables
Revises:
Create Date: 2026-10-17 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_signal_engine_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("username", sa.String(length=255), nullable=True),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_username", "users", ["username"])

    op.create_table(
        "signal_strengths",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=128), nullable=False, unique=True),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=True),
        sa.Column("model", sa.String(length=128), nullable=True),
        sa.Column("temperature", sa.Float(), nullable=True),
        sa.Column("max_chars", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "prompts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "signal_strength_id",
            sa.Integer(),
            sa.ForeignKey("signal_strengths.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_prompts_signal_strength_id", "prompts", ["signal_strength_id"])

    op.create_table(
        "project_signal_strengths",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column(
            "signal_strength_id",
            sa.Integer(),
            sa.ForeignKey("signal_strengths.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("max_value", sa.Integer(), nullable=True),
        sa.Column("previous_days", sa.Integer(), nullable=True),
        sa.UniqueConstraint("project_id", "signal_strength_id", name="uq_project_signal_strengths_project_signal"),
    )
    op.create_index("ix_project_signal_strengths_project_id", "project_signal_strengths", ["project_id"])

    op.create_table(
        "forum_users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column("forum_username", sa.String(length=255), nullable=True),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auth_post_id", sa.BigInteger(), nullable=True),
        sa.Column("auth_post_code", sa.String(length=64), nullable=True),
        sa.UniqueConstraint("user_id", "project_id", name="uq_forum_users_user_project"),
    )
    op.create_index("ix_forum_users_project_id", "forum_users", ["project_id"])

    op.create_table(
        "user_signal_strengths",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column(
            "signal_strength_id",
            sa.Integer(),
            sa.ForeignKey("signal_strengths.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("day", sa.Date(), nullable=True),
        sa.Column("value", sa.Integer(), nullable=True),
        sa.Column("raw_value", sa.Float(), nullable=True),
        sa.Column("max_value", sa.Integer(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("improvements", sa.Text(), nullable=True),
        sa.Column("explained_reasoning", sa.Text(), nullable=True),
        sa.Column("logs", sa.Text(), nullable=True),
        sa.Column("model", sa.String(length=128), nullable=True),
        sa.Column("temperature", sa.Float(), nullable=True),
        sa.Column("max_chars", sa.Integer(), nullable=True),
        sa.Column("prompt_id", sa.Integer(), sa.ForeignKey("prompts.id", ondelete="SET NULL"), nullable=True),
        sa.Column("prompt_tokens", sa.Integer(), nullable=True),
        sa.Column("completion_tokens", sa.Integer(), nullable=True),
        sa.Column("request_id", sa.String(length=255), nullable=True, unique=True),
        sa.Column("created", sa.BigInteger(), nullable=False),
        sa.Column("last_checked", sa.BigInteger(), nullable=True),
        sa.Column("test_requesting_user", sa.String(length=64), nullable=True),
    )
    op.create_index(
        "ix_user_signal_strengths_key",
        "user_signal_strengths",
        ["user_id", "project_id", "signal_strength_id", "day"],
    )

    op.create_table(
        "user_project_scores_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("total_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "user_id", "project_id", "day", name="uq_user_project_scores_history_user_project_day"
        ),
    )


def downgrade() -> None:
    op.drop_table("user_project_scores_history")
    op.drop_index("ix_user_signal_strengths_key", table_name="user_signal_strengths")
    op.drop_table("user_signal_strengths")
    op.drop_index("ix_forum_users_project_id", table_name="forum_users")
    op.drop_table("forum_users")
    op.drop_index("ix_project_signal_strengths_project_id", table_name="project_signal_strengths")
    op.drop_table("project_signal_strengths")
    op.drop_index("ix_prompts_signal_strength_id", table_name="prompts")
    op.drop_table("prompts")
    op.drop_table("signal_strengths")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
