from __future__ import annotations

from datetime import date, datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship as sa_relationship

from .db import Base


def relationship(*args, **kwargs):
    """Wrap SQLAlchemy relationship to forbid lazy loading by default."""
    kwargs.setdefault("lazy", "raise")
    return sa_relationship(*args, **kwargs)


class PromptType(str, Enum):
    raw = "raw"
    smart = "smart"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    username: Mapped[str | None] = mapped_column(sa.String(255), nullable=True, index=True)
    display_name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    forum_users: Mapped[list["ForumUser"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )


class SignalStrength(Base):
    __tablename__ = "signal_strengths"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(sa.String(128), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    status: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)
    model: Mapped[str | None] = mapped_column(sa.String(128), nullable=True)
    temperature: Mapped[float | None] = mapped_column(sa.Float(), nullable=True)
    max_chars: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    prompts: Mapped[list["Prompt"]] = relationship(
        back_populates="signal_strength", cascade="all, delete-orphan", passive_deletes=True
    )
    project_configs: Mapped[list["ProjectSignalStrength"]] = relationship(
        back_populates="signal_strength", cascade="all, delete-orphan", passive_deletes=True
    )


class Prompt(Base):
    """Versioned prompt template. New versions are appended, never edited."""

    __tablename__ = "prompts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    signal_strength_id: Mapped[int] = mapped_column(
        sa.ForeignKey("signal_strengths.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[PromptType] = mapped_column(sa.String(16), nullable=False)
    prompt: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    signal_strength: Mapped[SignalStrength] = relationship(back_populates="prompts")


class ProjectSignalStrength(Base):
    __tablename__ = "project_signal_strengths"
    __table_args__ = (
        sa.UniqueConstraint("project_id", "signal_strength_id", name="uq_project_signal_strengths_project_signal"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    signal_strength_id: Mapped[int] = mapped_column(
        sa.ForeignKey("signal_strengths.id", ondelete="CASCADE"), nullable=False
    )
    enabled: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.false())
    max_value: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    previous_days: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)

    signal_strength: Mapped[SignalStrength] = relationship(back_populates="project_configs")


class ForumUser(Base):
    __tablename__ = "forum_users"
    __table_args__ = (sa.UniqueConstraint("user_id", "project_id", name="uq_forum_users_user_project"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    project_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    forum_username: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    last_updated: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    # account-verification post, never scored
    auth_post_id: Mapped[int | None] = mapped_column(sa.BigInteger(), nullable=True)
    auth_post_code: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)

    user: Mapped[User] = relationship(back_populates="forum_users")


class UserSignalStrength(Base):
    """One score row: raw (raw_value set) or smart (value set), never both.

    Liveness markers share this table: day is NULL and request_id is
    `last_checked_<user>_<project>_<signal>`.
    """

    __tablename__ = "user_signal_strengths"
    __table_args__ = (
        sa.Index("ix_user_signal_strengths_key", "user_id", "project_id", "signal_strength_id", "day"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    project_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    signal_strength_id: Mapped[int] = mapped_column(
        sa.ForeignKey("signal_strengths.id", ondelete="CASCADE"), nullable=False
    )
    day: Mapped[date | None] = mapped_column(sa.Date(), nullable=True)
    value: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    raw_value: Mapped[float | None] = mapped_column(sa.Float(), nullable=True)
    max_value: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    summary: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    description: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    improvements: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    explained_reasoning: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    logs: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    model: Mapped[str | None] = mapped_column(sa.String(128), nullable=True)
    temperature: Mapped[float | None] = mapped_column(sa.Float(), nullable=True)
    max_chars: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    prompt_id: Mapped[int | None] = mapped_column(
        sa.ForeignKey("prompts.id", ondelete="SET NULL"), nullable=True
    )
    prompt_tokens: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    completion_tokens: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    request_id: Mapped[str | None] = mapped_column(sa.String(255), nullable=True, unique=True)
    created: Mapped[int] = mapped_column(sa.BigInteger(), nullable=False)
    last_checked: Mapped[int | None] = mapped_column(sa.BigInteger(), nullable=True)
    test_requesting_user: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)


class UserProjectScoresHistory(Base):
    __tablename__ = "user_project_scores_history"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "project_id", "day", name="uq_user_project_scores_history_user_project_day"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    project_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    day: Mapped[date] = mapped_column(sa.Date(), nullable=False)
    total_score: Mapped[float] = mapped_column(sa.Float(), nullable=False, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )
