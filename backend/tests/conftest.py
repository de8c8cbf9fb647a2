from __future__ import annotations

import itertools
import os
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone

os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("DISCOURSE_URL", "https://forum.example.com")
os.environ["CELERY_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from signal_engine.db import Base
from signal_engine.models import ForumUser, ProjectSignalStrength, Prompt, SignalStrength, User, UserSignalStrength
from signal_engine.schemas import AIScoreOutput, LLMScore, ModelConfig
from signal_engine.services.llm_provider import LLMProvider, set_llm_provider
from signal_engine.settings import config_cache

TODAY = date(2026, 10, 17)
PROJECT_ID = "proj-1"
SIGNAL_NAME = "discourse_forum"

RAW_PROMPT = (
    "Rate ${displayName} (@${username}) from 0 to ${maxValue}.\n"
    "Activity:\n${content}"
)


@pytest.fixture(autouse=True)
def reset_config():
    config_cache.reset_for_tests()
    yield
    config_cache.reset_for_tests()
    set_llm_provider(None)


@asynccontextmanager
async def _database():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def database():
    """Async context manager yielding a session factory over a fresh in-memory schema."""
    return _database


async def seed_forum_user(
    factory,
    *,
    user_id: str = "u-alice",
    forum_username: str | None = "alice",
    display_name: str = "Alice A.",
    max_value: int = 100,
    previous_days: int | None = 30,
    enabled: bool = True,
    auth_post_id: int | None = None,
    prompts: list[str] | None = None,
) -> int:
    """Insert a user, the forum signal, its project config and prompts. Returns the signal id."""
    async with factory() as session:
        session.add(User(id=user_id, username=forum_username, display_name=display_name))
        signal = await session.scalar(select(SignalStrength).where(SignalStrength.name == SIGNAL_NAME))
        if signal is None:
            signal = SignalStrength(name=SIGNAL_NAME, model="gpt-4o-mini", temperature=0.0, max_chars=5000)
            session.add(signal)
            await session.flush()
            for text in (prompts if prompts is not None else [RAW_PROMPT]):
                session.add(Prompt(signal_strength_id=signal.id, type="raw", prompt=text))
            session.add(ProjectSignalStrength(
                project_id=PROJECT_ID,
                signal_strength_id=signal.id,
                enabled=enabled,
                max_value=max_value,
                previous_days=previous_days,
            ))
        session.add(ForumUser(
            user_id=user_id,
            project_id=PROJECT_ID,
            forum_username=forum_username,
            auth_post_id=auth_post_id,
        ))
        await session.commit()
        return signal.id


async def score_rows(factory, user_id: str = "u-alice") -> list[UserSignalStrength]:
    async with factory() as session:
        res = await session.execute(
            select(UserSignalStrength)
            .where(UserSignalStrength.user_id == user_id)
            .order_by(UserSignalStrength.id)
        )
        return list(res.scalars().all())


def action(day: date, post_id: int, raw: str = "<p>Helpful answer</p>") -> dict:
    return {
        "post_id": post_id,
        "action_type": 5,
        "created_at": datetime(day.year, day.month, day.day, 12, 0, tzinfo=timezone.utc).isoformat(),
        "cooked": raw,
    }


class FakeLLM(LLMProvider):
    """Returns queued values in order; an Exception instance in the queue is raised instead."""

    _ids = itertools.count(1)

    def __init__(self, values=(50,)):
        self.values = list(values)
        self.prompts: list[str] = []
        self.configs: list[ModelConfig] = []

    async def score(self, prompt: str, model_config: ModelConfig) -> LLMScore:
        self.prompts.append(prompt)
        self.configs.append(model_config)
        value = self.values.pop(0) if len(self.values) > 1 else self.values[0]
        if isinstance(value, Exception):
            raise value
        return LLMScore(
            output=AIScoreOutput(value=float(value), summary="steady contributor", explained_reasoning="because"),
            request_id=f"chatcmpl-{next(self._ids)}",
            model_used="gpt-4o-mini",
            prompt_tokens=120,
            completion_tokens=30,
        )


class FakeContent:
    """Stands in for the forum activity fetch."""

    def __init__(self, actions=None, error: Exception | None = None, on_call=None):
        self.actions = actions
        self.error = error
        self.on_call = on_call
        self.calls: list[str] = []

    async def __call__(self, username, settings):
        self.calls.append(username)
        if self.on_call is not None:
            await self.on_call()
        if self.error is not None:
            raise self.error
        if self.actions is None:
            return None
        return {"actions": list(self.actions)}


@pytest.fixture
def fake_llm():
    return FakeLLM()

