"""
Data access for the scoring engine.

Score rows are written with delete-then-insert on the logical key
(user, project, signal, day, kind) inside one transaction. Every "already
exists" check and every aggregation read excludes test rows
(`test_requesting_user IS NULL`).
"""
from __future__ import annotations

import logging
import time
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from signal_engine.errors import PersistenceError
from signal_engine.models import (
    ForumUser,
    ProjectSignalStrength,
    Prompt,
    PromptType,
    SignalStrength,
    User,
    UserProjectScoresHistory,
    UserSignalStrength,
)
from signal_engine.schemas import AiConfig, PromptConfig, RawScore, ScoreRecord

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 30
DEFAULT_MAX_VALUE = 100
# Sorts liveness rows ahead of every real row for UI consumers.
LIVENESS_CREATED = 99_999_999_999_999


def now_epoch() -> int:
    return int(time.time())


def resolve_lookback_days(previous_days: int | None) -> int:
    if previous_days and previous_days > 0:
        return previous_days
    return DEFAULT_LOOKBACK_DAYS


def liveness_request_id(user_id: str, project_id: str, signal_strength_id: int) -> str:
    return f"last_checked_{user_id}_{project_id}_{signal_strength_id}"


def _kind_filter(is_raw: bool):
    if is_raw:
        return UserSignalStrength.raw_value.is_not(None)
    return UserSignalStrength.value.is_not(None)


def _partition_filter(test_requesting_user: str | None):
    if test_requesting_user is None:
        return UserSignalStrength.test_requesting_user.is_(None)
    return UserSignalStrength.test_requesting_user == test_requesting_user


def _key_filters(
    user_id: str,
    project_id: str,
    signal_strength_id: int,
    day: date,
    *,
    is_raw: bool,
    test_requesting_user: str | None = None,
) -> list:
    return [
        UserSignalStrength.user_id == user_id,
        UserSignalStrength.project_id == project_id,
        UserSignalStrength.signal_strength_id == signal_strength_id,
        UserSignalStrength.day == day,
        _kind_filter(is_raw),
        _partition_filter(test_requesting_user),
    ]


# ── Users ────────────────────────────────────────────────────

async def get_forum_user(session: AsyncSession, user_id: str, project_id: str) -> ForumUser | None:
    return await session.scalar(
        select(ForumUser).where(ForumUser.user_id == user_id, ForumUser.project_id == project_id)
    )


async def get_user_identity(session: AsyncSession, forum_user: ForumUser) -> tuple[str, str]:
    """Return (username, display_name), falling back to the forum username, then the id."""
    user = await session.get(User, forum_user.user_id)
    fallback = forum_user.forum_username or str(forum_user.user_id)
    username = (user.username if user else None) or fallback
    display_name = (user.display_name if user else None) or fallback
    return username, display_name


async def update_forum_user_last_updated(session: AsyncSession, user_id: str, project_id: str) -> None:
    await session.execute(
        update(ForumUser)
        .where(ForumUser.user_id == user_id, ForumUser.project_id == project_id)
        .values(last_updated=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    await session.commit()


async def list_forum_users_for_signal(session: AsyncSession, signal_strength_id: int) -> list[tuple[str, str]]:
    """(user_id, project_id) for every linked forum user where the signal is enabled."""
    res = await session.execute(
        select(ForumUser.user_id, ForumUser.project_id)
        .join(ProjectSignalStrength, ProjectSignalStrength.project_id == ForumUser.project_id)
        .where(
            ProjectSignalStrength.signal_strength_id == signal_strength_id,
            ProjectSignalStrength.enabled.is_(True),
            ForumUser.forum_username.is_not(None),
        )
        .order_by(ForumUser.project_id, ForumUser.user_id)
    )
    return [(row.user_id, row.project_id) for row in res]


# ── Configuration ────────────────────────────────────────────

async def get_signal_strength_by_name(session: AsyncSession, name: str) -> SignalStrength | None:
    return await session.scalar(select(SignalStrength).where(SignalStrength.name == name))


async def _get_project_signal(
    session: AsyncSession, signal_strength_id: int, project_id: str
) -> ProjectSignalStrength | None:
    return await session.scalar(
        select(ProjectSignalStrength).where(
            ProjectSignalStrength.signal_strength_id == signal_strength_id,
            ProjectSignalStrength.project_id == project_id,
        )
    )


async def is_signal_enabled(session: AsyncSession, signal_strength_id: int, project_id: str) -> bool:
    project_signal = await _get_project_signal(session, signal_strength_id, project_id)
    return bool(project_signal and project_signal.enabled)


async def get_signal_strength_config(
    session: AsyncSession, signal_strength_id: int, project_id: str
) -> dict | None:
    """Return {"previous_days": n} or None; None means "use DEFAULT_LOOKBACK_DAYS"."""
    project_signal = await _get_project_signal(session, signal_strength_id, project_id)
    if project_signal is None or not project_signal.previous_days:
        return None
    return {"previous_days": project_signal.previous_days}


async def get_ai_config(session: AsyncSession, signal_strength_id: int, project_id: str) -> AiConfig | None:
    """Load model, bounds and prompts for (signal, project); None if absent or disabled."""
    signal = await session.get(SignalStrength, signal_strength_id)
    if signal is None:
        logger.info(f"[score_store] Signal strength {signal_strength_id} not found")
        return None

    project_signal = await _get_project_signal(session, signal_strength_id, project_id)
    if project_signal is None or not project_signal.enabled:
        logger.info(f"[score_store] Signal {signal_strength_id} is not enabled for project {project_id}")
        return None

    if not signal.model:
        logger.error(f"[score_store] Signal {signal_strength_id} has no model configured")
        return None

    res = await session.execute(
        select(Prompt).where(Prompt.signal_strength_id == signal_strength_id).order_by(Prompt.id)
    )
    prompts = [
        PromptConfig(id=p.id, type=PromptType(p.type), prompt=p.prompt, created_at=p.created_at)
        for p in res.scalars().all()
    ]
    return AiConfig(
        signal_strength_id=signal.id,
        signal_strength_name=signal.name,
        model=signal.model,
        temperature=signal.temperature if signal.temperature is not None else 0.0,
        max_chars=signal.max_chars or 0,
        max_value=project_signal.max_value if project_signal.max_value is not None else DEFAULT_MAX_VALUE,
        previous_days=project_signal.previous_days,
        prompts=prompts,
    )


# ── Scores ───────────────────────────────────────────────────

async def _score_exists(
    session: AsyncSession, user_id: str, project_id: str, signal_strength_id: int, day: date, *, is_raw: bool
) -> bool:
    found = await session.scalar(
        select(UserSignalStrength.id)
        .where(*_key_filters(user_id, project_id, signal_strength_id, day, is_raw=is_raw))
        .limit(1)
    )
    return found is not None


async def raw_score_exists(
    session: AsyncSession, user_id: str, project_id: str, signal_strength_id: int, day: date
) -> bool:
    return await _score_exists(session, user_id, project_id, signal_strength_id, day, is_raw=True)


async def smart_score_exists(
    session: AsyncSession, user_id: str, project_id: str, signal_strength_id: int, day: date
) -> bool:
    return await _score_exists(session, user_id, project_id, signal_strength_id, day, is_raw=False)


async def get_raw_scores_for_user(
    session: AsyncSession,
    user_id: str,
    project_id: str,
    signal_strength_id: int,
    lookback_days: int,
    *,
    today: date | None = None,
) -> list[RawScore]:
    """Non-test raw scores in the lookback window, most recent day first."""
    today = today or datetime.now(timezone.utc).date()
    since = today - timedelta(days=lookback_days)
    res = await session.execute(
        select(UserSignalStrength.day, UserSignalStrength.raw_value, UserSignalStrength.max_value)
        .where(
            UserSignalStrength.user_id == user_id,
            UserSignalStrength.project_id == project_id,
            UserSignalStrength.signal_strength_id == signal_strength_id,
            UserSignalStrength.day >= since,
            UserSignalStrength.raw_value.is_not(None),
            UserSignalStrength.test_requesting_user.is_(None),
        )
        .order_by(UserSignalStrength.day.desc(), UserSignalStrength.id.desc())
    )
    scores: list[RawScore] = []
    for row in res:
        if not row.max_value:
            logger.warning(f"[score_store] Skipping raw score for {user_id} on {row.day}: max_value missing")
            continue
        scores.append(RawScore(day=row.day, raw_value=row.raw_value, max_value=row.max_value))
    return scores


async def save_score(session: AsyncSession, record: ScoreRecord) -> int:
    """Replace the row for the record's logical key; returns the new row id.

    Delete and insert share one transaction. A PersistenceError with
    stage="delete" means nothing changed; stage="insert" means the insert
    failed and the delete was rolled back with it.
    """
    key = (
        f"user={record.user_id} project={record.project_id} signal={record.signal_strength_id} "
        f"day={record.day} kind={'raw' if record.is_raw else 'smart'}"
    )
    filters = _key_filters(
        record.user_id,
        record.project_id,
        record.signal_strength_id,
        record.day,
        is_raw=record.is_raw,
        test_requesting_user=record.test_requesting_user,
    )
    try:
        await session.execute(
            delete(UserSignalStrength).where(*filters).execution_options(synchronize_session=False)
        )
    except SQLAlchemyError as exc:
        await session.rollback()
        raise PersistenceError(f"Failed to clear previous score ({key}): {exc}", stage="delete") from exc

    row = UserSignalStrength(**record.to_row())
    session.add(row)
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise PersistenceError(
            f"Failed to save new score ({key}); previous row left in place: {exc}", stage="insert"
        ) from exc
    return row.id


async def delete_duplicate_scores(
    session: AsyncSession,
    user_id: str,
    project_id: str,
    signal_strength_id: int,
    day: date,
    *,
    is_raw: bool,
    test_requesting_user: str | None = None,
) -> int:
    """Keep the newest row (highest id) for the logical key, delete the rest."""
    res = await session.execute(
        select(UserSignalStrength.id)
        .where(
            *_key_filters(
                user_id, project_id, signal_strength_id, day,
                is_raw=is_raw, test_requesting_user=test_requesting_user,
            )
        )
        .order_by(UserSignalStrength.id.desc())
    )
    stale_ids = list(res.scalars().all())[1:]
    if not stale_ids:
        return 0
    await session.execute(
        delete(UserSignalStrength)
        .where(UserSignalStrength.id.in_(stale_ids))
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return len(stale_ids)


async def update_total_score_history(session: AsyncSession, user_id: str, project_id: str, day: date) -> float:
    """Upsert the sum of the user's production smart scores across signals for the day."""
    total = await session.scalar(
        select(func.coalesce(func.sum(UserSignalStrength.value), 0)).where(
            UserSignalStrength.user_id == user_id,
            UserSignalStrength.project_id == project_id,
            UserSignalStrength.day == day,
            UserSignalStrength.value.is_not(None),
            UserSignalStrength.test_requesting_user.is_(None),
        )
    )
    history = await session.scalar(
        select(UserProjectScoresHistory).where(
            UserProjectScoresHistory.user_id == user_id,
            UserProjectScoresHistory.project_id == project_id,
            UserProjectScoresHistory.day == day,
        )
    )
    if history is None:
        history = UserProjectScoresHistory(user_id=user_id, project_id=project_id, day=day)
    history.total_score = float(total or 0)
    session.add(history)
    await session.commit()
    return history.total_score


# ── Liveness marker ──────────────────────────────────────────

async def set_liveness(session: AsyncSession, user_id: str, project_id: str, signal_strength_id: int) -> None:
    request_id = liveness_request_id(user_id, project_id, signal_strength_id)
    marker = await session.scalar(select(UserSignalStrength).where(UserSignalStrength.request_id == request_id))
    if marker is None:
        marker = UserSignalStrength(
            user_id=user_id,
            project_id=project_id,
            signal_strength_id=signal_strength_id,
            request_id=request_id,
            created=LIVENESS_CREATED,
        )
    marker.last_checked = now_epoch()
    session.add(marker)
    await session.commit()


async def clear_liveness(session: AsyncSession, user_id: str, project_id: str, signal_strength_id: int) -> None:
    request_id = liveness_request_id(user_id, project_id, signal_strength_id)
    await session.execute(
        delete(UserSignalStrength)
        .where(UserSignalStrength.request_id == request_id)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
