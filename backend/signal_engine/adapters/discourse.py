"""
Discourse forum adapter.

Run for one user:
    validate user -> set liveness -> fetch activity -> build signal config
    -> raw score per complete day with activity -> smart score for yesterday
    -> clear liveness (always)
"""
from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from datetime import date, datetime, timedelta, timezone
from typing import Any

from signal_engine.adapters.base import PlatformAdapter, ProcessResult
from signal_engine.errors import ContentFetchError, PersistenceError
from signal_engine.integrations.discourse_api import fetch_user_activity
from signal_engine.models import ForumUser
from signal_engine.schemas import AiConfig
from signal_engine.services import score_store
from signal_engine.settings import DiscourseSettings

logger = logging.getLogger(__name__)

ActivityFetcher = Callable[[str, DiscourseSettings], Awaitable["dict[str, list[dict]] | None"]]


def action_day(action: dict[str, Any]) -> date | None:
    """UTC calendar day of an action's creation timestamp."""
    timestamp = action.get("created_at") or action.get("updated_at")
    if not isinstance(timestamp, str) or not timestamp:
        return None
    try:
        parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).date()


def _is_auth_post(action: dict[str, Any], auth_post_id: int | None) -> bool:
    if auth_post_id is None or action.get("post_id") is None:
        return False
    try:
        return int(action["post_id"]) == int(auth_post_id)
    except (TypeError, ValueError):
        return False


def group_actions_by_day(
    actions: list[dict[str, Any]],
    *,
    first_day: date,
    last_day: date,
    auth_post_id: int | None = None,
) -> dict[date, list[dict[str, Any]]]:
    """Bucket actions by UTC day within [first_day, last_day], dropping the auth post."""
    grouped: dict[date, list[dict[str, Any]]] = defaultdict(list)
    for action in actions:
        if _is_auth_post(action, auth_post_id):
            continue
        day = action_day(action)
        if day is None:
            logger.warning(f"[discourse] Skipping action without a usable timestamp: {action.get('post_id')}")
            continue
        if first_day <= day <= last_day:
            grouped[day].append(action)
    return dict(sorted(grouped.items()))


class DiscourseAdapter(PlatformAdapter):
    platform = "discourse"

    @property
    def settings(self) -> DiscourseSettings:
        return self.runtime_config.platform

    @property
    def fetch_activity(self) -> ActivityFetcher:
        return self.content_client or fetch_user_activity

    async def process_user(
        self,
        user_id: str,
        project_id: str,
        *,
        force_smart: bool = False,
        today: date | None = None,
    ) -> ProcessResult:
        result = ProcessResult(user_id=user_id, project_id=project_id)
        ai_config = self.runtime_config.ai_config
        signal_id = ai_config.signal_strength_id

        forum_user = await score_store.get_forum_user(self.session, user_id, project_id)
        if forum_user is None or not forum_user.forum_username:
            self._warn(user_id, f"No forum username linked for project {project_id}, skipping")
            result.status = "skipped"
            return result

        self._log(user_id, f"Starting analysis (forum: {forum_user.forum_username}, project: {project_id})")
        await score_store.set_liveness(self.session, user_id, project_id, signal_id)
        try:
            await self._score_user(forum_user, ai_config, result, force_smart=force_smart, today=today)
        finally:
            # a failed statement leaves the session unusable until rolled back
            await self.session.rollback()
            await score_store.clear_liveness(self.session, user_id, project_id, signal_id)

        self._log(
            user_id,
            f"Finished: status={result.status} raw_saved={result.raw_saved} raw_skipped={result.raw_skipped} "
            f"raw_failed={result.raw_failed} smart_saved={result.smart_saved}",
        )
        return result

    async def _score_user(
        self,
        forum_user: ForumUser,
        ai_config: AiConfig,
        result: ProcessResult,
        *,
        force_smart: bool,
        today: date | None,
    ) -> None:
        user_id, project_id = forum_user.user_id, forum_user.project_id
        today = today or datetime.now(timezone.utc).date()
        yesterday = today - timedelta(days=1)

        identity = await score_store.get_user_identity(self.session, forum_user)

        try:
            activity = await self.fetch_activity(forum_user.forum_username, self.settings)
        except ContentFetchError as e:
            self._error(user_id, f"Activity fetch failed: {e}")
            activity = None
        if not activity or not activity.get("actions"):
            self._warn(user_id, "No activity returned, ending run")
            result.status = "no_activity"
            return

        signal_config = await score_store.get_signal_strength_config(
            self.session, ai_config.signal_strength_id, project_id
        )
        lookback_days = score_store.resolve_lookback_days(signal_config["previous_days"] if signal_config else None)

        days = group_actions_by_day(
            activity["actions"],
            first_day=today - timedelta(days=lookback_days),
            last_day=yesterday,
            auth_post_id=forum_user.auth_post_id,
        )
        if not days:
            self._log(user_id, f"No complete-day activity in the last {lookback_days} days")

        for day, actions in days.items():
            await self._score_day(user_id, project_id, identity, day, actions, ai_config, result)

        await self._score_smart(user_id, project_id, yesterday, today, lookback_days, ai_config, result, force_smart)
        await score_store.update_forum_user_last_updated(self.session, user_id, project_id)

    async def _score_day(
        self,
        user_id: str,
        project_id: str,
        identity: tuple[str, str],
        day: date,
        actions: list[dict[str, Any]],
        ai_config: AiConfig,
        result: ProcessResult,
    ) -> None:
        signal_id = ai_config.signal_strength_id
        if await score_store.raw_score_exists(self.session, user_id, project_id, signal_id, day):
            self._log(user_id, f"Raw score for {day} already exists, skipping")
            result.raw_skipped += 1
            return

        self._log(user_id, f"Generating raw score for {day} ({len(actions)} actions)")
        record = await self.orchestrator.generate_raw_score(
            user_id, project_id, identity, day, actions, ai_config
        )
        if record is None:
            self._error(user_id, f"No raw score generated for {day}")
            result.raw_failed += 1
            return

        try:
            await score_store.save_score(self.session, record)
            await score_store.delete_duplicate_scores(
                self.session, user_id, project_id, signal_id, day, is_raw=True
            )
        except PersistenceError as e:
            self._error(user_id, f"Saving raw score for {day} failed ({e.stage}): {e}")
            result.raw_failed += 1
            return
        result.raw_saved += 1

    async def _score_smart(
        self,
        user_id: str,
        project_id: str,
        yesterday: date,
        today: date,
        lookback_days: int,
        ai_config: AiConfig,
        result: ProcessResult,
        force_smart: bool,
    ) -> None:
        signal_id = ai_config.signal_strength_id
        if not force_smart and await score_store.smart_score_exists(
            self.session, user_id, project_id, signal_id, yesterday
        ):
            self._log(user_id, f"Smart score for {yesterday} already exists, leaving it unchanged")
            return

        raw_scores = await score_store.get_raw_scores_for_user(
            self.session, user_id, project_id, signal_id, lookback_days, today=today
        )
        if not raw_scores:
            self._log(user_id, "No raw scores in the lookback window, no smart score possible")
            return

        record = self.orchestrator.generate_smart_score_summary(
            user_id, project_id, yesterday, raw_scores, ai_config, lookback_days
        )
        try:
            await score_store.save_score(self.session, record)
            await score_store.delete_duplicate_scores(
                self.session, user_id, project_id, signal_id, yesterday, is_raw=False
            )
        except PersistenceError as e:
            self._error(user_id, f"Saving smart score for {yesterday} failed ({e.stage}): {e}")
            return

        result.smart_saved = True
        result.smart_score = record.value
        await score_store.update_total_score_history(self.session, user_id, project_id, yesterday)
