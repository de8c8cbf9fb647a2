"""
Scheduler Service

Runs the daily scoring sweep: for every registered platform, every forum user
of a project where the platform's signal is enabled gets one scoring run.
Runs are enqueued on Celery (`engine.process_user`), or executed inline when
CELERY_ENABLED=false.

Single-leader election via Postgres advisory locks: only the instance that
acquires the lock executes the tick. Controlled by SCHEDULER_ENABLED.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signal_engine.adapters import get_adapter_registration, list_platforms
from signal_engine.errors import SignalEngineError
from signal_engine.services import score_store
from signal_engine.settings import get_adapter_config, get_app_config

logger = logging.getLogger(__name__)

LOCK_DAILY_SWEEP = 910_001

Enqueue = Callable[[dict[str, Any]], Any]


def _celery_enqueue(payload: dict[str, Any]) -> Any:
    from signal_engine.worker.tasks import process_user
    return process_user.delay(payload)


async def collect_payloads(session: AsyncSession) -> list[dict[str, Any]]:
    """One engine payload per (platform, forum user) with the signal enabled."""
    payloads: list[dict[str, Any]] = []
    for platform in list_platforms():
        registration = get_adapter_registration(platform)
        platform_config = get_adapter_config(platform, registration.settings_cls)
        signal = await score_store.get_signal_strength_by_name(session, platform_config.signal_strength_name)
        if signal is None:
            logger.warning(f"[scheduler] Signal '{platform_config.signal_strength_name}' not found, skipping {platform}")
            continue
        for user_id, project_id in await score_store.list_forum_users_for_signal(session, signal.id):
            payloads.append({
                "platform": platform,
                "user_id": user_id,
                "project_id": project_id,
                "signal_strength_name": signal.name,
            })
    return payloads


class SchedulerService:
    """Daily scoring sweep on an APScheduler cron trigger."""

    _instance: "SchedulerService | None" = None

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self._session_factory: async_sessionmaker | None = None
        self._running = False

    @classmethod
    def get_instance(cls) -> "SchedulerService":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def configure(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    def _get_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            from signal_engine.db import get_session_factory
            self._session_factory = get_session_factory()
        return self._session_factory

    async def _try_advisory_lock(self, session: AsyncSession, lock_key: int) -> bool:
        """Non-blocking session-level advisory lock; always granted off Postgres."""
        if session.bind.dialect.name != "postgresql":
            return True
        result = await session.execute(text(f"SELECT pg_try_advisory_lock({lock_key})"))
        return bool(result.scalar())

    async def _release_advisory_lock(self, session: AsyncSession, lock_key: int):
        if session.bind.dialect.name != "postgresql":
            return
        await session.execute(text(f"SELECT pg_advisory_unlock({lock_key})"))

    def start(self):
        """Start the scheduler (respects SCHEDULER_ENABLED)."""
        settings = get_app_config()
        if not settings.scheduler_enabled:
            logger.info("[scheduler] Disabled by SCHEDULER_ENABLED=false, not starting")
            return
        if self._running:
            return

        self.scheduler.add_job(
            self.run_daily_sweep,
            CronTrigger(hour=settings.scheduler_cron_hour, minute=0),
            id="daily_sweep",
            name="Daily scoring sweep",
            replace_existing=True,
        )
        self.scheduler.start()
        self._running = True
        logger.info(f"[scheduler] Started, daily sweep at {settings.scheduler_cron_hour:02d}:00 UTC")

    def stop(self):
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("[scheduler] Stopped")

    def is_running(self) -> bool:
        return self._running

    def get_jobs(self) -> list[dict]:
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self.scheduler.get_jobs()
        ]

    async def run_daily_sweep(self, enqueue: Enqueue | None = None) -> dict:
        """Dispatch one scoring run per eligible user.

        Protected by advisory lock: only one instance executes per tick.
        """
        factory = self._get_factory()
        async with factory() as session:
            if not await self._try_advisory_lock(session, LOCK_DAILY_SWEEP):
                logger.debug("[scheduler] Advisory lock not acquired, another instance is leader")
                return {"status": "skipped"}
            try:
                payloads = await collect_payloads(session)
            finally:
                await self._release_advisory_lock(session, LOCK_DAILY_SWEEP)

        if enqueue is None and get_app_config().celery_enabled:
            enqueue = _celery_enqueue

        dispatched = failed = 0
        for payload in payloads:
            try:
                if enqueue is not None:
                    enqueue(payload)
                else:
                    from signal_engine.engine import run_engine
                    await run_engine(payload, session_factory=factory)
                dispatched += 1
            except SignalEngineError as e:
                failed += 1
                logger.error(f"[scheduler] Run for {payload['user_id']}/{payload['project_id']} failed: {e}")
            except Exception:
                failed += 1
                logger.exception(f"[scheduler] Run for {payload['user_id']}/{payload['project_id']} crashed")

        logger.info(f"[scheduler] Daily sweep: {dispatched} dispatched, {failed} failed")
        return {"status": "ok", "dispatched": dispatched, "failed": failed}


scheduler_service = SchedulerService.get_instance()
