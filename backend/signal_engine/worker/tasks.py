"""
Celery tasks for scoring.

Main task: engine.process_user, runs `run_engine` for one
(platform, user, project) in a fresh event loop via asyncio.run().
Configuration errors are final and never retried.
"""
from __future__ import annotations

import asyncio
import logging

from signal_engine.errors import ConfigurationError
from signal_engine.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _process_user_async(payload: dict) -> dict:
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from signal_engine.engine import run_engine
    from signal_engine.settings import get_app_config

    # one loop per task, so the engine cannot be shared with the cached one
    engine = create_async_engine(get_app_config().async_database_url, echo=False)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        result = await run_engine(payload, session_factory=session_factory)
        return result.to_dict()
    finally:
        await engine.dispose()


@celery_app.task(
    bind=True,
    name="engine.process_user",
    autoretry_for=(Exception,),
    dont_autoretry_for=(ConfigurationError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
    queue="engine",
)
def process_user(self, payload: dict) -> dict:
    """Celery task: score one user on one platform."""
    from signal_engine.engine import configure_logging

    configure_logging()
    logger.info(
        f"[worker] Starting {payload.get('platform')} run for user={payload.get('user_id')} "
        f"project={payload.get('project_id')} (celery_id={self.request.id}, attempt={self.request.retries + 1})"
    )
    try:
        return asyncio.run(_process_user_async(payload))
    except ConfigurationError as e:
        logger.error(f"[worker] Configuration error, not retrying: {e}")
        raise
    except Exception as e:
        logger.error(f"[worker] Run error (attempt {self.request.retries + 1}): {e}")
        raise
