"""
Platform adapter interface.

Each adapter implements `process_user(user_id, project_id, force_smart=...)`
and returns a `ProcessResult`. Recoverable failures (content fetch, LLM,
validation, a single failed save) are counted in the result; configuration
errors and unexpected exceptions propagate to the caller.
"""
from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from signal_engine.schemas import AdapterRuntimeConfig
from signal_engine.services.ai_orchestrator import AIOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Outcome of one adapter run for a single user."""
    user_id: str
    project_id: str
    status: str = "completed"
    raw_saved: int = 0
    raw_skipped: int = 0
    raw_failed: int = 0
    smart_saved: bool = False
    smart_score: int | None = None

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "project_id": self.project_id,
            "status": self.status,
            "raw_saved": self.raw_saved,
            "raw_skipped": self.raw_skipped,
            "raw_failed": self.raw_failed,
            "smart_saved": self.smart_saved,
            "smart_score": self.smart_score,
        }


class PlatformAdapter(abc.ABC):
    """Base class for platform-specific scoring adapters."""

    platform: str = "unknown"

    def __init__(
        self,
        session: AsyncSession,
        orchestrator: AIOrchestrator,
        runtime_config: AdapterRuntimeConfig,
        content_client: Any | None = None,
    ):
        self.session = session
        self.orchestrator = orchestrator
        self.runtime_config = runtime_config
        self.content_client = content_client

    @abc.abstractmethod
    async def process_user(self, user_id: str, project_id: str, *, force_smart: bool = False) -> ProcessResult:
        ...

    def _log(self, user_id: str, msg: str):
        logger.info(f"[{self.platform}][user={user_id}] {msg}")

    def _warn(self, user_id: str, msg: str):
        logger.warning(f"[{self.platform}][user={user_id}] {msg}")

    def _error(self, user_id: str, msg: str):
        logger.error(f"[{self.platform}][user={user_id}] {msg}")
