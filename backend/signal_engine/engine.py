"""
Engine entry point.

`run_engine(request)` validates the request, resolves configuration, checks
that the signal is enabled for the project and dispatches to the platform
adapter from the registry. Unsupported platforms fail before any I/O.
"""
from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signal_engine.adapters import ProcessResult, get_adapter_registration, list_platforms
from signal_engine.db import get_session_factory
from signal_engine.errors import ConfigurationError
from signal_engine.schemas import EngineRequest
from signal_engine.services import score_store
from signal_engine.services.ai_orchestrator import AIOrchestrator
from signal_engine.services.llm_provider import LLMProvider, get_llm_provider
from signal_engine.settings import get_adapter_config, get_adapter_runtime_config, get_app_config

logger = logging.getLogger(__name__)

_logging_configured = False


def configure_logging(level: str | None = None) -> None:
    global _logging_configured
    if _logging_configured:
        return
    if level is None:
        try:
            level = get_app_config().log_level
        except ConfigurationError:
            level = "INFO"
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _logging_configured = True


def parse_request(payload: dict[str, Any] | EngineRequest) -> EngineRequest:
    if isinstance(payload, EngineRequest):
        return payload
    try:
        return EngineRequest.model_validate(payload)
    except PydanticValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "request" for err in exc.errors())
        raise ConfigurationError(f"Invalid engine request, check: {fields}") from exc


async def run_engine(
    payload: dict[str, Any] | EngineRequest,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    llm_provider: LLMProvider | None = None,
    content_client: Any | None = None,
) -> ProcessResult:
    request = parse_request(payload)
    registration = get_adapter_registration(request.platform)
    if registration is None:
        raise ConfigurationError(
            f"Unsupported platform '{request.platform}'. Supported: {', '.join(list_platforms())}"
        )

    app_config = get_app_config()
    platform_config = get_adapter_config(request.platform, registration.settings_cls)
    signal_name = request.signal_strength_name or platform_config.signal_strength_name

    logger.info(
        f"[engine] Processing platform={request.platform} user={request.user_id} "
        f"project={request.project_id} signal={signal_name}"
    )

    factory = session_factory or get_session_factory()
    async with factory() as session:
        signal = await score_store.get_signal_strength_by_name(session, signal_name)
        if signal is None:
            raise ConfigurationError(f"Signal strength '{signal_name}' not found")

        if not await score_store.is_signal_enabled(session, signal.id, request.project_id):
            logger.info(f"[engine] Signal '{signal_name}' is not enabled for project {request.project_id}, skipping")
            return ProcessResult(user_id=request.user_id, project_id=request.project_id, status="disabled")

        runtime_config = await get_adapter_runtime_config(session, platform_config, signal.id, request.project_id)
        orchestrator = AIOrchestrator(app_config, llm_provider or get_llm_provider())
        adapter = registration.adapter_cls(session, orchestrator, runtime_config, content_client=content_client)

        try:
            result = await adapter.process_user(
                request.user_id, request.project_id, force_smart=request.force_smart
            )
        except ConfigurationError:
            raise
        except Exception as e:
            logger.exception(f"[engine] Run failed for user={request.user_id} project={request.project_id}: {e}")
            raise

    logger.info(f"[engine] Done: {result.to_dict()}")
    return result


async def handler(event: dict[str, Any]) -> dict[str, Any]:
    """Invocation wrapper for event-driven runtimes; returns a JSON-able status."""
    configure_logging()
    result = await run_engine(event)
    return {"status": "ok", "result": result.to_dict()}
