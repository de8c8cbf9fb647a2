"""
Score generation without persistence.

Raw scores come from one LLM call per day of activity. Smart scores are
computed by `smart_score.calculate_smart_score` and never consult the LLM,
so the number is reproducible from the stored raw rows alone.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import date
from typing import Any

from signal_engine.errors import ConfigurationError, SignalEngineError
from signal_engine.models import PromptType
from signal_engine.schemas import AiConfig, ModelConfig, PromptConfig, RawScore, ScoreRecord
from signal_engine.services.content import prepare_prompt, serialize_activity, truncate
from signal_engine.services.llm_provider import LLMProvider
from signal_engine.services.smart_score import calculate_smart_score
from signal_engine.settings import AppSettings

logger = logging.getLogger(__name__)

SMART_SCORE_MODEL = "deterministic"


def select_prompt(ai_config: AiConfig, prompt_type: PromptType) -> PromptConfig | None:
    """Newest prompt of the given type with non-empty text."""
    candidates = [
        p for p in ai_config.prompts
        if p.type == prompt_type and p.prompt and p.prompt.strip()
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda p: (p.created_at, p.id))


class AIOrchestrator:
    def __init__(self, app_config: AppSettings, llm_provider: LLMProvider):
        self.app_config = app_config
        self.llm = llm_provider

    async def generate_raw_score(
        self,
        user_id: str,
        project_id: str,
        identity: tuple[str, str],
        day: date,
        actions: list[dict[str, Any]],
        ai_config: AiConfig,
        logs: str = "",
    ) -> ScoreRecord | None:
        """Score one day of activity. Returns None on any failure; the caller skips the day."""
        prompt = select_prompt(ai_config, PromptType.raw)
        if prompt is None:
            err = ConfigurationError(
                f"No valid raw prompt configured for signal {ai_config.signal_strength_id}"
            )
            logger.error(f"[orchestrator] {err} (user={user_id}, day={day})")
            return None

        username, display_name = identity
        content = truncate(serialize_activity(actions), ai_config.max_chars)
        prompt_text = prepare_prompt(
            prompt.prompt,
            {
                "content": content,
                "username": username,
                "displayName": display_name,
                "maxValue": str(ai_config.max_value),
                "logs": logs,
            },
        )
        model_config = ModelConfig(
            model=ai_config.model,
            temperature=ai_config.temperature,
            max_tokens=self.app_config.llm_max_tokens,
        )

        try:
            result = await asyncio.wait_for(
                self.llm.score(prompt_text, model_config),
                timeout=self.app_config.llm_timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"[orchestrator] LLM call timed out after {self.app_config.llm_timeout_sec}s "
                f"(user={user_id}, day={day})"
            )
            return None
        except SignalEngineError as e:
            logger.error(f"[orchestrator] LLM call failed (user={user_id}, day={day}): {e}")
            return None
        except Exception as e:
            logger.exception(f"[orchestrator] Unexpected LLM error (user={user_id}, day={day}): {e}")
            return None

        output = result.output
        raw_value = min(float(output.value), float(ai_config.max_value))
        if raw_value < output.value:
            logger.info(f"[orchestrator] Capped value {output.value} to {ai_config.max_value} (user={user_id}, day={day})")

        return ScoreRecord(
            user_id=user_id,
            project_id=project_id,
            signal_strength_id=ai_config.signal_strength_id,
            day=day,
            raw_value=raw_value,
            max_value=ai_config.max_value,
            summary=output.summary,
            description=output.description,
            improvements=output.improvements,
            explained_reasoning=output.explained_reasoning,
            logs=logs or None,
            model=result.model_used or ai_config.model,
            temperature=ai_config.temperature,
            max_chars=ai_config.max_chars,
            prompt_id=prompt.id,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            request_id=result.request_id,
            created=int(time.time()),
        )

    def generate_smart_score_summary(
        self,
        user_id: str,
        project_id: str,
        day: date,
        raw_scores: list[RawScore],
        ai_config: AiConfig,
        lookback_days: int,
    ) -> ScoreRecord:
        result = calculate_smart_score(raw_scores, lookback_days)
        band = ", ".join(d.isoformat() for d in result.top_band_days) or "none"
        logger.info(
            f"[orchestrator] Smart score {result.smart_score} for user={user_id} "
            f"from {len(raw_scores)} raw scores, top band {band}"
        )
        return ScoreRecord(
            user_id=user_id,
            project_id=project_id,
            signal_strength_id=ai_config.signal_strength_id,
            day=day,
            value=result.smart_score,
            max_value=ai_config.max_value,
            summary=(
                f"Smart score {result.smart_score} from {len(result.top_band_days)} top-band day(s) "
                f"over the last {lookback_days} days."
            ),
            description=f"Top-band days: {band}. Raw scores considered: {len(raw_scores)}.",
            model=SMART_SCORE_MODEL,
            request_id=f"smart_{uuid.uuid4().hex}",
            created=int(time.time()),
        )
