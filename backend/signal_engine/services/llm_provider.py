"""
LLM provider interface for score generation.

Providers return a validated `LLMScore`; the payload is parsed as JSON and
checked against `AIScoreOutput`, first flat, then one level of nesting
(some models wrap their answer under a dynamic top-level key).
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from openai import AsyncOpenAI
from pydantic import ValidationError as PydanticValidationError

from signal_engine.errors import ConfigurationError, ValidationError
from signal_engine.schemas import AIScoreOutput, LLMScore, ModelConfig
from signal_engine.settings import get_app_config

logger = logging.getLogger(__name__)

JSON_INSTRUCTION = (
    "\n\nRespond with a JSON object containing the keys 'value' (a number), "
    "'summary' (a string), and optionally 'description', 'improvements' and 'explained_reasoning'."
)


def parse_score_payload(content: str) -> AIScoreOutput:
    """Parse and validate a raw model payload.

    Raises ValidationError (carrying the raw payload) when neither the flat
    nor the single-nested shape validates.
    """
    try:
        data: Any = json.loads(content)
    except json.JSONDecodeError as exc:
        logger.error(f"[llm] Failed to parse JSON response: {exc}; payload={content!r}")
        raise ValidationError(f"LLM response is not valid JSON: {exc}", raw_payload=content) from exc

    try:
        return AIScoreOutput.model_validate(data)
    except PydanticValidationError as exc:
        flat_error = exc

    if isinstance(data, dict) and len(data) == 1:
        key, nested = next(iter(data.items()))
        if isinstance(nested, dict):
            logger.info(f"[llm] Found nested object under key '{key}', validating it")
            try:
                return AIScoreOutput.model_validate(nested)
            except PydanticValidationError:
                pass

    logger.error(f"[llm] Response failed schema validation: {flat_error.errors()}; payload={content!r}")
    raise ValidationError("LLM response validation failed", raw_payload=content)


class LLMProvider(ABC):
    """Abstract LLM provider. Implement `score` to plug in a model."""

    @abstractmethod
    async def score(self, prompt: str, model_config: ModelConfig) -> LLMScore:
        ...


class OpenAIProvider(LLMProvider):
    """Chat Completions client requesting JSON-only output."""

    def __init__(self, api_key: str, *, timeout_sec: float = 60.0):
        if not api_key:
            raise ConfigurationError("OpenAI API key is not configured")
        self._client = AsyncOpenAI(api_key=api_key, timeout=timeout_sec, max_retries=1)

    async def score(self, prompt: str, model_config: ModelConfig) -> LLMScore:
        logger.info(f"[llm] Sending request to OpenAI (model={model_config.model}, prompt_chars={len(prompt)})")
        completion = await self._client.chat.completions.create(
            messages=[{"role": "user", "content": prompt + JSON_INSTRUCTION}],
            model=model_config.model,
            temperature=model_config.temperature,
            max_tokens=model_config.max_tokens,
            response_format={"type": "json_object"},
        )
        logger.info(f"[llm] Received response {completion.id} from {completion.model}")

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise ValidationError("LLM response content is empty", raw_payload=content)

        usage = completion.usage
        return LLMScore(
            output=parse_score_payload(content),
            request_id=completion.id,
            model_used=completion.model,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
        )


_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    global _provider
    if _provider is None:
        config = get_app_config()
        _provider = OpenAIProvider(config.openai_api_key, timeout_sec=config.llm_timeout_sec)
    return _provider


def set_llm_provider(provider: LLMProvider | None) -> None:
    global _provider
    _provider = provider
