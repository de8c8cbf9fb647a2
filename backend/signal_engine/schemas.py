from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import PromptType

if TYPE_CHECKING:
    from .settings import PlatformSettings


# ── Dynamic AI configuration ─────────────────────────────────

@dataclass
class PromptConfig:
    id: int
    type: PromptType
    prompt: str | None
    created_at: datetime


@dataclass
class AiConfig:
    """Per (signal, project) AI configuration read from the store."""
    signal_strength_id: int
    signal_strength_name: str
    model: str
    temperature: float
    max_chars: int
    max_value: int
    previous_days: int | None
    prompts: list[PromptConfig] = field(default_factory=list)


@dataclass
class AdapterRuntimeConfig:
    platform: "PlatformSettings"
    ai_config: AiConfig


@dataclass
class ModelConfig:
    model: str
    temperature: float
    max_tokens: int


# ── LLM output ───────────────────────────────────────────────

class AIScoreOutput(BaseModel):
    """Strict schema for the JSON payload returned by the model."""

    model_config = ConfigDict(extra="ignore")

    value: float = Field(strict=True)
    summary: str = Field(strict=True)
    description: str = ""
    improvements: str = ""
    explained_reasoning: str = ""

    @model_validator(mode="before")
    @classmethod
    def normalize_reasoning(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        camel = data.pop("explainedReasoning", None)
        if not data.get("explained_reasoning") and camel:
            data["explained_reasoning"] = camel
        for key in ("description", "improvements", "explained_reasoning"):
            if data.get(key) is None:
                data.pop(key, None)
        return data


@dataclass
class LLMScore:
    output: AIScoreOutput
    request_id: str
    model_used: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


# ── Scores ───────────────────────────────────────────────────

@dataclass(frozen=True)
class RawScore:
    day: date
    raw_value: float
    max_value: float


@dataclass(frozen=True)
class SmartScoreOutput:
    smart_score: int
    top_band_days: list[date]


@dataclass
class ScoreRecord:
    """A persistable score row. Exactly one of `raw_value` / `value` is set."""
    user_id: str
    project_id: str
    signal_strength_id: int
    day: date
    max_value: int
    created: int
    request_id: str
    raw_value: float | None = None
    value: int | None = None
    summary: str | None = None
    description: str | None = None
    improvements: str | None = None
    explained_reasoning: str | None = None
    logs: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_chars: int | None = None
    prompt_id: int | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    test_requesting_user: str | None = None

    def __post_init__(self) -> None:
        if (self.raw_value is None) == (self.value is None):
            raise ValueError("ScoreRecord needs exactly one of raw_value or value")

    @property
    def is_raw(self) -> bool:
        return self.raw_value is not None

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


# ── Engine invocation ────────────────────────────────────────

class EngineRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    platform: str
    user_id: str
    project_id: str
    signal_strength_name: str | None = None
    force_smart: bool = False

    @field_validator("platform")
    @classmethod
    def normalize_platform(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("platform is required")
        return value

    @field_validator("user_id", "project_id")
    @classmethod
    def require_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value
