import asyncio
from datetime import datetime, timedelta

from conftest import PROJECT_ID, TODAY, FakeLLM, action
from signal_engine.errors import ValidationError
from signal_engine.models import PromptType
from signal_engine.schemas import AiConfig, LLMScore, ModelConfig, PromptConfig, RawScore
from signal_engine.services.ai_orchestrator import AIOrchestrator, select_prompt
from signal_engine.services.llm_provider import LLMProvider
from signal_engine.settings import AppSettings

DAY = TODAY - timedelta(days=1)
T0 = datetime(2026, 1, 1, 9, 0)


def _ai_config(prompts=None, max_value=100, max_chars=0) -> AiConfig:
    if prompts is None:
        prompts = [PromptConfig(id=1, type=PromptType.raw, prompt="Score ${username} (${displayName}) /${maxValue}: ${content}", created_at=T0)]
    return AiConfig(
        signal_strength_id=7,
        signal_strength_name="discourse_forum",
        model="gpt-4o-mini",
        temperature=0.2,
        max_chars=max_chars,
        max_value=max_value,
        previous_days=30,
        prompts=prompts,
    )


def _orchestrator(llm, **settings) -> AIOrchestrator:
    return AIOrchestrator(AppSettings(**settings), llm)


def _raw_score(orchestrator, ai_config, actions=None):
    return asyncio.run(orchestrator.generate_raw_score(
        "u-alice", PROJECT_ID, ("alice", "Alice A."), DAY, actions or [action(DAY, 1)], ai_config
    ))


def test_select_prompt_prefers_newest_non_empty_raw_prompt():
    prompts = [
        PromptConfig(id=1, type=PromptType.raw, prompt="old", created_at=T0),
        PromptConfig(id=2, type=PromptType.raw, prompt="new", created_at=T0 + timedelta(days=1)),
        PromptConfig(id=3, type=PromptType.raw, prompt="   ", created_at=T0 + timedelta(days=2)),
        PromptConfig(id=4, type=PromptType.smart, prompt="smart", created_at=T0 + timedelta(days=3)),
    ]
    assert select_prompt(_ai_config(prompts), PromptType.raw).id == 2


def test_raw_score_record_carries_provenance():
    llm = FakeLLM([42])
    record = _raw_score(_orchestrator(llm), _ai_config())

    assert record.raw_value == 42.0
    assert record.value is None
    assert record.day == DAY
    assert record.max_value == 100
    assert record.prompt_id == 1
    assert record.model == "gpt-4o-mini"
    assert record.prompt_tokens == 120
    assert record.completion_tokens == 30
    assert record.explained_reasoning == "because"
    assert record.test_requesting_user is None

    prompt = llm.prompts[0]
    assert prompt.startswith("Score alice (Alice A.) /100: ")
    assert "<p>" not in prompt and "Helpful answer" in prompt
    assert llm.configs[0] == ModelConfig(model="gpt-4o-mini", temperature=0.2, max_tokens=4096)


def test_value_is_capped_at_max_value():
    record = _raw_score(_orchestrator(FakeLLM([250])), _ai_config(max_value=10))
    assert record.raw_value == 10.0


def test_content_is_truncated_to_budget():
    llm = FakeLLM([5])
    _raw_score(_orchestrator(llm), _ai_config(max_chars=20), [action(DAY, i, "x" * 200) for i in range(3)])
    assert llm.prompts[0].endswith("...[truncated]")


def test_missing_prompt_returns_none_without_calling_llm():
    llm = FakeLLM([5])
    empty = [PromptConfig(id=9, type=PromptType.raw, prompt="", created_at=T0)]
    assert _raw_score(_orchestrator(llm), _ai_config(empty)) is None
    assert llm.prompts == []


def test_llm_failures_return_none():
    assert _raw_score(_orchestrator(FakeLLM([ValidationError("bad", raw_payload="{}")])), _ai_config()) is None
    assert _raw_score(_orchestrator(FakeLLM([RuntimeError("boom")])), _ai_config()) is None


class SlowLLM(LLMProvider):
    async def score(self, prompt: str, model_config: ModelConfig) -> LLMScore:
        await asyncio.sleep(5)
        raise AssertionError("should have timed out")


def test_llm_timeout_returns_none():
    assert _raw_score(_orchestrator(SlowLLM(), llm_timeout_sec=0.01), _ai_config()) is None


def test_smart_score_is_deterministic_and_makes_no_llm_call():
    llm = FakeLLM([1])
    orchestrator = _orchestrator(llm)
    raw_scores = [
        RawScore(day=DAY, raw_value=80, max_value=100),
        RawScore(day=DAY - timedelta(days=2), raw_value=60, max_value=100),
    ]
    first = orchestrator.generate_smart_score_summary("u-alice", PROJECT_ID, DAY, raw_scores, _ai_config(), 30)
    second = orchestrator.generate_smart_score_summary("u-alice", PROJECT_ID, DAY, raw_scores, _ai_config(), 30)

    assert first.value == second.value == 49
    assert first.raw_value is None
    assert first.model == "deterministic"
    assert first.request_id != second.request_id
    assert llm.prompts == []
