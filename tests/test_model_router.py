"""Tests for the Fast/Smart model router and its escalation rules."""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest

from server.services.llm.provider import FakeProvider, ProviderError
from server.services.llm.router import (
    CustomProviderConfig,
    ModelConfig,
    ModelRouter,
    ModelRouterError,
    RouterConfig,
    resolve_model_config,
    route_model,
)
from server.services.quality_gates import QualityPolicy, QualitySignals
from study.models import Confidence, TaskType

CONFIG = RouterConfig(fast_model="fast", smart_model="smart")
LONG_FAST = "Fast tier explanation of osmosis across a semi-permeable membrane. " * 3
LONG_SMART = "Smart tier explanation of osmosis with a worked example and exam tip. " * 3
CUSTOM = ModelConfig(
    model_type="custom",
    custom=CustomProviderConfig(base_url="https://llm.test/v1", api_key="k", model_name="my-model"),
)


def _request_failed(message="Gemini request failed: 503"):
    return ProviderError(code="request_failed", message=message)


def _router(provider, config=CONFIG, custom=None):
    factory = (lambda cfg: custom) if custom is not None else None
    return ModelRouter(provider, config, custom_provider_factory=factory)


async def _drain(stream):
    return [piece async for piece in stream]


# ============================================================================
# Routing
# ============================================================================

def test_route_model_tiers():
    assert route_model(TaskType.STRATEGY_GENERATION, 0.0, CONFIG) == "smart"
    assert route_model(TaskType.ADAPTIVE_PATH, 0.0, CONFIG) == "smart"
    assert route_model(TaskType.CHAT_FOLLOW_UP, 0.8, CONFIG) == "smart"
    assert route_model(TaskType.CHAT_FOLLOW_UP, 0.79, CONFIG) == "fast"
    assert route_model(TaskType.TOPIC_DESCRIPTION, 0.45, CONFIG) == "fast"


def test_resolve_model_config():
    assert resolve_model_config() == ModelConfig(model_type="gemini")
    assert resolve_model_config("gemini", {"base_url": "ignored"}).is_custom is False

    cfg = resolve_model_config("custom", {"baseUrl": "https://x", "apiKey": "k", "modelName": "m"})
    assert cfg.is_custom
    assert cfg.custom == CustomProviderConfig(base_url="https://x", api_key="k", model_name="m")

    snake = resolve_model_config("custom", {"base_url": "https://x", "api_key": "k", "model_name": "m"})
    assert snake == cfg


def test_resolve_model_config_incomplete_custom():
    with pytest.raises(ValueError, match="Missing custom model configuration"):
        resolve_model_config("custom", {"base_url": "https://x", "api_key": "k"})
    with pytest.raises(ValueError):
        resolve_model_config("custom", None)


def test_custom_model_config_requires_endpoint():
    with pytest.raises(ValueError, match="Missing custom model configuration"):
        ModelConfig(model_type="custom")


# ============================================================================
# Generate
# ============================================================================

def test_fast_output_accepted():
    provider = FakeProvider(outputs={"fast": LONG_FAST, "smart": LONG_SMART})
    routed = asyncio.run(_router(provider).generate("p", TaskType.CHAT_FOLLOW_UP))

    assert routed.text == LONG_FAST
    assert routed.meta.model_used == "fast"
    assert routed.meta.fallback_triggered is False
    assert routed.meta.fallback_reason is None
    assert routed.meta.latency_ms >= 0
    assert [model for model, _ in provider.calls] == ["fast"]


def test_short_fast_output_escalates():
    provider = FakeProvider(outputs={"fast": "Too short.", "smart": LONG_SMART})
    routed = asyncio.run(
        _router(provider).generate("p", TaskType.LEARN_NOW_ANSWER, signals=QualitySignals(min_chars=180))
    )

    assert routed.text == LONG_SMART
    assert routed.meta.model_used == "smart"
    assert routed.meta.fallback_triggered is True
    assert routed.meta.fallback_reason == "output too short"
    assert [model for model, _ in provider.calls] == ["fast", "smart"]


def test_fast_request_failed_escalates_to_smart():
    provider = FakeProvider(outputs={"smart": LONG_SMART}, errors={"fast": _request_failed()})
    routed = asyncio.run(_router(provider).generate("p", TaskType.CHAT_FOLLOW_UP))

    assert routed.text == LONG_SMART
    assert routed.meta.model_used == "smart"
    assert routed.meta.fallback_triggered is True
    assert routed.meta.fallback_reason == "primary_model_error:request_failed"


def test_unstructured_output_escalates_when_json_required():
    provider = FakeProvider(outputs={"fast": LONG_FAST, "smart": '{"ok": true}'})
    routed = asyncio.run(
        _router(provider).generate("p", TaskType.QUIZ_GENERATION, signals=QualitySignals(min_chars=5, requires_json=True))
    )
    assert routed.meta.fallback_reason == "missing answer structure"
    assert routed.text == '{"ok": true}'


def test_low_confidence_escalates_by_default():
    provider = FakeProvider(outputs={"fast": LONG_FAST, "smart": LONG_SMART})
    signals = QualitySignals(retrieval_confidence=Confidence.LOW)
    routed = asyncio.run(_router(provider).generate("p", TaskType.CHAT_FOLLOW_UP, signals=signals))
    assert routed.meta.fallback_reason == "low retrieval confidence"


def test_low_confidence_escalation_can_be_disabled():
    provider = FakeProvider(outputs={"fast": LONG_FAST, "smart": LONG_SMART})
    config = RouterConfig(
        fast_model="fast",
        smart_model="smart",
        quality_policy=QualityPolicy(escalate_on_low_confidence=False),
    )
    signals = QualitySignals(retrieval_confidence=Confidence.LOW)
    routed = asyncio.run(_router(provider, config).generate("p", TaskType.CHAT_FOLLOW_UP, signals=signals))
    assert routed.meta.model_used == "fast"
    assert routed.meta.fallback_triggered is False


def test_smart_task_goes_straight_to_smart():
    provider = FakeProvider(outputs={"fast": LONG_FAST, "smart": "ok"})
    routed = asyncio.run(_router(provider).generate("p", TaskType.TOPIC_RANKING))

    # no quality gate on the smart tier
    assert routed.text == "ok"
    assert routed.meta.model_used == "smart"
    assert routed.meta.fallback_triggered is False
    assert [model for model, _ in provider.calls] == ["smart"]


def test_smart_failure_is_terminal():
    provider = FakeProvider(outputs={"fast": LONG_FAST}, errors={"smart": _request_failed()})
    with pytest.raises(ModelRouterError) as exc:
        asyncio.run(_router(provider).generate("p", TaskType.CRASH_COURSE_GENERATION))

    assert exc.value.code == "request_failed"
    assert str(exc.value) == "smart_model_failed:request_failed"
    assert exc.value.task_type == TaskType.CRASH_COURSE_GENERATION
    assert [model for model, _ in provider.calls] == ["smart"]


def test_high_complexity_smart_failure_is_terminal():
    provider = FakeProvider(outputs={"fast": LONG_FAST})
    with pytest.raises(ModelRouterError) as exc:
        asyncio.run(_router(provider).generate("p", TaskType.CHAT_FOLLOW_UP, complexity=0.9))
    assert exc.value.code == "empty_response"


def test_escalation_failure_raises():
    provider = FakeProvider(errors={"fast": _request_failed(), "smart": _request_failed("Gemini request failed: 500")})
    with pytest.raises(ModelRouterError) as exc:
        asyncio.run(_router(provider).generate("p", TaskType.CHAT_FOLLOW_UP))
    assert exc.value.code == "request_failed"
    assert exc.value.task_type == TaskType.CHAT_FOLLOW_UP


def test_custom_provider_never_escalates():
    managed = FakeProvider(outputs={"fast": LONG_FAST, "smart": LONG_SMART})
    for output in ("x", "As an AI I cannot say.", LONG_FAST, "{}"):
        custom = FakeProvider(outputs={"my-model": output})
        routed = asyncio.run(
            _router(managed, custom=custom).generate(
                "p",
                TaskType.STRATEGY_GENERATION,
                CUSTOM,
                complexity=1.0,
                signals=QualitySignals(retrieval_confidence=Confidence.LOW, min_chars=500, requires_json=True),
            )
        )
        assert routed.text == output
        assert routed.meta.model_used == "my-model"
        assert routed.meta.fallback_triggered is False
        assert custom.calls == [("my-model", "p")]
    assert managed.calls == []


def test_custom_provider_error_is_terminal():
    managed = FakeProvider(outputs={"fast": LONG_FAST, "smart": LONG_SMART})
    custom = FakeProvider(errors={"my-model": _request_failed("Custom provider request failed: 401")})
    with pytest.raises(ModelRouterError) as exc:
        asyncio.run(_router(managed, custom=custom).generate("p", TaskType.CHAT_FOLLOW_UP, CUSTOM))
    assert exc.value.code == "request_failed"
    assert exc.value.task_type == TaskType.CHAT_FOLLOW_UP
    assert managed.calls == []


# ============================================================================
# Stream
# ============================================================================

def test_stream_fast_success():
    provider = FakeProvider(outputs={"fast": "Osmosis moves water.", "smart": LONG_SMART}, chunk_size=8)
    stream = _router(provider).stream("p", TaskType.CHAT_FOLLOW_UP)
    pieces = asyncio.run(_drain(stream))

    assert "".join(pieces) == "Osmosis moves water."
    assert stream.result.text == "Osmosis moves water."
    assert stream.result.meta.model_used == "fast"
    assert stream.result.meta.fallback_triggered is False


def test_stream_escalates_on_error_with_smart_only_result():
    provider = FakeProvider(
        outputs={"fast": "partial fast text", "smart": "Smart answer."},
        errors={"fast": _request_failed()},
        chunk_size=8,
        fail_after_chunks=1,
    )
    stream = _router(provider).stream("p", TaskType.LEARN_NOW_ANSWER)
    pieces = asyncio.run(_drain(stream))

    assert pieces[0] == "partial "
    assert "".join(pieces[1:]) == "Smart answer."
    assert stream.result.text == "Smart answer."
    assert stream.result.meta.model_used == "smart"
    assert stream.result.meta.fallback_reason == "primary_model_error:request_failed"


def test_stream_short_output_is_not_gated():
    provider = FakeProvider(outputs={"fast": "ok", "smart": LONG_SMART})
    stream = _router(provider).stream("p", TaskType.CHAT_FOLLOW_UP)
    asyncio.run(_drain(stream))
    assert stream.result.text == "ok"
    assert stream.result.meta.fallback_triggered is False


def test_stream_smart_failure_raises():
    provider = FakeProvider(errors={"smart": _request_failed()})
    stream = _router(provider).stream("p", TaskType.TOPIC_RANKING)
    with pytest.raises(ModelRouterError) as exc:
        asyncio.run(_drain(stream))
    assert str(exc.value) == "smart_model_failed:request_failed"
    assert stream.result is None


def test_stream_custom_provider():
    managed = FakeProvider()
    custom = FakeProvider(outputs={"my-model": "custom streamed text"}, chunk_size=6)
    stream = _router(managed, custom=custom).stream("p", TaskType.CHAT_FOLLOW_UP, CUSTOM)
    pieces = asyncio.run(_drain(stream))

    assert "".join(pieces) == "custom streamed text"
    assert stream.result.meta.model_used == "my-model"
    assert stream.result.meta.fallback_triggered is False
    assert managed.calls == []
