"""
Dual-tier adaptive model router.

Per call:
    custom model     -> single dispatch, no escalation
    smart-only task  -> Smart; error is terminal
    everything else  -> Fast; provider error or failed quality gate -> Smart

Streaming follows the same tiering but escalates on provider error only.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, FrozenSet, List, Optional

from server.services.llm.provider import (
    ModelProvider,
    OpenAICompatibleProvider,
    classify_provider_error,
)
from server.services.quality_gates import QualityPolicy, QualitySignals, evaluate_fast_output_quality
from study.models import RoutingMeta, TaskType

logger = logging.getLogger("kalexam.llm")

FAST_MODEL = "gemini-3-flash-preview"
SMART_MODEL = "gemini-3.1-pro-preview"

SMART_TASKS: FrozenSet[TaskType] = frozenset({
    TaskType.STRATEGY_GENERATION,
    TaskType.CHAPTER_PRIORITIZATION,
    TaskType.EXAM_READINESS_SCORING,
    TaskType.CRASH_COURSE_GENERATION,
    TaskType.TOPIC_RANKING,
    TaskType.ADAPTIVE_PATH,
})

SMART_COMPLEXITY_THRESHOLD = 0.8


@dataclass(frozen=True)
class CustomProviderConfig:
    base_url: str
    api_key: str
    model_name: str


@dataclass(frozen=True)
class ModelConfig:
    """Which backend serves a request: the managed gemini tiers or a user's own endpoint."""
    model_type: str = "gemini"  # gemini | custom
    custom: Optional[CustomProviderConfig] = None

    def __post_init__(self):
        if self.model_type == "custom" and self.custom is None:
            raise ValueError("Missing custom model configuration")

    @property
    def is_custom(self) -> bool:
        return self.model_type == "custom" and self.custom is not None


def resolve_model_config(model_type: Optional[str] = None, model_config: Optional[dict] = None) -> ModelConfig:
    """Validate a caller's model selection. Raises ValueError for an incomplete custom config."""
    if model_type == "custom":
        cfg = model_config or {}
        base_url = cfg.get("base_url") or cfg.get("baseUrl")
        api_key = cfg.get("api_key") or cfg.get("apiKey")
        model_name = cfg.get("model_name") or cfg.get("modelName")
        if not base_url or not api_key or not model_name:
            raise ValueError("Missing custom model configuration")
        return ModelConfig(
            model_type="custom",
            custom=CustomProviderConfig(base_url=base_url, api_key=api_key, model_name=model_name),
        )
    return ModelConfig(model_type="gemini")


@dataclass(frozen=True)
class RouterConfig:
    fast_model: str = FAST_MODEL
    smart_model: str = SMART_MODEL
    smart_tasks: FrozenSet[TaskType] = SMART_TASKS
    smart_complexity_threshold: float = SMART_COMPLEXITY_THRESHOLD
    quality_policy: QualityPolicy = field(default_factory=QualityPolicy)


def route_model(task_type: TaskType, complexity: float = 0.0, config: Optional[RouterConfig] = None) -> str:
    """Primary model for a task: Smart for smart-only tasks or complexity >= threshold, else Fast."""
    config = config or RouterConfig()
    if task_type in config.smart_tasks or (complexity or 0.0) >= config.smart_complexity_threshold:
        return config.smart_model
    return config.fast_model


@dataclass
class ModelRouterError(Exception):
    """Generation failed on every tier that was tried."""
    code: str
    message: str
    task_type: Optional[TaskType] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class RoutedText:
    text: str
    meta: RoutingMeta


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _default_custom_provider(config: CustomProviderConfig) -> ModelProvider:
    return OpenAICompatibleProvider(base_url=config.base_url, api_key=config.api_key)


class ModelRouter:
    """
    Routes generation requests between the Fast and Smart tiers of the managed
    provider, or straight to a caller-configured custom endpoint.
    """

    def __init__(
        self,
        provider: ModelProvider,
        config: Optional[RouterConfig] = None,
        custom_provider_factory: Optional[Callable[[CustomProviderConfig], ModelProvider]] = None,
    ):
        self.provider = provider
        self.config = config or RouterConfig()
        self.custom_provider_factory = custom_provider_factory or _default_custom_provider

    def route(self, task_type: TaskType, complexity: float = 0.0) -> str:
        return route_model(task_type, complexity, self.config)

    async def _run(self, provider: ModelProvider, prompt: str, model_name: str) -> str:
        try:
            return await provider.generate(prompt, model_name)
        except Exception as e:
            raise ModelRouterError(code=classify_provider_error(e), message=str(e) or "Unknown provider error")

    async def generate(
        self,
        prompt: str,
        task_type: TaskType,
        model_config: Optional[ModelConfig] = None,
        complexity: float = 0.0,
        signals: Optional[QualitySignals] = None,
    ) -> RoutedText:
        """
        Generate text for one task, escalating Fast -> Smart when needed.

        Raises:
            ModelRouterError: every tier tried failed (code is the classified provider code)
        """
        started = time.perf_counter()
        model_config = model_config or ModelConfig()

        if model_config.is_custom:
            custom = model_config.custom
            try:
                text = await self._run(self.custom_provider_factory(custom), prompt, custom.model_name)
            except ModelRouterError as e:
                e.task_type = task_type
                raise
            return RoutedText(
                text=text,
                meta=RoutingMeta(
                    task_type=task_type,
                    model_used=custom.model_name,
                    fallback_triggered=False,
                    latency_ms=_elapsed_ms(started),
                ),
            )

        primary_model = self.route(task_type, complexity)
        primary = ""
        primary_error: Optional[str] = None
        try:
            primary = await self.provider.generate(prompt, primary_model)
        except Exception as e:
            primary_error = classify_provider_error(e)
            logger.warning("Primary model %s failed for %s: %s (%s)", primary_model, task_type.value, primary_error, e)

        if primary_model == self.config.smart_model:
            if not primary:
                code = primary_error or "unknown_provider_error"
                raise ModelRouterError(code=code, message=f"smart_model_failed:{code}", task_type=task_type)
            return RoutedText(
                text=primary,
                meta=RoutingMeta(
                    task_type=task_type,
                    model_used=primary_model,
                    fallback_triggered=False,
                    latency_ms=_elapsed_ms(started),
                ),
            )

        if not primary:
            reason = f"primary_model_error:{primary_error or 'unknown_provider_error'}"
        else:
            ok, reason = evaluate_fast_output_quality(primary, signals, self.config.quality_policy)
            if ok:
                logger.info("Routed %s to %s", task_type.value, primary_model)
                return RoutedText(
                    text=primary,
                    meta=RoutingMeta(
                        task_type=task_type,
                        model_used=primary_model,
                        fallback_triggered=False,
                        latency_ms=_elapsed_ms(started),
                    ),
                )

        logger.warning("Escalating %s to %s: %s", task_type.value, self.config.smart_model, reason)
        try:
            upgraded = await self._run(self.provider, prompt, self.config.smart_model)
        except ModelRouterError as e:
            e.task_type = task_type
            raise
        return RoutedText(
            text=upgraded,
            meta=RoutingMeta(
                task_type=task_type,
                model_used=self.config.smart_model,
                fallback_triggered=True,
                fallback_reason=reason,
                latency_ms=_elapsed_ms(started),
            ),
        )

    def stream(
        self,
        prompt: str,
        task_type: TaskType,
        model_config: Optional[ModelConfig] = None,
        complexity: float = 0.0,
    ) -> "RoutedStream":
        return RoutedStream(self, prompt, task_type, model_config or ModelConfig(), complexity)


class RoutedStream:
    """
    Async iterator of text deltas. After exhaustion `result` holds the final
    RoutedText; on escalation its text is the Smart stream's text only.

        stream = router.stream(prompt, TaskType.CHAT_FOLLOW_UP)
        async for delta in stream:
            ...
        routed = stream.result
    """

    def __init__(
        self,
        router: ModelRouter,
        prompt: str,
        task_type: TaskType,
        model_config: ModelConfig,
        complexity: float,
    ):
        self.router = router
        self.prompt = prompt
        self.task_type = task_type
        self.model_config = model_config
        self.complexity = complexity
        self.result: Optional[RoutedText] = None

    async def _relay(self, provider: ModelProvider, model_name: str, parts: List[str]) -> AsyncIterator[str]:
        async for delta in provider.stream(self.prompt, model_name):
            if not delta:
                continue
            parts.append(delta)
            yield delta

    def _finish(self, parts: List[str], model_used: str, started: float, reason: Optional[str] = None) -> None:
        self.result = RoutedText(
            text="".join(parts),
            meta=RoutingMeta(
                task_type=self.task_type,
                model_used=model_used,
                fallback_triggered=reason is not None,
                fallback_reason=reason,
                latency_ms=_elapsed_ms(started),
            ),
        )

    async def __aiter__(self) -> AsyncIterator[str]:
        router = self.router
        started = time.perf_counter()

        if self.model_config.is_custom:
            custom = self.model_config.custom
            parts: List[str] = []
            try:
                async for delta in self._relay(router.custom_provider_factory(custom), custom.model_name, parts):
                    yield delta
            except Exception as e:
                code = classify_provider_error(e)
                raise ModelRouterError(code=code, message=str(e) or code, task_type=self.task_type)
            self._finish(parts, custom.model_name, started)
            return

        primary_model = router.route(self.task_type, self.complexity)
        parts = []
        try:
            async for delta in self._relay(router.provider, primary_model, parts):
                yield delta
        except Exception as e:
            code = classify_provider_error(e)
            if primary_model == router.config.smart_model:
                raise ModelRouterError(code=code, message=f"smart_model_failed:{code}", task_type=self.task_type)
            reason = f"primary_model_error:{code}"
            logger.warning("Escalating stream %s to %s: %s", self.task_type.value, router.config.smart_model, reason)
        else:
            self._finish(parts, primary_model, started)
            return

        parts = []
        try:
            async for delta in self._relay(router.provider, router.config.smart_model, parts):
                yield delta
        except Exception as e:
            code = classify_provider_error(e)
            raise ModelRouterError(code=code, message=str(e) or code, task_type=self.task_type)
        self._finish(parts, router.config.smart_model, started, reason)
