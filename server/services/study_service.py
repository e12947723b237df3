"""
Study generation entry points: retrieve -> prompt -> route -> normalize.

Every entry point returns a typed result carrying citations and routing
metadata. No material and provider failure are terminal result shapes, never
exceptions. Streaming variants yield StreamEvent deltas and finish with one
StreamEvent carrying the result.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Sequence

from rag.corpus import CorpusAccessor
from rag.query_tokens import EXPANSION_TIMEOUT_S, expand_query_tokens, tokenize_ordered
from rag.retrieve import RetrievalEngine
from rag.types import RetrievalResult
from server.services.llm import prompts
from server.services.llm.router import ModelConfig, ModelRouter, ModelRouterError
from server.services.quality_gates import QualitySignals
from study import normalize
from study.fallback_detection import (
    is_fallback_like_chat_payload,
    is_fallback_like_learn_payload,
    is_fallback_like_topic_payload,
)
from study.models import (
    ChatTurn,
    ExamModeContent,
    GenerationContext,
    LearnItemContent,
    MicroQuizContent,
    Priority,
    RoutingMeta,
    TaskType,
    TopicAnswer,
    TopicStudyContent,
    confidence_from_score,
)

logger = logging.getLogger("kalexam.study")

# (max chunks, complexity, min chars) per task
TOPIC_MAX_CHUNKS, TOPIC_COMPLEXITY, TOPIC_MIN_CHARS, OUTLINE_MIN_CHARS = 6, 0.45, 220, 120
LEARN_MAX_CHUNKS, LEARN_COMPLEXITY, LEARN_MIN_CHARS = 5, 0.35, 180
ASK_MAX_CHUNKS, ASK_COMPLEXITY, ASK_MIN_CHARS = 5, 0.3, 90
EXAM_MAX_CHUNKS, EXAM_COMPLEXITY, EXAM_MIN_CHARS = 6, 0.55, 220
QUIZ_MAX_CHUNKS, QUIZ_COMPLEXITY, QUIZ_MIN_CHARS = 8, 0.4, 180
DEFAULT_QUIZ_COUNT = 4


@dataclass
class StudyTools:
    """Collaborators shared by every entry point."""
    router: ModelRouter
    engine: RetrievalEngine = field(default_factory=RetrievalEngine)
    expansion_enabled: bool = True
    expansion_timeout_s: float = EXPANSION_TIMEOUT_S


@dataclass
class StreamEvent:
    """One SSE frame: a text delta, or the final typed result."""
    delta: Optional[str] = None
    result: Optional[Any] = None

    def to_dict(self) -> dict:
        if self.result is not None:
            return {"result": self.result.to_dict()}
        return {"delta": self.delta}


def _failure_code(error: ModelRouterError) -> str:
    return error.code or "unknown_provider_error"


def _note_degraded(result, is_degraded, subject: str):
    """Log model output that normalized into a fallback-like payload."""
    if is_degraded(result):
        logger.info("Degraded %s result for %r (model=%s)",
                    result.routing_meta.task_type.value, subject, result.routing_meta.model_used)
    return result


async def retrieve_context(
    corpus: CorpusAccessor,
    scope_id: str,
    query: str,
    max_chunks: int,
    tools: StudyTools,
    context: Optional[GenerationContext] = None,
) -> RetrievalResult:
    """Expand the query (best effort) and run retrieval over the scope's chunks."""
    context = context or GenerationContext()
    chunks = corpus.list_chunks(scope_id)
    enabled = corpus.enabled_source_ids(scope_id)

    tokens = tokenize_ordered(query, tools.engine.config.stop_words)
    has_material = bool(chunks) and (enabled is None or bool(enabled))
    router = tools.router

    async def fast_generate(prompt: str) -> str:
        return await router.provider.generate(prompt, router.config.fast_model)

    tokens = await expand_query_tokens(
        query,
        tokens,
        tools.expansion_enabled and context.expand_query and has_material,
        fast_generate,
        timeout_s=tools.expansion_timeout_s,
        stop_words=tools.engine.config.stop_words,
    )
    return tools.engine.retrieve(
        chunks,
        query,
        max_chunks,
        enabled,
        source_kinds=corpus.source_kinds(scope_id),
        tokens=tokens,
        debug=context.debug_retrieval,
        material_coverage_percent=corpus.material_coverage(scope_id),
        chapter_weightages=corpus.chapter_weightages(scope_id),
    )


# ----------------------------
# Topic study content
# ----------------------------
async def build_topic_study_content(
    corpus: CorpusAccessor,
    scope_id: str,
    topic: str,
    model_config: Optional[ModelConfig],
    context: Optional[GenerationContext] = None,
    *,
    tools: StudyTools,
    priority: Priority = Priority.MEDIUM,
    outline_only: bool = False,
) -> TopicStudyContent:
    task = TaskType.TOPIC_DESCRIPTION
    retrieval = await retrieve_context(corpus, scope_id, topic, TOPIC_MAX_CHUNKS, tools, context)
    if not retrieval.has_material:
        return normalize.no_material_topic(topic, retrieval, priority, RoutingMeta.no_material(task))

    confidence = confidence_from_score(retrieval.aggregate_score)
    prompt = prompts.topic_prompt(topic, retrieval.formatted_context, context, outline_only=outline_only)
    try:
        routed = await tools.router.generate(
            prompt,
            task,
            model_config,
            complexity=TOPIC_COMPLEXITY,
            signals=QualitySignals(
                retrieval_confidence=confidence,
                min_chars=OUTLINE_MIN_CHARS if outline_only else TOPIC_MIN_CHARS,
                requires_json=True,
            ),
        )
    except ModelRouterError as e:
        logger.warning("Topic generation failed for %r: %s", topic, e)
        meta = RoutingMeta.provider_failure(task, _failure_code(e))
        return normalize.fallback_topic(topic, retrieval, confidence, priority, meta)

    content = normalize.normalize_topic_content(routed.text, topic, retrieval, confidence, priority, routed.meta)
    return _note_degraded(content, is_fallback_like_topic_payload, topic)


# ----------------------------
# Learn item
# ----------------------------
async def build_learn_item_content(
    corpus: CorpusAccessor,
    scope_id: str,
    topic: str,
    item: str,
    model_config: Optional[ModelConfig],
    context: Optional[GenerationContext] = None,
    *,
    tools: StudyTools,
) -> LearnItemContent:
    task = TaskType.LEARN_NOW_ANSWER
    retrieval = await retrieve_context(corpus, scope_id, f"{topic} {item}", LEARN_MAX_CHUNKS, tools, context)
    if not retrieval.has_material:
        return normalize.no_material_learn_item(item, retrieval, RoutingMeta.no_material(task))

    confidence = confidence_from_score(retrieval.aggregate_score)
    prompt = prompts.learn_item_prompt(topic, item, retrieval.formatted_context, context)
    try:
        routed = await tools.router.generate(
            prompt,
            task,
            model_config,
            complexity=LEARN_COMPLEXITY,
            signals=QualitySignals(retrieval_confidence=confidence, min_chars=LEARN_MIN_CHARS, requires_json=True),
        )
    except ModelRouterError as e:
        logger.warning("Learn item generation failed for %r: %s", item, e)
        return normalize.fallback_learn_item(
            item, retrieval, confidence, RoutingMeta.provider_failure(task, _failure_code(e))
        )

    content = normalize.normalize_learn_item(routed.text, item, retrieval, confidence, routed.meta)
    return _note_degraded(content, is_fallback_like_learn_payload, item)


async def build_learn_item_content_stream(
    corpus: CorpusAccessor,
    scope_id: str,
    topic: str,
    item: str,
    model_config: Optional[ModelConfig],
    context: Optional[GenerationContext] = None,
    *,
    tools: StudyTools,
) -> AsyncIterator[StreamEvent]:
    task = TaskType.LEARN_NOW_ANSWER
    retrieval = await retrieve_context(corpus, scope_id, f"{topic} {item}", LEARN_MAX_CHUNKS, tools, context)
    if not retrieval.has_material:
        yield StreamEvent(result=normalize.no_material_learn_item(item, retrieval, RoutingMeta.no_material(task)))
        return

    confidence = confidence_from_score(retrieval.aggregate_score)
    prompt = prompts.learn_item_stream_prompt(topic, item, retrieval.formatted_context, context)
    stream = tools.router.stream(prompt, task, model_config, complexity=LEARN_COMPLEXITY)
    try:
        async for delta in stream:
            yield StreamEvent(delta=delta)
    except ModelRouterError as e:
        logger.warning("Learn item stream failed for %r: %s", item, e)
        yield StreamEvent(result=normalize.fallback_learn_item(
            item, retrieval, confidence, RoutingMeta.provider_failure(task, _failure_code(e))
        ))
        return

    routed = stream.result
    content = normalize.normalize_learn_item(routed.text, item, retrieval, confidence, routed.meta, sections=True)
    yield StreamEvent(result=_note_degraded(content, is_fallback_like_learn_payload, item))


# ----------------------------
# Free-form question
# ----------------------------
async def answer_topic_question(
    corpus: CorpusAccessor,
    scope_id: str,
    topic: str,
    question: str,
    model_config: Optional[ModelConfig],
    history: Sequence[ChatTurn] = (),
    context: Optional[GenerationContext] = None,
    *,
    tools: StudyTools,
) -> TopicAnswer:
    task = TaskType.CHAT_FOLLOW_UP
    query = f"{topic} {question}"
    retrieval = await retrieve_context(corpus, scope_id, query, ASK_MAX_CHUNKS, tools, context)
    if not retrieval.has_material:
        return normalize.no_material_answer(topic, question, retrieval, RoutingMeta.no_material(task))

    confidence = confidence_from_score(retrieval.aggregate_score)
    prompt = prompts.ask_prompt(topic, question, retrieval.formatted_context, history, context)
    try:
        routed = await tools.router.generate(
            prompt,
            task,
            model_config,
            complexity=ASK_COMPLEXITY,
            signals=QualitySignals(retrieval_confidence=confidence, min_chars=ASK_MIN_CHARS),
        )
    except ModelRouterError as e:
        logger.warning("Answer generation failed for %r: %s", question, e)
        return normalize.fallback_answer(retrieval, RoutingMeta.provider_failure(task, _failure_code(e)))

    tokens = tokenize_ordered(query, tools.engine.config.stop_words)
    answer = normalize.normalize_answer(routed.text, tokens, retrieval, confidence, routed.meta)
    return _note_degraded(answer, is_fallback_like_chat_payload, question)


async def answer_topic_question_stream(
    corpus: CorpusAccessor,
    scope_id: str,
    topic: str,
    question: str,
    model_config: Optional[ModelConfig],
    history: Sequence[ChatTurn] = (),
    context: Optional[GenerationContext] = None,
    *,
    tools: StudyTools,
) -> AsyncIterator[StreamEvent]:
    task = TaskType.CHAT_FOLLOW_UP
    query = f"{topic} {question}"
    retrieval = await retrieve_context(corpus, scope_id, query, ASK_MAX_CHUNKS, tools, context)
    if not retrieval.has_material:
        yield StreamEvent(
            result=normalize.no_material_answer(topic, question, retrieval, RoutingMeta.no_material(task))
        )
        return

    confidence = confidence_from_score(retrieval.aggregate_score)
    prompt = prompts.ask_prompt(topic, question, retrieval.formatted_context, history, context)
    stream = tools.router.stream(prompt, task, model_config, complexity=ASK_COMPLEXITY)
    try:
        async for delta in stream:
            yield StreamEvent(delta=delta)
    except ModelRouterError as e:
        logger.warning("Answer stream failed for %r: %s", question, e)
        yield StreamEvent(
            result=normalize.fallback_answer(retrieval, RoutingMeta.provider_failure(task, _failure_code(e)))
        )
        return

    routed = stream.result
    tokens = tokenize_ordered(query, tools.engine.config.stop_words)
    answer = normalize.normalize_answer(routed.text, tokens, retrieval, confidence, routed.meta)
    yield StreamEvent(result=_note_degraded(answer, is_fallback_like_chat_payload, question))


# ----------------------------
# Exam mode
# ----------------------------
async def build_exam_mode_content(
    corpus: CorpusAccessor,
    scope_id: str,
    topic: str,
    model_config: Optional[ModelConfig],
    context: Optional[GenerationContext] = None,
    *,
    tools: StudyTools,
) -> ExamModeContent:
    task = TaskType.EXAM_MODE_GENERATION
    retrieval = await retrieve_context(
        corpus, scope_id, f"{topic} likely exam questions", EXAM_MAX_CHUNKS, tools, context
    )
    if not retrieval.has_material:
        return normalize.no_material_exam_mode(topic, retrieval, RoutingMeta.no_material(task))

    confidence = confidence_from_score(retrieval.aggregate_score)
    prompt = prompts.exam_mode_prompt(topic, retrieval.formatted_context, context)
    try:
        routed = await tools.router.generate(
            prompt,
            task,
            model_config,
            complexity=EXAM_COMPLEXITY,
            signals=QualitySignals(retrieval_confidence=confidence, min_chars=EXAM_MIN_CHARS, requires_json=True),
        )
    except ModelRouterError as e:
        logger.warning("Exam mode generation failed for %r: %s", topic, e)
        return normalize.fallback_exam_mode(
            topic, retrieval, confidence, RoutingMeta.provider_failure(task, _failure_code(e))
        )

    return normalize.normalize_exam_mode(routed.text, topic, retrieval, confidence, routed.meta)


# ----------------------------
# Micro quiz
# ----------------------------
async def build_micro_quiz_content(
    corpus: CorpusAccessor,
    scope_id: str,
    topic: str,
    model_config: Optional[ModelConfig],
    count: int = DEFAULT_QUIZ_COUNT,
    context: Optional[GenerationContext] = None,
    *,
    tools: StudyTools,
) -> MicroQuizContent:
    task = TaskType.QUIZ_GENERATION
    retrieval = await retrieve_context(corpus, scope_id, f"{topic} quiz questions", QUIZ_MAX_CHUNKS, tools, context)
    if not retrieval.has_material:
        return normalize.empty_micro_quiz(retrieval, RoutingMeta.no_material(task), with_citations=False)

    prompt = prompts.micro_quiz_prompt(topic, normalize.clamp_quiz_count(count), retrieval.formatted_context, context)
    try:
        routed = await tools.router.generate(
            prompt,
            task,
            model_config,
            complexity=QUIZ_COMPLEXITY,
            signals=QualitySignals(min_chars=QUIZ_MIN_CHARS, requires_json=True),
        )
    except ModelRouterError as e:
        logger.warning("Micro quiz generation failed for %r: %s", topic, e)
        return normalize.empty_micro_quiz(retrieval, RoutingMeta.provider_failure(task, _failure_code(e)))

    return normalize.normalize_micro_quiz(routed.text, retrieval, routed.meta)
