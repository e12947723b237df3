"""Data models for generated study content: typed results, routing metadata, request context."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from rag.types import Citation, ExamLikelihoodLabel, RetrievalDebugChunk

FALLBACK_MESSAGE = (
    "Not found in uploaded material. Enable more sources or upload notes that cover this topic."
)


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class TaskType(str, Enum):
    STRATEGY_GENERATION = "strategy_generation"
    CHAPTER_PRIORITIZATION = "chapter_prioritization"
    EXAM_READINESS_SCORING = "exam_readiness_scoring"
    CRASH_COURSE_GENERATION = "crash_course_generation"
    TOPIC_RANKING = "topic_ranking"
    ADAPTIVE_PATH = "adaptive_path"
    LEARN_NOW_ANSWER = "learn_now_answer"
    QUICK_EXPLANATION = "quick_explanation"
    CHAT_FOLLOW_UP = "chat_follow_up"
    CONCEPT_SUMMARY = "concept_summary"
    TOPIC_DESCRIPTION = "topic_description"
    LABEL_GENERATION = "label_generation"
    QUIZ_GENERATION = "quiz_generation"
    SOURCE_SUMMARIZATION = "source_summarization"
    CLARIFICATION_QUESTION = "clarification_question"
    EXAM_MODE_GENERATION = "exam_mode_generation"


def confidence_from_score(score: float) -> Confidence:
    """Bucket an aggregate retrieval score."""
    if score >= 10:
        return Confidence.HIGH
    if score >= 5:
        return Confidence.MEDIUM
    return Confidence.LOW


@dataclass
class RoutingMeta:
    """Which model produced a result and why. Attached to every generated result."""
    task_type: TaskType
    model_used: str
    fallback_triggered: bool = False
    fallback_reason: Optional[str] = None
    latency_ms: int = 0

    @classmethod
    def no_material(cls, task_type: TaskType) -> "RoutingMeta":
        return cls(
            task_type=task_type,
            model_used="cache-none",
            fallback_triggered=True,
            fallback_reason="no_retrieval_chunks",
        )

    @classmethod
    def provider_failure(cls, task_type: TaskType, code: str) -> "RoutingMeta":
        return cls(
            task_type=task_type,
            model_used="fallback",
            fallback_triggered=True,
            fallback_reason=f"provider_error:{code}",
        )


@dataclass
class GenerationContext:
    """Caller-supplied hints. Pure input."""
    current_chapter: Optional[str] = None
    exam_time_remaining: Optional[str] = None
    study_mode: Optional[str] = None
    exam_mode: bool = False
    user_intent: Optional[str] = None
    enabled_source_scope_id: Optional[str] = None
    debug_retrieval: bool = False
    expand_query: bool = True


@dataclass
class ChatTurn:
    role: str  # user | assistant
    content: str


@dataclass
class Explanation:
    concept: str
    simple_explanation: str
    example: str
    exam_tip: str


@dataclass
class Difference:
    concept_a: str
    concept_b: str
    definition: str
    role: str
    example: str
    exam_importance: str


@dataclass
class StudyQuestionCard:
    question: str
    answer: str
    simple_explanation: str
    example: str
    exam_tip: str
    exam_likelihood_score: int
    exam_likelihood_label: ExamLikelihoodLabel
    sources: List[Citation] = field(default_factory=list)
    asked_in: Optional[str] = None
    original_question: Optional[str] = None


@dataclass
class _GeneratedContent:
    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class TopicStudyContent(_GeneratedContent):
    explanation: Explanation
    confidence: Confidence
    estimated_time: str
    exam_likelihood_score: int
    exam_likelihood_label: ExamLikelihoodLabel
    what_to_learn: List[str] = field(default_factory=list)
    key_definitions: List[str] = field(default_factory=list)
    differences: List[Difference] = field(default_factory=list)
    examples_from_material: List[str] = field(default_factory=list)
    exam_tips: List[str] = field(default_factory=list)
    typical_exam_questions: List[StudyQuestionCard] = field(default_factory=list)
    key_exam_points: List[str] = field(default_factory=list)
    source_refs: List[Citation] = field(default_factory=list)
    material_coverage: int = 0
    low_material_confidence: bool = True
    retrieved_chunks: Optional[List[RetrievalDebugChunk]] = None
    routing_meta: Optional[RoutingMeta] = None

    @property
    def citations(self) -> List[Citation]:
        return self.source_refs


@dataclass
class LearnItemContent(_GeneratedContent):
    concept_explanation: str
    example: str
    exam_tip: str
    typical_exam_question: str
    full_answer: str
    confidence: Confidence
    citations: List[Citation] = field(default_factory=list)
    retrieved_chunks: Optional[List[RetrievalDebugChunk]] = None
    routing_meta: Optional[RoutingMeta] = None


@dataclass
class TopicAnswer(_GeneratedContent):
    answer: str
    confidence: Confidence
    citations: List[Citation] = field(default_factory=list)
    used_video_context: bool = False
    retrieved_chunks: Optional[List[RetrievalDebugChunk]] = None
    routing_meta: Optional[RoutingMeta] = None


@dataclass
class LikelyQuestion:
    question: str
    expected_answer: str
    difficulty: Difficulty = Difficulty.MEDIUM
    time_limit_minutes: int = 8


@dataclass
class ExamModeContent(_GeneratedContent):
    likely_questions: List[LikelyQuestion]
    readiness_score: int
    confidence: Confidence
    weak_areas: List[str]
    exam_tip: str
    citations: List[Citation] = field(default_factory=list)
    retrieved_chunks: Optional[List[RetrievalDebugChunk]] = None
    routing_meta: Optional[RoutingMeta] = None


@dataclass
class MicroQuizQuestion:
    question: str
    answer: str
    explanation: str
    difficulty: Difficulty = Difficulty.MEDIUM


@dataclass
class MicroQuizContent(_GeneratedContent):
    questions: List[MicroQuizQuestion] = field(default_factory=list)
    citations: List[Citation] = field(default_factory=list)
    retrieved_chunks: Optional[List[RetrievalDebugChunk]] = None
    routing_meta: Optional[RoutingMeta] = None
