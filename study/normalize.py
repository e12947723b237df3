"""
Response normalization: raw model text -> typed study results.

Every normalizer tolerates malformed output and fills field-level defaults;
none of them raise. The grounding guard degrades confidence for answers that
share no vocabulary with the question.
"""

import json
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from rag.types import Chunk, RetrievalResult
from study.models import (
    FALLBACK_MESSAGE,
    Confidence,
    Difference,
    Difficulty,
    ExamModeContent,
    Explanation,
    LearnItemContent,
    LikelyQuestion,
    MicroQuizContent,
    MicroQuizQuestion,
    Priority,
    RoutingMeta,
    StudyQuestionCard,
    TopicAnswer,
    TopicStudyContent,
)

NOT_FOUND = "Not found in uploaded material."
RELEVANT_PREFIX = "Not directly found in your material, but relevant:"
RELATED_PREFIX = (
    "Not directly found in your material, but here is a helpful explanation based on related concepts."
)
NOT_DIRECTLY_FOUND = "Not directly found in your material"

MAX_LIST_ITEMS = 6
MAX_DIFFERENCES = 3
MAX_LIKELY_QUESTIONS = 3
MAX_WEAK_AREAS = 4
MAX_QUIZ_QUESTIONS = 5
LOW_COVERAGE_PERCENT = 40
BULLET_MIN_CHARS = 35
QUESTION_LINE_CHARS = 220

_JSON_FENCE_RE = re.compile(r"^```json\s*", re.IGNORECASE)
_OBJECT_SPAN_RE = re.compile(r"\{[\s\S]*\}")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_DIFFERENCE_RE = re.compile(r"difference between\s+([a-z0-9\-\s]{3,40})\s+and\s+([a-z0-9\-\s]{3,40})")
_VS_RE = re.compile(r"([a-z0-9\-\s]{3,40})\s+vs\.?\s+([a-z0-9\-\s]{3,40})")
_TOPIC_VS_RE = re.compile(r"(.+?)\s+vs\.?\s+(.+)", re.IGNORECASE)
_QUESTION_CUE_RE = re.compile(r"difference between|define|explain|compare", re.IGNORECASE)
_LEADING_FENCE_RE = re.compile(r"^```[\s\S]*?\n")
_LANG_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*")


# ----------------------------
# Text helpers
# ----------------------------
def extract_json_candidate(raw: str) -> str:
    """Strip a ```json fence and return the outermost {...} span (or the cleaned text)."""
    cleaned = _JSON_FENCE_RE.sub("", (raw or "").strip())
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    cleaned = cleaned.strip()
    match = _OBJECT_SPAN_RE.search(cleaned)
    return match.group(0) if match else cleaned


def parse_json_object(raw: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(extract_json_candidate(raw))
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def is_grounded(text: str, tokens: Iterable[str]) -> bool:
    """True if any query token literally appears in text. Lexical only."""
    normalized = (text or "").lower()
    return any(token in normalized for token in tokens)


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text or "") if s.strip()]


def strip_code_fences(text: str) -> str:
    cleaned = _LEADING_FENCE_RE.sub("", (text or "").strip(), count=1)
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def _string(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _string_or(value: Any, default: str) -> str:
    return value if isinstance(value, str) and value.strip() else default


def to_string_list(value: Any, limit: int = MAX_LIST_ITEMS) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if str(item).strip()][:limit]


def to_bullet_list(text: str, max_items: int) -> List[str]:
    """First sentences long enough to stand alone as a bullet."""
    return [s for s in split_sentences(text) if len(s) > BULLET_MIN_CHARS][:max_items]


def title_case(value: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in value.split())


def extract_question_like_line(text: str) -> Optional[str]:
    sentences = split_sentences(text)
    direct = next((s for s in sentences if "?" in s), None)
    if direct:
        return direct[:QUESTION_LINE_CHARS]
    cued = next((s for s in sentences if _QUESTION_CUE_RE.search(s)), None)
    return cued[:QUESTION_LINE_CHARS] if cued else None


def asked_in(chunk: Optional[Chunk]) -> Optional[str]:
    if chunk is None:
        return None
    return f"{chunk.source_name} ({chunk.source_year})" if chunk.source_year else chunk.source_name


def _parse_difficulty(value: Any) -> Difficulty:
    raw = value.lower() if isinstance(value, str) else ""
    if raw in (Difficulty.EASY.value, Difficulty.HARD.value):
        return Difficulty(raw)
    return Difficulty.MEDIUM


def _finite_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


# ----------------------------
# Topic study content
# ----------------------------
def estimate_time(priority: Priority) -> str:
    if priority == Priority.HIGH:
        return "90-120 min"
    if priority == Priority.MEDIUM:
        return "60-90 min"
    return "30-45 min"


def default_what_to_learn(topic: str) -> List[str]:
    return [
        f"{topic}: core definition and meaning",
        f"{topic}: key steps or structure",
        f"{topic}: common exam-style application",
        f"{topic}: frequent mistakes and edge cases",
        f"{topic}: quick revision checklist",
    ]


def default_key_exam_points(topic: str) -> List[str]:
    return [
        f"Start with a precise definition of {topic}.",
        f"Use a short worked example when answering {topic} questions.",
        "Write point-wise and align with expected marking scheme.",
        "Highlight assumptions or conditions before giving the final result.",
    ]


def build_differences(topic: str, context_text: str) -> List[Difference]:
    """Comparison cards mined from "A vs B" / "difference between A and B" with supporting evidence."""
    sentences = [s for s in split_sentences(context_text) if len(s) > 20]

    def evidence_for(concept_a: str, concept_b: str) -> str:
        a, b = concept_a.lower(), concept_b.lower()
        return next((s for s in sentences if a in s.lower() and b in s.lower()), "")

    pairs: List[Tuple[str, str]] = []
    topic_match = _TOPIC_VS_RE.search(topic or "")
    if topic_match:
        pairs.append((topic_match.group(1), topic_match.group(2)))
    lowered = (context_text or "").lower()
    pairs += [(m.group(1), m.group(2)) for m in _DIFFERENCE_RE.finditer(lowered)]
    pairs += [(m.group(1), m.group(2)) for m in _VS_RE.finditer(lowered)]

    seen = set()
    differences: List[Difference] = []
    for raw_a, raw_b in pairs:
        concept_a, concept_b = title_case(raw_a), title_case(raw_b)
        if not concept_a or not concept_b:
            continue
        evidence = evidence_for(concept_a, concept_b)
        if not evidence:
            continue
        key = (concept_a.lower(), concept_b.lower())
        if key in seen:
            continue
        seen.add(key)
        differences.append(Difference(
            concept_a=concept_a,
            concept_b=concept_b,
            definition=evidence,
            role=evidence,
            example=evidence,
            exam_importance="Use this comparison for difference-based exam questions.",
        ))
        if len(differences) >= MAX_DIFFERENCES:
            break
    return differences


def _question_card(
    topic: str,
    explanation: Explanation,
    retrieval: RetrievalResult,
    answer: Optional[str] = None,
) -> StudyQuestionCard:
    top_previous = retrieval.top_previous_paper_chunk
    return StudyQuestionCard(
        question=f"What is the exam-relevant explanation of {topic}?",
        answer=answer if answer is not None else explanation.simple_explanation,
        simple_explanation=explanation.simple_explanation,
        example=explanation.example,
        exam_tip=explanation.exam_tip,
        exam_likelihood_score=retrieval.exam_likelihood.score,
        exam_likelihood_label=retrieval.exam_likelihood.label,
        sources=list(retrieval.citations),
        asked_in=asked_in(top_previous),
        original_question=extract_question_like_line(top_previous.text) if top_previous else None,
    )


def normalize_topic_content(
    raw: str,
    topic: str,
    retrieval: RetrievalResult,
    confidence: Confidence,
    priority: Priority,
    meta: RoutingMeta,
) -> TopicStudyContent:
    parsed = parse_json_object(raw) or {}
    explanation_in = parsed.get("explanation")
    explanation_in = explanation_in if isinstance(explanation_in, dict) else {}

    explanation = Explanation(
        concept=_string_or(explanation_in.get("concept"), "Key concept"),
        simple_explanation=_string_or(explanation_in.get("simpleExplanation"), FALLBACK_MESSAGE),
        example=_string_or(explanation_in.get("example"), "No direct worked example found in uploaded material."),
        exam_tip=_string_or(
            explanation_in.get("examTip"),
            "Revise definitions and frequently repeated question patterns.",
        ),
    )
    context_text = retrieval.formatted_context
    coverage = retrieval.material_coverage_percent

    return TopicStudyContent(
        what_to_learn=to_string_list(parsed.get("whatToLearn")) or default_what_to_learn(topic),
        explanation=explanation,
        key_definitions=to_string_list(parsed.get("keyDefinitions")) or to_bullet_list(context_text, 3),
        differences=build_differences(topic, context_text),
        examples_from_material=to_string_list(parsed.get("examplesFromMaterial")) or to_bullet_list(context_text, 2),
        exam_tips=to_string_list(parsed.get("examTips")) or [explanation.exam_tip],
        typical_exam_questions=[_question_card(topic, explanation, retrieval)],
        key_exam_points=to_string_list(parsed.get("keyExamPoints")) or default_key_exam_points(topic),
        confidence=confidence,
        estimated_time=estimate_time(priority),
        exam_likelihood_score=retrieval.exam_likelihood.score,
        exam_likelihood_label=retrieval.exam_likelihood.label,
        source_refs=list(retrieval.citations),
        material_coverage=coverage,
        low_material_confidence=coverage < LOW_COVERAGE_PERCENT,
        retrieved_chunks=retrieval.debug_chunks,
        routing_meta=meta,
    )


def no_material_topic(topic: str, retrieval: RetrievalResult, priority: Priority, meta: RoutingMeta) -> TopicStudyContent:
    return TopicStudyContent(
        explanation=Explanation(
            concept="No matching concept found",
            simple_explanation=FALLBACK_MESSAGE,
            example="No matching example found.",
            exam_tip="Upload more relevant study material for this topic.",
        ),
        confidence=Confidence.LOW,
        estimated_time=estimate_time(priority),
        exam_likelihood_score=retrieval.exam_likelihood.score,
        exam_likelihood_label=retrieval.exam_likelihood.label,
        material_coverage=retrieval.material_coverage_percent,
        low_material_confidence=True,
        retrieved_chunks=retrieval.debug_chunks,
        routing_meta=meta,
    )


def fallback_topic(
    topic: str,
    retrieval: RetrievalResult,
    confidence: Confidence,
    priority: Priority,
    meta: RoutingMeta,
) -> TopicStudyContent:
    explanation = Explanation(
        concept=topic,
        simple_explanation=FALLBACK_MESSAGE,
        example="No direct example found in uploaded material.",
        exam_tip="Prioritize repeated patterns and definition-based questions for this topic.",
    )
    card = _question_card(topic, explanation, retrieval, answer=FALLBACK_MESSAGE)
    card.exam_tip = "Focus on repeated patterns and standard definitions."
    coverage = retrieval.material_coverage_percent
    return TopicStudyContent(
        what_to_learn=default_what_to_learn(topic),
        explanation=explanation,
        key_definitions=["Key definitions are unavailable right now. Try reloading this topic."],
        exam_tips=["Prioritize high-likelihood patterns from previous papers."],
        typical_exam_questions=[card],
        key_exam_points=default_key_exam_points(topic),
        confidence=confidence,
        estimated_time=estimate_time(priority),
        exam_likelihood_score=retrieval.exam_likelihood.score,
        exam_likelihood_label=retrieval.exam_likelihood.label,
        source_refs=list(retrieval.citations),
        material_coverage=coverage,
        low_material_confidence=coverage < LOW_COVERAGE_PERCENT,
        retrieved_chunks=retrieval.debug_chunks,
        routing_meta=meta,
    )


# ----------------------------
# Learn item
# ----------------------------
def _learn_item(fields: Dict[str, str], confidence: Confidence, retrieval: RetrievalResult, meta: RoutingMeta) -> LearnItemContent:
    return LearnItemContent(
        concept_explanation=fields["concept_explanation"],
        example=fields["example"],
        exam_tip=fields["exam_tip"],
        typical_exam_question=fields["typical_exam_question"],
        full_answer=fields["full_answer"],
        confidence=confidence,
        citations=list(retrieval.citations),
        retrieved_chunks=retrieval.debug_chunks,
        routing_meta=meta,
    )


def learn_item_fields_from_json(raw: str, item: str) -> Dict[str, str]:
    parsed = parse_json_object(raw) or {}
    return {
        "concept_explanation": _string_or(parsed.get("conceptExplanation"), NOT_FOUND),
        "example": _string_or(parsed.get("example"), ""),
        "exam_tip": _string_or(parsed.get("examTip"), "Focus on scoring patterns and repeated exam wording."),
        "typical_exam_question": _string_or(
            parsed.get("typicalExamQuestion"), f"Explain {item} with exam relevance."
        ),
        "full_answer": _string_or(parsed.get("fullAnswer"), NOT_FOUND),
    }


LEARN_ITEM_SECTIONS = (
    ("concept_explanation", "Concept Explanation"),
    ("example", "Example"),
    ("exam_tip", "Exam Tip"),
    ("typical_exam_question", "Typical Exam Question"),
    ("full_answer", "Full Answer"),
)
_HEADING_ALT = "|".join(heading for _, heading in LEARN_ITEM_SECTIONS)


def _section_pattern(heading: str) -> "re.Pattern":
    return re.compile(
        rf"(?:^|\n)\s*(?:#{{1,6}}\s*)?{heading}\s*:?\s*([\s\S]*?)"
        rf"(?=\n\s*(?:#{{1,6}}\s*)?(?:{_HEADING_ALT})\s*:?|$)",
        re.IGNORECASE,
    )


_SECTION_PATTERNS = {key: _section_pattern(heading) for key, heading in LEARN_ITEM_SECTIONS}


def parse_learn_item_sections(raw: str, item: str) -> Dict[str, str]:
    """Markdown sections from the streaming variant. Missing sections get defaults."""
    cleaned = _LANG_FENCE_RE.sub("", (raw or "").strip(), count=1)
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    cleaned = cleaned.strip()

    sections: Dict[str, str] = {}
    for key, pattern in _SECTION_PATTERNS.items():
        match = pattern.search(cleaned)
        if match and match.group(1).strip():
            sections[key] = match.group(1).strip()

    return {
        "concept_explanation": sections.get("concept_explanation", NOT_FOUND),
        "example": sections.get("example", ""),
        "exam_tip": sections.get("exam_tip", "Focus on exam language and concise point-wise answers."),
        "typical_exam_question": sections.get("typical_exam_question", f"Explain {item} with exam relevance."),
        "full_answer": sections.get("full_answer", cleaned) or NOT_FOUND,
    }


def normalize_learn_item(
    raw: str,
    item: str,
    retrieval: RetrievalResult,
    confidence: Confidence,
    meta: RoutingMeta,
    sections: bool = False,
) -> LearnItemContent:
    fields = parse_learn_item_sections(raw, item) if sections else learn_item_fields_from_json(raw, item)
    return _learn_item(fields, confidence, retrieval, meta)


def no_material_learn_item(item: str, retrieval: RetrievalResult, meta: RoutingMeta) -> LearnItemContent:
    return LearnItemContent(
        concept_explanation=NOT_FOUND,
        example="",
        exam_tip="Upload more topic-relevant material.",
        typical_exam_question=f"Explain {item}.",
        full_answer=NOT_FOUND,
        confidence=Confidence.LOW,
        retrieved_chunks=retrieval.debug_chunks,
        routing_meta=meta,
    )


def fallback_learn_item(item: str, retrieval: RetrievalResult, confidence: Confidence, meta: RoutingMeta) -> LearnItemContent:
    fields = {
        "concept_explanation": NOT_FOUND,
        "example": "",
        "exam_tip": "Focus on exam language and concise point-wise answers.",
        "typical_exam_question": f"Explain {item} with a suitable example.",
        "full_answer": NOT_FOUND,
    }
    return _learn_item(fields, confidence, retrieval, meta)


# ----------------------------
# Free-form answer
# ----------------------------
def degrade_confidence(confidence: Confidence) -> Confidence:
    return Confidence.MEDIUM if confidence == Confidence.HIGH else Confidence.LOW


def apply_grounding_guard(
    answer: str,
    tokens: Sequence[str],
    retrieval_score: float,
    confidence: Confidence,
) -> Tuple[str, Confidence]:
    """
    Prefix a disclaimer onto answers sharing no token with the question.

    Strong retrieval (score >= 5) keeps citations and drops confidence one
    tier; weak retrieval gets the stronger disclaimer and low confidence.
    """
    if is_grounded(answer, tokens):
        return answer, confidence
    if retrieval_score >= 5:
        text = answer if answer.startswith(RELEVANT_PREFIX) else f"{RELEVANT_PREFIX}\n\n{answer}"
        return text, degrade_confidence(confidence)
    text = answer if answer.startswith(NOT_DIRECTLY_FOUND) else f"{RELATED_PREFIX}\n\n{answer}"
    return text, Confidence.LOW


def normalize_answer(
    raw: str,
    tokens: Sequence[str],
    retrieval: RetrievalResult,
    confidence: Confidence,
    meta: RoutingMeta,
) -> TopicAnswer:
    text = strip_code_fences(raw)
    if not text:
        return TopicAnswer(answer=FALLBACK_MESSAGE, confidence=Confidence.LOW, routing_meta=meta)
    answer, guarded = apply_grounding_guard(text, tokens, retrieval.aggregate_score, confidence)
    return TopicAnswer(
        answer=answer,
        confidence=guarded,
        citations=list(retrieval.citations),
        used_video_context=retrieval.used_video_context,
        retrieved_chunks=retrieval.debug_chunks,
        routing_meta=meta,
    )


def no_material_answer(topic: str, question: str, retrieval: RetrievalResult, meta: RoutingMeta) -> TopicAnswer:
    return TopicAnswer(
        answer="\n".join([
            RELATED_PREFIX,
            "",
            f"For **{topic}**, think of this question as: {question}.",
            "Start by defining the core idea in one line, then explain how it works in simple steps, "
            "and finally connect it to a likely exam-style use case.",
        ]),
        confidence=Confidence.LOW,
        retrieved_chunks=retrieval.debug_chunks,
        routing_meta=meta,
    )


def fallback_answer(retrieval: RetrievalResult, meta: RoutingMeta) -> TopicAnswer:
    return TopicAnswer(
        answer=f"{RELATED_PREFIX}\n\nFocus on the core definition, process, and one exam-ready example.",
        confidence=Confidence.LOW,
        citations=list(retrieval.citations),
        used_video_context=retrieval.used_video_context,
        retrieved_chunks=retrieval.debug_chunks,
        routing_meta=meta,
    )


# ----------------------------
# Exam mode
# ----------------------------
def default_likely_question(topic: str) -> LikelyQuestion:
    return LikelyQuestion(
        question=f"Explain {topic} with one practical example.",
        expected_answer=NOT_FOUND,
        difficulty=Difficulty.MEDIUM,
        time_limit_minutes=8,
    )


def readiness_boost(confidence: Confidence) -> int:
    if confidence == Confidence.HIGH:
        return 8
    if confidence == Confidence.MEDIUM:
        return 3
    return -5


def _time_limit(value: Any) -> int:
    number = _finite_number(8 if value is None else value)
    if number is None:
        return 8
    return max(3, min(25, int(round(number))))


def normalize_exam_mode(
    raw: str,
    topic: str,
    retrieval: RetrievalResult,
    confidence: Confidence,
    meta: RoutingMeta,
) -> ExamModeContent:
    parsed = parse_json_object(raw) or {}
    rows = parsed.get("likelyQuestions")
    questions: List[LikelyQuestion] = []
    for row in rows if isinstance(rows, list) else []:
        if not isinstance(row, dict):
            continue
        question = _string(row.get("question"))
        expected = _string(row.get("expectedAnswer"))
        if not question or not expected:
            continue
        questions.append(LikelyQuestion(
            question=question,
            expected_answer=expected,
            difficulty=_parse_difficulty(row.get("difficulty")),
            time_limit_minutes=_time_limit(row.get("timeLimitMinutes")),
        ))
    questions = questions[:MAX_LIKELY_QUESTIONS]

    base = parsed.get("readinessScore")
    if not isinstance(base, (int, float)) or isinstance(base, bool) or base != base:
        base = 50
    # clamp before rounding so an infinite score lands on a bound
    readiness = int(round(max(0, min(100, base + readiness_boost(confidence)))))

    weak_areas = to_string_list(parsed.get("weakAreas"), MAX_WEAK_AREAS)
    return ExamModeContent(
        likely_questions=questions or [default_likely_question(topic)],
        readiness_score=readiness,
        confidence=confidence,
        weak_areas=weak_areas or ["Key areas need additional revision from uploaded material."],
        exam_tip=_string_or(
            parsed.get("examTip"),
            "Practice high-likelihood questions first and focus on concise structured answers.",
        ),
        citations=list(retrieval.citations),
        retrieved_chunks=retrieval.debug_chunks,
        routing_meta=meta,
    )


def no_material_exam_mode(topic: str, retrieval: RetrievalResult, meta: RoutingMeta) -> ExamModeContent:
    return ExamModeContent(
        likely_questions=[default_likely_question(topic)],
        readiness_score=25,
        confidence=Confidence.LOW,
        weak_areas=["Insufficient uploaded material for this topic."],
        exam_tip="Upload more topic-relevant notes and previous papers to improve readiness score.",
        retrieved_chunks=retrieval.debug_chunks,
        routing_meta=meta,
    )


FALLBACK_READINESS = {Confidence.HIGH: 68, Confidence.MEDIUM: 52, Confidence.LOW: 35}


def fallback_exam_mode(topic: str, retrieval: RetrievalResult, confidence: Confidence, meta: RoutingMeta) -> ExamModeContent:
    return ExamModeContent(
        likely_questions=[default_likely_question(topic)],
        readiness_score=FALLBACK_READINESS[confidence],
        confidence=confidence,
        weak_areas=["Unable to infer all weak areas from available context."],
        exam_tip="Revise definitions, solve one timed answer, then re-attempt exam mode.",
        citations=list(retrieval.citations),
        retrieved_chunks=retrieval.debug_chunks,
        routing_meta=meta,
    )


# ----------------------------
# Micro quiz
# ----------------------------
def clamp_quiz_count(count: int) -> int:
    return max(3, min(5, int(count)))


def normalize_micro_quiz(raw: str, retrieval: RetrievalResult, meta: RoutingMeta) -> MicroQuizContent:
    parsed = parse_json_object(raw) or {}
    rows = parsed.get("questions")
    questions: List[MicroQuizQuestion] = []
    for row in rows if isinstance(rows, list) else []:
        if not isinstance(row, dict):
            continue
        question = _string(row.get("question"))
        answer = _string(row.get("answer"))
        explanation = _string(row.get("explanation"))
        if not question or not answer or not explanation:
            continue
        questions.append(MicroQuizQuestion(
            question=question,
            answer=answer,
            explanation=explanation,
            difficulty=_parse_difficulty(row.get("difficulty")),
        ))
    return MicroQuizContent(
        questions=questions[:MAX_QUIZ_QUESTIONS],
        citations=list(retrieval.citations),
        retrieved_chunks=retrieval.debug_chunks,
        routing_meta=meta,
    )


def empty_micro_quiz(retrieval: RetrievalResult, meta: RoutingMeta, with_citations: bool = True) -> MicroQuizContent:
    return MicroQuizContent(
        citations=list(retrieval.citations) if with_citations else [],
        retrieved_chunks=retrieval.debug_chunks,
        routing_meta=meta,
    )
