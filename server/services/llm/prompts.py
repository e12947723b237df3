"""Prompts for grounded study generation. Context comes pre-formatted from retrieval."""

from typing import List, Optional, Sequence

from study.models import ChatTurn, GenerationContext
from study.normalize import LEARN_ITEM_SECTIONS, RELEVANT_PREFIX

GROUNDING_RULE = "ONLY use provided context chunks. If context comes from video, explicitly reference it."
HISTORY_TURNS = 6


def context_envelope(context: Optional[GenerationContext]) -> List[str]:
    """Render caller hints. No context, no envelope."""
    if context is None:
        return []
    return [
        "Generation context:",
        f"- currentChapter: {context.current_chapter or 'unknown'}",
        f"- examTimeRemaining: {context.exam_time_remaining or 'unknown'}",
        f"- studyMode: {context.study_mode or 'learn'}",
        f"- examMode: {'on' if context.exam_mode else 'off'}",
        f"- userIntent: {context.user_intent or 'general'}",
    ]


def topic_prompt(
    topic: str,
    context_text: str,
    context: Optional[GenerationContext] = None,
    outline_only: bool = False,
) -> str:
    lines = [
        "You are a teacher helping a student prepare for exams.",
        "Use only the provided context.",
        GROUNDING_RULE,
        "Do not copy raw text.",
        "Summarize and simplify.",
        "Use short paragraphs.",
        "Add an example when possible.",
        "Focus only on exam-relevant concepts.",
        "Never invent facts that are not supported by context.",
    ]
    if outline_only:
        lines.append("Keep explanation concise and prioritize a high-quality whatToLearn list.")
    lines += [
        "Return ONLY valid JSON with this exact shape:",
        '{ "whatToLearn": string[], "explanation": { "concept": string, "simpleExplanation": string, '
        '"example": string, "examTip": string }, "keyDefinitions": string[], "examplesFromMaterial": string[], '
        '"examTips": string[], "keyExamPoints": string[] }',
        f"Topic: {topic}",
        *context_envelope(context),
        "Context:",
        context_text,
    ]
    return "\n".join(lines)


def learn_item_prompt(
    topic: str,
    item: str,
    context_text: str,
    context: Optional[GenerationContext] = None,
) -> str:
    return "\n".join([
        "You are an exam-focused tutor.",
        "Use only provided context.",
        GROUNDING_RULE,
        "Never invent facts that are not supported by context.",
        "Return ONLY JSON with keys:",
        '{ "conceptExplanation": string, "example": string, "examTip": string, '
        '"typicalExamQuestion": string, "fullAnswer": string }',
        "Keep content medium length and structured with short sections and bullet points.",
        f"Topic: {topic}",
        f"Learning item: {item}",
        *context_envelope(context),
        "Context:",
        context_text,
    ])


def learn_item_stream_prompt(
    topic: str,
    item: str,
    context_text: str,
    context: Optional[GenerationContext] = None,
) -> str:
    """Markdown-section variant; JSON cannot be rendered incrementally."""
    return "\n".join([
        "You are an exam-focused tutor.",
        "Use only provided context.",
        GROUNDING_RULE,
        "Never invent facts that are not supported by context.",
        "Return plain markdown with exactly these sections in order:",
        *(f"{heading}:" for _, heading in LEARN_ITEM_SECTIONS),
        "Keep content medium length and structured with concise bullet points where useful.",
        f"Topic: {topic}",
        f"Learning item: {item}",
        *context_envelope(context),
        "Context:",
        context_text,
    ])


def ask_prompt(
    topic: str,
    question: str,
    context_text: str,
    history: Sequence[ChatTurn] = (),
    context: Optional[GenerationContext] = None,
) -> str:
    recent = "\n".join(f"{turn.role}: {turn.content}" for turn in list(history)[-HISTORY_TURNS:])
    return "\n".join([
        "You are an exam tutor.",
        GROUNDING_RULE,
        "Answer the question using this priority:",
        "1) Use uploaded material first.",
        "2) If not directly found, provide a short relevant educational explanation.",
        f'3) If using broader explanation, start with exactly: "{RELEVANT_PREFIX}"',
        "Never invent exam facts that are not supported by context.",
        "Keep answer concise: 4 to 7 sentences maximum.",
        f"Topic: {topic}",
        f"Question: {question}",
        *context_envelope(context),
        "Recent chat context:",
        recent or "None",
        "Retrieved context:",
        context_text,
    ])


def exam_mode_prompt(topic: str, context_text: str, context: Optional[GenerationContext] = None) -> str:
    return "\n".join([
        "You are an exam coach.",
        "Use only the provided context.",
        GROUNDING_RULE,
        "Never invent facts that are not supported by context.",
        "Return ONLY valid JSON with exact shape:",
        '{ "likelyQuestions": [{"question": string, "expectedAnswer": string, '
        '"difficulty": "easy"|"medium"|"hard", "timeLimitMinutes": number}], '
        '"readinessScore": number, "weakAreas": string[], "examTip": string }',
        "Generate 3 likely exam questions and concise expected answers.",
        "readinessScore must be 0-100.",
        f"Topic: {topic}",
        *context_envelope(context),
        "Context:",
        context_text,
    ])


def micro_quiz_prompt(
    topic: str,
    count: int,
    context_text: str,
    context: Optional[GenerationContext] = None,
) -> str:
    return "\n".join([
        "You are generating a micro quiz from uploaded material.",
        "Use strictly and only the provided context.",
        GROUNDING_RULE,
        "If evidence is weak, avoid inventing facts.",
        "Return only valid JSON with shape:",
        '{ "questions": [{ "question": string, "answer": string, "explanation": string, '
        '"difficulty": "easy"|"medium"|"hard" }] }',
        f"Generate {count} short exam-style questions for topic: {topic}.",
        "Each answer and explanation must be grounded in context.",
        *context_envelope(context),
        "Context:",
        context_text,
    ])
