"""Recognise degraded study payloads (fallback text, empty outlines) before they are cached or shown."""

import re
from typing import Any

from study.models import FALLBACK_MESSAGE

_FALLBACK_MARKERS = (
    "not found in uploaded material",
    "not directly found in your material",
    "no matching concept found",
)


def _normalize(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return re.sub(r"\s+", " ", value.lower()).strip()


def is_fallback_like_text(value: Any) -> bool:
    normalized = _normalize(value)
    if not normalized:
        return False
    fallback = _normalize(FALLBACK_MESSAGE)
    return normalized.startswith(fallback) or any(marker in normalized for marker in _FALLBACK_MARKERS)


def _as_dict(payload: Any) -> dict:
    if hasattr(payload, "to_dict"):
        payload = payload.to_dict()
    return payload if isinstance(payload, dict) else {}


def is_fallback_like_topic_payload(payload: Any) -> bool:
    record = _as_dict(payload)
    if not record:
        return False
    explanation = record.get("explanation")
    if isinstance(explanation, dict) and is_fallback_like_text(explanation.get("simple_explanation")):
        return True
    no_learn_items = isinstance(record.get("what_to_learn"), list) and not record["what_to_learn"]
    return no_learn_items and record.get("confidence") == "low"


def is_fallback_like_learn_payload(payload: Any) -> bool:
    record = _as_dict(payload)
    return is_fallback_like_text(record.get("full_answer")) or is_fallback_like_text(
        record.get("concept_explanation")
    )


def is_fallback_like_chat_payload(payload: Any) -> bool:
    return is_fallback_like_text(_as_dict(payload).get("answer"))
