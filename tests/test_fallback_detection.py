"""Tests for degraded-payload detection."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from rag.types import RetrievalResult
from study.fallback_detection import (
    is_fallback_like_chat_payload,
    is_fallback_like_learn_payload,
    is_fallback_like_text,
    is_fallback_like_topic_payload,
)
from study.models import FALLBACK_MESSAGE, Confidence, Priority, RoutingMeta, TaskType, TopicAnswer
from study.normalize import RELATED_PREFIX, no_material_learn_item, no_material_topic


def test_fallback_text():
    assert is_fallback_like_text(FALLBACK_MESSAGE)
    assert is_fallback_like_text("  NOT FOUND in uploaded   material, sorry")
    assert is_fallback_like_text(RELATED_PREFIX + " Some text.")
    assert not is_fallback_like_text("Osmosis moves water across a membrane.")
    assert not is_fallback_like_text("")
    assert not is_fallback_like_text(None)


def test_topic_payload_from_result_object():
    meta = RoutingMeta.no_material(TaskType.TOPIC_DESCRIPTION)
    content = no_material_topic("Osmosis", RetrievalResult(), Priority.MEDIUM, meta)
    assert is_fallback_like_topic_payload(content)
    assert is_fallback_like_topic_payload(content.to_dict())


def test_topic_payload_empty_outline_with_low_confidence():
    payload = {"explanation": {"simple_explanation": "Real text."}, "what_to_learn": [], "confidence": "low"}
    assert is_fallback_like_topic_payload(payload)
    payload["confidence"] = "high"
    assert not is_fallback_like_topic_payload(payload)
    assert not is_fallback_like_topic_payload({})
    assert not is_fallback_like_topic_payload("not a payload")


def test_learn_payload():
    meta = RoutingMeta.no_material(TaskType.LEARN_NOW_ANSWER)
    assert is_fallback_like_learn_payload(no_material_learn_item("Osmosis", RetrievalResult(), meta))
    assert not is_fallback_like_learn_payload({"full_answer": "Osmosis is...", "concept_explanation": "Water moves."})


def test_chat_payload():
    assert is_fallback_like_chat_payload(TopicAnswer(answer=FALLBACK_MESSAGE, confidence=Confidence.LOW))
    assert not is_fallback_like_chat_payload({"answer": "Mitosis yields two cells."})
