"""Tests for study API endpoints."""

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest
from fastapi.testclient import TestClient

from rag.corpus import CorpusScope, InMemoryCorpus
from rag.types import Chunk, SourceCategory
from server.app import app
from server.config import Settings
from server.dependencies import get_corpus, get_settings, get_study_tools
from server.services.llm.provider import FakeProvider
from server.services.llm.router import ModelRouter, RouterConfig
from server.services.study_service import StudyTools


# ============================================================================
# Helpers
# ============================================================================

ANSWER = "Osmosis is the movement of water across a semi-permeable membrane from low to high solute concentration."

TOPIC_JSON = json.dumps({
    "whatToLearn": ["Definition of osmosis", "Water potential", "Turgor pressure"],
    "explanation": {
        "concept": "Osmosis",
        "simpleExplanation": "Water moves across a membrane towards the side with more dissolved solute.",
        "example": "Raisins swell when soaked in water.",
        "examTip": "Always name the membrane as semi-permeable.",
    },
})


def _corpus():
    chunk = Chunk(
        text="Osmosis is the diffusion of water across a semi-permeable membrane. Osmosis explains turgor in plant cells.",
        source_category=SourceCategory.PREVIOUS_PAPER,
        source_name="Biology 2021 paper.pdf",
        source_year="2021",
    )
    return InMemoryCorpus({"bio": CorpusScope(chunks=[chunk])})


def _override(provider):
    router = ModelRouter(provider, RouterConfig(fast_model="fast", smart_model="smart"))
    tools = StudyTools(router=router, expansion_enabled=False)
    corpus = _corpus()
    app.dependency_overrides[get_corpus] = lambda: corpus
    app.dependency_overrides[get_study_tools] = lambda: tools


def _sse_frames(text):
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


@pytest.fixture(autouse=True)
def _clear_overrides():
    yield
    app.dependency_overrides.clear()


client = TestClient(app)


# ============================================================================
# Tests
# ============================================================================

def test_topic_endpoint():
    _override(FakeProvider(default=TOPIC_JSON))
    resp = client.post("/study/topic", json={"scope_id": "bio", "topic": "Osmosis", "priority": "high"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["what_to_learn"][0] == "Definition of osmosis"
    assert body["confidence"] == "high"
    assert body["estimated_time"] == "90-120 min"
    assert body["source_refs"][0]["importance_level"] == "VERY IMPORTANT"
    assert body["routing_meta"]["model_used"] == "fast"
    assert body["routing_meta"]["task_type"] == "topic_description"


def test_topic_requires_topic():
    _override(FakeProvider(default=TOPIC_JSON))
    assert client.post("/study/topic", json={"scope_id": "bio"}).status_code == 422
    assert client.post("/study/topic", json={"scope_id": "bio", "topic": ""}).status_code == 422


def test_ask_requires_question():
    _override(FakeProvider(default=ANSWER))
    resp = client.post("/study/ask", json={"scope_id": "bio", "topic": "Osmosis"})
    assert resp.status_code == 422


def test_incomplete_custom_model_is_400():
    _override(FakeProvider(default=ANSWER))
    resp = client.post("/study/ask", json={
        "scope_id": "bio",
        "topic": "Osmosis",
        "question": "What is osmosis?",
        "provider": "custom",
        "custom_model": {"base_url": "https://llm.test/v1", "api_key": "k"},
    })
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing custom model configuration"


def test_ask_endpoint():
    _override(FakeProvider(default=ANSWER))
    resp = client.post("/study/ask", json={
        "scope_id": "bio",
        "topic": "Osmosis",
        "question": "What is osmosis?",
        "history": [{"role": "user", "content": "hi"}],
        "context": {"current_chapter": "Unit 1", "debug_retrieval": True},
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["answer"] == ANSWER
    assert body["citations"][0]["source_year"] == "2021"
    assert body["retrieved_chunks"][0]["selected"] is True


def test_ask_stream_sends_deltas_then_result():
    _override(FakeProvider(default=ANSWER, chunk_size=20))
    resp = client.post("/study/ask", json={
        "scope_id": "bio",
        "topic": "Osmosis",
        "question": "What is osmosis?",
        "stream": True,
    })
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")

    frames = _sse_frames(resp.text)
    assert "".join(f["delta"] for f in frames[:-1]) == ANSWER
    assert frames[-1]["result"]["answer"] == ANSWER
    assert frames[-1]["result"]["routing_meta"]["model_used"] == "fast"


def test_learn_item_endpoint_and_stream():
    sections = "## Concept Explanation\nWater moves.\n## Full Answer\nOsmosis moves water across membranes."
    _override(FakeProvider(default=sections))
    resp = client.post("/study/learn-item", json={
        "scope_id": "bio", "topic": "Osmosis", "item": "Turgor", "stream": True,
    })
    frames = _sse_frames(resp.text)
    assert frames[-1]["result"]["concept_explanation"] == "Water moves."
    assert frames[-1]["result"]["full_answer"] == "Osmosis moves water across membranes."

    resp = client.post("/study/learn-item", json={"scope_id": "bio", "topic": "Osmosis", "item": "Turgor"})
    assert resp.status_code == 200
    assert resp.json()["routing_meta"]["fallback_reason"] == "output too short"


def test_exam_mode_endpoint():
    exam = json.dumps({
        "likelyQuestions": [{"question": "Define osmosis.", "expectedAnswer": "Water diffusion across a membrane.",
                             "difficulty": "easy", "timeLimitMinutes": 5}],
        "readinessScore": 70,
        "weakAreas": ["Water potential"],
        "examTip": "Use the term semi-permeable membrane.",
        "padding": "x" * 120,
    })
    _override(FakeProvider(default=exam))
    resp = client.post("/study/exam-mode", json={"scope_id": "bio", "topic": "Osmosis"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["likely_questions"][0]["difficulty"] == "easy"
    assert body["readiness_score"] == 78


def test_micro_quiz_endpoint():
    quiz = json.dumps({"questions": [
        {"question": f"Question {i} about osmosis?", "answer": f"Answer {i}.", "explanation": f"Because {i}."}
        for i in range(6)
    ]})
    _override(FakeProvider(default=quiz))
    resp = client.post("/study/micro-quiz", json={"scope_id": "bio", "topic": "Osmosis", "count": 5})
    assert resp.status_code == 200
    assert len(resp.json()["questions"]) == 5

    assert client.post("/study/micro-quiz", json={"scope_id": "bio", "topic": "Osmosis", "count": 0}).status_code == 422


def test_runtime_backed_request_without_material(tmp_path):
    settings = Settings(corpus_root=tmp_path, query_expansion_enabled=False)
    app.dependency_overrides[get_settings] = lambda: settings
    resp = client.post("/study/topic", json={"scope_id": "empty-plan", "topic": "Osmosis"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["routing_meta"]["model_used"] == "cache-none"
    assert body["source_refs"] == []
