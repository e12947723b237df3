"""Tests for the fast-output quality gate."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from server.services.quality_gates import (
    REASON_EMPTY,
    REASON_GENERIC,
    REASON_LOW_CONFIDENCE,
    REASON_NO_STRUCTURE,
    REASON_TOO_SHORT,
    QualityPolicy,
    QualitySignals,
    evaluate_fast_output_quality,
    extract_json_candidate,
    is_grounded,
    looks_generic,
    parses_as_json,
)
from study.models import Confidence

GOOD_TEXT = "Photosynthesis turns light energy into chemical energy stored as glucose. " * 3


def test_extract_json_candidate_strips_fence():
    raw = '```json\n{"a": 1}\n```'
    assert extract_json_candidate(raw) == '{"a": 1}'


def test_extract_json_candidate_finds_object_in_prose():
    raw = 'Here you go: {"a": {"b": 2}} hope it helps'
    assert extract_json_candidate(raw) == '{"a": {"b": 2}}'


def test_parses_as_json():
    assert parses_as_json('```json\n{"whatToLearn": []}\n```')
    assert not parses_as_json("plain prose answer")
    assert not parses_as_json("{broken: json")


def test_looks_generic():
    assert looks_generic("As an AI, I think it depends on context.")
    assert looks_generic("There is NOT ENOUGH INFORMATION here.")
    assert not looks_generic("Mitosis has four phases.")
    assert looks_generic("totally custom filler", ["custom filler"])


def test_is_grounded():
    assert is_grounded("Recursion calls itself.", ["recursion", "stack"])
    assert not is_grounded("Loops repeat.", ["recursion", "stack"])
    assert not is_grounded("anything", [])


def test_good_output_passes():
    assert evaluate_fast_output_quality(GOOD_TEXT) == (True, None)


def test_empty_output():
    assert evaluate_fast_output_quality("   \n ") == (False, REASON_EMPTY)
    assert evaluate_fast_output_quality(None) == (False, REASON_EMPTY)


def test_too_short_uses_default_then_signal():
    assert evaluate_fast_output_quality("short answer") == (False, REASON_TOO_SHORT)
    assert evaluate_fast_output_quality("short answer", QualitySignals(min_chars=5)) == (True, None)
    ok, reason = evaluate_fast_output_quality(GOOD_TEXT, QualitySignals(min_chars=len(GOOD_TEXT) + 10))
    assert not ok
    assert reason == REASON_TOO_SHORT


def test_missing_structure_when_json_required():
    ok, reason = evaluate_fast_output_quality(GOOD_TEXT, QualitySignals(requires_json=True))
    assert not ok
    assert reason == REASON_NO_STRUCTURE

    as_json = '{"answer": "%s"}' % GOOD_TEXT.strip()
    assert evaluate_fast_output_quality(as_json, QualitySignals(requires_json=True)) == (True, None)


def test_low_retrieval_confidence_escalates_by_default():
    signals = QualitySignals(retrieval_confidence=Confidence.LOW)
    assert evaluate_fast_output_quality(GOOD_TEXT, signals) == (False, REASON_LOW_CONFIDENCE)


def test_low_retrieval_confidence_can_be_disabled():
    signals = QualitySignals(retrieval_confidence=Confidence.LOW)
    policy = QualityPolicy(escalate_on_low_confidence=False)
    assert evaluate_fast_output_quality(GOOD_TEXT, signals, policy) == (True, None)


def test_medium_confidence_passes():
    signals = QualitySignals(retrieval_confidence=Confidence.MEDIUM)
    assert evaluate_fast_output_quality(GOOD_TEXT, signals) == (True, None)


def test_generic_response():
    text = GOOD_TEXT + " As an AI language model I cannot be sure."
    assert evaluate_fast_output_quality(text) == (False, REASON_GENERIC)


def test_first_failing_check_wins():
    # short and generic: length is checked first
    assert evaluate_fast_output_quality("it depends") == (False, REASON_TOO_SHORT)
    # long, not JSON, low confidence: structure is checked before confidence
    signals = QualitySignals(retrieval_confidence=Confidence.LOW, requires_json=True)
    assert evaluate_fast_output_quality(GOOD_TEXT, signals) == (False, REASON_NO_STRUCTURE)
