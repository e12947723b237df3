"""Tests for exam-likelihood scoring."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from rag.types import Chunk, ExamLikelihoodLabel, ScoredChunk, SourceCategory, SourceKind
from study.exam_likelihood import (
    LikelihoodSignals,
    compute_exam_likelihood,
    exam_likelihood_label,
    is_high_weightage,
    parse_weightage,
    signals_from_selection,
)


def _scored(category):
    chunk = Chunk(text="text", source_category=category, source_name="src")
    return ScoredChunk(chunk=chunk, source_kind=SourceKind.PDF, score=1.0)


def test_no_signals_is_low_zero():
    result = compute_exam_likelihood(LikelihoodSignals())
    assert result.score == 0
    assert result.label == ExamLikelihoodLabel.LOW


def test_all_signals_sum_to_100():
    result = compute_exam_likelihood(LikelihoodSignals(True, True, True, True, True))
    assert result.score == 100
    assert result.label == ExamLikelihoodLabel.VERY_LIKELY


def test_label_thresholds():
    assert exam_likelihood_label(80) == ExamLikelihoodLabel.VERY_LIKELY
    assert exam_likelihood_label(79) == ExamLikelihoodLabel.HIGH
    assert exam_likelihood_label(60) == ExamLikelihoodLabel.HIGH
    assert exam_likelihood_label(59) == ExamLikelihoodLabel.MEDIUM
    assert exam_likelihood_label(40) == ExamLikelihoodLabel.MEDIUM
    assert exam_likelihood_label(39) == ExamLikelihoodLabel.LOW


def test_previous_paper_alone_is_medium():
    result = compute_exam_likelihood(LikelihoodSignals(appears_in_previous_paper=True))
    assert result.score == 40
    assert result.label == ExamLikelihoodLabel.MEDIUM


def test_parse_weightage():
    assert parse_weightage("Unit 3 - 20%") == 20.0
    assert parse_weightage("12.5 marks") == 12.5
    assert parse_weightage("1 mark") == 1.0
    assert parse_weightage("no numbers") is None
    assert parse_weightage(None) is None


def test_high_weightage_threshold():
    assert is_high_weightage("15%")
    assert not is_high_weightage("14 marks")
    assert not is_high_weightage("")


def test_signals_from_selection():
    selected = [
        _scored(SourceCategory.STUDY_MATERIAL),
        _scored(SourceCategory.STUDY_MATERIAL),
        _scored(SourceCategory.SYLLABUS_DERIVED),
    ]
    signals = signals_from_selection(selected, ["Chapter 4: 25%"])
    assert not signals.appears_in_previous_paper
    assert not signals.appears_in_question_bank
    assert signals.repeated_in_study_material
    assert signals.syllabus_core_topic
    assert signals.high_chapter_weightage
    assert compute_exam_likelihood(signals).score == 35


def test_single_study_material_is_not_repeated():
    signals = signals_from_selection([_scored(SourceCategory.STUDY_MATERIAL)])
    assert not signals.repeated_in_study_material
