"""Exam-likelihood estimation from retrieval provenance signals. Pure, no I/O."""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from rag.types import ExamLikelihood, ExamLikelihoodLabel, ScoredChunk, SourceCategory

PREVIOUS_PAPER_POINTS = 40
QUESTION_BANK_POINTS = 25
REPEATED_MATERIAL_POINTS = 15
SYLLABUS_CORE_POINTS = 10
HIGH_WEIGHTAGE_POINTS = 10

HIGH_WEIGHTAGE_THRESHOLD = 15.0

_WEIGHTAGE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:%|marks?)", re.IGNORECASE)


@dataclass
class LikelihoodSignals:
    appears_in_previous_paper: bool = False
    appears_in_question_bank: bool = False
    repeated_in_study_material: bool = False
    syllabus_core_topic: bool = False
    high_chapter_weightage: bool = False


def exam_likelihood_label(score: int) -> ExamLikelihoodLabel:
    if score >= 80:
        return ExamLikelihoodLabel.VERY_LIKELY
    if score >= 60:
        return ExamLikelihoodLabel.HIGH
    if score >= 40:
        return ExamLikelihoodLabel.MEDIUM
    return ExamLikelihoodLabel.LOW


def compute_exam_likelihood(signals: LikelihoodSignals) -> ExamLikelihood:
    score = 0
    if signals.appears_in_previous_paper:
        score += PREVIOUS_PAPER_POINTS
    if signals.appears_in_question_bank:
        score += QUESTION_BANK_POINTS
    if signals.repeated_in_study_material:
        score += REPEATED_MATERIAL_POINTS
    if signals.syllabus_core_topic:
        score += SYLLABUS_CORE_POINTS
    if signals.high_chapter_weightage:
        score += HIGH_WEIGHTAGE_POINTS
    bounded = max(0, min(100, score))
    return ExamLikelihood(score=bounded, label=exam_likelihood_label(bounded))


def parse_weightage(value: Optional[str]) -> Optional[float]:
    """First "N%" / "N marks" number in a weightage string, or None."""
    if not value:
        return None
    match = _WEIGHTAGE_RE.search(value)
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def is_high_weightage(value: Optional[str]) -> bool:
    parsed = parse_weightage(value)
    return parsed is not None and parsed >= HIGH_WEIGHTAGE_THRESHOLD


def signals_from_selection(
    selected: Iterable[ScoredChunk],
    chapter_weightages: Iterable[str] = (),
) -> LikelihoodSignals:
    """Derive the five likelihood booleans from the chunks a retrieval selected."""
    categories = [item.chunk.source_category for item in selected]
    return LikelihoodSignals(
        appears_in_previous_paper=SourceCategory.PREVIOUS_PAPER in categories,
        appears_in_question_bank=SourceCategory.QUESTION_BANK in categories,
        repeated_in_study_material=categories.count(SourceCategory.STUDY_MATERIAL) >= 2,
        syllabus_core_topic=SourceCategory.SYLLABUS_DERIVED in categories,
        high_chapter_weightage=any(is_high_weightage(w) for w in chapter_weightages),
    )
