"""
Quality gate for fast-model output.

Decides whether a Fast-tier answer is good enough to return or must be
escalated to the Smart tier. Every helper is a pure function over the raw
model text; the first failing check wins and names the escalation reason.
"""

import json
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from study.models import Confidence
from study.normalize import extract_json_candidate, is_grounded

DEFAULT_MIN_CHARS = 120

GENERIC_PHRASES = (
    "as an ai",
    "i cannot",
    "not enough information",
    "it depends",
)

# Escalation reasons, in evaluation order
REASON_EMPTY = "empty explanation"
REASON_TOO_SHORT = "output too short"
REASON_NO_STRUCTURE = "missing answer structure"
REASON_LOW_CONFIDENCE = "low retrieval confidence"
REASON_GENERIC = "generic response"

__all__ = [
    "QualitySignals",
    "QualityPolicy",
    "extract_json_candidate",
    "parses_as_json",
    "looks_generic",
    "is_grounded",
    "evaluate_fast_output_quality",
]


@dataclass
class QualitySignals:
    """Per-call hints from the caller. None means "not checked"."""
    retrieval_confidence: Optional[Confidence] = None
    min_chars: Optional[int] = None
    requires_json: bool = False


@dataclass(frozen=True)
class QualityPolicy:
    """Gate tunables."""
    default_min_chars: int = DEFAULT_MIN_CHARS
    generic_phrases: Tuple[str, ...] = GENERIC_PHRASES
    escalate_on_low_confidence: bool = True


def parses_as_json(raw: str) -> bool:
    try:
        json.loads(extract_json_candidate(raw))
    except (json.JSONDecodeError, ValueError):
        return False
    return True


def looks_generic(raw: str, phrases: Iterable[str] = GENERIC_PHRASES) -> bool:
    value = (raw or "").lower()
    return any(phrase in value for phrase in phrases)


def evaluate_fast_output_quality(
    raw: str,
    signals: Optional[QualitySignals] = None,
    policy: Optional[QualityPolicy] = None,
) -> Tuple[bool, Optional[str]]:
    """
    Check Fast-tier output. Returns (ok, reason).
    reason is None when ok, else one of the REASON_* strings.
    """
    signals = signals or QualitySignals()
    policy = policy or QualityPolicy()
    trimmed = (raw or "").strip()

    if not trimmed:
        return False, REASON_EMPTY

    min_chars = signals.min_chars if signals.min_chars is not None else policy.default_min_chars
    if len(trimmed) < min_chars:
        return False, REASON_TOO_SHORT

    if signals.requires_json and not parses_as_json(trimmed):
        return False, REASON_NO_STRUCTURE

    if policy.escalate_on_low_confidence and signals.retrieval_confidence == Confidence.LOW:
        return False, REASON_LOW_CONFIDENCE

    if looks_generic(trimmed, policy.generic_phrases):
        return False, REASON_GENERIC

    return True, None
