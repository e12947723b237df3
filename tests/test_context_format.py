"""Tests for prompt-context rendering and chunk text cleaning."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from rag.context_format import (
    clean_retrieved_text,
    context_label,
    format_chunk,
    format_context_for_prompt,
)
from rag.types import Chunk, ScoredChunk, SourceCategory, SourceKind


def _scored(text, kind=SourceKind.PDF, name="Unit 2 notes.pdf"):
    chunk = Chunk(text=text, source_category=SourceCategory.STUDY_MATERIAL, source_name=name)
    return ScoredChunk(chunk=chunk, source_kind=kind, score=1.0)


def test_context_labels():
    assert context_label(SourceKind.YOUTUBE) == "VIDEO SOURCE"
    assert context_label(SourceKind.URL) == "WEBSITE SOURCE"
    assert context_label(SourceKind.PDF) == "DOCUMENT SOURCE"
    assert context_label(SourceKind.DOCX) == "DOCUMENT SOURCE"
    assert context_label(SourceKind.PPT) == "DOCUMENT SOURCE"
    assert context_label(SourceKind.TEXT) == "TEXT SOURCE"
    assert context_label(SourceKind.UNKNOWN) == "TEXT SOURCE"


def test_clean_removes_bullets_and_control_characters():
    text = "• Photosynthesis converts light energy into chemical energy.\x07 It happens in chloroplasts of leaves."
    cleaned = clean_retrieved_text(text)
    assert "•" not in cleaned
    assert "\x07" not in cleaned
    assert cleaned.split("\n\n") == [
        "- Photosynthesis converts light energy into chemical energy.",
        "It happens in chloroplasts of leaves.",
    ]


def test_clean_collapses_ocr_repeats():
    text = "The value is clearlyyyyyyy defined here. data data data data data is stored in the table."
    cleaned = clean_retrieved_text(text)
    assert "clearly defined" in cleaned
    assert "data data" not in cleaned


def test_clean_drops_short_lines_and_duplicates():
    text = "Page 4. Osmosis moves water across a membrane. Osmosis moves water across a membrane. Ok."
    cleaned = clean_retrieved_text(text)
    assert cleaned == "Osmosis moves water across a membrane."


def test_clean_pure_noise_is_empty():
    assert clean_retrieved_text("|||| •• ") == ""
    assert clean_retrieved_text("") == ""


def test_format_chunk_shape():
    item = _scored("Mitosis produces two identical daughter cells.", kind=SourceKind.YOUTUBE, name="Cell lecture")
    assert format_chunk(item) == "\n".join([
        "[VIDEO SOURCE]",
        "Title: Cell lecture",
        "Content: Mitosis produces two identical daughter cells.",
    ])


def test_format_chunk_falls_back_to_raw_text():
    item = _scored("x = 5")
    assert format_chunk(item).endswith("Content: x = 5")


def test_format_context_joins_with_blank_line():
    context = format_context_for_prompt([
        _scored("First chunk is long enough to survive cleaning."),
        _scored("Second chunk is long enough to survive cleaning."),
    ])
    blocks = context.split("\n\n")
    assert len(blocks) == 2
    assert blocks[0].startswith("[DOCUMENT SOURCE]")
    assert format_context_for_prompt([]) == ""
