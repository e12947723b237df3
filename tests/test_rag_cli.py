"""Tests for the retrieval debugging CLI."""

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest

from rag import cli
from rag.corpus import CorpusScope, InMemoryCorpus
from rag.retrieve import RetrievalEngine
from rag.types import Chunk, SourceCategory


def _corpus():
    chunks = [
        Chunk(text="Osmosis moves water across a semi-permeable membrane.",
              source_category=SourceCategory.PREVIOUS_PAPER, source_name="notes.pdf", source_year="2022"),
        Chunk(text="Mitosis produces two identical daughter cells.",
              source_category=SourceCategory.STUDY_MATERIAL, source_name="cells.pdf"),
    ]
    return InMemoryCorpus({"bio": CorpusScope(chunks=chunks)})


def test_print_result_lists_selected_chunks(capsys):
    cli.print_result(_corpus(), RetrievalEngine(), "bio", "osmosis", 5)
    out = capsys.readouterr().out
    assert "Selected 1 chunks" in out
    assert "notes.pdf 2022" in out
    assert "[pdf]" in out
    assert "cells.pdf" not in out


def test_print_result_without_material(capsys):
    cli.print_result(_corpus(), RetrievalEngine(), "bio", "zebra stripes", 5)
    assert "No material found." in capsys.readouterr().out


def test_main_single_query(tmp_path, monkeypatch, capsys):
    scope_dir = tmp_path / "bio"
    scope_dir.mkdir()
    (scope_dir / "chunks.jsonl").write_text(
        json.dumps({"text": "Osmosis moves water.", "source_name": "notes.pdf"}) + "\n", encoding="utf-8"
    )
    monkeypatch.setattr(sys, "argv", ["rag.cli", "--scope", "bio", "--root", str(tmp_path), "--query", "osmosis"])

    cli.main()
    assert "Selected 1 chunks" in capsys.readouterr().out


def test_main_missing_scope_exits(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "argv", ["rag.cli", "--scope", "nope", "--root", str(tmp_path)])
    with pytest.raises(SystemExit) as exc:
        cli.main()
    assert exc.value.code == 1


def test_run_cli_quits(monkeypatch, capsys):
    answers = iter(["", "osmosis", ":quit"])
    monkeypatch.setattr("builtins.input", lambda _prompt: next(answers))
    cli.run_cli(_corpus(), "bio")
    out = capsys.readouterr().out
    assert "Enabled sources: all" in out
    assert "Goodbye!" in out
