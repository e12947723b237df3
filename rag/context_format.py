"""
Render selected chunks into provenance-labelled prompt context.

Cleaning is deterministic and LLM-free: it strips extraction noise (control
characters, bullet glyphs, OCR repeats, page furniture) before text reaches a
prompt.
"""

import re
from typing import Iterable, List, Set

from rag.types import ScoredChunk, SourceKind

_CONTROL_RE = re.compile(r"[\u0000-\u001f\u007f-\u009f]")
_BULLET_RE = re.compile(r"[•●▪◦]")
_REPEATED_CHAR_RE = re.compile(r"([a-zA-Z])\1{5,}")
_REPEATED_WORD_RE = re.compile(r"(\b\w{2,20}\b)(?:\s+\1){3,}", re.IGNORECASE)
_PIPE_RUN_RE = re.compile(r"\|{2,}")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_BOILERPLATE_RE = re.compile(r"^(page\s*\d+|header|footer|slide\s*\d+)$", re.IGNORECASE)

MIN_LINE_CHARS = 20


def context_label(kind: SourceKind) -> str:
   if kind == SourceKind.YOUTUBE:
      return "VIDEO SOURCE"
   if kind == SourceKind.URL:
      return "WEBSITE SOURCE"
   if kind in (SourceKind.PDF, SourceKind.DOCX, SourceKind.PPT):
      return "DOCUMENT SOURCE"
   return "TEXT SOURCE"


def clean_retrieved_text(text: str) -> str:
   """
   Normalize extracted chunk text for prompting.

   Returns sentence-per-paragraph text with short lines, page/header/footer
   boilerplate and duplicate lines removed. May return "" for pure noise.
   """
   normalized = _CONTROL_RE.sub(" ", text or "")
   normalized = _BULLET_RE.sub("-", normalized)
   normalized = normalized.replace("�", " ")
   normalized = _REPEATED_CHAR_RE.sub(r"\1", normalized)
   normalized = _REPEATED_WORD_RE.sub(r"\1", normalized)
   normalized = _PIPE_RUN_RE.sub(" ", normalized)
   normalized = re.sub(r"\s+", " ", normalized).strip()

   seen: Set[str] = set()
   lines: List[str] = []
   for line in _SENTENCE_SPLIT_RE.split(normalized):
      line = re.sub(r"\s+", " ", line).strip()
      if len(line) <= MIN_LINE_CHARS or _BOILERPLATE_RE.match(line):
         continue
      key = line.lower()
      if key in seen:
         continue
      seen.add(key)
      lines.append(line)
   return "\n\n".join(lines)


def format_chunk(item: ScoredChunk) -> str:
   body = clean_retrieved_text(item.chunk.text) or item.chunk.text
   return "\n".join([
      f"[{context_label(item.source_kind)}]",
      f"Title: {item.chunk.source_name}",
      f"Content: {body}",
   ])


def format_context_for_prompt(chunks: Iterable[ScoredChunk]) -> str:
   return "\n\n".join(format_chunk(item) for item in chunks)
