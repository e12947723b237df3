"""
Corpus accessors: where pre-chunked study material comes from.

Layout read by JsonlCorpus:
   <root>/<scope_id>/chunks.jsonl   one Chunk dict per line
   <root>/<scope_id>/sources.json   {"sources": [{"id", "title", "type", "enabled"}],
                                     "material_coverage": int,
                                     "chapter_weightages": [str]}

A scope without sources.json is unscoped: every chunk is eligible.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Set

from rag.types import Chunk, SourceKind

logger = logging.getLogger("kalexam.rag")


@dataclass
class SourceRecord:
   source_id: str
   title: str
   kind: SourceKind = SourceKind.TEXT
   enabled: bool = True

   @classmethod
   def from_dict(cls, data: Dict) -> "SourceRecord":
      try:
         kind = SourceKind(str(data.get("type", "text")).lower())
      except ValueError:
         kind = SourceKind.UNKNOWN
      return cls(
         source_id=str(data["id"]),
         title=str(data.get("title", "")),
         kind=kind,
         enabled=bool(data.get("enabled", True)),
      )


@dataclass
class CorpusScope:
   """One user's material for one study plan."""
   chunks: List[Chunk] = field(default_factory=list)
   sources: Optional[List[SourceRecord]] = None
   material_coverage: int = 0
   chapter_weightages: List[str] = field(default_factory=list)


def normalize_source_name(value: str) -> str:
   return value.strip().lower()


class CorpusAccessor(ABC):
   """Read-only view of ingested chunks and the user's source toggles."""

   @abstractmethod
   def list_chunks(self, scope_id: str) -> List[Chunk]:
      ...

   @abstractmethod
   def enabled_source_ids(self, scope_id: str) -> Optional[Set[str]]:
      """Enabled source ids, or None when the scope has no source registry."""
      ...

   @abstractmethod
   def source_kinds(self, scope_id: str) -> Dict[str, SourceKind]:
      ...

   def source_kind_of(self, scope_id: str, source_id: str) -> SourceKind:
      return self.source_kinds(scope_id).get(source_id, SourceKind.UNKNOWN)

   def material_coverage(self, scope_id: str) -> int:
      return 0

   def chapter_weightages(self, scope_id: str) -> List[str]:
      return []


class InMemoryCorpus(CorpusAccessor):
   """Dict-backed corpus. Used by tests and the CLI."""

   def __init__(self, scopes: Optional[Dict[str, CorpusScope]] = None):
      self.scopes: Dict[str, CorpusScope] = {}
      for scope_id, scope in (scopes or {}).items():
         self.add_scope(scope_id, scope)

   def add_scope(self, scope_id: str, scope: CorpusScope) -> None:
      self.scopes[scope_id] = CorpusScope(
         chunks=_attach_source_ids(scope.chunks, scope.sources),
         sources=scope.sources,
         material_coverage=scope.material_coverage,
         chapter_weightages=list(scope.chapter_weightages),
      )

   def _scope(self, scope_id: str) -> CorpusScope:
      return self.scopes.get(scope_id) or CorpusScope()

   def list_chunks(self, scope_id: str) -> List[Chunk]:
      return list(self._scope(scope_id).chunks)

   def enabled_source_ids(self, scope_id: str) -> Optional[Set[str]]:
      sources = self._scope(scope_id).sources
      if sources is None:
         return None
      return {s.source_id for s in sources if s.enabled}

   def source_kinds(self, scope_id: str) -> Dict[str, SourceKind]:
      return {s.source_id: s.kind for s in self._scope(scope_id).sources or []}

   def material_coverage(self, scope_id: str) -> int:
      return self._scope(scope_id).material_coverage

   def chapter_weightages(self, scope_id: str) -> List[str]:
      return list(self._scope(scope_id).chapter_weightages)


class JsonlCorpus(InMemoryCorpus):
   """
   File-backed corpus, loaded lazily per scope and then held in memory.

   Scopes are read once; call reload(scope_id) after re-ingestion.
   """

   def __init__(self, root: Path):
      super().__init__()
      self.root = Path(root)

   def _scope(self, scope_id: str) -> CorpusScope:
      if scope_id not in self.scopes:
         self.add_scope(scope_id, load_scope(self.root / scope_id))
      return self.scopes[scope_id]

   def reload(self, scope_id: str) -> None:
      self.scopes.pop(scope_id, None)


def load_scope(scope_dir: Path) -> CorpusScope:
   """Read chunks.jsonl + sources.json. Missing files mean an empty/unscoped corpus."""
   scope_dir = Path(scope_dir)
   chunks: List[Chunk] = []
   chunks_path = scope_dir / "chunks.jsonl"
   if chunks_path.exists():
      with open(chunks_path, "r", encoding="utf-8") as f:
         for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
               continue
            try:
               chunks.append(Chunk.from_dict(json.loads(line)))
            except (json.JSONDecodeError, ValueError, TypeError) as e:
               logger.warning("Skipping malformed chunk %s:%d: %s", chunks_path, line_no, e)

   sources: Optional[List[SourceRecord]] = None
   material_coverage = 0
   chapter_weightages: List[str] = []
   sources_path = scope_dir / "sources.json"
   if sources_path.exists():
      try:
         with open(sources_path, "r", encoding="utf-8") as f:
            data = json.load(f)
         sources = [SourceRecord.from_dict(s) for s in data.get("sources", []) if isinstance(s, dict) and "id" in s]
         material_coverage = int(data.get("material_coverage", 0) or 0)
         chapter_weightages = [str(w) for w in data.get("chapter_weightages", []) if w]
      except (ValueError, TypeError, AttributeError) as e:
         # unreadable registry: fall back to an unscoped corpus
         logger.warning("Ignoring malformed source registry %s: %s", sources_path, e)
         sources, material_coverage, chapter_weightages = None, 0, []

   return CorpusScope(
      chunks=chunks,
      sources=sources,
      material_coverage=material_coverage,
      chapter_weightages=chapter_weightages,
   )


def _attach_source_ids(chunks: List[Chunk], sources: Optional[List[SourceRecord]]) -> List[Chunk]:
   """Give id-less chunks the id of the source whose title matches their source name."""
   if not sources:
      return list(chunks)
   by_title = {normalize_source_name(s.title): s.source_id for s in sources if s.title}
   attached: List[Chunk] = []
   for chunk in chunks:
      if chunk.source_id is None:
         mapped = by_title.get(normalize_source_name(chunk.source_name))
         if mapped:
            chunk = replace(chunk, source_id=mapped)
      attached.append(chunk)
   return attached
