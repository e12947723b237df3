"""
Lexical retrieval over pre-chunked study material.

Scoring:
   score = sum(max(1, occurrences) for contained query tokens) + category boost
   video chunks: floor 3, x1.35, x1.3 for conceptual queries, x2.0 when only
   video sources are enabled
   then + 2 * distinct query tokens present (overlap boost)

Selection: diversity-seeded (top video + top document), deduplicated by
(source, section, text prefix), then every enabled source is guaranteed at
least one chunk.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from rag.context_format import format_context_for_prompt
from rag.query_tokens import STOP_WORDS, tokenize_ordered
from rag.types import (
   DOCUMENT_KINDS,
   Chunk,
   Citation,
   ImportanceLevel,
   RetrievalDebugChunk,
   RetrievalResult,
   ScoredChunk,
   SourceCategory,
   SourceKind,
)
from study.exam_likelihood import compute_exam_likelihood, signals_from_selection

logger = logging.getLogger("kalexam.rag")

_CONCEPTUAL_RE = re.compile(
   r"\b(explain|understand|how\s+does|how\s+do|how|why\s+does|why\s+do|why|concept|meaning|intuition)\b",
   re.IGNORECASE,
)


def _default_category_boosts() -> Dict[SourceCategory, float]:
   return {
      SourceCategory.PREVIOUS_PAPER: 8.0,
      SourceCategory.QUESTION_BANK: 5.0,
      SourceCategory.STUDY_MATERIAL: 3.0,
   }


@dataclass(frozen=True)
class RetrievalConfig:
   """Retrieval tunables. Injected so tests can vary thresholds per engine."""
   category_boosts: Mapping[SourceCategory, float] = field(default_factory=_default_category_boosts)
   default_category_boost: float = 1.0
   video_score_floor: float = 3.0
   video_multiplier: float = 1.35
   conceptual_video_multiplier: float = 1.3
   video_only_multiplier: float = 2.0
   candidate_pool_multiplier: int = 3
   dedupe_prefix_chars: int = 220
   diversity_prefix_chars: int = 80
   overlap_weight: float = 2.0
   stop_words: frozenset = STOP_WORDS


def is_conceptual_query(query: str) -> bool:
   return bool(_CONCEPTUAL_RE.search(query or ""))


def infer_source_kind(
   chunk: Chunk,
   source_kinds: Optional[Mapping[str, SourceKind]] = None,
   source_id: Optional[str] = None,
) -> SourceKind:
   """Source kind from the id->kind map when known, else name/section heuristics."""
   if source_id and source_kinds is not None and source_id in source_kinds:
      return source_kinds.get(source_id) or SourceKind.UNKNOWN

   section = chunk.section.lower()
   name = chunk.source_name.lower()
   if "transcript" in section or "reconstructed" in section or "ai summary" in section:
      return SourceKind.YOUTUBE
   if name.endswith(".pdf"):
      return SourceKind.PDF
   if name.endswith(".doc") or name.endswith(".docx"):
      return SourceKind.DOCX
   if name.endswith(".ppt") or name.endswith(".pptx"):
      return SourceKind.PPT
   if name.startswith("http://") or name.startswith("https://"):
      return SourceKind.URL
   return SourceKind.TEXT


def importance_for(category: SourceCategory) -> ImportanceLevel:
   if category == SourceCategory.PREVIOUS_PAPER:
      return ImportanceLevel.VERY_IMPORTANT
   if category == SourceCategory.QUESTION_BANK:
      return ImportanceLevel.IMPORTANT
   return ImportanceLevel.SUPPORTING


def to_citation(chunk: Chunk) -> Citation:
   return Citation(
      source_category=chunk.source_category,
      source_name=chunk.source_name,
      source_year=chunk.source_year,
      section=chunk.section or None,
      importance_level=importance_for(chunk.source_category),
   )


def score_text(text: str, tokens: Sequence[str]) -> int:
   """Sum of per-token occurrence counts; every contained token counts at least once."""
   if not text or not tokens:
      return 0
   normalized = text.lower()
   score = 0
   for token in tokens:
      if token in normalized:
         score += max(1, normalized.count(token))
   return score


def token_overlap(text: str, tokens: Sequence[str]) -> int:
   """Number of distinct tokens literally present in text."""
   normalized = (text or "").lower()
   return sum(1 for token in set(tokens) if token in normalized)


def _normalized_prefix(text: str, chars: int) -> str:
   return re.sub(r"\s+", " ", text.lower())[:chars]


class RetrievalEngine:
   """
   Ranks and selects a bounded, source-diverse subset of chunks for a query.

   Stateless apart from its config: safe to share across concurrent requests.
   """

   def __init__(self, config: Optional[RetrievalConfig] = None):
      self.config = config or RetrievalConfig()

   # ----------------------------
   # Scoring
   # ----------------------------
   def category_boost(self, category: SourceCategory) -> float:
      return self.config.category_boosts.get(category, self.config.default_category_boost)

   def score_chunk(
      self,
      chunk: Chunk,
      kind: SourceKind,
      tokens: Sequence[str],
      conceptual: bool,
      video_only: bool,
   ) -> float:
      cfg = self.config
      score = float(score_text(chunk.text, tokens)) + self.category_boost(chunk.source_category)
      if kind == SourceKind.YOUTUBE:
         score = max(score, cfg.video_score_floor)
         score *= cfg.video_multiplier
         if conceptual:
            score *= cfg.conceptual_video_multiplier
         if video_only:
            score *= cfg.video_only_multiplier
      return score

   def _with_overlap(self, item: ScoredChunk, tokens: Sequence[str]) -> ScoredChunk:
      bonus = token_overlap(item.chunk.text, tokens) * self.config.overlap_weight
      return replace(item, score=item.score + bonus)

   # ----------------------------
   # Selection
   # ----------------------------
   def enforce_source_diversity(self, candidates: List[ScoredChunk], max_chunks: int) -> List[ScoredChunk]:
      """Seed with the top video and top document chunk, then fill by score."""
      if not candidates:
         return []
      prefix = self.config.diversity_prefix_chars
      top_video = next((c for c in candidates if c.source_kind == SourceKind.YOUTUBE), None)
      top_document = next((c for c in candidates if c.source_kind in DOCUMENT_KINDS), None)
      top_non_video = next((c for c in candidates if c.source_kind != SourceKind.YOUTUBE), None)

      selected: List[ScoredChunk] = []
      seen: Set[tuple] = set()
      seeds = [item for item in (top_video, top_document or top_non_video) if item is not None]
      for item in seeds + candidates:
         if len(selected) >= max_chunks:
            break
         key = item.dedupe_key(prefix)
         if key in seen:
            continue
         seen.add(key)
         selected.append(item)
      return selected[:max_chunks]

   def ensure_enabled_source_coverage(
      self,
      selected: List[ScoredChunk],
      candidates: List[ScoredChunk],
      enabled_source_ids: Optional[Set[str]],
      max_chunks: int,
   ) -> List[ScoredChunk]:
      """
      Inject the best chunk of every enabled source missing from `selected`.

      `candidates` must be sorted by score descending. When injection overflows
      `max_chunks`, the weakest chunks of sources that stay represented are
      dropped, so coverage always survives (max_chunks >= #enabled sources).
      """
      if not enabled_source_ids:
         return selected

      prefix = self.config.diversity_prefix_chars
      result = list(selected)
      seen = {item.dedupe_key(prefix) for item in result}
      represented = {item.source_id for item in result}
      for source_id in sorted(enabled_source_ids):
         if source_id in represented:
            continue
         best = next((c for c in candidates if c.source_id == source_id), None)
         if best is None or best.dedupe_key(prefix) in seen:
            continue
         seen.add(best.dedupe_key(prefix))
         represented.add(source_id)
         result.append(best)

      result.sort(key=lambda item: item.score, reverse=True)
      while len(result) > max_chunks:
         counts = Counter(item.source_id for item in result)
         victim = next(
            (i for i in range(len(result) - 1, -1, -1) if counts[result[i].source_id] > 1),
            None,
         )
         if victim is None:
            break
         result.pop(victim)
      return result

   # ----------------------------
   # Entry point
   # ----------------------------
   def retrieve(
      self,
      chunks: Iterable[Chunk],
      query: str,
      max_chunks: int,
      enabled_source_ids: Optional[Set[str]] = None,
      *,
      source_kinds: Optional[Mapping[str, SourceKind]] = None,
      tokens: Optional[Sequence[str]] = None,
      debug: bool = False,
      material_coverage_percent: int = 0,
      chapter_weightages: Iterable[str] = (),
   ) -> RetrievalResult:
      """
      Rank and select chunks for `query`.

      Args:
         chunks:             Corpus for one scope
         query:              Raw query text
         max_chunks:         Nominal chunk budget
         enabled_source_ids: None = unscoped; empty set = nothing enabled
         source_kinds:       source_id -> SourceKind map from the corpus
         tokens:             Pre-expanded query tokens (default: tokenize(query))
         debug:              Attach ranked candidates as debug_chunks

      Returns:
         RetrievalResult; selected_chunks == [] when there is no material.
      """
      empty_debug: Optional[List[RetrievalDebugChunk]] = [] if debug else None

      if enabled_source_ids is not None and not enabled_source_ids:
         logger.debug("Retrieval skipped: enabled source scope is empty")
         return RetrievalResult(material_coverage_percent=material_coverage_percent, debug_chunks=empty_debug)

      cfg = self.config
      candidates = [
         ScoredChunk(
            chunk=chunk,
            source_id=chunk.source_id,
            source_kind=infer_source_kind(chunk, source_kinds, chunk.source_id),
            score=0.0,
         )
         for chunk in chunks
         if enabled_source_ids is None or (chunk.source_id and chunk.source_id in enabled_source_ids)
      ]
      if not candidates:
         return RetrievalResult(material_coverage_percent=material_coverage_percent, debug_chunks=empty_debug)

      enabled_kinds: Set[SourceKind] = set()
      if enabled_source_ids and source_kinds:
         enabled_kinds = {source_kinds[sid] for sid in enabled_source_ids if source_kinds.get(sid)}
      video_only = enabled_kinds == {SourceKind.YOUTUBE}
      effective_max = max(max_chunks, len(enabled_source_ids or ()))

      query_tokens = list(tokens) if tokens is not None else tokenize_ordered(query, cfg.stop_words)
      conceptual = is_conceptual_query(query)

      scored = [
         replace(item, score=self.score_chunk(item.chunk, item.source_kind, query_tokens, conceptual, video_only))
         for item in candidates
      ]
      scored = sorted((item for item in scored if item.score > 0), key=lambda item: item.score, reverse=True)
      pool = scored[: effective_max * cfg.candidate_pool_multiplier]

      seen_prefixes: Set[str] = set()
      deduped: List[ScoredChunk] = []
      for item in pool:
         key = _normalized_prefix(item.chunk.text, cfg.dedupe_prefix_chars)
         if key in seen_prefixes:
            continue
         seen_prefixes.add(key)
         deduped.append(item)

      ranked = sorted(
         (self._with_overlap(item, query_tokens) for item in deduped),
         key=lambda item: item.score,
         reverse=True,
      )
      diverse = self.enforce_source_diversity(ranked, effective_max)

      coverage_pool = sorted(
         (self._with_overlap(item, query_tokens) for item in scored),
         key=lambda item: item.score,
         reverse=True,
      )
      selected = self.ensure_enabled_source_coverage(diverse, coverage_pool, enabled_source_ids, effective_max)

      self._log_selection(enabled_source_ids, candidates, selected)
      return self._build_result(
         selected,
         ranked if debug else None,
         material_coverage_percent,
         chapter_weightages,
      )

   def _build_result(
      self,
      selected: List[ScoredChunk],
      ranked: Optional[List[ScoredChunk]],
      material_coverage_percent: int,
      chapter_weightages: Iterable[str],
   ) -> RetrievalResult:
      if not selected:
         return RetrievalResult(
            material_coverage_percent=material_coverage_percent,
            debug_chunks=[] if ranked is not None else None,
         )

      debug_chunks = None
      if ranked is not None:
         prefix = self.config.diversity_prefix_chars
         selected_keys = {item.dedupe_key(prefix) for item in selected}
         debug_chunks = [
            RetrievalDebugChunk(
               source_name=item.chunk.source_name,
               source_kind=item.source_kind,
               score=round(item.score, 3),
               selected=item.dedupe_key(prefix) in selected_keys,
            )
            for item in ranked
         ]

      top_previous = next(
         (item.chunk for item in selected if item.chunk.source_category == SourceCategory.PREVIOUS_PAPER),
         None,
      )
      return RetrievalResult(
         selected_chunks=selected,
         formatted_context=format_context_for_prompt(selected),
         citations=[to_citation(item.chunk) for item in selected],
         aggregate_score=sum(item.score for item in selected),
         material_coverage_percent=material_coverage_percent,
         exam_likelihood=compute_exam_likelihood(signals_from_selection(selected, chapter_weightages)),
         top_previous_paper_chunk=top_previous,
         used_video_context=any(item.source_kind == SourceKind.YOUTUBE for item in selected),
         debug_chunks=debug_chunks,
      )

   def _log_selection(
      self,
      enabled_source_ids: Optional[Set[str]],
      candidates: List[ScoredChunk],
      selected: List[ScoredChunk],
   ) -> None:
      if not logger.isEnabledFor(logging.INFO):
         return
      kinds = Counter(item.source_kind.value for item in candidates)
      logger.info(
         "Retrieval: enabled=%s total=%d youtube=%d pdf=%d selected=%d kinds=%s",
         sorted(enabled_source_ids) if enabled_source_ids else [],
         len(candidates),
         kinds.get(SourceKind.YOUTUBE.value, 0),
         kinds.get(SourceKind.PDF.value, 0),
         len(selected),
         sorted({item.source_kind.value for item in selected}),
      )
