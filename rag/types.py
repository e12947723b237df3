"""
Core retrieval types: chunks, source kinds, scored candidates, citations.

Chunks are produced once by ingestion and never mutated. Scored chunks and
retrieval results only live for the duration of one retrieval call.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class SourceCategory(str, Enum):
   PREVIOUS_PAPER = "Previous Paper"
   QUESTION_BANK = "Question Bank"
   STUDY_MATERIAL = "Study Material"
   SYLLABUS_DERIVED = "Syllabus Derived"


class SourceKind(str, Enum):
   PDF = "pdf"
   DOCX = "docx"
   PPT = "ppt"
   URL = "url"
   YOUTUBE = "youtube"
   TEXT = "text"
   UNKNOWN = "unknown"


DOCUMENT_KINDS = frozenset({SourceKind.PDF, SourceKind.DOCX, SourceKind.PPT, SourceKind.URL})


class ImportanceLevel(str, Enum):
   VERY_IMPORTANT = "VERY IMPORTANT"
   IMPORTANT = "IMPORTANT"
   SUPPORTING = "SUPPORTING"


class ExamLikelihoodLabel(str, Enum):
   VERY_LIKELY = "VERY LIKELY"
   HIGH = "HIGH"
   MEDIUM = "MEDIUM"
   LOW = "LOW"


@dataclass(frozen=True)
class Chunk:
   text: str
   source_category: SourceCategory
   source_name: str
   section: str = ""
   source_year: Optional[str] = None
   source_id: Optional[str] = None

   @classmethod
   def from_dict(cls, data: dict) -> "Chunk":
      year = data.get("source_year")
      return cls(
         text=str(data.get("text", "")),
         source_category=SourceCategory(data.get("source_category", SourceCategory.STUDY_MATERIAL.value)),
         source_name=str(data.get("source_name", "")),
         section=str(data.get("section", "") or ""),
         source_year=str(year) if year not in (None, "") else None,
         source_id=data.get("source_id") or None,
      )


@dataclass(frozen=True)
class ScoredChunk:
   chunk: Chunk
   source_kind: SourceKind
   score: float
   source_id: Optional[str] = None

   def dedupe_key(self, prefix_chars: int = 80) -> tuple:
      """(source, section, text prefix) identity used by diversity and coverage."""
      return (self.source_id or "none", self.chunk.section, self.chunk.text[:prefix_chars])


@dataclass
class Citation:
   source_category: SourceCategory
   source_name: str
   importance_level: ImportanceLevel
   source_year: Optional[str] = None
   section: Optional[str] = None

   def to_dict(self) -> dict:
      return {
         "source_category": self.source_category.value,
         "source_name": self.source_name,
         "source_year": self.source_year,
         "section": self.section,
         "importance_level": self.importance_level.value,
      }


@dataclass
class ExamLikelihood:
   score: int
   label: ExamLikelihoodLabel


@dataclass
class RetrievalDebugChunk:
   source_name: str
   source_kind: SourceKind
   score: float
   selected: bool


@dataclass
class RetrievalResult:
   """
   Everything downstream consumers need from one retrieval call.

   An empty `selected_chunks` is the single "no material" shape, whether the
   corpus was empty, nothing scored, or the enabled scope was empty.
   """
   selected_chunks: List[ScoredChunk] = field(default_factory=list)
   formatted_context: str = ""
   citations: List[Citation] = field(default_factory=list)
   aggregate_score: float = 0.0
   material_coverage_percent: int = 0
   exam_likelihood: ExamLikelihood = field(
      default_factory=lambda: ExamLikelihood(score=0, label=ExamLikelihoodLabel.LOW)
   )
   top_previous_paper_chunk: Optional[Chunk] = None
   used_video_context: bool = False
   debug_chunks: Optional[List[RetrievalDebugChunk]] = None

   @property
   def has_material(self) -> bool:
      return bool(self.selected_chunks)
