from __future__ import annotations

import threading
from typing import Optional

from rag.corpus import CorpusAccessor, JsonlCorpus
from rag.retrieve import RetrievalEngine
from server.config import Settings
from server.services.llm.provider import GeminiProvider, ModelProvider
from server.services.llm.router import ModelRouter, RouterConfig
from server.services.quality_gates import QualityPolicy
from server.services.study_service import StudyTools


class Runtime:
   """
   Process-wide runtime cache for shared collaborators.

   - Corpus: file-backed, scopes loaded lazily => cached
   - Provider + router: one HTTP provider per process
   - Retrieval engine: stateless, built once
   """

   def __init__(self, settings: Settings, provider: Optional[ModelProvider] = None):
      self.settings = settings

      self._corpus_lock = threading.Lock()
      self._router_lock = threading.Lock()

      self._corpus: Optional[CorpusAccessor] = None
      self._provider: Optional[ModelProvider] = provider
      self._router: Optional[ModelRouter] = None
      self._engine = RetrievalEngine()

   # ----------------------------
   # Corpus
   # ----------------------------
   def get_corpus(self) -> CorpusAccessor:
      if self._corpus is not None:
         return self._corpus
      with self._corpus_lock:
         if self._corpus is None:
            self._corpus = JsonlCorpus(self.settings.corpus_root)
      return self._corpus

   def reset_corpus(self) -> None:
      """
      Drop cached scopes, e.g. after re-ingestion.
      """
      with self._corpus_lock:
         self._corpus = None

   # ----------------------------
   # Router
   # ----------------------------
   def get_router(self) -> ModelRouter:
      if self._router is not None:
         return self._router
      with self._router_lock:
         if self._router is None:
            s = self.settings
            provider = self._provider or GeminiProvider(
               api_key=s.gemini_api_key,
               base_url=s.gemini_base_url,
               timeout_s=s.provider_timeout_s,
            )
            config = RouterConfig(
               fast_model=s.fast_model,
               smart_model=s.smart_model,
               quality_policy=QualityPolicy(escalate_on_low_confidence=s.escalate_on_low_confidence),
            )
            self._router = ModelRouter(provider, config)
      return self._router

   # ----------------------------
   # Engine
   # ----------------------------
   def get_engine(self) -> RetrievalEngine:
      return self._engine

   def study_tools(self) -> StudyTools:
      return StudyTools(
         router=self.get_router(),
         engine=self.get_engine(),
         expansion_enabled=self.settings.query_expansion_enabled,
         expansion_timeout_s=self.settings.query_expansion_timeout_s,
      )


def runtime_from_settings(settings: Settings) -> Runtime:
   return Runtime(settings)
