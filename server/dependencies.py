"""FastAPI dependency factories."""

import sys
from functools import lru_cache
from pathlib import Path

_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from fastapi import Depends

from rag.corpus import CorpusAccessor
from server.config import Settings
from server.runtime import Runtime, runtime_from_settings
from server.services.study_service import StudyTools

# Process-wide Runtime cache (keyed by settings identity for override support)
_runtime: Runtime | None = None
_runtime_settings_id: object | None = None


@lru_cache()
def get_settings() -> Settings:
    """Singleton Settings -- override via app.dependency_overrides in tests."""
    return Settings()


def get_runtime(settings: Settings = Depends(get_settings)) -> Runtime:
    """Process-wide Runtime cache for corpus, router and retrieval engine."""
    global _runtime, _runtime_settings_id
    # Recreate if settings were overridden (e.g. in tests)
    if _runtime is None or _runtime_settings_id is not settings:
        _runtime = runtime_from_settings(settings)
        _runtime_settings_id = settings
    return _runtime


def get_corpus(runtime: Runtime = Depends(get_runtime)) -> CorpusAccessor:
    """Cached corpus accessor from Runtime (process-wide)."""
    return runtime.get_corpus()


def get_study_tools(runtime: Runtime = Depends(get_runtime)) -> StudyTools:
    """Router + retrieval engine bundle for the study entry points."""
    return runtime.study_tools()
