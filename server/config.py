"""Configuration for the KalExam study API server."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from server.services.llm.provider import GEMINI_BASE_URL
from server.services.llm.router import FAST_MODEL, SMART_MODEL


@dataclass
class Settings:
    """
    Paths, model names and provider limits the server needs.

    Defaults resolve relative to the project root.
    Every field is overridable at construction for testing.
    """
    corpus_root: Optional[Path] = None

    # Managed provider (Gemini)
    gemini_api_key: Optional[str] = None
    gemini_base_url: str = GEMINI_BASE_URL
    fast_model: str = FAST_MODEL
    smart_model: str = SMART_MODEL
    provider_timeout_s: float = 60.0

    # Retrieval
    query_expansion_enabled: bool = True
    query_expansion_timeout_s: float = 3.0

    # Quality gate
    escalate_on_low_confidence: bool = True

    cors_origins: str = "http://localhost:3000"

    def __post_init__(self):
        project_root = Path(__file__).resolve().parent.parent

        if self.corpus_root is None:
            env_root = os.environ.get("CORPUS_ROOT")
            self.corpus_root = Path(env_root) if env_root else project_root / "corpus"
        self.corpus_root = Path(self.corpus_root)

        if self.gemini_api_key is None:
            self.gemini_api_key = os.environ.get("GEMINI_API_KEY") or None
        if os.environ.get("GEMINI_BASE_URL"):
            self.gemini_base_url = os.environ["GEMINI_BASE_URL"]
        if os.environ.get("FAST_MODEL"):
            self.fast_model = os.environ["FAST_MODEL"]
        if os.environ.get("SMART_MODEL"):
            self.smart_model = os.environ["SMART_MODEL"]
        if os.environ.get("CORS_ORIGINS"):
            self.cors_origins = os.environ["CORS_ORIGINS"]

        env_timeout = os.environ.get("PROVIDER_TIMEOUT_S")
        if env_timeout is not None:
            try:
                self.provider_timeout_s = float(env_timeout)
            except ValueError:
                pass
        env_expansion_timeout = os.environ.get("QUERY_EXPANSION_TIMEOUT_S")
        if env_expansion_timeout is not None:
            try:
                self.query_expansion_timeout_s = float(env_expansion_timeout)
            except ValueError:
                pass

        if os.environ.get("QUERY_EXPANSION_ENABLED", "").lower() in ("0", "false", "no"):
            self.query_expansion_enabled = False
        if os.environ.get("ESCALATE_ON_LOW_CONFIDENCE", "").lower() in ("0", "false", "no"):
            self.escalate_on_low_confidence = False
