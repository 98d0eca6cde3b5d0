"""Environment-driven engine configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OPENAI_TIMEOUT = 30.0
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_SESSION_DEADLINE = 60.0
DEFAULT_SEARCH_WORKERS = 4

_DATA_ROOT = Path(__file__).resolve().parent / "data"


def default_taxonomy_path() -> Path:
    return _DATA_ROOT / "taxonomy" / "hts_sample.jsonl"


def default_programs_path() -> Path:
    return _DATA_ROOT / "programs" / "programs.json"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


@dataclass(frozen=True)
class EngineSettings:
    """Resolved configuration for a :class:`ClassificationEngine`."""

    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_OPENAI_MODEL
    openai_timeout: float = DEFAULT_OPENAI_TIMEOUT
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    session_deadline: float = DEFAULT_SESSION_DEADLINE
    search_workers: int = DEFAULT_SEARCH_WORKERS
    taxonomy_path: Path = default_taxonomy_path()
    programs_path: Path = default_programs_path()
    redis_url: Optional[str] = None
    oracle: str = "heuristic"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        api_key = os.getenv("OPENAI_API_KEY") or None
        oracle = (os.getenv("TARIFFSENSE_ORACLE") or ("openai" if api_key else "heuristic")).lower()
        if oracle not in {"openai", "heuristic"}:
            logger.warning("Unknown TARIFFSENSE_ORACLE=%r; using heuristic oracle", oracle)
            oracle = "heuristic"
        taxonomy = os.getenv("TARIFFSENSE_TAXONOMY_PATH")
        programs = os.getenv("TARIFFSENSE_PROGRAMS_PATH")
        return cls(
            openai_api_key=api_key,
            openai_model=os.getenv("OPENAI_CHAT_MODEL", DEFAULT_OPENAI_MODEL),
            openai_timeout=_env_float("OPENAI_TIMEOUT", DEFAULT_OPENAI_TIMEOUT),
            retry_attempts=max(1, _env_int("LLM_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS)),
            session_deadline=_env_float("TARIFFSENSE_SESSION_DEADLINE", DEFAULT_SESSION_DEADLINE),
            search_workers=max(1, _env_int("TARIFFSENSE_SEARCH_WORKERS", DEFAULT_SEARCH_WORKERS)),
            taxonomy_path=Path(taxonomy) if taxonomy else default_taxonomy_path(),
            programs_path=Path(programs) if programs else default_programs_path(),
            redis_url=os.getenv("REDIS_URL") or None,
            oracle=oracle,
        )

    def with_overrides(self, **changes: object) -> "EngineSettings":
        return replace(self, **changes)
