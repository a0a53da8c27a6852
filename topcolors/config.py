"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from .crawl.fetch import DEFAULT_TIMEOUT
from .pipeline.pool import DEFAULT_QUEUE_DEPTH, DEFAULT_WORKERS


def _default_ledger_path() -> str:
    return str(Path(tempfile.gettempdir()) / "topcolors.db")


@dataclass(frozen=True, slots=True)
class Settings:
    """Defaults for the command-line flags."""

    log_level: str = "INFO"
    ledger_path: str = ""
    workers: int = DEFAULT_WORKERS
    queue_depth: int = DEFAULT_QUEUE_DEPTH
    fetch_timeout: float = DEFAULT_TIMEOUT


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _build_settings() -> Settings:
    return Settings(
        log_level=os.getenv("TOPCOLORS_LOG_LEVEL", "INFO"),
        ledger_path=os.getenv("TOPCOLORS_LEDGER_PATH") or _default_ledger_path(),
        workers=_env_int("TOPCOLORS_WORKERS", DEFAULT_WORKERS),
        queue_depth=_env_int("TOPCOLORS_QUEUE_DEPTH", DEFAULT_QUEUE_DEPTH),
        fetch_timeout=_env_float("TOPCOLORS_FETCH_TIMEOUT", DEFAULT_TIMEOUT),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return _build_settings()
