"""
Runtime configuration resolved from environment variables.

Environment variables:
    KINDRED_DATA_DIR     - directory holding collection logs (default: ~/.cache/kindred)
    KINDRED_COLLECTION   - collection name; the log is <name>.ajson (default: items)
    KINDRED_MODEL        - sentence-transformers model (default: all-MiniLM-L6-v2)
    KINDRED_FLUSH_DELAY  - debounce window in seconds before compaction (default: 1.0)
    KINDRED_LOG_LEVEL    - logging level name (default: WARNING)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from .collection import Collection
from .embed import DEFAULT_MODEL
from .fs import LocalFileSystem
from .scheduler import TimerFactory
from .store import DEFAULT_FLUSH_DELAY, LOG_SUFFIX, AppendOnlyStore

logger = logging.getLogger(__name__)

_DEFAULT_DATA_DIR = str(Path.home() / ".cache" / "kindred")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number", name, raw)
        return default


@dataclass(frozen=True)
class Settings:
    data_dir: str = _DEFAULT_DATA_DIR
    collection: str = "items"
    model: str = DEFAULT_MODEL
    flush_delay: float = DEFAULT_FLUSH_DELAY
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, **overrides: object) -> Settings:
        """Build settings from the environment; non-``None`` *overrides* win."""
        settings = cls(
            data_dir=os.environ.get("KINDRED_DATA_DIR", _DEFAULT_DATA_DIR),
            collection=os.environ.get("KINDRED_COLLECTION", "items"),
            model=os.environ.get("KINDRED_MODEL", DEFAULT_MODEL),
            flush_delay=_env_float("KINDRED_FLUSH_DELAY", DEFAULT_FLUSH_DELAY),
            log_level=os.environ.get("KINDRED_LOG_LEVEL", "WARNING"),
        )
        return replace(settings, **{k: v for k, v in overrides.items() if v is not None})

    @property
    def log_path(self) -> str:
        """Log file name relative to :attr:`data_dir`."""
        return f"{self.collection}{LOG_SUFFIX}"


def open_collection(settings: Settings, timer_factory: TimerFactory | None = None) -> Collection:
    """Wire a local filesystem, store and collection for *settings* and load it."""
    store = AppendOnlyStore(
        LocalFileSystem(settings.data_dir),
        settings.log_path,
        flush_delay=settings.flush_delay,
        timer_factory=timer_factory,
    )
    collection = Collection(store, name=settings.collection)
    collection.load()
    return collection
