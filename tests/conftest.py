"""
Shared pytest fixtures for kindred tests.

Uses the in-memory filesystem, a manual timer factory so debounced flushes
fire only when a test says so, and a deterministic fake embedding function
so that tests run fast without downloading any ML models.
"""

from __future__ import annotations

import hashlib
from typing import Callable

import pytest

from kindred.collection import Collection
from kindred.fs import MemoryFileSystem
from kindred.store import AppendOnlyStore


class ManualTimer:
    """Timer handle that only fires when :meth:`fire` is called."""

    def __init__(self, delay: float, callback: Callable[[], object]) -> None:
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.callback()


class ManualTimers:
    """Timer factory recording every timer it creates."""

    def __init__(self) -> None:
        self.created: list[ManualTimer] = []

    def __call__(self, delay: float, callback: Callable[[], object]) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.created.append(timer)
        return timer

    @property
    def armed(self) -> list[ManualTimer]:
        return [t for t in self.created if t.started and not t.cancelled and not t.fired]

    def fire_all(self) -> int:
        """Fire every armed timer (including ones armed while firing)."""
        count = 0
        while self.armed:
            for timer in self.armed:
                timer.fire()
                count += 1
        return count


class FakeEmbeddingFunction:
    """
    Deterministic embedding function that maps text to a unit vector
    derived from its MD5 hash.  Fast and reproducible – no model download.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def name(self) -> str:
        return "fake-md5-embedding"

    def __call__(self, input: list[str]) -> list[list[float]]:  # noqa: A002
        self.calls.append(list(input))
        embeddings = []
        for text in input:
            digest = hashlib.md5(text.encode()).digest()
            # 16-byte digest → 16-dim float vector in [-1, 1]
            vec = [(b - 128) / 128.0 for b in digest]
            norm = sum(x * x for x in vec) ** 0.5 or 1.0
            embeddings.append([x / norm for x in vec])
        return embeddings


LOG_PATH = "data/items.ajson"


@pytest.fixture()
def memory_fs() -> MemoryFileSystem:
    return MemoryFileSystem()


@pytest.fixture()
def timers() -> ManualTimers:
    return ManualTimers()


@pytest.fixture()
def store(memory_fs: MemoryFileSystem, timers: ManualTimers) -> AppendOnlyStore:
    """Loaded, empty store on the in-memory filesystem."""
    s = AppendOnlyStore(memory_fs, LOG_PATH, flush_delay=0.5, timer_factory=timers)
    s.load()
    return s


@pytest.fixture()
def collection(store: AppendOnlyStore) -> Collection:
    c = Collection(store, name="test")
    c.load()
    return c


@pytest.fixture()
def fake_embedder() -> FakeEmbeddingFunction:
    return FakeEmbeddingFunction()
