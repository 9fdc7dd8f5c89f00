"""
Debounced scheduled task.

A :class:`DebouncedTask` owns at most one pending timer.  Every call to
:meth:`DebouncedTask.schedule` cancels the pending timer (if any) and starts a
new one, so a burst of requests inside the delay window runs the callback
once, after the burst goes quiet.

The timer implementation is injectable; tests pass a manual timer factory so
nothing depends on wall-clock time.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], Any]], TimerHandle]


def thread_timer(delay: float, callback: Callable[[], Any]) -> TimerHandle:
    """Default timer factory: a daemon :class:`threading.Timer`."""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


class DebouncedTask:
    """
    Run *callback* once *delay* seconds after the most recent :meth:`schedule`.

    Parameters
    ----------
    callback:
        Zero-argument callable to run when the timer fires.
    delay:
        Quiet period in seconds.
    timer_factory:
        ``(delay, fn) -> handle`` with ``start()`` / ``cancel()``.  Defaults to
        :func:`thread_timer`.
    """

    def __init__(
        self,
        callback: Callable[[], Any],
        delay: float,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        self._callback = callback
        self.delay = delay
        self._timer_factory = timer_factory or thread_timer
        self._lock = threading.Lock()
        self._handle: TimerHandle | None = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        """``True`` while a timer is armed and has not fired yet."""
        return self._handle is not None

    def schedule(self, delay: float | None = None) -> None:
        """Cancel any pending run and arm a fresh timer."""
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._generation += 1
            generation = self._generation
            handle = self._timer_factory(
                self.delay if delay is None else delay,
                lambda: self._fire(generation),
            )
            self._handle = handle
        handle.start()

    def cancel(self) -> None:
        """Disarm the pending timer, if any."""
        with self._lock:
            self._generation += 1
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None

    def _fire(self, generation: int) -> None:
        with self._lock:
            # A timer cancelled after it already started firing is stale.
            if generation != self._generation:
                return
            self._handle = None
        logger.debug("Debounced task firing: %s", getattr(self._callback, "__name__", self._callback))
        self._callback()
