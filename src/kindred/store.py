"""
Append-only log store for keyed records with deep-merge replay.

On disk a collection is a single UTF-8 text log.  Every line is one record::

    "item-key": {"partial": "data"},
    "other-key": null,

A mapping value is deep-merged into the key's current state; ``null`` is a
tombstone that deletes the key.  Records are replayed in file order, so the
last record per key wins.

Compaction rewrites the log as one line per live key holding the key's full
data.  Wrapping a compacted file in ``{`` / ``}`` (after dropping the final
comma) gives a plain JSON object, and because every line ends with a comma
new records can be appended after it without touching the snapshot.
"""

from __future__ import annotations

import copy
import json
import logging
import posixpath
import threading
from collections.abc import Iterable, Mapping
from typing import Any

from .errors import RecordEncodeError, StoreWriteError
from .fs import FileSystem
from .merge import deep_merge, merge_into
from .scheduler import DebouncedTask, TimerFactory

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Seconds of quiet after the last queued write before the log is compacted.
DEFAULT_FLUSH_DELAY: float = 1.0

#: Suffix conventionally used for log files.
LOG_SUFFIX: str = ".ajson"


# ---------------------------------------------------------------------------
# Record codec
# ---------------------------------------------------------------------------


def encode_record(key: str, value: Any) -> str:
    """
    Render one log line (including the trailing comma and newline).

    Raises :class:`~kindred.errors.RecordEncodeError` when *value* is not
    JSON-serialisable.
    """
    try:
        encoded = json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise RecordEncodeError(key, str(exc)) from exc
    return f"{json.dumps(key, ensure_ascii=False)}: {encoded},\n"


def parse_log(raw: str) -> tuple[list[tuple[str, Any]], int]:
    """
    Parse log text into ``(records, skipped)``.

    *records* is the list of ``(key, value)`` pairs in file order.  Lines that
    do not parse (a torn trailing append after a crash, stray garbage) are
    skipped and counted in *skipped*; every intact line is still returned.

    A file may also start with a JSON object snapshot (written by hand or by
    an older tool); its entries come first and any records appended after
    it are replayed on top.
    """
    stripped = raw.strip()
    if not stripped:
        return [], 0

    records: list[tuple[str, Any]] = []
    if stripped.startswith("{"):
        try:
            whole, end = json.JSONDecoder().raw_decode(stripped)
        except ValueError:
            pass
        else:
            if isinstance(whole, dict):
                records.extend(whole.items())
                stripped = stripped[end:].lstrip().lstrip(",")

    skipped = 0
    # Only "\n" ends a record: JSON strings may hold U+2028 and friends,
    # which str.splitlines() would also split on.
    for lineno, line in enumerate(stripped.split("\n"), 1):
        line = line.strip()
        if not line:
            continue
        try:
            parsed = json.loads("{" + line.rstrip(",") + "}")
        except ValueError:
            logger.warning("Skipping malformed log record on line %d: %.80s", lineno, line)
            skipped += 1
            continue
        records.extend(parsed.items())
    return records, skipped


def apply_record(state: dict[str, Any], key: str, value: Any) -> None:
    """Replay one record into *state* in place."""
    if value is None:
        state.pop(key, None)
        return
    current = state.get(key)
    if isinstance(value, Mapping) and isinstance(current, dict):
        merge_into(current, value)
    else:
        state[key] = deep_merge(None, value)


def replay(records: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    """Fold *records* through :func:`apply_record` starting from empty state."""
    state: dict[str, Any] = {}
    for key, value in records:
        apply_record(state, key, value)
    return state


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class AppendOnlyStore:
    """
    Keyed records persisted as an append-only, periodically compacted log.

    The in-memory map is the source of truth between flushes.
    :meth:`queue_write` updates it immediately and arms a debounced flush;
    the flush writes a compacted snapshot of whatever the map holds when it
    runs.  A burst of writes inside *flush_delay* seconds produces one flush.

    Parameters
    ----------
    fs:
        Filesystem capability the log lives on.
    path:
        Log path on *fs*.
    flush_delay:
        Debounce window in seconds.
    timer_factory:
        Timer factory for the debounced flush (see
        :class:`kindred.scheduler.DebouncedTask`).
    """

    def __init__(
        self,
        fs: FileSystem,
        path: str,
        flush_delay: float = DEFAULT_FLUSH_DELAY,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        self.fs = fs
        self.path = path
        self._lock = threading.RLock()
        self._state: dict[str, Any] = {}
        # Encoded log lines not yet appended to or compacted into the log.
        self._pending: list[str] = []
        self._flushing = False
        self._flush_requested = False
        self._task = DebouncedTask(self._flush_from_timer, flush_delay, timer_factory)
        self.skipped_records = 0

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> None:
        """
        Rebuild in-memory state by replaying the log.

        A missing or unreadable log is not an error: the store starts empty
        and tries to create the storage location so later flushes succeed.
        """
        try:
            raw = self.fs.read(self.path)
        except FileNotFoundError:
            logger.info("No log at %s; starting with an empty collection", self.path)
            raw = None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Unreadable log at %s (%s); starting with an empty collection", self.path, exc)
            raw = None

        if raw is None:
            records: list[tuple[str, Any]] = []
            skipped = 0
            self._init_storage()
        else:
            records, skipped = parse_log(raw)

        state = replay(records)
        with self._lock:
            self._state = state
            self._pending.clear()
            self.skipped_records = skipped
        logger.debug(
            "Loaded %d record(s) into %d key(s) from %s (%d skipped)",
            len(records),
            len(state),
            self.path,
            skipped,
        )

    def _init_storage(self) -> None:
        directory = posixpath.dirname(self.path)
        try:
            if directory:
                self.fs.mkdir(directory)
            if not self.fs.exists(self.path):
                self.fs.write(self.path, "")
        except OSError as exc:
            logger.warning("Could not initialise storage at %s: %s", self.path, exc)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        """Return a copy of the current data for *key*, or ``None``."""
        with self._lock:
            return copy.deepcopy(self._state.get(key))

    def snapshot(self) -> dict[str, Any]:
        """Return a deep copy of the whole in-memory state."""
        with self._lock:
            return copy.deepcopy(self._state)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._state)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._state

    def __len__(self) -> int:
        with self._lock:
            return len(self._state)

    @property
    def dirty(self) -> bool:
        """``True`` when queued records have not reached durable storage."""
        with self._lock:
            return bool(self._pending)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def queue_write(self, key: str, patch: Any) -> None:
        """
        Queue one record: merge *patch* into *key* (``None`` deletes it).

        The in-memory state changes immediately; durable storage changes on
        the next flush.  Data that cannot be written as JSON is rejected
        with :class:`~kindred.errors.RecordEncodeError` before anything
        changes.
        """
        line = encode_record(key, patch)
        with self._lock:
            apply_record(self._state, key, patch)
            self._pending.append(line)
        self._task.schedule()

    def queue_replace(self, key: str, data: Any) -> None:
        """
        Queue a tombstone for *key* followed by *data*.

        Replay then yields exactly *data*, without fields the old record had.
        Both records are validated before either is queued.
        """
        lines = [encode_record(key, None), encode_record(key, data)]
        with self._lock:
            apply_record(self._state, key, None)
            apply_record(self._state, key, data)
            self._pending.extend(lines)
        self._task.schedule()

    def flush(self) -> bool:
        """
        Compact the log to a snapshot of the current in-memory state.

        Returns ``False`` without writing when another flush is already in
        progress; that flush re-runs once it finishes so the request is not
        lost.

        Raises
        ------
        StoreWriteError
            The filesystem write failed.  Pending records are kept, the
            in-memory state stays authoritative, and a flush requested
            during the failed write is still scheduled.
        """
        with self._lock:
            if self._flushing:
                self._flush_requested = True
                logger.debug("Flush of %s already running; deferring", self.path)
                return False
            payload = "".join(encode_record(k, v) for k, v in self._state.items())
            flushed = len(self._pending)
            live = len(self._state)
            self._flushing = True

        try:
            self.fs.write(self.path, payload)
        except OSError as exc:
            with self._lock:
                self._flushing = False
                rerun = self._flush_requested
                self._flush_requested = False
            if rerun:
                self._task.schedule()
            raise StoreWriteError(f"Failed to write {self.path}: {exc}") from exc

        with self._lock:
            # Records queued while the write was running stay pending.
            del self._pending[:flushed]
            self._flushing = False
            rerun = self._flush_requested
            self._flush_requested = False

        logger.info("Compacted %s: %d key(s), %d queued record(s) folded in", self.path, live, flushed)
        if rerun:
            self._task.schedule()
        return True

    def append_pending(self) -> int:
        """
        Append queued records to the log without compacting it.

        Returns the number of records written.
        """
        with self._lock:
            lines = list(self._pending)
        if not lines:
            return 0
        try:
            self.fs.append(self.path, "".join(lines))
        except OSError as exc:
            raise StoreWriteError(f"Failed to append to {self.path}: {exc}") from exc
        with self._lock:
            del self._pending[: len(lines)]
        return len(lines)

    def close(self) -> None:
        """Cancel the pending debounce timer and flush anything still queued."""
        self._task.cancel()
        if self.dirty:
            self.flush()

    def _flush_from_timer(self) -> None:
        try:
            self.flush()
        except StoreWriteError:
            # The next queue_write re-arms the timer.
            logger.exception("Debounced flush of %s failed", self.path)
