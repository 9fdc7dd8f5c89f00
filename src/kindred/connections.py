"""
Connections: cached nearest-neighbour lookups for items already in a
collection.

Results are memoised per *fingerprint*, the source item key plus a hash of
the query parameters, so repeated "what is related to X?" lookups with the
same options compute once.  The cache never expires on its own; callers
invalidate it when vectors change.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import weakref
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from .collection import Collection
from .errors import ItemNotFoundError
from .similarity import Connection, trim_by_deviation

logger = logging.getLogger(__name__)

#: Default number of connections returned by :func:`find_connections`.
DEFAULT_LIMIT: int = 50

# Parameters that carry the query vector, never part of a fingerprint.
_VECTOR_PARAMS = frozenset({"vector", "vec", "query_vector"})


def fingerprint(key: str, params: Mapping[str, Any] | None = None) -> str:
    """Return ``"<key>:<sha256 of canonical params>"``."""
    effective = {k: v for k, v in (params or {}).items() if k not in _VECTOR_PARAMS}
    canonical = json.dumps(effective, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{key}:{digest}"


class ConnectionsCache:
    """
    At most one computed result set per fingerprint until invalidated.

    The returned lists are shared; callers must not mutate them.
    """

    def __init__(self) -> None:
        self._results: dict[str, list[Connection]] = {}
        self._lock = threading.RLock()

    def get_or_compute(self, fp: str, compute_fn: Callable[[], list[Connection]]) -> list[Connection]:
        with self._lock:
            if fp in self._results:
                return self._results[fp]
            result = compute_fn()
            self._results[fp] = result
            return result

    def invalidate(self, fp: str) -> bool:
        """Drop one fingerprint; ``True`` if it was cached."""
        with self._lock:
            return self._results.pop(fp, None) is not None

    def invalidate_key(self, item_key: str) -> int:
        """Drop every fingerprint computed for *item_key*."""
        with self._lock:
            stale = [fp for fp in self._results if fp.rpartition(":")[0] == item_key]
            for fp in stale:
                del self._results[fp]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._results.clear()

    def __contains__(self, fp: object) -> bool:
        return fp in self._results

    def __len__(self) -> int:
        return len(self._results)


_CACHES: weakref.WeakKeyDictionary[Collection, ConnectionsCache] = weakref.WeakKeyDictionary()
_CACHES_LOCK = threading.Lock()


def cache_for(collection: Collection) -> ConnectionsCache:
    """Return the process-wide cache belonging to *collection*."""
    with _CACHES_LOCK:
        cache = _CACHES.get(collection)
        if cache is None:
            cache = ConnectionsCache()
            _CACHES[collection] = cache
        return cache


def _as_list(value: str | Sequence[str] | None) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return list(value)


def prepare_filter(
    key: str,
    filter: Mapping[str, Any] | None = None,  # noqa: A002
    include_filter: str | Sequence[str] | None = None,
    exclude_filter: str | Sequence[str] | None = None,
) -> dict[str, Any]:
    """
    Build key-filter options for a connections lookup.

    The source item (and anything keyed below it) is always excluded.
    *include_filter* / *exclude_filter* are prefixes, given as a list or a
    comma-separated string.
    """
    opts = dict(filter or {})
    excludes = [key] + list(opts.pop("exclude_key_starts_with_any", None) or [])
    if opts.get("exclude_key_starts_with"):
        excludes.append(opts.pop("exclude_key_starts_with"))
    excludes.extend(_as_list(exclude_filter))
    opts["exclude_key_starts_with_any"] = excludes

    includes = _as_list(include_filter)
    if includes:
        opts["key_starts_with_any"] = list(opts.get("key_starts_with_any") or []) + includes
    return opts


def find_connections(
    collection: Collection,
    key: str,
    limit: int = DEFAULT_LIMIT,
    filter: Mapping[str, Any] | None = None,  # noqa: A002
    include_filter: str | Sequence[str] | None = None,
    exclude_filter: str | Sequence[str] | None = None,
    trim: bool = False,
    cache: ConnectionsCache | None = None,
) -> list[Connection]:
    """
    Return up to *limit* items most similar to *key*.

    The full ranked list is cached per fingerprint (``limit`` is not part of
    it), so asking again with a different limit reuses the computation.
    With *trim* the list is cut by :func:`~kindred.similarity.trim_by_deviation`
    before caching.

    Raises :class:`~kindred.errors.ItemNotFoundError` for an unknown key.
    An item without a vector has no connections.
    """
    item = collection.get(key)
    if item is None:
        raise ItemNotFoundError(key)
    if not item.has_vector:
        logger.debug("Item %r has no vector; no connections", key)
        return []

    params = {
        "filter": dict(filter or {}),
        "include_filter": _as_list(include_filter),
        "exclude_filter": _as_list(exclude_filter),
        "trim": trim,
    }
    fp = fingerprint(key, params)
    cache = cache if cache is not None else cache_for(collection)

    def compute() -> list[Connection]:
        opts = prepare_filter(key, filter, include_filter, exclude_filter)
        opts.pop("limit", None)
        ranked = collection.nearest(item.vector, limit=max(len(collection), 1), filter=opts)
        if trim:
            ranked = trim_by_deviation(ranked)
        logger.debug("Computed %d connection(s) for %r", len(ranked), key)
        return ranked

    return cache.get_or_compute(fp, compute)[:limit]
