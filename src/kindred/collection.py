"""
Collection: an in-memory map of key → :class:`Item` layered on the store.

This is the main entry-point for code that reads and mutates items without
caring how they are persisted.

Usage example::

    from kindred.collection import Collection
    from kindred.fs import LocalFileSystem
    from kindred.store import AppendOnlyStore

    store = AppendOnlyStore(LocalFileSystem("./data"), "notes.ajson")
    notes = Collection(store)
    notes.load()

    notes.update("notes/alice.md", {"content": "Alice prefers Python."})
    notes.set_vector("notes/alice.md", [0.1, 0.7, 0.2])

    for connection in notes.nearest([0.1, 0.6, 0.3], limit=5):
        print(connection.key, connection.score)
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .errors import ItemNotFoundError, VectorDimensionError
from .merge import deep_merge
from .similarity import Connection, nearest
from .store import AppendOnlyStore

logger = logging.getLogger(__name__)

#: Field of ``Item.data`` holding the embedding vector.
VECTOR_FIELD: str = "vec"


# ---------------------------------------------------------------------------
# Item
# ---------------------------------------------------------------------------


@dataclass
class Item:
    """
    One keyed record.

    ``data`` is an arbitrarily nested mapping.  The embedding, when present,
    lives in ``data["vec"]`` so that it is persisted and replayed with the
    rest of the record.  Items never reference their collection.
    """

    key: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def vector(self) -> list[float] | None:
        vec = self.data.get(VECTOR_FIELD)
        return vec if vec else None

    @property
    def has_vector(self) -> bool:
        return self.vector is not None


# ---------------------------------------------------------------------------
# Key filters
# ---------------------------------------------------------------------------


def matches_filter(key: str, opts: Mapping[str, Any] | None = None) -> bool:
    """
    Return ``True`` when *key* passes every filter option in *opts*.

    Exclusions: ``exclude_key``, ``exclude_keys``, ``exclude_key_starts_with``,
    ``exclude_key_starts_with_any``, ``exclude_key_includes``,
    ``exclude_key_includes_any``, ``exclude_key_ends_with``,
    ``exclude_key_ends_with_any``.

    Inclusions: ``key_starts_with``, ``key_starts_with_any``,
    ``key_ends_with``.

    Unknown options are ignored.
    """
    if not opts:
        return True

    exclude_keys = list(opts.get("exclude_keys") or [])
    if opts.get("exclude_key"):
        exclude_keys.append(opts["exclude_key"])
    if key in exclude_keys:
        return False

    prefix = opts.get("exclude_key_starts_with")
    if prefix and key.startswith(prefix):
        return False
    if any(key.startswith(p) for p in opts.get("exclude_key_starts_with_any") or []):
        return False

    fragment = opts.get("exclude_key_includes")
    if fragment and fragment in key:
        return False
    if any(f in key for f in opts.get("exclude_key_includes_any") or []):
        return False

    suffix = opts.get("exclude_key_ends_with")
    if suffix and key.endswith(suffix):
        return False
    if any(key.endswith(s) for s in opts.get("exclude_key_ends_with_any") or []):
        return False

    if opts.get("key_ends_with") and not key.endswith(opts["key_ends_with"]):
        return False
    if opts.get("key_starts_with") and not key.startswith(opts["key_starts_with"]):
        return False
    starts_any = opts.get("key_starts_with_any")
    if starts_any and not any(key.startswith(p) for p in starts_any):
        return False

    return True


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


class Collection:
    """
    Keyed items backed by an :class:`~kindred.store.AppendOnlyStore`.

    Responsibilities
    ----------------
    * **Lifecycle** – create, mutate, queue-for-save and delete items.
      Mutations become store records; the store debounces the flush.
    * **Enumeration** – lazy, restartable iteration in insertion order and
      prefix/suffix key filtering.
    * **Dimensionality** – every vector in one collection has the same
      length, fixed by the first vector seen.

    Parameters
    ----------
    store:
        The append-only store holding this collection's records.
    name:
        Human-readable collection name, used in logs.
    """

    def __init__(self, store: AppendOnlyStore, name: str = "items") -> None:
        self.store = store
        self.name = name
        self._items: dict[str, Item] = {}
        self._dirty: set[str] = set()
        self._replaced: set[str] = set()
        self._dimension: int | None = None

    # ------------------------------------------------------------------
    # Loading / persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Replay the store and rebuild items from its state."""
        self.store.load()
        self._items = {
            key: Item(key=key, data=data if isinstance(data, dict) else {})
            for key, data in self.store.snapshot().items()
        }
        self._dirty.clear()
        self._replaced.clear()
        self._dimension = None
        for item in self._items.values():
            vec = item.vector
            if vec is None:
                continue
            if self._dimension is None:
                self._dimension = len(vec)
            elif len(vec) != self._dimension:
                logger.warning(
                    "%s: vector for %r has %d dimensions, expected %d",
                    self.name,
                    item.key,
                    len(vec),
                    self._dimension,
                )
        logger.info("Loaded %d item(s) into collection %s", len(self._items), self.name)

    def process_save_queue(self) -> int:
        """Queue every dirty item for saving; return how many were queued."""
        keys = [k for k in self._items if k in self._dirty]
        for key in keys:
            self.queue_save(self._items[key])
        return len(keys)

    def flush(self) -> bool:
        """Save dirty items and compact the store immediately."""
        self.process_save_queue()
        return self.store.flush()

    def close(self) -> None:
        self.process_save_queue()
        self.store.close()

    # ------------------------------------------------------------------
    # Item API
    # ------------------------------------------------------------------

    def get(self, key: str) -> Item | None:
        return self._items.get(key)

    def get_many(self, keys: Sequence[str]) -> list[Item]:
        """Return the items for *keys* that exist, in the given order."""
        return [self._items[k] for k in keys if k in self._items]

    def set(self, item: Item) -> Item:
        """
        Insert or replace *item* in memory and mark it dirty.

        Nothing is written until :meth:`queue_save` (or
        :meth:`process_save_queue`) runs.
        """
        self._check_dimension(item.key, item.vector)
        previous = self._items.get(item.key)
        if previous is not None or item.key in self.store:
            self._replaced.add(item.key)
        self._items[item.key] = item
        self._dirty.add(item.key)
        self._track_dimension(item, previous is not None and previous.has_vector)
        return item

    def queue_save(self, item: Item) -> None:
        """Schedule *item*'s current data as a store record."""
        if item.key in self._replaced:
            # Replacement drops keys the old data had.
            self.store.queue_replace(item.key, item.data)
            self._replaced.discard(item.key)
        else:
            self.store.queue_write(item.key, item.data)
        self._dirty.discard(item.key)

    def update(self, key: str, patch: Mapping[str, Any]) -> Item:
        """
        Create *key* or deep-merge *patch* into its data, then queue a save.

        Only *patch* is written to the log, not the whole item.  The item is
        left unchanged when the save is rejected.
        """
        item = self._items.get(key)
        had_vector = item is not None and item.has_vector
        merged = Item(key=key, data=deep_merge(item.data if item is not None else {}, patch))
        self._check_dimension(key, merged.vector)

        if item is not None and (key in self._replaced or key in self._dirty):
            self.queue_save(merged)
        else:
            self.store.queue_write(key, patch)

        if item is None:
            item = merged
            self._items[key] = item
        else:
            item.data = merged.data
        self._track_dimension(item, had_vector)
        return item

    def set_vector(self, key: str, vector: Sequence[float]) -> Item:
        """Attach an embedding to an existing item and queue the change."""
        if key not in self._items:
            raise ItemNotFoundError(key)
        return self.update(key, {VECTOR_FIELD: [float(x) for x in vector]})

    def delete(self, key: str) -> bool:
        """
        Remove *key* from memory and queue a tombstone.

        Returns ``False`` when the key was unknown (a tombstone is still
        queued so a stale record on disk cannot resurrect it).
        """
        previous = self._items.pop(key, None)
        self._dirty.discard(key)
        self._replaced.discard(key)
        self.store.queue_write(key, None)
        if previous is not None and previous.has_vector:
            self._refresh_dimension()
        return previous is not None

    # ------------------------------------------------------------------
    # Enumeration
    # ------------------------------------------------------------------

    def __iter__(self) -> Iterator[Item]:
        return self.items()

    def items(self) -> Iterator[Item]:
        """Lazily yield items in insertion order; each call starts afresh."""
        for key in list(self._items):
            item = self._items.get(key)
            if item is not None:
                yield item

    def keys(self) -> list[str]:
        return list(self._items)

    def filter(self, **opts: Any) -> Iterator[Item]:
        """Lazily yield items whose keys pass :func:`matches_filter`."""
        limit = opts.pop("limit", None)
        count = 0
        for item in self.items():
            if limit is not None and count >= limit:
                return
            if matches_filter(item.key, opts):
                count += 1
                yield item

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    @property
    def dimension(self) -> int | None:
        """Vector length shared by this collection, once any vector exists."""
        return self._dimension

    # ------------------------------------------------------------------
    # Similarity
    # ------------------------------------------------------------------

    def nearest(
        self,
        vector: Sequence[float],
        limit: int = 10,
        filter: Mapping[str, Any] | None = None,  # noqa: A002
    ) -> list[Connection]:
        """Rank vectored items matching *filter* by cosine similarity to *vector*."""
        opts = dict(filter or {})
        limit = opts.pop("limit", limit)
        candidates = (
            (item.key, item.vector) for item in self.items() if matches_filter(item.key, opts)
        )
        return nearest(vector, candidates, limit)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_dimension(self, key: str, vector: Sequence[float] | None) -> None:
        if vector is None or self._dimension is None or len(vector) == self._dimension:
            return
        # The only vectored item may change length.
        if any(item.has_vector for k, item in self._items.items() if k != key):
            raise VectorDimensionError(key, self._dimension, len(vector))

    def _track_dimension(self, item: Item, had_vector: bool) -> None:
        vec = item.vector
        if vec is not None:
            self._dimension = len(vec)
        elif had_vector:
            self._refresh_dimension()

    def _refresh_dimension(self) -> None:
        self._dimension = next((len(i.vector) for i in self._items.values() if i.has_vector), None)

    def __repr__(self) -> str:
        return f"Collection(name={self.name!r}, items={len(self._items)})"
