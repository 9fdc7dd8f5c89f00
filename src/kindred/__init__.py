"""
kindred: an append-only keyed item store with embedding-based related-item
lookup.

Items are persisted as deep-merge records in a single compacting log and
compared by cosine similarity over their embedding vectors.
"""

from .cluster import ClusterResult, centroid, cluster_items, group_by_centers, medoid
from .collection import Collection, Item, matches_filter
from .connections import ConnectionsCache, cache_for, find_connections, fingerprint
from .errors import (
    ItemNotFoundError,
    KindredError,
    RecordEncodeError,
    StoreWriteError,
    VectorDimensionError,
    VectorLengthError,
)
from .fs import FileSystem, LocalFileSystem, MemoryFileSystem
from .merge import MISSING, deep_merge
from .similarity import Connection, cosine_similarity, nearest, trim_by_deviation
from .store import AppendOnlyStore

__all__ = [
    "AppendOnlyStore",
    "ClusterResult",
    "Collection",
    "Connection",
    "ConnectionsCache",
    "FileSystem",
    "Item",
    "ItemNotFoundError",
    "KindredError",
    "LocalFileSystem",
    "MISSING",
    "MemoryFileSystem",
    "RecordEncodeError",
    "StoreWriteError",
    "VectorDimensionError",
    "VectorLengthError",
    "cache_for",
    "centroid",
    "cluster_items",
    "cosine_similarity",
    "deep_merge",
    "find_connections",
    "fingerprint",
    "group_by_centers",
    "matches_filter",
    "medoid",
    "nearest",
    "trim_by_deviation",
]
