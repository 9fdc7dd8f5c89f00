"""
Cluster geometry: centroids, medoids and simple center-based grouping.

:func:`centroid` and :func:`medoid` are pure functions over point lists of
any dimensionality.  :func:`cluster_items` and :func:`group_by_centers` apply
them to the vectors of a :class:`~kindred.collection.Collection`.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from .errors import VectorLengthError
from .similarity import cosine_batch

if TYPE_CHECKING:
    from .collection import Collection


@dataclass
class ClusterResult:
    """A group of items with its mean point and its most central member."""

    centroid: list[float]
    medoid: list[float]
    member_keys: set[str] = field(default_factory=set)


def _as_matrix(points: Sequence[Sequence[float]]) -> np.ndarray:
    dim = len(points[0])
    for p in points:
        if len(p) != dim:
            raise VectorLengthError(dim, len(p))
    return np.asarray(points, dtype=np.float64).reshape(len(points), dim)


def centroid(points: Sequence[Sequence[float]]) -> list[float] | None:
    """Arithmetic mean of each coordinate, or ``None`` for no points."""
    if not points:
        return None
    return _as_matrix(points).mean(axis=0).tolist()


def medoid(points: Sequence[Sequence[float]]) -> Sequence[float] | None:
    """
    Return the input point with the smallest total Euclidean distance to
    all other points.

    Each unordered pair is measured once and the distance is credited to
    both points.  Ties go to the earliest point.  A single point is
    returned as-is; no points gives ``None``.
    """
    if not points:
        return None
    if len(points) == 1:
        return points[0]

    matrix = _as_matrix(points)
    n = matrix.shape[0]
    totals = np.zeros(n, dtype=np.float64)
    for i in range(n - 1):
        dists = np.linalg.norm(matrix[i + 1 :] - matrix[i], axis=1)
        totals[i] += dists.sum()
        totals[i + 1 :] += dists
    # argmin returns the first index on ties.
    return points[int(np.argmin(totals))]


# ---------------------------------------------------------------------------
# Collection helpers
# ---------------------------------------------------------------------------


def cluster_items(collection: Collection, keys: Sequence[str]) -> ClusterResult | None:
    """
    Summarise the items named by *keys* as one cluster.

    Unknown keys and items without a vector are ignored; ``None`` is
    returned when nothing with a vector remains.
    """
    members = [item for item in collection.get_many(keys) if item.has_vector]
    if not members:
        return None
    points = [item.vector for item in members]
    return ClusterResult(
        centroid=centroid(points),
        medoid=list(medoid(points)),
        member_keys={item.key for item in members},
    )


def group_by_centers(collection: Collection, center_keys: Sequence[str]) -> list[ClusterResult]:
    """
    Assign every vectored item to its most similar center.

    Returns one :class:`ClusterResult` per center that has a vector, in
    *center_keys* order.  Each center is a member of its own group; ties
    between centers go to the earlier one.
    """
    unique_keys = list(dict.fromkeys(center_keys))
    centers = [item for item in collection.get_many(unique_keys) if item.has_vector]
    if not centers:
        return []
    center_matrix = _as_matrix([c.vector for c in centers])

    center_index = {c.key: i for i, c in enumerate(centers)}
    groups: list[list[Sequence[float]]] = [[] for _ in centers]
    member_keys: list[set[str]] = [set() for _ in centers]
    for item in collection.items():
        if not item.has_vector:
            continue
        if item.key in center_index:
            best = center_index[item.key]
            groups[best].append(item.vector)
            member_keys[best].add(item.key)
            continue
        if len(item.vector) != center_matrix.shape[1]:
            raise VectorLengthError(center_matrix.shape[1], len(item.vector))
        scores = cosine_batch(np.asarray(item.vector, dtype=np.float64), center_matrix)
        best = int(np.argmax(scores))
        groups[best].append(item.vector)
        member_keys[best].add(item.key)

    results: list[ClusterResult] = []
    for points, keys in zip(groups, member_keys):
        results.append(
            ClusterResult(centroid=centroid(points), medoid=list(medoid(points)), member_keys=keys)
        )
    return results
