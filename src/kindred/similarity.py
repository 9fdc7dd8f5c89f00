"""
Vector similarity: cosine scoring, nearest-neighbour ranking and an adaptive
cutoff for ranked result lists.

These utilities sit underneath the collection and connections layers:
  - Cosine similarity with a guard for near-zero vectors
  - Exact nearest-neighbour ranking over (key, vector) candidates
  - A standard-deviation cutoff that trims a ranked list at its first large
    score gap
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import NamedTuple

import numpy as np

from .errors import VectorLengthError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Vectors with a magnitude below this have no meaningful direction; any
#: similarity involving one is reported as 0.
EPSILON: float = 1e-8

#: Threshold multiplier applied when one of the first few gaps exceeds the
#: standard deviation, so close top results are not cut too early.
EARLY_GAP_TOLERANCE: float = 1.5

#: Number of leading transitions that get the relaxed threshold.
EARLY_GAP_COUNT: int = 3


class Connection(NamedTuple):
    """A ranked neighbour: the item key and its similarity score."""

    key: str
    score: float


# ---------------------------------------------------------------------------
# Cosine similarity
# ---------------------------------------------------------------------------


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Return the cosine similarity of *a* and *b* in ``[-1, 1]``.

    Raises :class:`~kindred.errors.VectorLengthError` when the lengths
    differ.  Returns ``0.0`` when either vector's magnitude is below
    :data:`EPSILON`.
    """
    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()
    if va.size != vb.size:
        raise VectorLengthError(va.size, vb.size)

    sq_a = float(np.dot(va, va))
    sq_b = float(np.dot(vb, vb))
    if np.sqrt(sq_a) < EPSILON or np.sqrt(sq_b) < EPSILON:
        return 0.0
    sim = float(np.dot(va, vb)) / float(np.sqrt(sq_a * sq_b))
    return float(np.clip(sim, -1.0, 1.0))


def cosine_batch(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine of *query* against every row of *matrix* (zero rows score 0)."""
    q_norm = float(np.linalg.norm(query))
    row_norms = np.linalg.norm(matrix, axis=1)
    scores = np.zeros(matrix.shape[0], dtype=np.float64)
    if q_norm < EPSILON:
        return scores
    valid = row_norms >= EPSILON
    scores[valid] = (matrix[valid] @ query) / (row_norms[valid] * q_norm)
    return np.clip(scores, -1.0, 1.0)


# ---------------------------------------------------------------------------
# Nearest neighbours
# ---------------------------------------------------------------------------


def nearest(
    query_vector: Sequence[float],
    candidates: Iterable[tuple[str, Sequence[float] | None]],
    limit: int = 10,
) -> list[Connection]:
    """
    Rank *candidates* by cosine similarity to *query_vector*.

    *candidates* yields ``(key, vector)`` pairs; pairs without a vector are
    skipped.  Results are sorted by descending score, equal scores keep
    their enumeration order, and at most *limit* are returned.

    Raises :class:`~kindred.errors.VectorLengthError` if a candidate vector
    has a different length from the query.
    """
    query = np.asarray(query_vector, dtype=np.float64).ravel()
    keys: list[str] = []
    rows: list[Sequence[float]] = []
    for key, vector in candidates:
        if vector is None or len(vector) == 0:
            continue
        if len(vector) != query.size:
            raise VectorLengthError(query.size, len(vector))
        keys.append(key)
        rows.append(vector)

    if not rows or limit <= 0:
        return []

    scores = cosine_batch(query, np.asarray(rows, dtype=np.float64))
    order = np.argsort(-scores, kind="stable")[:limit]
    return [Connection(keys[i], float(scores[i])) for i in order]


# ---------------------------------------------------------------------------
# Adaptive cutoff
# ---------------------------------------------------------------------------


def trim_by_deviation(ranked: Sequence[Connection]) -> list[Connection]:
    """
    Cut a score-descending list at its first gap wider than the score spread.

    The threshold starts at the population standard deviation of all
    scores.  Walking adjacent pairs, a gap above the threshold inside the
    first :data:`EARLY_GAP_COUNT` transitions multiplies the threshold by
    :data:`EARLY_GAP_TOLERANCE` and the walk continues; any later gap above
    the threshold ends the list.  The item before the gap is kept.
    """
    if not ranked:
        return []

    scores = np.asarray([c.score for c in ranked], dtype=np.float64)
    threshold = float(np.std(scores))

    cut = len(ranked)
    for i in range(len(ranked) - 1):
        gap = abs(float(scores[i + 1] - scores[i]))
        if gap <= threshold:
            continue
        if i < EARLY_GAP_COUNT:
            threshold *= EARLY_GAP_TOLERANCE
            continue
        cut = i + 1
        break
    return list(ranked[:cut])
