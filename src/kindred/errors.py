"""
Exception hierarchy for kindred.

Every error raised on purpose by the package derives from
:class:`KindredError`; each also inherits the closest built-in exception so
callers that already catch ``ValueError`` / ``KeyError`` / ``OSError`` keep
working.
"""

from __future__ import annotations


class KindredError(Exception):
    """Base class for all kindred errors."""


class VectorLengthError(KindredError, ValueError):
    """Two vectors that must be compared have different lengths."""

    def __init__(self, left: int, right: int) -> None:
        super().__init__(f"Vectors must have the same length (got {left} and {right})")
        self.left = left
        self.right = right


class VectorDimensionError(KindredError, ValueError):
    """A vector does not match the dimensionality of its collection."""

    def __init__(self, key: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Vector for {key!r} has {actual} dimensions; collection uses {expected}"
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class StoreWriteError(KindredError, OSError):
    """Persisting the append-only log failed."""


class RecordEncodeError(KindredError, TypeError):
    """A record's data cannot be serialised to JSON."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Data for {key!r} is not JSON-serialisable: {reason}")
        self.key = key


class ItemNotFoundError(KindredError, KeyError):
    """An operation needed an item that is not in the collection."""

    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"Item not found: {self.key!r}"
