"""
Deep merge of nested mappings.

The rules mirror how log records are replayed:

  - mapping + mapping merges recursively, key by key
  - anything else in the patch replaces the base value outright, including
    lists (never concatenated or merged element-wise) and an explicit
    ``None`` (which overwrites the slot)
  - an empty mapping in the patch leaves the existing mapping untouched,
    while an empty list or scalar replaces it
  - a ``None`` patch deletes the whole record; an omitted patch is a no-op

:func:`deep_merge` returns a fresh structure and never mutates its inputs.
:func:`merge_into` is the in-place variant for structures the caller owns.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, MutableMapping
from typing import Any


class _Missing:
    """Sentinel type for an absent patch (distinct from ``None``)."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


#: Marker for "no patch supplied".  ``deep_merge(base, MISSING)`` is ``base``.
MISSING: Any = _Missing()


def deep_merge(base: Any, patch: Any = MISSING) -> Any:
    """
    Merge *patch* into a copy of *base* and return the result.

    Neither argument is modified and the result shares no mutable containers
    with either of them.
    """
    if patch is MISSING:
        return copy.deepcopy(base)
    if patch is None:
        return None
    if not isinstance(patch, Mapping):
        return copy.deepcopy(patch)

    merged: dict[str, Any] = copy.deepcopy(dict(base)) if isinstance(base, Mapping) else {}
    merge_into(merged, patch)
    return merged


def merge_into(target: MutableMapping[str, Any], patch: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    Merge *patch* into *target* in place and return *target*.

    Values copied from *patch* are deep-copied so later edits to the patch
    cannot leak into *target*.
    """
    for key, value in patch.items():
        existing = target.get(key, MISSING)
        if isinstance(value, Mapping) and isinstance(existing, MutableMapping):
            merge_into(existing, value)
        elif isinstance(value, Mapping):
            target[key] = merge_into({}, value)
        else:
            target[key] = copy.deepcopy(value)
    return target
