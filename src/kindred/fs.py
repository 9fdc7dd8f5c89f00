"""
Filesystem capability consumed by the append-only store.

The store only needs a handful of blob operations, described by the
:class:`FileSystem` protocol.  Two variants ship with the package:

* :class:`LocalFileSystem` – real files under a root directory.  ``write``
  is atomic (temp file + rename) so a crash never leaves a half-written log.
* :class:`MemoryFileSystem` – a dict of path → bytes, used by tests and for
  throw-away collections.

Paths are ``/``-separated strings relative to the filesystem root.
"""

from __future__ import annotations

import os
import posixpath
from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class FileSystem(Protocol):
    """Minimal blob storage used by :class:`kindred.store.AppendOnlyStore`."""

    def read(self, path: str) -> str: ...

    def write(self, path: str, data: str) -> None: ...

    def append(self, path: str, data: str) -> None: ...

    def mkdir(self, path: str) -> None: ...

    def list(self, path: str) -> list[str]: ...

    def exists(self, path: str) -> bool: ...

    def remove(self, path: str) -> None: ...


# ---------------------------------------------------------------------------
# Local disk
# ---------------------------------------------------------------------------


class LocalFileSystem:
    """
    Files on disk below *root*.

    Text is always UTF-8.  ``read`` raises ``FileNotFoundError`` for missing
    files and ``UnicodeDecodeError`` for undecodable ones; the store treats
    both as recoverable.
    """

    def __init__(self, root: str | os.PathLike[str] = ".") -> None:
        self.root = Path(root).expanduser()

    def _resolve(self, path: str) -> Path:
        return self.root / path

    def read(self, path: str) -> str:
        return self._resolve(path).read_text(encoding="utf-8")

    def write(self, path: str, data: str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        # Atomic rename keeps readers from ever seeing a partial file.
        os.replace(tmp, target)

    def append(self, path: str, data: str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "a", encoding="utf-8") as f:
            f.write(data)

    def mkdir(self, path: str) -> None:
        self._resolve(path).mkdir(parents=True, exist_ok=True)

    def list(self, path: str) -> list[str]:
        directory = self._resolve(path)
        if not directory.is_dir():
            return []
        return sorted(p.name for p in directory.iterdir())

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def remove(self, path: str) -> None:
        self._resolve(path).unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# In memory
# ---------------------------------------------------------------------------


class MemoryFileSystem:
    """Dict-backed filesystem; files are stored as raw bytes."""

    def __init__(self, files: dict[str, bytes] | None = None) -> None:
        self.files: dict[str, bytes] = dict(files or {})
        self.dirs: set[str] = {""}

    @staticmethod
    def _norm(path: str) -> str:
        norm = posixpath.normpath(path).lstrip("/")
        return "" if norm == "." else norm

    def read(self, path: str) -> str:
        key = self._norm(path)
        if key not in self.files:
            raise FileNotFoundError(path)
        return self.files[key].decode("utf-8")

    def write(self, path: str, data: str) -> None:
        key = self._norm(path)
        self.mkdir(posixpath.dirname(key))
        self.files[key] = data.encode("utf-8")

    def append(self, path: str, data: str) -> None:
        key = self._norm(path)
        self.mkdir(posixpath.dirname(key))
        self.files[key] = self.files.get(key, b"") + data.encode("utf-8")

    def mkdir(self, path: str) -> None:
        key = self._norm(path)
        while key:
            self.dirs.add(key)
            key = posixpath.dirname(key)

    def list(self, path: str) -> list[str]:
        key = self._norm(path)
        names = set()
        for entry in list(self.files) + list(self.dirs):
            if entry and posixpath.dirname(entry) == key:
                names.add(posixpath.basename(entry))
        return sorted(names)

    def exists(self, path: str) -> bool:
        key = self._norm(path)
        return key in self.files or key in self.dirs

    def remove(self, path: str) -> None:
        self.files.pop(self._norm(path), None)
