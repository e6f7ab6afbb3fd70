"""Raw response cache keyed by request URL.

Entries never expire; they stay until clear() is called or the directory is
removed. Only raw bytes are stored, parsed documents are rebuilt on each read.
"""
from __future__ import annotations

import logging
import os
import tempfile
from typing import Dict, Optional, Protocol

from atcddd.errors import StoreError

from .base import sha256_hexdigest

logger = logging.getLogger(__name__)

_SUFFIX = ".html"


class CacheStore(Protocol):
    def get(self, key: str) -> Optional[bytes]: ...

    def put(self, key: str, data: bytes) -> None: ...


class FileCache:
    """Directory-backed key/value blob store, one file per URL."""

    def __init__(self, directory: str) -> None:
        self.directory = os.path.abspath(os.path.expanduser(directory))

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, sha256_hexdigest(key) + _SUFFIX)

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Unreadable cache entry %s: %s", path, exc)
            return None

    def put(self, key: str, data: bytes) -> None:
        # Write to a temp file first so readers never see a partial entry.
        try:
            os.makedirs(self.directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp_path, self._path(key))
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as exc:
            raise StoreError(f"Failed to write cache entry for {key}: {exc}") from exc

    def clear(self) -> int:
        """Remove every cached entry. Returns the number of files removed."""
        if not os.path.isdir(self.directory):
            return 0
        removed = 0
        for entry in os.listdir(self.directory):
            if entry.endswith(_SUFFIX):
                os.remove(os.path.join(self.directory, entry))
                removed += 1
        return removed

    def __contains__(self, key: str) -> bool:
        return os.path.isfile(self._path(key))

    def __len__(self) -> int:
        if not os.path.isdir(self.directory):
            return 0
        return sum(1 for e in os.listdir(self.directory) if e.endswith(_SUFFIX))


class MemoryCache:
    """In-process cache with the same contract, for tests and uncached runs."""

    def __init__(self) -> None:
        self._data: Dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def put(self, key: str, data: bytes) -> None:
        self._data[key] = bytes(data)

    def clear(self) -> int:
        n = len(self._data)
        self._data.clear()
        return n

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)
