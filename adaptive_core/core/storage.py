# ═══════════════════════════════════════════════════════════════════════════════
# STORAGE PORT
# Durable key/value storage behind an abstract port, plus a debounced writer
# ═══════════════════════════════════════════════════════════════════════════════


"""
Engines never touch a filesystem directly. They hand opaque JSON blobs to a
StoragePort under a short key. A file directory, an object store or a database
row can sit behind the port without touching engine logic.

The DebouncedWriter replaces wall-clock save throttling: callers mark state
dirty, and the writer flushes at most once per cooldown window. The clock is
injectable so tests can drive it.
"""

from __future__ import annotations

import os
import re
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from loguru import logger


_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")


@dataclass
class PersistenceConfig:
    """Where and how often engine state is written."""
    storage_dir: Optional[str] = None   # None = in-memory storage
    save_cooldown: float = 5.0          # Seconds between writes per engine


def _check_key(key: str) -> str:
    if not _KEY_PATTERN.match(key):
        raise ValueError(f"Invalid storage key: {key!r}")
    return key


class StoragePort(ABC):
    """Abstract durable storage: get/put of text blobs on opaque keys."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the blob stored under key, or None if absent."""

    @abstractmethod
    def put(self, key: str, data: str) -> None:
        """Store data under key, replacing any previous blob."""

    def keys(self) -> List[str]:
        return []


class InMemoryStorage(StoragePort):
    """Dict-backed storage. Used by tests and when no directory is configured."""

    def __init__(self) -> None:
        self._blobs: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._blobs.get(_check_key(key))

    def put(self, key: str, data: str) -> None:
        self._blobs[_check_key(key)] = data

    def keys(self) -> List[str]:
        return sorted(self._blobs)


class FileStorage(StoragePort):
    """
    One JSON file per key inside a directory.

    Writes go to a temporary file in the same directory and are then
    renamed over the target, so a crash mid-write never leaves a torn blob.
    """

    def __init__(self, root: str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / f"{_check_key(key)}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def put(self, key: str, data: str) -> None:
        path = self._path(key)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.root), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def keys(self) -> List[str]:
        return sorted(p.stem for p in self.root.glob("*.json"))


def create_storage(config: Optional[PersistenceConfig] = None) -> StoragePort:
    """Build the storage backend named by a PersistenceConfig."""
    config = config or PersistenceConfig()
    if config.storage_dir:
        return FileStorage(config.storage_dir)
    return InMemoryStorage()


class DebouncedWriter:
    """
    Dirty flag plus cooldown timer.

    mark_dirty() is cheap and can be called on every mutation.
    maybe_flush() writes only when dirty and the cooldown has elapsed since
    the previous write. flush() writes immediately if dirty (shutdown path).
    A dirty flag that misses its window stays set, so the trailing update is
    written by the next maybe_flush() or flush().
    """

    def __init__(
        self,
        write: Callable[[], None],
        cooldown: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "writer",
    ) -> None:
        self._write = write
        self.cooldown = cooldown
        self._clock = clock
        self.name = name

        self._dirty: bool = False
        self._last_write: Optional[float] = None
        self.write_count: int = 0

    @property
    def dirty(self) -> bool:
        return self._dirty

    def mark_dirty(self) -> None:
        self._dirty = True

    def due(self) -> bool:
        """True when a write would happen if maybe_flush() were called now."""
        if not self._dirty:
            return False
        if self._last_write is None:
            return True
        return self._clock() - self._last_write >= self.cooldown

    def maybe_flush(self) -> bool:
        if not self.due():
            return False
        return self.flush()

    def flush(self) -> bool:
        if not self._dirty:
            return False
        try:
            self._write()
        except Exception as e:
            # Stay dirty so the next window retries.
            logger.error(f"[{self.name}] Error saving state: {e}")
            return False
        self._dirty = False
        self._last_write = self._clock()
        self.write_count += 1
        return True
