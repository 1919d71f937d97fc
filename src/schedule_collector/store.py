"""
Persistent key/value store with optional per-entry expiry.

Expiry is lazy: an expired entry is purged the moment it is read. sweep()
exists for a single cleanup pass at startup, never as a background task.

Two backends:
    MemoryStore    - dict-backed, lost with the process (tests, dry runs)
    JsonFileStore  - one JSON document on disk, replaced atomically on write
"""

import json
import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Stored value plus absolute expiry (epoch seconds) or None."""

    key: str
    value: Any
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self) -> dict[str, Any]:
        return {"v": self.value, "e": self.expires_at}

    @classmethod
    def from_dict(cls, key: str, data: Any) -> "CacheEntry":
        if not isinstance(data, dict) or "v" not in data:
            raise ValueError(f"Invalid cache entry for {key!r}")
        expires_at = data.get("e")
        return cls(key=key, value=data["v"], expires_at=float(expires_at) if expires_at is not None else None)


class PersistentStore(ABC):
    """Key/value storage contract shared by every backend."""

    def __init__(self, prefix: str = "", clock: Callable[[], float] = time.time):
        self.prefix = prefix
        self._clock = clock

    def _full_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    @abstractmethod
    def _read(self, full_key: str) -> CacheEntry | None: ...

    @abstractmethod
    def _write(self, entry: CacheEntry) -> None: ...

    @abstractmethod
    def _remove(self, full_key: str) -> bool: ...

    @abstractmethod
    def _entries(self) -> list[CacheEntry]: ...

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store value, expiring ttl seconds from now when ttl is given."""
        if ttl is not None and ttl <= 0:
            raise ValueError(f"ttl must be > 0, got {ttl}")

        # Reject values that could never be read back
        json.dumps(value)

        expires_at = self._clock() + ttl if ttl is not None else None
        self._write(CacheEntry(key=self._full_key(key), value=value, expires_at=expires_at))

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value if present and unexpired, purging it otherwise."""
        full_key = self._full_key(key)
        entry = self._read(full_key)
        if entry is None:
            return default

        if entry.is_expired(self._clock()):
            self._remove(full_key)
            logger.debug("Purged expired entry", extra={"key": key})
            return default

        return entry.value

    def delete(self, key: str) -> None:
        self._remove(self._full_key(key))

    def sweep(self) -> int:
        """Purge every expired entry under this prefix. Returns the count removed."""
        now = self._clock()
        removed = 0
        for entry in self._entries():
            if entry.key.startswith(self.prefix) and entry.is_expired(now):
                self._remove(entry.key)
                removed += 1

        if removed:
            logger.info("Swept expired store entries", extra={"entries": removed})
        return removed


class MemoryStore(PersistentStore):
    """In-process store. Survives cycles, not restarts."""

    def __init__(self, prefix: str = "", clock: Callable[[], float] = time.time):
        super().__init__(prefix, clock)
        self._data: dict[str, CacheEntry] = {}

    def _read(self, full_key: str) -> CacheEntry | None:
        return self._data.get(full_key)

    def _write(self, entry: CacheEntry) -> None:
        self._data[entry.key] = entry

    def _remove(self, full_key: str) -> bool:
        return self._data.pop(full_key, None) is not None

    def _entries(self) -> list[CacheEntry]:
        return list(self._data.values())


class JsonFileStore(PersistentStore):
    """
    Store backed by a single JSON file.

    The document is loaded once and kept in memory; every mutation rewrites
    the whole file through a temp file + os.replace, so readers see either
    the old or the new document and never a partial write.
    """

    def __init__(
        self,
        path: Path | str,
        prefix: str = "",
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(prefix, clock)
        self.path = Path(path)
        self._data: dict[str, CacheEntry] = self._load()

    def _load(self) -> dict[str, CacheEntry]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(
                "Store file unreadable, starting empty",
                extra={"path": str(self.path), "error_message": str(e)[:200]},
            )
            return {}

        if not isinstance(raw, dict):
            logger.warning("Store file is not a JSON object, starting empty", extra={"path": str(self.path)})
            return {}

        data: dict[str, CacheEntry] = {}
        for key, value in raw.items():
            try:
                data[key] = CacheEntry.from_dict(key, value)
            except (ValueError, TypeError):
                logger.warning("Dropping invalid store entry", extra={"key": key})
        return data

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = {key: entry.to_dict() for key, entry in self._data.items()}

        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def _read(self, full_key: str) -> CacheEntry | None:
        return self._data.get(full_key)

    def _write(self, entry: CacheEntry) -> None:
        previous = self._data.get(entry.key)
        self._data[entry.key] = entry
        try:
            self._flush()
        except OSError:
            # Keep memory consistent with disk
            if previous is None:
                self._data.pop(entry.key, None)
            else:
                self._data[entry.key] = previous
            raise

    def _remove(self, full_key: str) -> bool:
        entry = self._data.pop(full_key, None)
        if entry is None:
            return False
        try:
            self._flush()
        except OSError:
            self._data[full_key] = entry
            raise
        return True

    def _entries(self) -> list[CacheEntry]:
        return list(self._data.values())


def create_store(
    backend: str,
    path: str | Path | None = None,
    prefix: str = "",
    clock: Callable[[], float] = time.time,
) -> PersistentStore:
    """Build the store named by config.store.backend."""
    if backend == "memory":
        return MemoryStore(prefix=prefix, clock=clock)
    if backend == "file":
        if not path:
            raise ValueError("JsonFileStore requires a path")
        return JsonFileStore(path, prefix=prefix, clock=clock)
    raise ValueError(f"Unknown store backend: {backend!r}")
