"""Cache entries and in-flight retrieval tracking with an on-disk index."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from sf_org_source.retrieval.models import CacheEntry, RetrievalKey
from sf_org_source.retrieval.staging import write_json

logger = logging.getLogger(__name__)

CACHE_INDEX_FILE_NAME = "cache_index.json"


@dataclass(slots=True)
class CacheClaim:
    """Result of asking the cache for a key.

    Exactly one of three shapes: a cached ``entry``; a ``future`` to join
    (``owner`` false); or a fresh ``future`` the caller must resolve (``owner`` true).
    """

    key: RetrievalKey
    entry: CacheEntry | None
    future: Future[Path] | None
    owner: bool
    generation: int


class SourceCache:
    """Key-scoped cache and in-flight registry.

    Every read-modify-write of the two maps happens under one lock, so a key can
    never have two fetches registered at once. Each key carries a generation that
    invalidation bumps; a fetch that started under an older generation is handed to
    its waiters but never stored.
    """

    def __init__(self, index_path: Path | None = None) -> None:
        self.index_path = index_path
        self._lock = threading.Lock()
        self._entries: dict[RetrievalKey, CacheEntry] = {}
        self._in_flight: dict[RetrievalKey, Future[Path]] = {}
        self._generations: dict[RetrievalKey, int] = {}

    def load(self) -> int:
        """Load persisted entries whose directories still exist. Returns the count."""

        if self.index_path is None or not self.index_path.exists():
            return 0
        try:
            raw = json.loads(self.index_path.read_text("utf-8"))
            loaded = _parse_index(raw)
        except (OSError, ValueError, TypeError, KeyError) as error:
            logger.warning("Ignoring unreadable cache index %s: %s", self.index_path, error)
            return 0

        with self._lock:
            for entry in loaded:
                if entry.local_path.exists():
                    self._entries[entry.key] = entry
                else:
                    logger.info("Dropping cache entry %s: %s is gone", entry.key, entry.local_path)
            count = len(self._entries)
        logger.info("Loaded cache index with %d entries", count)
        return count

    def get(self, key: RetrievalKey) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def entries(self) -> list[CacheEntry]:
        with self._lock:
            return sorted(self._entries.values(), key=lambda entry: entry.key)

    def in_flight_keys(self) -> list[RetrievalKey]:
        with self._lock:
            return sorted(self._in_flight)

    def claim(self, key: RetrievalKey) -> CacheClaim:
        with self._lock:
            generation = self._generations.get(key, 0)
            entry = self._entries.get(key)
            if entry is not None:
                return CacheClaim(
                    key=key,
                    entry=entry,
                    future=None,
                    owner=False,
                    generation=generation,
                )
            future = self._in_flight.get(key)
            if future is not None:
                return CacheClaim(
                    key=key,
                    entry=None,
                    future=future,
                    owner=False,
                    generation=generation,
                )
            future = Future()
            self._in_flight[key] = future
            return CacheClaim(key=key, entry=None, future=future, owner=True, generation=generation)

    def resolve(self, claim: CacheClaim, local_path: Path) -> CacheEntry | None:
        """Finish an owned claim successfully. Returns the stored entry, if stored."""

        entry = CacheEntry(key=claim.key, local_path=local_path, created_at=datetime.now(tz=UTC))
        with self._lock:
            stored = self._generations.get(claim.key, 0) == claim.generation
            if stored:
                self._entries[claim.key] = entry
                self._save_locked()
            self._release_locked(claim)
        if not stored:
            logger.info("Retrieval for %s finished after invalidation; not cached", claim.key)
        claim.future.set_result(local_path)
        return entry if stored else None

    def reject(self, claim: CacheClaim, error: BaseException) -> None:
        """Finish an owned claim with ``error``; the key stays uncached."""

        with self._lock:
            self._release_locked(claim)
        claim.future.set_exception(error)

    def invalidate(
        self,
        key: RetrievalKey,
        *,
        detach: Callable[[RetrievalKey], Path | None] | None = None,
    ) -> tuple[CacheEntry | None, bool, Path | None]:
        """Drop the entry for ``key``.

        When no fetch is running, ``detach`` is called under the lock so the key's
        directory is moved aside before any new claim can stage into it. Returns the
        removed entry, whether a fetch is running and the detached path, if any.
        """

        with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            entry = self._entries.pop(key, None)
            if entry is not None:
                self._save_locked()
            in_flight = key in self._in_flight
            detached = None if in_flight or detach is None else detach(key)
            return entry, in_flight, detached

    def clear(
        self,
        *,
        detach: Callable[[RetrievalKey], Path | None] | None = None,
    ) -> tuple[list[RetrievalKey], list[Path]]:
        """Drop every entry and in-flight marker.

        Returns all keys that were known and the directories ``detach`` moved aside.
        """

        with self._lock:
            keys = sorted(set(self._entries) | set(self._in_flight))
            detached: list[Path] = []
            for key in keys:
                self._generations[key] = self._generations.get(key, 0) + 1
                moved = None if detach is None else detach(key)
                if moved is not None:
                    detached.append(moved)
            self._entries.clear()
            self._in_flight.clear()
            self._save_locked()
            return keys, detached

    def _release_locked(self, claim: CacheClaim) -> None:
        if self._in_flight.get(claim.key) is claim.future:
            del self._in_flight[claim.key]

    def _save_locked(self) -> None:
        if self.index_path is None:
            return
        payload = {
            "last_updated": datetime.now(tz=UTC).isoformat(),
            "entries": {
                key: {
                    "local_path": str(entry.local_path),
                    "created_at": entry.created_at.isoformat(),
                }
                for key, entry in sorted(self._entries.items())
            },
        }
        try:
            write_json(self.index_path, payload)
        except OSError as error:
            logger.warning("Failed to save cache index %s: %s", self.index_path, error)


def _parse_index(raw: object) -> list[CacheEntry]:
    if not isinstance(raw, dict):
        raise TypeError("cache index must be a JSON object")
    raw_entries = raw.get("entries", {})
    if not isinstance(raw_entries, dict):
        raise TypeError("cache index entries must be an object")

    entries: list[CacheEntry] = []
    for key, value in raw_entries.items():
        if not isinstance(value, dict):
            raise TypeError(f"cache index entry {key!r} must be an object")
        entries.append(
            CacheEntry(
                key=key,
                local_path=Path(value["local_path"]),
                created_at=datetime.fromisoformat(value["created_at"]),
            ),
        )
    return entries
