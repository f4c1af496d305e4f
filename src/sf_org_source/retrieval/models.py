"""Data models owned by the retrieval orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

RetrievalKey = str


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A completed retrieval for one key. Replaced, never mutated."""

    key: RetrievalKey
    local_path: Path
    created_at: datetime


@dataclass(frozen=True, slots=True)
class OrgFile:
    """Descriptor of one retrieved source file.

    ``file_path`` is ``None`` when the file was never retrieved locally.
    """

    name: str
    file_path: Path | None = None
    metadata_directory: str = ""
    relative_path: str = ""


@dataclass(slots=True)
class CacheStats:
    """Summary of the on-disk retrieval cache."""

    total_entries: int
    total_bytes: int
    entries: list[CacheEntry]
    in_flight: list[RetrievalKey]
