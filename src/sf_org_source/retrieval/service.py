"""Cached, deduplicated retrieval of org source into local directories."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Protocol

from sf_org_source.config import RetrievalSettings, SecurityPolicy
from sf_org_source.executor.command import ExecutionResult
from sf_org_source.executor.errors import SpawnFailure
from sf_org_source.executor.validation import ensure_not_suspicious, validate_org_identifier
from sf_org_source.retrieval.cache import CACHE_INDEX_FILE_NAME, SourceCache
from sf_org_source.retrieval.files import list_retrieved_files
from sf_org_source.retrieval.manifest import ManifestDocument, build_manifest, read_manifest
from sf_org_source.retrieval.models import CacheEntry, CacheStats, OrgFile, RetrievalKey
from sf_org_source.retrieval.staging import MANIFEST_FILE_NAME, OrgWorkdirManager

logger = logging.getLogger(__name__)


class FileContentError(LookupError):
    """Requested file has no recorded local path (never retrieved)."""


class RetrievalCli(Protocol):
    """The subset of CLI operations the retrieval service depends on."""

    policy: SecurityPolicy

    def retrieve(
        self,
        manifest_path: str,
        org: str,
        *,
        target_dir: Path | None = None,
        timeout_seconds: float | None = None,
        program: str | None = None,
    ) -> ExecutionResult:
        """Run one manifest-driven retrieval into ``target_dir``."""

    def check_available(self, program: str) -> bool:
        """Report whether ``program`` starts and answers ``--version``."""


class SourceRetrievalService:
    """Turns an org identifier into a cached local source directory.

    Per key: ``Uncached -> Fetching -> Cached``; a failed fetch returns the key to
    ``Uncached``. Requests arriving while a fetch is running join it instead of
    starting a second process, and all of them see the same path or the same error.
    """

    def __init__(
        self,
        *,
        cli: RetrievalCli,
        settings: RetrievalSettings,
        cache: SourceCache | None = None,
        workdirs: OrgWorkdirManager | None = None,
    ) -> None:
        self._cli = cli
        self._settings = settings
        self._cache = cache or SourceCache(settings.cache_root / CACHE_INDEX_FILE_NAME)
        self._workdirs = workdirs or OrgWorkdirManager(
            settings.cache_root,
            api_version=settings.api_version,
        )
        self._program: str | None = None
        self._program_lock = threading.Lock()
        self._cache.load()

    @property
    def cache(self) -> SourceCache:
        return self._cache

    def retrieve(
        self,
        org: RetrievalKey,
        *,
        metadata_types: Iterable[str] | None = None,
        members: Mapping[str, Iterable[str]] | None = None,
    ) -> Path:
        """Return the local source directory for ``org``, fetching it on a cache miss."""

        validate_org_identifier(org)
        ensure_not_suspicious(org)

        claim = self._cache.claim(org)
        if claim.entry is not None:
            logger.info("Cache hit for org %s: %s", org, claim.entry.local_path)
            return claim.entry.local_path
        if not claim.owner:
            logger.info("Joining in-flight retrieval for org %s", org)
            return claim.future.result()

        logger.info("Starting retrieval for org %s", org)
        try:
            local_path = self._fetch(org, metadata_types=metadata_types, members=members)
        except BaseException as error:
            logger.warning("Retrieval for org %s failed: %s", org, error)
            self._cache.reject(claim, error)
            raise
        self._cache.resolve(claim, local_path)
        logger.info("Completed retrieval for org %s: %s", org, local_path)
        return local_path

    def _fetch(
        self,
        org: RetrievalKey,
        *,
        metadata_types: Iterable[str] | None,
        members: Mapping[str, Iterable[str]] | None,
    ) -> Path:
        program = self._ensure_cli()
        manifest = build_manifest(
            metadata_types if metadata_types is not None else self._settings.default_metadata_types,
            api_version=self._settings.api_version,
            policy=self._cli.policy,
            members=members,
        )
        staged = self._workdirs.stage(org, manifest)
        self._cli.retrieve(
            MANIFEST_FILE_NAME,
            org,
            target_dir=staged.workdir,
            timeout_seconds=self._settings.retrieval_timeout_seconds,
            program=program,
        )
        return staged.source_dir

    def _ensure_cli(self) -> str:
        with self._program_lock:
            if self._program is not None:
                return self._program
            for program in self._cli.policy.allowed_programs:
                if self._cli.check_available(program):
                    logger.info("Using Salesforce CLI command: %s", program)
                    self._program = program
                    return program
        raise SpawnFailure(
            "Salesforce CLI not found. Install the sf CLI or ensure it is on your PATH.",
        )

    def get_file_content(self, org: RetrievalKey, org_file: OrgFile) -> str:
        """Read a retrieved file; empty string if it is missing or unreadable.

        A descriptor without any recorded path was never retrieved, which is an
        error rather than an empty file.
        """

        if org_file.file_path is None:
            raise FileContentError(f"No file path available for: {org_file.name}")
        try:
            return Path(org_file.file_path).read_text("utf-8")
        except (OSError, UnicodeDecodeError) as error:
            logger.warning(
                "Could not read %s for org %s: %s",
                org_file.file_path,
                org,
                error,
            )
            return ""

    def list_files(self, org: RetrievalKey) -> list[OrgFile]:
        """List source files of a cached retrieval."""

        entry = self._cache.get(org)
        if entry is None:
            raise FileContentError(f"Org {org} has not been retrieved yet")
        return list_retrieved_files(entry.local_path)

    def cached_entry(self, org: RetrievalKey) -> CacheEntry | None:
        return self._cache.get(org)

    def staged_manifest(self, org: RetrievalKey) -> ManifestDocument | None:
        """Parse the manifest last staged for ``org``, if any."""

        path = self._workdirs.org_dir(org) / MANIFEST_FILE_NAME
        if not path.is_file():
            return None
        return read_manifest(path)

    def invalidate(self, org: RetrievalKey) -> None:
        """Drop the cache entry for ``org`` and remove its directory (best effort)."""

        validate_org_identifier(org)
        ensure_not_suspicious(org)
        entry, in_flight, detached = self._cache.invalidate(org, detach=self._workdirs.detach)
        if in_flight:
            logger.info("Org %s invalidated during a running retrieval; result will not be cached", org)
            return
        if detached is not None:
            self._workdirs.purge(detached)
        if entry is not None:
            logger.info("Invalidated cached source for org %s", org)

    def cleanup_stale(self, current_orgs: Iterable[RetrievalKey]) -> list[RetrievalKey]:
        """Invalidate cached orgs that are not in ``current_orgs``."""

        keep = set(current_orgs)
        stale = [entry.key for entry in self._cache.entries() if entry.key not in keep]
        if stale:
            logger.info("Cleaning up %d stale cache entries", len(stale))
        for org in stale:
            self.invalidate(org)
        return stale

    def cleanup_all(self) -> None:
        """Forget every entry and in-flight marker and remove all org directories."""

        keys, detached = self._cache.clear(detach=self._workdirs.detach)
        for path in detached:
            self._workdirs.purge(path)
        logger.info("Cleared cached source for %d orgs", len(keys))

    def stats(self) -> CacheStats:
        entries = self._cache.entries()
        return CacheStats(
            total_entries=len(entries),
            total_bytes=sum(_directory_size(self._workdirs.org_dir(entry.key)) for entry in entries),
            entries=entries,
            in_flight=self._cache.in_flight_keys(),
        )


def _directory_size(path: Path) -> int:
    total = 0
    if not path.is_dir():
        return total
    for child in path.rglob("*"):
        try:
            if child.is_file():
                total += child.stat().st_size
        except OSError:
            continue
    return total
