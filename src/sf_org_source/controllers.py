"""Controllers for org source CLI commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from sf_org_source.config import Settings
from sf_org_source.executor.errors import SecurityViolation
from sf_org_source.executor.sf_cli import SalesforceCli
from sf_org_source.executor.validation import validate_file_path
from sf_org_source.retrieval.files import group_by_directory
from sf_org_source.retrieval.manifest import (
    build_manifest,
    metadata_types_by_category,
    render_manifest,
)
from sf_org_source.retrieval.models import OrgFile
from sf_org_source.retrieval.service import SourceRetrievalService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OrgMetadataCommand:
    """CLI inputs for metadata listing command."""

    org: str
    metadata_type: str


@dataclass(slots=True)
class OrgQueryCommand:
    """CLI inputs for SOQL query command."""

    org: str
    soql: str
    use_tooling_api: bool


@dataclass(slots=True)
class OrgDescribeCommand:
    """CLI inputs for sObject describe command."""

    org: str
    sobject: str


@dataclass(slots=True)
class SourceRetrieveCommand:
    """CLI inputs for source retrieval command."""

    cache_root: Path | None
    org: str
    metadata_types: tuple[str, ...]
    refresh: bool


@dataclass(slots=True)
class SourceFilesCommand:
    """CLI inputs for retrieved file listing."""

    cache_root: Path | None
    org: str


@dataclass(slots=True)
class SourceShowCommand:
    """CLI inputs for printing one retrieved file."""

    cache_root: Path | None
    org: str
    relative_path: str


@dataclass(slots=True)
class SourceInvalidateCommand:
    cache_root: Path | None
    org: str


@dataclass(slots=True)
class SourceCleanupCommand:
    """CLI inputs for cache cleanup.

    With ``all_orgs`` every entry is removed; otherwise entries not listed in
    ``keep_orgs`` are treated as stale.
    """

    cache_root: Path | None
    keep_orgs: tuple[str, ...]
    all_orgs: bool


@dataclass(slots=True)
class SourceStatsCommand:
    cache_root: Path | None


@dataclass(slots=True)
class ManifestRenderCommand:
    """CLI inputs for manifest preview."""

    metadata_types: tuple[str, ...]
    api_version: str | None


class OrgCliController:
    """Thin wrappers over single Salesforce CLI invocations."""

    def list_orgs(self) -> list[str]:
        return _stdout_lines(_build_cli(Settings.from_env()).list_orgs().stdout)

    def list_metadata(self, command: OrgMetadataCommand) -> list[str]:
        cli = _build_cli(Settings.from_env())
        return _stdout_lines(cli.list_metadata(command.metadata_type, command.org).stdout)

    def query(self, command: OrgQueryCommand) -> list[str]:
        cli = _build_cli(Settings.from_env())
        result = cli.query(command.soql, command.org, use_tooling_api=command.use_tooling_api)
        return _stdout_lines(result.stdout)

    def describe(self, command: OrgDescribeCommand) -> list[str]:
        cli = _build_cli(Settings.from_env())
        return _stdout_lines(cli.describe(command.sobject, command.org).stdout)

    def check(self) -> tuple[bool, list[str]]:
        """Probe every allowed CLI program. Returns overall availability and report lines."""

        settings = Settings.from_env()
        cli = _build_cli(settings)
        lines: list[str] = []
        available = False
        for program in settings.security.allowed_programs:
            ok = cli.check_available(program)
            available = available or ok
            lines.append(f"{program}: {'available' if ok else 'not found'}")
        return available, lines


class SourceCliController:
    """Coordinates cached source retrieval commands."""

    def retrieve(self, command: SourceRetrieveCommand) -> list[str]:
        service = _build_service(Settings.from_env(cache_root=command.cache_root))
        if command.refresh:
            service.invalidate(command.org)
        local_path = service.retrieve(
            command.org,
            metadata_types=command.metadata_types or None,
        )
        files = service.list_files(command.org)
        return [
            f"Retrieved org={command.org} path={local_path} files={len(files)}",
        ]

    def files(self, command: SourceFilesCommand) -> list[str]:
        service = _build_service(Settings.from_env(cache_root=command.cache_root))
        files = service.list_files(command.org)
        if not files:
            return [f"No retrieved files for org={command.org}"]

        lines = [f"Files for org={command.org}: total={len(files)}"]
        for directory, members in sorted(group_by_directory(files).items()):
            lines.append(f"{directory or '.'} ({len(members)})")
            lines.extend(f"  {member.relative_path}" for member in members)
        return lines

    def show(self, command: SourceShowCommand) -> list[str]:
        settings = Settings.from_env(cache_root=command.cache_root)
        validate_file_path(command.relative_path, settings.security)
        if Path(command.relative_path).is_absolute():
            raise SecurityViolation(
                f"Path must be relative to the retrieved source: {command.relative_path!r}",
            )
        service = _build_service(settings)
        entry = service.cached_entry(command.org)
        file_path = None
        if entry is not None:
            file_path = _contained_path(entry.local_path, command.relative_path)
        org_file = OrgFile(
            name=Path(command.relative_path).name,
            file_path=file_path,
            relative_path=command.relative_path,
        )
        return service.get_file_content(command.org, org_file).splitlines()

    def invalidate(self, command: SourceInvalidateCommand) -> list[str]:
        service = _build_service(Settings.from_env(cache_root=command.cache_root))
        service.invalidate(command.org)
        return [f"Invalidated org={command.org}"]

    def cleanup(self, command: SourceCleanupCommand) -> list[str]:
        service = _build_service(Settings.from_env(cache_root=command.cache_root))
        if command.all_orgs:
            removed = [entry.key for entry in service.cache.entries()]
            service.cleanup_all()
        else:
            removed = service.cleanup_stale(command.keep_orgs)
        if not removed:
            return ["Nothing to clean up."]
        return [f"Removed {len(removed)} cached orgs: {', '.join(removed)}"]

    def stats(self, command: SourceStatsCommand) -> list[str]:
        settings = Settings.from_env(cache_root=command.cache_root)
        service = _build_service(settings)
        stats = service.stats()
        lines = [
            f"Cache root: {settings.retrieval.cache_root}",
            f"Cached orgs: {stats.total_entries} size_bytes={stats.total_bytes}",
        ]
        for entry in stats.entries:
            manifest = service.staged_manifest(entry.key)
            types = ",".join(manifest.type_names) if manifest is not None else "-"
            lines.append(
                f"  org={entry.key} created_at={entry.created_at.isoformat()} "
                f"types={types} path={entry.local_path}",
            )
        if stats.in_flight:
            lines.append(f"In flight: {', '.join(stats.in_flight)}")
        return lines


class ManifestCliController:
    """Metadata type catalog and manifest preview."""

    def types(self) -> list[str]:
        defaults = set(Settings.from_env().retrieval.default_metadata_types)
        lines: list[str] = []
        for category, infos in metadata_types_by_category().items():
            lines.append(f"{category}:")
            for info in infos:
                marker = "*" if info.name in defaults else " "
                lines.append(f"  [{marker}] {info.name} - {info.display_name}")
        return lines

    def render(self, command: ManifestRenderCommand) -> list[str]:
        settings = Settings.from_env()
        document = build_manifest(
            command.metadata_types or settings.retrieval.default_metadata_types,
            api_version=command.api_version or settings.retrieval.api_version,
            policy=settings.security,
        )
        return render_manifest(document).splitlines()


def _build_cli(settings: Settings) -> SalesforceCli:
    return SalesforceCli(policy=settings.effective_security(), settings=settings.executor)


def _build_service(settings: Settings) -> SourceRetrievalService:
    logger.debug("Using cache root %s", settings.retrieval.cache_root)
    return SourceRetrievalService(cli=_build_cli(settings), settings=settings.retrieval)


def _contained_path(root: Path, relative_path: str) -> Path:
    candidate = (root / relative_path).resolve()
    if not candidate.is_relative_to(root.resolve()):
        raise SecurityViolation(f"Path escapes the retrieved source: {relative_path!r}")
    return candidate


def _stdout_lines(stdout: str) -> list[str]:
    return stdout.rstrip("\n").splitlines()
