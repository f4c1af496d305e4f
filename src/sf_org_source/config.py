"""Runtime configuration for command execution and source retrieval."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "58.0"
SUPPORTED_API_VERSIONS: tuple[str, ...] = ("58.0", "59.0", "60.0", "61.0")
TEMP_DIR_PREFIX = "sf-org-compare"

DEFAULT_ALLOWED_PROGRAMS: tuple[str, ...] = ("sf", "sfdx")
DEFAULT_ALLOWED_VERBS: frozenset[str] = frozenset(
    {
        "org",
        "project",
        "data",
        "sobject",
        "apex",
        "list",
        "metadata",
        "retrieve",
        "start",
        "query",
        "describe",
    },
)
DEFAULT_ALLOWED_METADATA_TYPES: frozenset[str] = frozenset(
    {
        "ApexClass",
        "ApexTrigger",
        "ApexTestSuite",
        "LightningComponentBundle",
        "AuraDefinitionBundle",
        "CustomObject",
        "CustomField",
        "CustomMetadata",
        "Flow",
        "WorkflowRule",
        "Layout",
        "ListView",
        "FlexiPage",
        "PermissionSet",
        "Profile",
        "Role",
        "ValidationRule",
        "StaticResource",
        "ContentAsset",
        "CustomTab",
        "CustomApplication",
        "CustomLabel",
        "EmailTemplate",
        "LetterHead",
        "Report",
        "Dashboard",
        "ReportType",
        "RemoteSiteSetting",
        "NamedCredential",
        "AssignmentRule",
        "AutoResponseRule",
    },
)
DEFAULT_FORBIDDEN_PATH_FRAGMENTS: tuple[str, ...] = (
    "../",
    "..\\",
    "~/",
    "/etc/",
    "/usr/",
    "/var/",
)
DEFAULT_METADATA_TYPES: tuple[str, ...] = (
    "ApexClass",
    "ApexTrigger",
    "ApexTestSuite",
    "LightningComponentBundle",
    "AuraDefinitionBundle",
    "CustomObject",
    "Flow",
    "Layout",
    "PermissionSet",
)


@dataclass(frozen=True, slots=True)
class SecurityPolicy:
    """Immutable allow-lists and limits enforced before any process is spawned."""

    allowed_programs: tuple[str, ...] = DEFAULT_ALLOWED_PROGRAMS
    allowed_verbs: frozenset[str] = DEFAULT_ALLOWED_VERBS
    allowed_metadata_types: frozenset[str] = DEFAULT_ALLOWED_METADATA_TYPES
    max_argument_length: int = 8_192
    forbidden_path_fragments: tuple[str, ...] = DEFAULT_FORBIDDEN_PATH_FRAGMENTS
    allowed_roots: tuple[Path, ...] = ()
    max_query_length: int = 4_000
    required_query_keyword: str = "SELECT"

    def with_allowed_roots(self, *roots: Path) -> SecurityPolicy:
        """Return a copy that additionally permits working directories under ``roots``."""

        merged = list(self.allowed_roots)
        for root in roots:
            if root not in merged:
                merged.append(root)
        return replace(self, allowed_roots=tuple(merged))


@dataclass(slots=True)
class ExecutorSettings:
    """External command execution settings."""

    default_timeout_seconds: float = 60.0
    probe_timeout_seconds: float = 5.0
    kill_grace_seconds: float = 5.0


@dataclass(slots=True)
class RetrievalSettings:
    """Org source retrieval and cache settings."""

    cache_root: Path = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / TEMP_DIR_PREFIX,
    )
    api_version: str = DEFAULT_API_VERSION
    default_metadata_types: tuple[str, ...] = DEFAULT_METADATA_TYPES
    retrieval_timeout_seconds: float = 300.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    security: SecurityPolicy = field(default_factory=SecurityPolicy)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    retrieval: RetrievalSettings = field(default_factory=RetrievalSettings)
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, cache_root: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        defaults = RetrievalSettings()
        resolved_cache_root = cache_root or Path(
            os.getenv("SF_ORG_SOURCE_CACHE_ROOT", str(defaults.cache_root)),
        )
        settings = cls(
            security=SecurityPolicy(
                max_argument_length=int(os.getenv("SF_ORG_SOURCE_MAX_ARGUMENT_LENGTH", "8192")),
            ),
            executor=ExecutorSettings(
                default_timeout_seconds=float(
                    os.getenv("SF_ORG_SOURCE_COMMAND_TIMEOUT_SECONDS", "60"),
                ),
                probe_timeout_seconds=float(
                    os.getenv("SF_ORG_SOURCE_PROBE_TIMEOUT_SECONDS", "5"),
                ),
                kill_grace_seconds=float(os.getenv("SF_ORG_SOURCE_KILL_GRACE_SECONDS", "5")),
            ),
            retrieval=RetrievalSettings(
                cache_root=resolved_cache_root,
                api_version=resolve_api_version(
                    os.getenv("SF_ORG_SOURCE_API_VERSION", DEFAULT_API_VERSION),
                ),
                default_metadata_types=_collect_metadata_types(),
                retrieval_timeout_seconds=float(
                    os.getenv("SF_ORG_SOURCE_RETRIEVAL_TIMEOUT_SECONDS", "300"),
                ),
            ),
            log_level=os.getenv("SF_ORG_SOURCE_LOG_LEVEL", "WARNING").strip().upper(),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error if limits or timeouts are out of range."""

        if self.security.max_argument_length <= 0:
            raise ValueError("SF_ORG_SOURCE_MAX_ARGUMENT_LENGTH must be > 0.")
        if self.executor.default_timeout_seconds <= 0:
            raise ValueError("SF_ORG_SOURCE_COMMAND_TIMEOUT_SECONDS must be > 0.")
        if self.executor.probe_timeout_seconds <= 0:
            raise ValueError("SF_ORG_SOURCE_PROBE_TIMEOUT_SECONDS must be > 0.")
        if self.executor.kill_grace_seconds < 0:
            raise ValueError("SF_ORG_SOURCE_KILL_GRACE_SECONDS must be >= 0.")
        if self.retrieval.retrieval_timeout_seconds <= 0:
            raise ValueError("SF_ORG_SOURCE_RETRIEVAL_TIMEOUT_SECONDS must be > 0.")
        if not self.retrieval.default_metadata_types:
            raise ValueError("SF_ORG_SOURCE_METADATA_TYPES must name at least one type.")
        unknown = [
            name
            for name in self.retrieval.default_metadata_types
            if name not in self.security.allowed_metadata_types
        ]
        if unknown:
            raise ValueError(
                f"SF_ORG_SOURCE_METADATA_TYPES contains unsupported types: {', '.join(unknown)}",
            )
        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid SF_ORG_SOURCE_LOG_LEVEL: {self.log_level!r}")

    def effective_security(self) -> SecurityPolicy:
        """Security policy that also permits the retrieval cache root as working directory."""

        return self.security.with_allowed_roots(self.retrieval.cache_root)


def resolve_api_version(
    value: str,
    supported: tuple[str, ...] = SUPPORTED_API_VERSIONS,
) -> str:
    """Return ``value`` if supported, otherwise the default API version."""

    normalized = value.strip()
    if normalized in supported:
        return normalized
    logger.warning(
        "Unsupported API version: %s. Using default: %s",
        normalized,
        DEFAULT_API_VERSION,
    )
    return DEFAULT_API_VERSION


def _collect_metadata_types() -> tuple[str, ...]:
    raw = os.getenv("SF_ORG_SOURCE_METADATA_TYPES", "").strip()
    if not raw:
        return DEFAULT_METADATA_TYPES

    values: list[str] = []
    seen: set[str] = set()
    for part in raw.split(","):
        name = part.strip()
        if not name or name in seen:
            continue
        seen.add(name)
        values.append(name)
    return tuple(values)
