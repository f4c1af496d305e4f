"""Deterministic classification of failed Salesforce CLI invocations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

CLI_FAILURE_CLASSIFIER_VERSION = 1


class CliFailureKind(str, Enum):
    """Coarse failure categories reported to the user."""

    AUTHENTICATION = "authentication"
    ORG_NOT_FOUND = "org_not_found"
    NETWORK = "network"
    METADATA = "metadata"
    UNKNOWN = "unknown"


_AUTHENTICATION_PATTERNS: tuple[str, ...] = (
    "invalid_grant",
    "expired access/refresh token",
    "authentication",
    "unauthorized",
    "access denied",
    "invalid session",
)
_ORG_NOT_FOUND_PATTERNS: tuple[str, ...] = (
    "no authorization information found",
    "namedorgnotfounderror",
    "no org configuration found",
    "org not found",
)
_NETWORK_PATTERNS: tuple[str, ...] = (
    "econnrefused",
    "econnreset",
    "etimedout",
    "enotfound",
    "getaddrinfo",
    "socket hang up",
    "network",
    "connection",
)
_METADATA_PATTERNS: tuple[str, ...] = (
    "metadata",
    "retrieve",
    "package.xml",
    "sfdx-project.json",
)

_SUGGESTIONS: dict[CliFailureKind, str] = {
    CliFailureKind.AUTHENTICATION: 'Run "sf org login web" to re-authenticate the org.',
    CliFailureKind.ORG_NOT_FOUND: 'Check the org alias with "sf org list".',
    CliFailureKind.NETWORK: "Check your network connection and retry.",
    CliFailureKind.METADATA: "Check the manifest metadata types and the org API version.",
    CliFailureKind.UNKNOWN: "Inspect the CLI error output for details.",
}


@dataclass(slots=True)
class CliFailureClassification:
    """Normalized failure classification result."""

    kind: CliFailureKind
    reason_code: str
    matched_pattern: str | None

    @property
    def suggestion(self) -> str:
        return _SUGGESTIONS[self.kind]


def classify_cli_failure(*, program: str, stdout: str, stderr: str) -> CliFailureClassification:
    """Classify non-zero exit output. Informational only, never drives retries."""

    haystack = f"{stderr}\n{stdout}".lower()
    for kind, patterns in (
        (CliFailureKind.ORG_NOT_FOUND, _ORG_NOT_FOUND_PATTERNS),
        (CliFailureKind.AUTHENTICATION, _AUTHENTICATION_PATTERNS),
        (CliFailureKind.NETWORK, _NETWORK_PATTERNS),
        (CliFailureKind.METADATA, _METADATA_PATTERNS),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return CliFailureClassification(
                kind=kind,
                reason_code=f"{program}_{kind.value}",
                matched_pattern=pattern,
            )

    return CliFailureClassification(
        kind=CliFailureKind.UNKNOWN,
        reason_code=f"{program}_{CliFailureKind.UNKNOWN.value}",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
