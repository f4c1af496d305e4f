"""Argument sanitizing and anchored-format validation for CLI invocations."""

from __future__ import annotations

import re
from pathlib import Path

from sf_org_source.config import SecurityPolicy
from sf_org_source.executor.errors import SecurityViolation, ValidationError

_ORG_IDENTIFIER = re.compile(r"[a-zA-Z0-9._@-]+")
_SALESFORCE_ID = re.compile(r"[a-zA-Z0-9]{15}(?:[a-zA-Z0-9]{3})?")
_API_VERSION = re.compile(r"[0-9]{1,3}\.[0-9]")
_METADATA_NAME = re.compile(r"[a-zA-Z0-9_]+")
_FILE_PATH = re.compile(r"[a-zA-Z0-9._\-/\\:]+")
_SOQL_SAFE = re.compile(r"[a-zA-Z0-9\s,()_.'=<>!]+")
_LINE_BREAKS = re.compile(r"[\r\n]+")

_SUSPICIOUS_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("logical_operator", re.compile(r"&&|\|\|")),
    ("shell_metacharacter", re.compile(r"[;&|`$(){}\[\]]")),
    ("redirection", re.compile(r"[<>]")),
    ("directory_traversal", re.compile(r"\.\.")),
    ("sensitive_root", re.compile(r"/etc/|/usr/|/var/")),
    ("destructive_command", re.compile(r"(?i)\b(?:rm|rmdir|del|format|mkfs)\s+")),
)


def sanitize_argument(value: str, *, max_length: int) -> str:
    """Strip null bytes, collapse line breaks, and enforce the length limit."""

    if not isinstance(value, str):
        raise SecurityViolation("All arguments must be strings")
    sanitized = _LINE_BREAKS.sub(" ", value.replace("\0", "")).strip()
    if len(sanitized) > max_length:
        raise SecurityViolation(
            f"Argument too long ({len(sanitized)} > {max_length} characters)",
        )
    return sanitized


def first_suspicious_pattern(value: str) -> str | None:
    """Return the name of the first suspicious pattern found in ``value``."""

    for name, pattern in _SUSPICIOUS_PATTERNS:
        if pattern.search(value):
            return name
    return None


def ensure_not_suspicious(value: str) -> None:
    """Abort with a security error if ``value`` could alter process semantics."""

    rule = first_suspicious_pattern(value)
    if rule is not None:
        raise SecurityViolation(f"Suspicious content in argument ({rule}): {value!r}")


def validate_org_identifier(value: str) -> str:
    """Accept an org alias, username, or 15/18-character Salesforce id."""

    if not isinstance(value, str) or not value:
        raise ValidationError(
            "Invalid org identifier: must be a non-empty string",
            field="target_org",
        )
    if not (_ORG_IDENTIFIER.fullmatch(value) or _SALESFORCE_ID.fullmatch(value)):
        raise ValidationError(f"Invalid org identifier format: {value!r}", field="target_org")
    return value


def validate_metadata_type(value: str, policy: SecurityPolicy) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(
            "Invalid metadata type: must be a non-empty string",
            field="metadata_type",
        )
    if value not in policy.allowed_metadata_types:
        raise ValidationError(f"Unsupported metadata type: {value!r}", field="metadata_type")
    return value


def validate_metadata_name(value: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(
            "Invalid metadata name: must be a non-empty string",
            field="metadata_name",
        )
    if not _METADATA_NAME.fullmatch(value):
        raise ValidationError(f"Invalid metadata name format: {value!r}", field="metadata_name")
    return value


def validate_api_version(value: str) -> str:
    if not isinstance(value, str) or not _API_VERSION.fullmatch(value):
        raise ValidationError(f"Invalid API version format: {value!r}", field="api_version")
    return value


def validate_file_path(value: str, policy: SecurityPolicy) -> str:
    """Accept a plain path made of safe characters that avoids forbidden fragments."""

    if not isinstance(value, str) or not value:
        raise ValidationError("Invalid file path: must be a non-empty string", field="file_path")
    if not _FILE_PATH.fullmatch(value):
        raise ValidationError(f"Invalid file path format: {value!r}", field="file_path")
    for fragment in policy.forbidden_path_fragments:
        if fragment in value:
            raise SecurityViolation(f"Forbidden path pattern {fragment!r} in {value!r}")
    return value


def validate_soql_query(value: str, policy: SecurityPolicy) -> str:
    """Accept a bounded read-only query made of safe characters."""

    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Invalid SOQL query: must be a non-empty string", field="query")
    if not _SOQL_SAFE.fullmatch(value):
        raise ValidationError("Invalid SOQL query: contains unsafe characters", field="query")
    if len(value) > policy.max_query_length:
        raise ValidationError(
            f"Invalid SOQL query: too long ({len(value)} > {policy.max_query_length})",
            field="query",
        )
    keyword = policy.required_query_keyword.upper()
    if not value.strip().upper().startswith(keyword):
        raise ValidationError(f"Invalid SOQL query: must start with {keyword}", field="query")
    return value


def validate_working_directory(value: Path, policy: SecurityPolicy) -> Path:
    """Resolve ``value`` and require it to live under one of the allowed roots."""

    resolved = Path(value).resolve()
    for root in policy.allowed_roots:
        if resolved.is_relative_to(Path(root).resolve()):
            return resolved
    raise SecurityViolation(f"Working directory outside allowed roots: {str(value)!r}")
