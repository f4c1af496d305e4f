"""Error taxonomy surfaced by the secure command executor."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sf_org_source.executor.diagnostics import CliFailureClassification


class ExecutorError(RuntimeError):
    """Base class for every failure raised on the command execution path."""


class SecurityViolation(ExecutorError):
    """Disallowed program or verb, suspicious content, or oversized argument.

    Never retried and never downgraded: it signals either an upstream bug or an
    attempted injection.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Security violation: {message}")


class ValidationError(ExecutorError):
    """Malformed identifier, query, path, or other domain-specific argument."""

    def __init__(self, message: str, *, field: str) -> None:
        super().__init__(message)
        self.field = field


class SpawnFailure(ExecutorError):
    """The operating system could not start the process."""


class CommandTimeout(ExecutorError):
    """The process did not finish within its timeout and was terminated."""

    def __init__(self, message: str, *, timeout_seconds: float) -> None:
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


class NonZeroExit(ExecutorError):
    """The process ran but exited with a non-zero code."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int,
        stderr: str,
        classification: CliFailureClassification | None = None,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr
        self.classification = classification
