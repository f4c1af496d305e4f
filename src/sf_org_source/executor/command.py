"""Validated descriptors for one external CLI invocation."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from sf_org_source.config import SecurityPolicy
from sf_org_source.executor.errors import SecurityViolation
from sf_org_source.executor.validation import (
    ensure_not_suspicious,
    sanitize_argument,
    validate_working_directory,
)


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Immutable, already-validated description of one external invocation.

    Validation runs inside construction, so an instance that violates the policy
    never exists. Checks run in a fixed order: program, subcommand verbs, argument
    sanitizing, suspicious-content scan, working directory. ``arguments`` holds the
    sanitized values after construction.
    """

    program: str
    subcommand_path: tuple[str, ...]
    arguments: tuple[str, ...]
    timeout_seconds: float
    policy: SecurityPolicy = field(repr=False, compare=False)
    working_directory: Path | None = None

    def __post_init__(self) -> None:
        if self.program not in self.policy.allowed_programs:
            raise SecurityViolation(f"Command {self.program!r} is not allowed")

        for token in self.subcommand_path:
            if token not in self.policy.allowed_verbs:
                raise SecurityViolation(f"Subcommand {token!r} is not allowed")

        sanitized = tuple(
            sanitize_argument(argument, max_length=self.policy.max_argument_length)
            for argument in self.arguments
        )
        for argument in sanitized:
            ensure_not_suspicious(argument)

        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        object.__setattr__(self, "subcommand_path", tuple(self.subcommand_path))
        object.__setattr__(self, "arguments", sanitized)
        if self.working_directory is not None:
            object.__setattr__(
                self,
                "working_directory",
                validate_working_directory(self.working_directory, self.policy),
            )

    @property
    def argv(self) -> list[str]:
        """Discrete argument vector, never joined into a shell string."""

        return [self.program, *self.subcommand_path, *self.arguments]

    def describe(self) -> str:
        """Short human-readable label without argument values."""

        return " ".join([self.program, *self.subcommand_path])


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Captured output of a process that exited with code zero."""

    stdout: str
    stderr: str
