"""Secure execution of trusted external CLI binaries."""

from sf_org_source.executor.command import CommandSpec, ExecutionResult
from sf_org_source.executor.errors import (
    CommandTimeout,
    ExecutorError,
    NonZeroExit,
    SecurityViolation,
    SpawnFailure,
    ValidationError,
)
from sf_org_source.executor.runner import SecureCommandExecutor
from sf_org_source.executor.sf_cli import SalesforceCli

__all__ = [
    "CommandSpec",
    "CommandTimeout",
    "ExecutionResult",
    "ExecutorError",
    "NonZeroExit",
    "SalesforceCli",
    "SecureCommandExecutor",
    "SecurityViolation",
    "SpawnFailure",
    "ValidationError",
]
