"""Salesforce CLI operations assembled from validated command specs."""

from __future__ import annotations

import logging
from pathlib import Path

from sf_org_source.config import ExecutorSettings, SecurityPolicy
from sf_org_source.executor.command import CommandSpec, ExecutionResult
from sf_org_source.executor.errors import ExecutorError
from sf_org_source.executor.runner import SecureCommandExecutor
from sf_org_source.executor.validation import (
    validate_file_path,
    validate_metadata_name,
    validate_metadata_type,
    validate_org_identifier,
    validate_soql_query,
)

logger = logging.getLogger(__name__)

DEFAULT_PROGRAM = "sf"


class SalesforceCli:
    """Builds one ``CommandSpec`` per operation and delegates to the executor.

    Every domain value is validated against its anchored format before it becomes
    an argument; ``CommandSpec`` then re-applies the generic argument rules.
    """

    def __init__(
        self,
        *,
        policy: SecurityPolicy,
        settings: ExecutorSettings | None = None,
        executor: SecureCommandExecutor | None = None,
        program: str = DEFAULT_PROGRAM,
    ) -> None:
        self.policy = policy
        self.settings = settings or ExecutorSettings()
        self.executor = executor or SecureCommandExecutor(
            kill_grace_seconds=self.settings.kill_grace_seconds,
        )
        self.program = program

    def execute(
        self,
        subcommand_path: tuple[str, ...],
        arguments: tuple[str, ...],
        *,
        program: str | None = None,
        timeout_seconds: float | None = None,
        working_directory: Path | None = None,
    ) -> ExecutionResult:
        """Validate and run one invocation of a trusted binary."""

        spec = CommandSpec(
            program=program or self.program,
            subcommand_path=subcommand_path,
            arguments=arguments,
            timeout_seconds=timeout_seconds or self.settings.default_timeout_seconds,
            policy=self.policy,
            working_directory=working_directory,
        )
        return self.executor.run(spec)

    def list_orgs(self) -> ExecutionResult:
        return self.execute(("org", "list"), ("--json",))

    def list_metadata(self, metadata_type: str, org: str) -> ExecutionResult:
        validate_metadata_type(metadata_type, self.policy)
        validate_org_identifier(org)
        return self.execute(
            ("org", "list", "metadata"),
            ("--metadata-type", metadata_type, "--target-org", org, "--json"),
        )

    def query(self, soql: str, org: str, *, use_tooling_api: bool = False) -> ExecutionResult:
        validate_soql_query(soql, self.policy)
        validate_org_identifier(org)
        arguments = ["--query", soql, "--target-org", org]
        if use_tooling_api:
            arguments.append("--use-tooling-api")
        arguments.append("--json")
        return self.execute(("data", "query"), tuple(arguments))

    def retrieve(
        self,
        manifest_path: str,
        org: str,
        *,
        target_dir: Path | None = None,
        timeout_seconds: float | None = None,
        program: str | None = None,
    ) -> ExecutionResult:
        """Run ``project retrieve start`` for a manifest, optionally inside ``target_dir``."""

        validate_file_path(manifest_path, self.policy)
        validate_org_identifier(org)
        return self.execute(
            ("project", "retrieve", "start"),
            ("--manifest", manifest_path, "--target-org", org, "--json"),
            program=program,
            timeout_seconds=timeout_seconds,
            working_directory=target_dir,
        )

    def describe(self, sobject: str, org: str) -> ExecutionResult:
        validate_metadata_name(sobject)
        validate_org_identifier(org)
        return self.execute(
            ("sobject", "describe"),
            ("--sobject", sobject, "--target-org", org, "--json"),
        )

    def check_available(self, program: str) -> bool:
        """Probe ``<program> --version`` with a short timeout; never raises."""

        if program not in self.policy.allowed_programs:
            return False
        try:
            self.execute(
                (),
                ("--version",),
                program=program,
                timeout_seconds=self.settings.probe_timeout_seconds,
            )
        except ExecutorError as error:
            logger.debug("CLI probe for %s failed: %s", program, error)
            return False
        return True
