"""CLI entrypoint for sf-org-source."""

import logging
from pathlib import Path

import rich_click as click

from sf_org_source import __version__
from sf_org_source.config import DEFAULT_METADATA_TYPES
from sf_org_source.controllers import (
    ManifestCliController,
    ManifestRenderCommand,
    OrgCliController,
    OrgDescribeCommand,
    OrgMetadataCommand,
    OrgQueryCommand,
    SourceCleanupCommand,
    SourceCliController,
    SourceFilesCommand,
    SourceInvalidateCommand,
    SourceRetrieveCommand,
    SourceShowCommand,
    SourceStatsCommand,
)
from sf_org_source.executor.errors import ExecutorError, NonZeroExit
from sf_org_source.retrieval.service import FileContentError

click.rich_click.USE_MARKDOWN = True
ORG_CONTROLLER = OrgCliController()
SOURCE_CONTROLLER = SourceCliController()
MANIFEST_CONTROLLER = ManifestCliController()

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_CACHE_ROOT_OPTION = click.option(
    "--cache-root",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory holding per-org retrievals. Defaults to SF_ORG_SOURCE_CACHE_ROOT.",
)
_ORG_OPTION = click.option(
    "--org",
    "org",
    required=True,
    help="Org alias, username or org id passed as --target-org.",
)


@click.group()
@click.version_option(version=__version__, prog_name="sf-org-source")
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    envvar="SF_ORG_SOURCE_LOG_LEVEL",
    default="WARNING",
    show_default=True,
    help="Logging verbosity for diagnostics on stderr.",
)
def sf_org_source(log_level: str) -> None:
    """Salesforce org source retrieval CLI."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@sf_org_source.group()
def orgs() -> None:
    """Direct Salesforce CLI queries against an org."""


@orgs.command("list")
def orgs_list() -> None:
    """List authenticated orgs (raw CLI JSON)."""

    _emit_lines(_guarded(ORG_CONTROLLER.list_orgs))


@orgs.command("metadata")
@_ORG_OPTION
@click.option("--type", "metadata_type", required=True, help="Metadata type, e.g. ApexClass.")
def orgs_metadata(org: str, metadata_type: str) -> None:
    """List metadata components of one type."""

    _emit_lines(
        _guarded(
            ORG_CONTROLLER.list_metadata,
            OrgMetadataCommand(org=org, metadata_type=metadata_type),
        ),
    )


@orgs.command("query")
@_ORG_OPTION
@click.option("--soql", required=True, help="Read-only SOQL query starting with SELECT.")
@click.option(
    "--tooling/--no-tooling",
    default=False,
    show_default=True,
    help="Run the query against the Tooling API.",
)
def orgs_query(org: str, soql: str, tooling: bool) -> None:
    """Run a SOQL query."""

    _emit_lines(
        _guarded(
            ORG_CONTROLLER.query,
            OrgQueryCommand(org=org, soql=soql, use_tooling_api=tooling),
        ),
    )


@orgs.command("describe")
@_ORG_OPTION
@click.option("--sobject", required=True, help="sObject API name, e.g. Account.")
def orgs_describe(org: str, sobject: str) -> None:
    """Describe an sObject."""

    _emit_lines(
        _guarded(ORG_CONTROLLER.describe, OrgDescribeCommand(org=org, sobject=sobject)),
    )


@sf_org_source.group("cli")
def cli_group() -> None:
    """Salesforce CLI installation checks."""


@cli_group.command("check")
def cli_check() -> None:
    """Probe sf and sfdx with --version."""

    available, lines = ORG_CONTROLLER.check()
    _emit_lines(lines)
    if not available:
        raise click.ClickException(
            "Salesforce CLI not found. Install the sf CLI or ensure it is on your PATH.",
        )


@sf_org_source.group()
def source() -> None:
    """Cached retrieval of org source."""


@source.command("retrieve")
@_CACHE_ROOT_OPTION
@_ORG_OPTION
@click.option(
    "--type",
    "metadata_types",
    multiple=True,
    help=(
        "Metadata type to retrieve. Can be repeated. "
        f"Default: {', '.join(DEFAULT_METADATA_TYPES)}."
    ),
)
@click.option(
    "--refresh/--no-refresh",
    default=False,
    show_default=True,
    help="Invalidate any cached retrieval first.",
)
def source_retrieve(
    cache_root: Path | None,
    org: str,
    metadata_types: tuple[str, ...],
    refresh: bool,
) -> None:
    """Retrieve org source into the local cache (reuses a cached copy)."""

    _emit_lines(
        _guarded(
            SOURCE_CONTROLLER.retrieve,
            SourceRetrieveCommand(
                cache_root=cache_root,
                org=org,
                metadata_types=metadata_types,
                refresh=refresh,
            ),
        ),
    )


@source.command("files")
@_CACHE_ROOT_OPTION
@_ORG_OPTION
def source_files(cache_root: Path | None, org: str) -> None:
    """List retrieved source files grouped by metadata directory."""

    _emit_lines(
        _guarded(SOURCE_CONTROLLER.files, SourceFilesCommand(cache_root=cache_root, org=org)),
    )


@source.command("show")
@_CACHE_ROOT_OPTION
@_ORG_OPTION
@click.argument("relative_path")
def source_show(cache_root: Path | None, org: str, relative_path: str) -> None:
    """Print one retrieved file, e.g. classes/Foo.cls."""

    _emit_lines(
        _guarded(
            SOURCE_CONTROLLER.show,
            SourceShowCommand(cache_root=cache_root, org=org, relative_path=relative_path),
        ),
    )


@source.command("invalidate")
@_CACHE_ROOT_OPTION
@_ORG_OPTION
def source_invalidate(cache_root: Path | None, org: str) -> None:
    """Drop the cached retrieval of one org."""

    _emit_lines(
        _guarded(
            SOURCE_CONTROLLER.invalidate,
            SourceInvalidateCommand(cache_root=cache_root, org=org),
        ),
    )


@source.command("cleanup")
@_CACHE_ROOT_OPTION
@click.option(
    "--keep",
    "keep_orgs",
    multiple=True,
    help="Org that is still current. Can be repeated; all others are removed.",
)
@click.option("--all", "all_orgs", is_flag=True, default=False, help="Remove every cached org.")
def source_cleanup(cache_root: Path | None, keep_orgs: tuple[str, ...], all_orgs: bool) -> None:
    """Remove stale cached retrievals."""

    _emit_lines(
        _guarded(
            SOURCE_CONTROLLER.cleanup,
            SourceCleanupCommand(cache_root=cache_root, keep_orgs=keep_orgs, all_orgs=all_orgs),
        ),
    )


@source.command("stats")
@_CACHE_ROOT_OPTION
def source_stats(cache_root: Path | None) -> None:
    """Show cached orgs and their size on disk."""

    _emit_lines(_guarded(SOURCE_CONTROLLER.stats, SourceStatsCommand(cache_root=cache_root)))


@sf_org_source.group()
def manifest() -> None:
    """Metadata type catalog and package.xml preview."""


@manifest.command("types")
def manifest_types() -> None:
    """List selectable metadata types by category (* = retrieved by default)."""

    _emit_lines(MANIFEST_CONTROLLER.types())


@manifest.command("render")
@click.option("--type", "metadata_types", multiple=True, help="Metadata type. Can be repeated.")
@click.option("--api-version", default=None, help="Manifest API version, e.g. 58.0.")
def manifest_render(metadata_types: tuple[str, ...], api_version: str | None) -> None:
    """Print the package.xml that a retrieval would use."""

    _emit_lines(
        _guarded(
            MANIFEST_CONTROLLER.render,
            ManifestRenderCommand(metadata_types=metadata_types, api_version=api_version),
        ),
    )


def _guarded(action, *args) -> list[str]:
    try:
        return action(*args)
    except NonZeroExit as error:
        message = str(error)
        if error.classification is not None:
            message = f"{message}\nHint: {error.classification.suggestion}"
        raise click.ClickException(message) from error
    except (ExecutorError, FileContentError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    sf_org_source()
