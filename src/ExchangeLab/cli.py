# === NAVMAP v1 ===
# {
#   "module": "ExchangeLab.cli",
#   "purpose": "Typer CLI for catalog queries, installer distribution, and lab provisioning.",
#   "sections": [
#     {"id": "clicontext", "name": "CliContext", "anchor": "class-clicontext", "kind": "class"},
#     {"id": "main", "name": "main", "anchor": "function-main", "kind": "function"},
#     {"id": "catalog", "name": "catalog commands", "anchor": "CAT", "kind": "api"},
#     {"id": "cu", "name": "cu commands", "anchor": "CU", "kind": "api"},
#     {"id": "lab", "name": "lab commands", "anchor": "LAB", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Main Typer CLI app for ExchangeLab.

Global options (``--config``, ``-v/-vv``, ``--format``, ``--version``) are
given before the subcommand::

    exlab catalog latest 2016
    exlab --config lab.yaml cu distribute --cu 2016_CU23 -s EX01 -s EX02
    exlab -f json cu distribute --server EX01

Exit codes: ``0`` success, ``1`` aborted invocation, ``2`` invalid
configuration or usage, ``3`` completed with failed targets or machines.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import List, NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from ExchangeLab import __version__
from ExchangeLab.CumulativeUpdate.catalog import (
    UNAVAILABLE,
    LookupStatus,
    VersionCatalog,
    catalog_from_config,
    load_catalog,
)
from ExchangeLab.CumulativeUpdate.distribution import (
    DistributionReport,
    DistributionRequest,
    workflow_from_config,
)
from ExchangeLab.CumulativeUpdate.inventory import ExchangeShellInventory
from ExchangeLab.errors import ConfigError, ProvisioningError
from ExchangeLab.LabProvisioning.hypervisor import HyperVHost
from ExchangeLab.LabProvisioning.provisioning import ProvisioningReport, load_lab_plan, provision_lab
from ExchangeLab.logging_utils import setup_logging
from ExchangeLab.settings import ResolvedConfig, get_default_config, load_config, load_raw_yaml

EXIT_ABORTED = 1
EXIT_CONFIG = 2
EXIT_PARTIAL = 3

_console = Console()
_err_console = Console(stderr=True)


class CliContext:
    """Shared state for one CLI invocation: settings, output format, verbosity."""

    def __init__(
        self,
        config: Optional[Path] = None,
        verbosity: int = 0,
        format_output: str = "table",
    ) -> None:
        self.config_path = config
        self.verbosity = verbosity
        self.format_output = format_output
        self.console = _console
        self.settings: ResolvedConfig = (
            load_config(config) if config is not None else get_default_config(copy=True)
        )
        if verbosity >= 2:
            self.settings.defaults.logging.level = "DEBUG"
        elif verbosity == 1 and self.settings.defaults.logging.level != "DEBUG":
            self.settings.defaults.logging.level = "INFO"
        self._logger: Optional[logging.Logger] = None

    def ensure_logging(self) -> logging.Logger:
        if self._logger is None:
            self._logger = setup_logging(self.settings.defaults.logging)
        return self._logger

    def emit_json(self, payload: object) -> None:
        typer.echo(json.dumps(payload, indent=2, default=str))


app = typer.Typer(
    name="exlab",
    help="ExchangeLab CLI - Cumulative Update distribution and lab provisioning",
    no_args_is_help=True,
)
catalog_app = typer.Typer(help="Query the Cumulative Update catalog", no_args_is_help=True)
cu_app = typer.Typer(help="Download and distribute Cumulative Updates", no_args_is_help=True)
lab_app = typer.Typer(help="Provision lab virtual machines", no_args_is_help=True)

app.add_typer(catalog_app, name="catalog")
app.add_typer(cu_app, name="cu")
app.add_typer(lab_app, name="lab")

_context: Optional[CliContext] = None


def get_context() -> CliContext:
    """Return the current CLI context, creating a default one if needed."""

    global _context
    if _context is None:
        _context = CliContext()
    return _context


def _fail(message: str, code: int) -> NoReturn:
    _err_console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"exlab {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="EXLAB_CONFIG",
        help="Path to a YAML configuration file",
    ),
    verbosity: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Increase verbosity (-v for INFO, -vv for DEBUG)"
    ),
    format_output: str = typer.Option("table", "--format", "-f", help="Output format: table, json"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """ExchangeLab CLI - Cumulative Update distribution and lab provisioning."""

    global _context

    if format_output not in {"table", "json"}:
        _fail(f"unsupported format {format_output!r}; use 'table' or 'json'", EXIT_CONFIG)
    try:
        _context = CliContext(config=config, verbosity=verbosity, format_output=format_output)
    except ConfigError as exc:
        _fail(str(exc), EXIT_CONFIG)


@app.command("version")
def version_cmd() -> None:
    """Show version information."""

    typer.echo(f"exlab {__version__}")


# --- catalog commands ------------------------------------------------------------


def _catalog(ctx: CliContext, catalog_file: Optional[Path]) -> VersionCatalog:
    try:
        if catalog_file is not None:
            return load_catalog(catalog_file)
        return catalog_from_config(ctx.settings)
    except ConfigError as exc:
        _fail(str(exc), EXIT_CONFIG)


_CATALOG_OPTION = typer.Option(None, "--catalog", help="Catalog YAML file overriding the configured one")


@catalog_app.command("list")
def catalog_list(
    line: Optional[str] = typer.Option(None, "--line", "-l", help="Only show one product line"),
    catalog_file: Optional[Path] = _CATALOG_OPTION,
) -> None:
    """List catalog entries in version order."""

    ctx = get_context()
    catalog = _catalog(ctx, catalog_file)
    entries = catalog.entries_for_line(line) if line else list(catalog)
    if ctx.format_output == "json":
        ctx.emit_json([{"key": e.key, "locator": e.locator, "available": e.available} for e in entries])
        return
    table = Table(title="Cumulative Update catalog")
    table.add_column("Key", no_wrap=True)
    table.add_column("Available")
    table.add_column("Locator", overflow="fold")
    for entry in entries:
        table.add_row(entry.key, "yes" if entry.available else "[red]no[/red]", entry.locator)
    ctx.console.print(table)


@catalog_app.command("resolve")
def catalog_resolve(
    key: str = typer.Argument(..., help="Version key, e.g. 2016_CU23"),
    catalog_file: Optional[Path] = _CATALOG_OPTION,
) -> None:
    """Print the download locator for KEY (exit 1 when unknown or retracted)."""

    ctx = get_context()
    lookup = _catalog(ctx, catalog_file).lookup(key)
    if ctx.format_output == "json":
        ctx.emit_json({"key": key, "locator": lookup.locator, "status": lookup.status.value})
    else:
        typer.echo(lookup.locator)
    if lookup.status is not LookupStatus.AVAILABLE:
        raise typer.Exit(EXIT_ABORTED)


@catalog_app.command("latest")
def catalog_latest(
    line: str = typer.Argument(..., help="Product line, e.g. 2013 or 2016"),
    catalog_file: Optional[Path] = _CATALOG_OPTION,
) -> None:
    """Print the latest catalog key of product line LINE."""

    ctx = get_context()
    catalog = _catalog(ctx, catalog_file)
    key = catalog.latest_for_line(line)
    if ctx.format_output == "json":
        ctx.emit_json({"product_line": line, "key": key, "locator": catalog.resolve(key)})
    else:
        typer.echo(key)
    if key == UNAVAILABLE:
        raise typer.Exit(EXIT_ABORTED)


# --- cu commands -------------------------------------------------------------------


def _render_distribution(ctx: CliContext, report: DistributionReport) -> None:
    if ctx.format_output == "json":
        ctx.emit_json(report.to_dict())
        return
    if report.error is not None:
        ctx.console.print(f"[red]Aborted:[/red] {report.error}")
        return
    artifact = report.artifact
    if artifact is not None:
        origin = "downloaded" if artifact.fetched else "reused cached copy"
        ctx.console.print(f"[bold]{report.version_key or report.locator}[/bold]: {artifact.local_path} ({origin})")
    table = Table(title="Distribution")
    table.add_column("Server", no_wrap=True)
    table.add_column("Outcome")
    table.add_column("Path / detail", overflow="fold")
    for name, outcome in report.outcomes.items():
        colour = "green" if outcome.succeeded else "red"
        table.add_row(
            name,
            f"[{colour}]{outcome.status.value}[/{colour}]",
            outcome.detail or outcome.file_path or "",
        )
    ctx.console.print(table)
    if report.cleaned_up:
        ctx.console.print("Cached installer removed.")


@cu_app.command("distribute")
def cu_distribute(
    cu: Optional[str] = typer.Option(None, "--cu", help="Catalog key, e.g. 2016_CU23 (default: latest installed line)"),
    url: Optional[str] = typer.Option(None, "--url", help="Explicit download URL, bypasses the catalog"),
    servers: Optional[List[str]] = typer.Option(
        None, "--server", "-s", help="Target server (repeatable; default: all Exchange servers)"
    ),
    directory: Optional[str] = typer.Option(None, "--directory", "-d", help="Directory under each server root"),
    temp_dir: Optional[Path] = typer.Option(None, "--temp-dir", help="Local download cache directory"),
    remove_temp: Optional[bool] = typer.Option(
        None, "--remove-temp/--keep-temp", help="Delete the cached installer when every copy succeeded"
    ),
    catalog_file: Optional[Path] = _CATALOG_OPTION,
) -> None:
    """Download a Cumulative Update once and copy it to every target server."""

    ctx = get_context()
    ctx.ensure_logging()
    if temp_dir is not None:
        ctx.settings.defaults.distribution.temp_directory = temp_dir
    inventory = None if ctx.settings.inventory is not None else ExchangeShellInventory()
    workflow = workflow_from_config(
        ctx.settings,
        catalog=_catalog(ctx, catalog_file),
        inventory=inventory,
    )
    report = workflow.run(
        DistributionRequest(
            version_key=cu,
            locator=url,
            targets=tuple(servers or ()),
            destination_directory=directory,
            remove_temp=remove_temp,
        )
    )
    _render_distribution(ctx, report)
    if report.error is not None:
        raise typer.Exit(EXIT_ABORTED)
    if report.failed_targets:
        raise typer.Exit(EXIT_PARTIAL)


# --- lab commands ------------------------------------------------------------------


def _render_provisioning(ctx: CliContext, report: ProvisioningReport) -> None:
    if ctx.format_output == "json":
        ctx.emit_json(report.to_dict())
        return
    table = Table(title="Lab provisioning")
    table.add_column("Machine", no_wrap=True)
    table.add_column("Outcome")
    table.add_column("Disk / detail", overflow="fold")
    for name, outcome in report.outcomes.items():
        colour = "green" if outcome.detail is None else "red"
        table.add_row(name, f"[{colour}]{outcome.status.value}[/{colour}]", outcome.detail or outcome.disk_path)
    ctx.console.print(table)


@lab_app.command("provision")
def lab_provision(
    plan_file: Optional[Path] = typer.Argument(None, help="YAML lab plan (default: the config 'lab' section)"),
    host: Optional[str] = typer.Option(None, "--host", help="Remote Hyper-V host (default: local)"),
) -> None:
    """Create the differencing/fixed/dynamic disks and VMs described by a lab plan."""

    ctx = get_context()
    ctx.ensure_logging()
    try:
        if plan_file is not None:
            raw = load_raw_yaml(plan_file)
            raw = raw.get("lab", raw)  # type: ignore[assignment]
            if not isinstance(raw, Mapping):
                raise ProvisioningError(f"Lab plan in {plan_file} must be a mapping")
        elif ctx.settings.lab is not None:
            raw = ctx.settings.lab
        else:
            raise ProvisioningError("No lab plan given and the configuration has no 'lab' section")
        plan = load_lab_plan(raw)  # type: ignore[arg-type]
    except (ConfigError, ProvisioningError) as exc:
        _fail(str(exc), EXIT_CONFIG)
    report = provision_lab(plan, HyperVHost(computer_name=host))
    _render_provisioning(ctx, report)
    if not report.succeeded:
        raise typer.Exit(EXIT_PARTIAL)


__all__ = ["app", "CliContext", "get_context", "main"]
