"""CLI entry point for flowguard.

Commands:
- flowguard validate: Validate a workflow document
- flowguard diff: Apply (or dry-run) a batch of diff operations
- flowguard types: List the node types of a catalog
- flowguard version: Show version information
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
import yaml
from rich.console import Console
from rich.markup import escape

from flowguard import __version__
from flowguard.cli_ui.report_renderer import ReportRenderer
from flowguard.core.catalog import load_default_catalog
from flowguard.core.errors import CatalogError, SettingsError
from flowguard.core.profiles import ValidationProfile
from flowguard.core.service import WorkflowService
from flowguard.core.settings import ValidatorSettings, load_settings

console = Console()

PROFILE_CHOICE = click.Choice([p.value for p in ValidationProfile])


def _load_file(path: str, what: str) -> Any:
    """Read a JSON or YAML file; JSON is a subset YAML parses too."""
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        console.print(f"[red]Error parsing {what} file '{escape(path)}':[/red]")
        console.print(f"  {escape(str(e))}")
        sys.exit(1)


def _settings(catalog: str | None) -> ValidatorSettings:
    try:
        settings = load_settings()
    except SettingsError as e:
        console.print(f"[red]Invalid settings:[/red] {escape(str(e))}")
        sys.exit(1)
    if catalog:
        settings.catalog_path = Path(catalog)
    return settings


def _service(catalog: str | None) -> WorkflowService:
    settings = _settings(catalog)
    try:
        return WorkflowService(settings=settings)
    except CatalogError as e:
        console.print(f"[red]Invalid node catalog:[/red] {escape(str(e))}")
        sys.exit(1)


def _write_document(path: str, data: dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        if Path(path).suffix in (".yaml", ".yml"):
            yaml.safe_dump(data, f, sort_keys=False)
        else:
            json.dump(data, f, indent=2)
            f.write("\n")


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """flowguard - workflow document validator and diff engine."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


@main.command()
@click.argument("workflow_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--profile", "-p", type=PROFILE_CHOICE, help="Validation profile")
@click.option("--catalog", type=click.Path(exists=True, dir_okay=False), help="Node-type catalog")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
def validate(workflow_file: str, profile: str | None, catalog: str | None, as_json: bool) -> None:
    """Validate a workflow document (JSON or YAML)."""
    data = _load_file(workflow_file, "workflow")
    report = _service(catalog).validate_workflow(data, profile)

    if as_json:
        click.echo(report.model_dump_json(indent=2))
    else:
        ReportRenderer(console).render_report(report, workflow_file)

    if not report.valid:
        sys.exit(1)


@main.command()
@click.argument("workflow_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("operations_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--validate-only", is_flag=True, help="Check the batch without applying it")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write the new document here")
@click.option("--catalog", type=click.Path(exists=True, dir_okay=False), help="Node-type catalog")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def diff(
    workflow_file: str,
    operations_file: str,
    validate_only: bool,
    output: str | None,
    catalog: str | None,
    as_json: bool,
) -> None:
    """Apply a batch of diff operations to a workflow document.

    OPERATIONS_FILE holds a list of operations, or an object with an
    ``operations`` list.
    """
    data = _load_file(workflow_file, "workflow")
    operations = _load_file(operations_file, "operations")
    if isinstance(operations, dict):
        operations = operations.get("operations")
    if not isinstance(operations, list):
        console.print(
            f"[red]Error: '{escape(operations_file)}' must contain a list of operations.[/red]"
        )
        sys.exit(1)

    result = _service(catalog).apply_diff(
        data, operations, validate_only=validate_only, validate_result=not validate_only
    )

    if as_json:
        click.echo(result.model_dump_json(indent=2, by_alias=True, exclude_none=True))
    else:
        ReportRenderer(console).render_diff(result)

    if not result.success:
        sys.exit(1)
    if output and result.document is not None:
        _write_document(output, result.document.to_data())
        if not as_json:
            console.print(f"[green]Wrote {escape(output)}[/green]")


@main.command()
@click.option("--catalog", type=click.Path(exists=True, dir_okay=False), help="Node-type catalog")
def types(catalog: str | None) -> None:
    """List the node types of a catalog."""
    settings = _settings(catalog)
    try:
        repository = load_default_catalog(settings.catalog_path)
    except CatalogError as e:
        console.print(f"[red]Invalid node catalog:[/red] {escape(str(e))}")
        sys.exit(1)

    schemas = [repository.get_node_type(name) for name in repository.list_node_types()]
    renderer = ReportRenderer(console)
    console.print(renderer.node_types_table(schemas, f"Catalog {repository.catalog_version}"))


@main.command()
def version() -> None:
    """Show version information."""
    console.print(f"flowguard v{__version__}")
    console.print("Workflow validator and diff engine")


if __name__ == "__main__":
    main()
