"""Rich rendering of validation reports and diff results.

SECURITY: node names, messages and paths come from user documents and are
escaped before they reach Rich markup.
"""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from flowguard.core.diff_models import DiffResult
from flowguard.core.models import IssueSeverity, NodeTypeSchema, ValidationIssue, ValidationReport


class ReportRenderer:
    """Render flowguard results to a console."""

    SEVERITY_STYLES = {
        IssueSeverity.ERROR: "[red]✗ error[/]",
        IssueSeverity.WARNING: "[yellow]! warning[/]",
        IssueSeverity.INFO: "[dim]i info[/]",
    }

    MAX_MESSAGE_WIDTH = 80

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def issue_table(self, issues: list[ValidationIssue], title: str) -> Table:
        table = Table(title=title)
        table.add_column("Severity", justify="center")
        table.add_column("Location", style="cyan")
        table.add_column("Category", style="magenta")
        table.add_column("Message", max_width=self.MAX_MESSAGE_WIDTH)

        for issue in issues:
            message = escape(issue.message)
            if issue.fix:
                message += f"\n[dim]fix: {escape(issue.fix)}[/]"
            if issue.suggested_value is not None:
                message += f"\n[dim]suggested: {escape(repr(issue.suggested_value))}[/]"
            table.add_row(
                self.SEVERITY_STYLES[issue.severity],
                escape(issue.location),
                issue.category.value,
                message,
            )
        return table

    def render_report(self, report: ValidationReport, source: str = "") -> None:
        stats = report.statistics
        status = "[green]✓ valid[/]" if report.valid else "[red bold]✗ invalid[/]"
        summary = (
            f"{status}  profile: {escape(report.profile)}\n"
            f"Nodes: {stats.total_nodes} ({stats.enabled_nodes} enabled, "
            f"{stats.trigger_nodes} trigger)  "
            f"Connections: {stats.valid_connections} valid, {stats.invalid_connections} invalid  "
            f"Expressions: {stats.expressions_validated}"
        )
        self.console.print(Panel(summary, title=escape(source) or "Validation"))

        if report.errors:
            self.console.print(self.issue_table(report.errors, f"Errors ({len(report.errors)})"))
        if report.warnings:
            self.console.print(
                self.issue_table(report.warnings, f"Warnings ({len(report.warnings)})")
            )
        for suggestion in report.suggestions:
            self.console.print(f"  [blue]→ {escape(suggestion)}[/]")
        for note in report.notes:
            self.console.print(f"  [dim]• {escape(note)}[/]")

    def render_diff(self, result: DiffResult) -> None:
        if result.success:
            self.console.print(f"[green]✓ {escape(result.message)}[/]")
        else:
            self.console.print(f"[red]✗ {escape(result.message)}[/]")
            for error in result.errors:
                label = f"#{error.operation}" if error.operation >= 0 else "document"
                kind = f" ({escape(error.type)})" if error.type else ""
                self.console.print(f"  [red]• {label}{kind}: {escape(error.message)}[/]")
        if result.report is not None:
            self.render_report(result.report, "Resulting workflow")

    def node_types_table(self, schemas: list[NodeTypeSchema], title: str) -> Table:
        table = Table(title=escape(title))
        table.add_column("Type", style="cyan")
        table.add_column("Name")
        table.add_column("Latest", justify="right")
        table.add_column("Outputs")
        table.add_column("Flags", style="magenta")

        for schema in schemas:
            flags: list[str] = []
            if schema.is_trigger:
                flags.append("trigger")
            if schema.is_loop_capable:
                flags.append("loop")
            if schema.dynamic_outputs:
                flags.append("dynamic")
            table.add_row(
                escape(schema.node_type),
                escape(schema.display_name),
                str(schema.latest_version),
                escape(", ".join(schema.outputs)) or "-",
                ", ".join(flags),
            )
        return table
