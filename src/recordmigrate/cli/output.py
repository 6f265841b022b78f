"""Output formatting utilities for CLI commands."""

from typing import Any

import msgspec
from rich.console import Console
from rich.table import Table

from recordmigrate.config.models import ReadinessCheckResult
from recordmigrate.constants import ERROR_PREVIEW_LIMIT
from recordmigrate.metrics import MigrationResult

# (counter, label) rows shown in a phase summary; zero counters are hidden
SUMMARY_ROWS = (
    ("exported_records", "Records exported"),
    ("failed_exports", "Exports failed"),
    ("imported_records", "Records imported"),
    ("failed_records", "Records failed"),
    ("skipped_rows", "Rows skipped (already done)"),
    ("folders_created", "Folders created"),
    ("movement_registers_created", "Movement entries created"),
    ("total_documents", "Documents processed"),
    ("successful_imports", "Documents imported"),
    ("failed_imports", "Documents failed"),
    ("acls_applied", "ACLs applied"),
    ("acl_failures", "ACLs not applied"),
)


def format_json(data: Any) -> str:
    """
    Format data as JSON string.

    Args:
        data: Data to format (pydantic models are dumped first)

    Returns:
        Pretty-printed JSON string
    """
    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")
    return msgspec.json.format(msgspec.json.encode(data), indent=2).decode("utf-8")


def format_table(headers: list[str], rows: list[list[str]], title: str = "") -> None:
    console = Console()
    table = Table(title=title, show_header=True, header_style="bold")
    for header in headers:
        table.add_column(header)
    for row in rows:
        table.add_row(*row)
    console.print(table)


def format_readiness_check_table(result: ReadinessCheckResult) -> None:
    """
    Format readiness check result as a table.

    Args:
        result: ReadinessCheckResult to format
    """
    console = Console()
    console.print("\n[bold]recordmigrate Readiness Check[/bold]")
    console.print("━" * 50)

    for check in result.checks:
        if check.status == "pass":
            icon, style = "✓", "green"
        elif check.status == "fail":
            icon, style = "✗", "red"
        else:
            icon, style = "⚠", "yellow"

        console.print(f"[{style}]{icon} {check.name}[/{style}]")
        if check.message and check.status != "pass":
            console.print(f"  {check.message}", style="dim")
        elif check.message and check.message != check.name:
            console.print(f"  ({check.message})", style="dim")

    console.print()
    status_text = "READY" if result.ready else "NOT READY"
    status_style = "bold green" if result.ready else "bold red"
    console.print(f"Status: [{status_style}]{status_text}[/{status_style}]")
    console.print(f"Checked: {result.timestamp.isoformat()}\n")


def format_readiness_check_json(result: ReadinessCheckResult) -> str:
    return format_json(result)


def result_summary(result: MigrationResult, error_limit: int = ERROR_PREVIEW_LIMIT) -> dict[str, Any]:
    """JSON-ready summary of a phase result with a bounded error preview."""
    snapshot = result.snapshot()
    errors = snapshot.pop("error_list")
    snapshot["error_preview"] = errors[:error_limit]
    return snapshot


def format_result_table(result: MigrationResult, error_limit: int = ERROR_PREVIEW_LIMIT) -> None:
    """
    Print a phase summary table followed by the first few errors.

    Args:
        result: Finished phase result
        error_limit: Maximum number of errors to list
    """
    console = Console()
    snapshot = result.snapshot()

    table = Table(title=f"{snapshot['phase'].title()} summary", show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    for counter, label in SUMMARY_ROWS:
        if snapshot[counter]:
            table.add_row(label, str(snapshot[counter]))
    table.add_row("Errors", f"[red]{snapshot['errors']}[/red]" if snapshot["errors"] else "0")
    table.add_row("Elapsed", f"{snapshot['duration_seconds']:.1f}s")
    table.add_row("Throughput", f"{snapshot['items_per_second']:.1f} records/sec")
    console.print(table)

    errors = snapshot["error_list"]
    if errors:
        console.print(f"\n[bold red]Errors (showing {min(len(errors), error_limit)} of {len(errors)}):[/bold red]")
        for message in errors[:error_limit]:
            console.print(f"  • {message}", markup=False)
    console.print()


def format_results_json(results: list[MigrationResult], error_limit: int = ERROR_PREVIEW_LIMIT) -> str:
    return format_json({"phases": [result_summary(r, error_limit) for r in results]})
