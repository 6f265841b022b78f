"""Main Typer application for the recordmigrate CLI."""

from pathlib import Path
from typing import Annotated

import typer

from recordmigrate import __version__

app = typer.Typer(
    help="recordmigrate - Resumable CSV-based migration of letter records between content repositories",
    add_completion=False,
    no_args_is_help=True,
)

KIND_HELP = 'Record kind: "single", "group", "subletter" or "all"'


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"recordmigrate version {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """recordmigrate CLI main callback."""
    pass


@app.command()
def check(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to configuration file"),
    ] = None,
    output: Annotated[
        str,
        typer.Option("--output", "-o", help='Output format: "table" or "json"'),
    ] = "table",
    connect: Annotated[
        bool,
        typer.Option("--connect", help="Open a session against each repository"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging"),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Enable debug logging"),
    ] = False,
) -> None:
    """Validate configuration and repository connectivity."""
    from .commands import check as check_module

    check_module.run(config, output, connect, verbose, debug)


@app.command()
def export(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to configuration file"),
    ] = None,
    kind: Annotated[
        str,
        typer.Option("--kind", "-k", help=KIND_HELP),
    ] = "all",
    threads: Annotated[
        int | None,
        typer.Option("--threads", "-t", min=1, max=64, help="Worker threads (default: from config)"),
    ] = None,
    documents: Annotated[
        bool,
        typer.Option("--documents/--no-documents", help="Export document metadata and content"),
    ] = True,
    resume: Annotated[
        bool,
        typer.Option("--resume/--no-resume", help="Carry forward rows that already succeeded"),
    ] = True,
    output: Annotated[
        str,
        typer.Option("--output", "-o", help='Output format: "table" or "json"'),
    ] = "table",
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging"),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Enable debug logging"),
    ] = False,
) -> None:
    """Export records from the source repository to CSV ledgers and record directories."""
    from .commands import export as export_module

    export_module.run(config, kind, threads, documents, resume, output, verbose, debug)


@app.command(name="import")
def import_records(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to configuration file"),
    ] = None,
    kind: Annotated[
        str,
        typer.Option("--kind", "-k", help=KIND_HELP),
    ] = "all",
    export_dir: Annotated[
        Path | None,
        typer.Option("--export-dir", "-e", help="Export directory to import from (default: from config)"),
    ] = None,
    cleanup_mode: Annotated[
        str | None,
        typer.Option("--cleanup-mode", help='Existing-object cleanup: "unlink" or "delete"'),
    ] = None,
    acls: Annotated[
        bool,
        typer.Option("--acls/--no-acls", help="Apply workflow ACLs to imported folders"),
    ] = True,
    output: Annotated[
        str,
        typer.Option("--output", "-o", help='Output format: "table" or "json"'),
    ] = "table",
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging"),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Enable debug logging"),
    ] = False,
) -> None:
    """Import exported records into the target repository (resumable)."""
    from .commands import import_ as import_module

    import_module.run(config, kind, export_dir, cleanup_mode, acls, output, verbose, debug)


@app.command()
def folders(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to configuration file"),
    ] = None,
    load_existing: Annotated[
        bool,
        typer.Option("--load-existing", help="Only probe and report folders that already exist"),
    ] = False,
    output: Annotated[
        str,
        typer.Option("--output", "-o", help='Output format: "table" or "json"'),
    ] = "table",
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging"),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Enable debug logging"),
    ] = False,
) -> None:
    """Create the cabinet and record folder structure from the export tree."""
    from .commands import folders as folders_module

    folders_module.run(config, load_existing, output, verbose, debug)


@app.command()
def acl(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to configuration file"),
    ] = None,
    kind: Annotated[
        str,
        typer.Option("--kind", "-k", help=KIND_HELP),
    ] = "all",
    output: Annotated[
        str,
        typer.Option("--output", "-o", help='Output format: "table" or "json"'),
    ] = "table",
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging"),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Enable debug logging"),
    ] = False,
) -> None:
    """Re-apply workflow ACLs to folders imported by an earlier run."""
    from .commands import acl as acl_module

    acl_module.run(config, kind, output, verbose, debug)


@app.command()
def demo(
    records: Annotated[
        int,
        typer.Option("--records", "-n", min=1, max=500, help="Single letters to seed"),
    ] = 3,
    work_dir: Annotated[
        Path | None,
        typer.Option("--work-dir", help="Directory for the export tree (default: a temporary directory)"),
    ] = None,
    output: Annotated[
        str,
        typer.Option("--output", "-o", help='Output format: "table" or "json"'),
    ] = "table",
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging"),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Enable debug logging"),
    ] = False,
) -> None:
    """Run export and import end to end against in-memory repositories."""
    from .commands import demo as demo_module

    demo_module.run(records, work_dir, output, verbose, debug)


if __name__ == "__main__":
    app()
