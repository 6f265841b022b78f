"""Export command implementation."""

import logging
from pathlib import Path

import typer

from recordmigrate.cli.output import format_result_table, format_results_json
from recordmigrate.cli.rich_logging import (
    console,
    print_error,
    print_info,
    print_success,
    print_warning,
    setup_cli_logging,
)
from recordmigrate.cli.types import parse_kinds, validate_output
from recordmigrate.config.loader import load_config
from recordmigrate.exceptions import ConfigError, RepositoryError
from recordmigrate.pipeline import MigrationPipeline

logger = logging.getLogger(__name__)


def run(
    config: Path | None = None,
    kind: str = "all",
    threads: int | None = None,
    documents: bool = True,
    resume: bool = True,
    output: str = "table",
    verbose: bool = False,
    debug: bool = False,
) -> None:
    """Export records from the source repository.

    Args:
        config: Optional path to config file
        kind: Record kinds to export ("all" or comma-separated)
        threads: Worker thread override
        documents: Export document metadata and content
        resume: Carry forward rows that already succeeded
        output: Output format ("table" or "json")
        verbose: Enable verbose logging
        debug: Enable debug logging
    """
    setup_cli_logging(verbose, debug)

    try:
        validate_output(output)
        kinds = parse_kinds(kind)
        cfg = load_config(config)
        cfg.export.export_documents = documents
        cfg.export.resume = resume
        if threads is not None:
            cfg.export.threads = threads

        if output != "json":
            print_info(
                f"Exporting {', '.join(kinds)} records to {cfg.export.output_dir} with {cfg.export.threads} threads"
            )

        with MigrationPipeline(cfg) as pipeline:
            result = pipeline.run_export(kinds)

        if output == "json":
            print(format_results_json([result]))
        else:
            format_result_table(result)
            if result.failed_exports:
                print_warning(f"{result.failed_exports} records failed; rerun export to retry them")
            else:
                print_success("Export complete")

        raise typer.Exit(1 if result.failed_exports else 0)

    except typer.Exit:
        raise
    except typer.BadParameter as e:
        print_error(str(e))
        raise typer.Exit(2) from None
    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        logger.error(f"Configuration error: {e}")
        raise typer.Exit(2) from None
    except RepositoryError as e:
        print_error(f"Repository error: {e}")
        logger.error(f"Repository error: {e}")
        raise typer.Exit(3) from None
    except KeyboardInterrupt:
        print_error("Export interrupted by user")
        console.print("[dim]Run 'recordmigrate export' again to resume[/dim]")
        raise typer.Exit(130) from None
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        logger.exception("Unexpected error during export")
        raise typer.Exit(1) from None
