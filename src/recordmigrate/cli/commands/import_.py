"""Import command implementation."""

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
from recordmigrate.exceptions import ConfigError, HierarchyError, RepositoryError
from recordmigrate.pipeline import MigrationPipeline

logger = logging.getLogger(__name__)

CLEANUP_MODES = ("unlink", "delete")


def run(
    config: Path | None = None,
    kind: str = "all",
    export_dir: Path | None = None,
    cleanup_mode: str | None = None,
    acls: bool = True,
    output: str = "table",
    verbose: bool = False,
    debug: bool = False,
) -> None:
    """Import exported records into the target repository.

    Rows already marked SUCCESS are skipped, so the command can be rerun
    after an interruption or a partial failure.

    Args:
        config: Optional path to config file
        kind: Record kinds to import ("all" or comma-separated)
        export_dir: Export directory override
        cleanup_mode: "unlink" or "delete" for objects left by an earlier run
        acls: Apply workflow ACLs to imported folders
        output: Output format ("table" or "json")
        verbose: Enable verbose logging
        debug: Enable debug logging
    """
    setup_cli_logging(verbose, debug)

    try:
        validate_output(output)
        kinds = parse_kinds(kind)
        if cleanup_mode is not None and cleanup_mode not in CLEANUP_MODES:
            raise typer.BadParameter(f"Invalid cleanup mode: '{cleanup_mode}'. Use one of: {', '.join(CLEANUP_MODES)}")

        cfg = load_config(config)
        if export_dir is not None:
            cfg.import_.export_dir = str(export_dir)
        if cleanup_mode is not None:
            cfg.import_.cleanup_mode = cleanup_mode
        cfg.acl.apply_workflow_acls = acls

        if not Path(cfg.import_.export_dir).is_dir():
            print_error(f"Export directory not found: {cfg.import_.export_dir}")
            raise typer.Exit(2)

        if output != "json":
            print_info(f"Importing {', '.join(kinds)} records from {cfg.import_.export_dir}")

        with MigrationPipeline(cfg) as pipeline:
            result = pipeline.run_import(kinds)

        if output == "json":
            print(format_results_json([result]))
        else:
            format_result_table(result)
            if result.failed_records:
                print_warning(f"{result.failed_records} records failed; rerun import to retry them")
            else:
                print_success("Import complete")

        raise typer.Exit(1 if result.failed_records else 0)

    except typer.Exit:
        raise
    except typer.BadParameter as e:
        print_error(str(e))
        raise typer.Exit(2) from None
    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        logger.error(f"Configuration error: {e}")
        raise typer.Exit(2) from None
    except (HierarchyError, RepositoryError) as e:
        print_error(f"Import aborted: {e}")
        logger.error(f"Import aborted: {e}")
        console.print("[dim]Rows processed before the failure keep their status; rerun to continue[/dim]")
        raise typer.Exit(3) from None
    except KeyboardInterrupt:
        print_error("Import interrupted by user")
        console.print("[dim]Run 'recordmigrate import' again to resume[/dim]")
        raise typer.Exit(130) from None
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        logger.exception("Unexpected error during import")
        raise typer.Exit(1) from None
