"""Folders command implementation."""

import logging
from pathlib import Path

import typer

from recordmigrate.cli.output import format_result_table, format_results_json
from recordmigrate.cli.rich_logging import print_error, print_success, setup_cli_logging
from recordmigrate.cli.types import validate_output
from recordmigrate.config.loader import load_config
from recordmigrate.exceptions import ConfigError, HierarchyError, RepositoryError
from recordmigrate.pipeline import MigrationPipeline

logger = logging.getLogger(__name__)


def run(
    config: Path | None = None,
    load_existing: bool = False,
    output: str = "table",
    verbose: bool = False,
    debug: bool = False,
) -> None:
    """Create (or, with ``load_existing``, only probe) the record folder structure."""
    setup_cli_logging(verbose, debug)

    try:
        validate_output(output)
        cfg = load_config(config)
        with MigrationPipeline(cfg) as pipeline:
            result = pipeline.run_folders(load_existing=load_existing)

        if output == "json":
            print(format_results_json([result]))
        else:
            format_result_table(result)
            print_success("Folder structure checked" if load_existing else "Folder structure ready")
        raise typer.Exit(0)

    except typer.Exit:
        raise
    except typer.BadParameter as e:
        print_error(str(e))
        raise typer.Exit(2) from None
    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(2) from None
    except (HierarchyError, RepositoryError) as e:
        print_error(f"Folder setup failed: {e}")
        logger.error(f"Folder setup failed: {e}")
        raise typer.Exit(3) from None
    except KeyboardInterrupt:
        print_error("Interrupted by user")
        raise typer.Exit(130) from None
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        logger.exception("Unexpected error during folder setup")
        raise typer.Exit(1) from None
