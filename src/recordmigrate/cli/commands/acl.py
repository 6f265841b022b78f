"""ACL command implementation."""

import logging
from pathlib import Path

import typer

from recordmigrate.cli.output import format_result_table, format_results_json
from recordmigrate.cli.rich_logging import print_error, print_success, print_warning, setup_cli_logging
from recordmigrate.cli.types import parse_kinds, validate_output
from recordmigrate.config.loader import load_config
from recordmigrate.exceptions import ConfigError, HierarchyError, RepositoryError
from recordmigrate.pipeline import MigrationPipeline

logger = logging.getLogger(__name__)


def run(
    config: Path | None = None,
    kind: str = "all",
    output: str = "table",
    verbose: bool = False,
    debug: bool = False,
) -> None:
    """Re-apply workflow ACLs to folders whose import succeeded.

    ACL failures are reported but never change a row's import status.
    """
    setup_cli_logging(verbose, debug)

    try:
        validate_output(output)
        kinds = parse_kinds(kind)
        cfg = load_config(config)
        with MigrationPipeline(cfg) as pipeline:
            result = pipeline.run_acl(kinds)

        if output == "json":
            print(format_results_json([result]))
        else:
            format_result_table(result)
            if result.acl_failures or result.errors:
                print_warning(f"{result.acl_failures} folders kept their previous ACL")
            else:
                print_success(f"Applied {result.acls_applied} ACLs")
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
        print_error(f"ACL phase failed: {e}")
        logger.error(f"ACL phase failed: {e}")
        raise typer.Exit(3) from None
    except KeyboardInterrupt:
        print_error("Interrupted by user")
        raise typer.Exit(130) from None
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        logger.exception("Unexpected error during ACL phase")
        raise typer.Exit(1) from None
