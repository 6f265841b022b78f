"""Check command implementation for readiness checks."""

from pathlib import Path

import typer

from recordmigrate.cli.output import format_readiness_check_json, format_readiness_check_table
from recordmigrate.cli.rich_logging import print_error, setup_cli_logging
from recordmigrate.cli.types import validate_output
from recordmigrate.config.validator import perform_readiness_check

CONFIG_CHECKS = ("Configuration File Found", "Configuration Valid")


def run(
    config: Path | None,
    output: str = "table",
    connect: bool = False,
    verbose: bool = False,
    debug: bool = False,
) -> None:
    """
    Run readiness checks and display results.

    Exit codes: 0 ready, 1 not ready, 2 configuration failure.

    Args:
        config: Optional path to config file
        output: Output format ("table" or "json")
        connect: Also open a session against each repository
        verbose: Enable verbose logging
        debug: Enable debug logging
    """
    setup_cli_logging(verbose, debug)
    try:
        validate_output(output)
        result = perform_readiness_check(config, connect=connect)

        if output == "json":
            # Use print() for JSON to ensure it goes to stdout
            print(format_readiness_check_json(result))
        else:
            format_readiness_check_table(result)

        if result.ready:
            raise typer.Exit(0)
        if any(check.name in CONFIG_CHECKS and check.status == "fail" for check in result.checks):
            raise typer.Exit(2)
        raise typer.Exit(1)

    except typer.Exit:
        raise
    except typer.BadParameter as e:
        print_error(str(e))
        raise typer.Exit(2) from None
    except KeyboardInterrupt:
        print_error("Interrupted by user")
        raise typer.Exit(130) from None
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        raise typer.Exit(1) from None
