"""Rich console and logging setup for the CLI."""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

RECORDMIGRATE_THEME = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "dim": "dim",
        "highlight": "bold magenta",
    }
)

# Logs and status messages go to stderr so JSON output on stdout stays parseable
console = Console(theme=RECORDMIGRATE_THEME, stderr=True)


def configure_rich_logging(
    level: int = logging.WARNING,
    show_time: bool = True,
    show_path: bool = False,
    enable_link_path: bool = False,
) -> None:
    """Install a RichHandler on the root logger, replacing any existing handlers.

    Args:
        level: Logging level (logging.DEBUG, logging.INFO, etc.)
        show_time: Show timestamp in log output
        show_path: Show file path in log output
        enable_link_path: Enable clickable file paths in log output
    """
    logging.root.handlers.clear()

    rich_handler = RichHandler(
        console=console,
        show_time=show_time,
        show_path=show_path,
        enable_link_path=enable_link_path,
        rich_tracebacks=True,
        tracebacks_show_locals=level <= logging.DEBUG,
        markup=False,
    )
    rich_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    logging.basicConfig(level=level, handlers=[rich_handler], force=True)


def log_level(verbose: bool, debug: bool) -> int:
    """``--debug`` wins over ``--verbose``; neither means warnings only."""
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    return logging.WARNING


def setup_cli_logging(verbose: bool, debug: bool) -> None:
    configure_rich_logging(
        level=log_level(verbose, debug),
        show_time=debug,
        show_path=debug,
        enable_link_path=debug,
    )


def print_error(message: str, console_obj: Console | None = None) -> None:
    c = console_obj or console
    c.print(f"[error]✗ {message}[/error]")


def print_success(message: str, console_obj: Console | None = None) -> None:
    c = console_obj or console
    c.print(f"[success]✓ {message}[/success]")


def print_warning(message: str, console_obj: Console | None = None) -> None:
    c = console_obj or console
    c.print(f"[warning]⚠ {message}[/warning]")


def print_info(message: str, console_obj: Console | None = None) -> None:
    c = console_obj or console
    c.print(f"[info]{message}[/info]")
