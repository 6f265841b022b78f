"""recordmigrate - Resumable CSV-based migration of letter records between content repositories."""

__version__ = "0.1.0"


def main() -> None:
    """Main entry point for the CLI."""
    from recordmigrate.cli.main import app

    app()
