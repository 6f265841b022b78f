"""Demo command: export and import against seeded in-memory repositories."""

import logging
import tempfile
from pathlib import Path

import typer

from recordmigrate.cli.output import format_result_table, format_results_json
from recordmigrate.cli.rich_logging import console, print_error, print_success, setup_cli_logging
from recordmigrate.cli.types import validate_output
from recordmigrate.demo import build_source, build_target, demo_config
from recordmigrate.pipeline import MigrationPipeline

logger = logging.getLogger(__name__)


def run(
    records: int = 3,
    work_dir: Path | None = None,
    output: str = "table",
    verbose: bool = False,
    debug: bool = False,
) -> None:
    """Run the full pipeline twice; the second import must skip every row."""
    setup_cli_logging(verbose, debug)

    try:
        validate_output(output)
        with tempfile.TemporaryDirectory(prefix="recordmigrate-demo-") as tmp:
            root = Path(work_dir) if work_dir is not None else Path(tmp)
            source, target = build_source(records), build_target()
            cfg = demo_config(root)

            with MigrationPipeline(cfg, source_factory=source.connect, target_factory=target.connect) as pipeline:
                exported = pipeline.run_export()
                imported = pipeline.run_import()
                writes_before = target.write_count
                rerun = pipeline.run_import()
                rerun_writes = target.write_count - writes_before

            results = [exported, imported, rerun]
            if output == "json":
                print(format_results_json(results))
            else:
                for result in results:
                    format_result_table(result)
                console.print(f"Export tree: {root}" if work_dir is not None else "Export tree removed")
                if rerun_writes == 0 and rerun.skipped_rows == imported.imported_records:
                    print_success(f"Rerun skipped all {rerun.skipped_rows} imported rows with no writes")
                else:
                    print_error(f"Rerun was not idempotent ({rerun_writes} writes)")
                    raise typer.Exit(1)
        raise typer.Exit(0)

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
        logger.exception("Unexpected error during demo")
        raise typer.Exit(1) from None
