"""Shared parsing utilities for CLI options."""

import typer

from recordmigrate.export.kinds import IMPORT_ORDER, RecordKind

ALL_KINDS = "all"
OUTPUT_FORMATS = ("table", "json")


def parse_kind(kind_str: str) -> RecordKind:
    """Parse a single record kind, accepting plurals ("singles") and any case.

    Raises:
        typer.BadParameter: If the kind is unknown
    """
    normalized = kind_str.strip().lower()
    if normalized.endswith("s"):
        normalized = normalized[:-1]
    try:
        return RecordKind(normalized)
    except ValueError:
        available = ", ".join(kind.value for kind in RecordKind)
        raise typer.BadParameter(f"Invalid record kind: '{kind_str}'. Available kinds: {available}") from None


def parse_kinds(kinds_str: str | None) -> list[RecordKind]:
    """Parse a comma-separated list of record kinds, or "all", into import order.

    Examples:
        >>> parse_kinds("subletter,single")
        [<RecordKind.SINGLE: 'single'>, <RecordKind.SUBLETTER: 'subletter'>]
    """
    if not kinds_str or kinds_str.strip().lower() == ALL_KINDS:
        return list(IMPORT_ORDER)
    selected = {parse_kind(name) for name in kinds_str.split(",") if name.strip()}
    return [kind for kind in IMPORT_ORDER if kind in selected]


def validate_output(output: str) -> str:
    if output not in OUTPUT_FORMATS:
        raise typer.BadParameter(f"Invalid output format: '{output}'. Use one of: {', '.join(OUTPUT_FORMATS)}")
    return output
