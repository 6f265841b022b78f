"""Concurrent export of letter records to CSV ledgers and per-record directories."""

from recordmigrate.export.exporter import RecordExporter
from recordmigrate.export.keywords import KeywordMap
from recordmigrate.export.kinds import IMPORT_ORDER, LAYOUTS, RecordKind, layout_for

__all__ = [
    "IMPORT_ORDER",
    "KeywordMap",
    "LAYOUTS",
    "RecordExporter",
    "RecordKind",
    "layout_for",
]
