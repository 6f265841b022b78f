"""Resumable import of exported records into the target repository."""

from recordmigrate.importer.create import CreateState, TwoPhaseCreate
from recordmigrate.importer.documents import DocumentImporter, FormatResolver, content_candidates, locate_content
from recordmigrate.importer.importer import RecordImporter
from recordmigrate.importer.movements import MovementImporter, write_updated_register
from recordmigrate.importer.timeouts import TimeoutRunner

__all__ = [
    "CreateState",
    "DocumentImporter",
    "FormatResolver",
    "MovementImporter",
    "RecordImporter",
    "TimeoutRunner",
    "TwoPhaseCreate",
    "content_candidates",
    "locate_content",
    "write_updated_register",
]
