"""Document import: one object per row of a record's ``document_metadata.csv``."""

import logging
import threading
from pathlib import Path

from recordmigrate.config.models import ImportConfig
from recordmigrate.constants import DEFAULT_CONTENT_EXTENSION, DOCUMENT_METADATA_CSV, FORMAT_TYPE, UNKNOWN_FORMAT
from recordmigrate.exceptions import ContentOperationTimeout, RepositoryError
from recordmigrate.folder.metadata import AttributeMapper
from recordmigrate.importer.timeouts import TimeoutRunner
from recordmigrate.ledger.csv_ledger import read_table
from recordmigrate.metrics import MigrationResult
from recordmigrate.repository.base import RepositorySession
from recordmigrate.repository.query import Eq, Query
from recordmigrate.utils.path_utils import clean_object_name, stage_short_path

logger = logging.getLogger(__name__)


def content_candidates(object_name: str) -> list[str]:
    """File names to try for a document's content, in order.

    Examples:
        >>> content_candidates("note.pdf.pdf")
        ['note.pdf.pdf', 'note', 'note.pdf.pdf.docx', 'note.pdf.pdf.pdf']
    """
    candidates = [object_name, clean_object_name(object_name), f"{object_name}{DEFAULT_CONTENT_EXTENSION}"]
    suffix = Path(object_name).suffix
    if suffix:
        candidates.append(f"{object_name}{suffix}")
    return list(dict.fromkeys(c for c in candidates if c))


def locate_content(record_dir: Path, object_name: str) -> Path | None:
    for candidate in content_candidates(object_name):
        path = record_dir / candidate
        if path.is_file():
            return path
    return None


class FormatResolver:
    """Maps a file extension to a repository format name.

    The configured extension map wins; otherwise the ``dm_format`` table is
    queried by ``dos_extension``. Lookups are cached for the run.
    """

    def __init__(self, format_mapping: dict[str, str] | None = None):
        self.format_mapping = {k.lower().lstrip("."): v for k, v in (format_mapping or {}).items()}
        self._cache: dict[str, str] = {}
        self._lock = threading.Lock()

    def resolve(self, session: RepositorySession, file_name: str) -> str:
        extension = Path(file_name).suffix.lower().lstrip(".")
        if not extension:
            return UNKNOWN_FORMAT
        if extension in self.format_mapping:
            return self.format_mapping[extension]

        with self._lock:
            if extension in self._cache:
                return self._cache[extension]

        format_name = UNKNOWN_FORMAT
        try:
            rows = session.query(Query(FORMAT_TYPE, ("name",), (Eq("dos_extension", extension),)))
            if rows and rows[0].get("name"):
                format_name = str(rows[0]["name"])
        except RepositoryError as e:
            logger.warning(f"Format lookup failed for extension '{extension}': {e}")
            return UNKNOWN_FORMAT

        if format_name == UNKNOWN_FORMAT:
            logger.warning(f"No format registered for extension '{extension}'")
        with self._lock:
            self._cache[extension] = format_name
        return format_name


class DocumentImporter:
    """Creates a record's documents and attaches their content.

    A document that fails is counted and logged and the remaining documents
    still run; only a content timeout fails the whole record.
    """

    def __init__(
        self,
        config: ImportConfig,
        runner: TimeoutRunner,
        result: MigrationResult,
        formats: FormatResolver | None = None,
    ):
        self.config = config
        self.runner = runner
        self.result = result
        self.formats = formats if formats is not None else FormatResolver(config.format_mapping)
        self.mapper = AttributeMapper(config.document_mapping, date_formats=config.date_formats)

    def import_documents(self, session: RepositorySession, parent_id: str, record_dir: Path) -> int:
        """Import every row of ``document_metadata.csv`` in a record directory.

        Returns:
            Number of documents created

        Raises:
            ContentOperationTimeout: If a content or save call hangs
        """
        csv_path = record_dir / DOCUMENT_METADATA_CSV
        if not csv_path.exists():
            logger.debug(f"No {DOCUMENT_METADATA_CSV} in {record_dir.name}")
            return 0

        _, rows = read_table(csv_path)
        created = 0
        for row in rows:
            original_name = (row.get("object_name") or "").strip()
            try:
                self._import_document(session, parent_id, record_dir, row, original_name)
            except ContentOperationTimeout:
                self.result.record_document(success=False)
                raise
            except (RepositoryError, OSError, ValueError) as e:
                self.result.record_document(success=False)
                self.result.record_error(f"{record_dir.name}/{original_name}: {e}")
                logger.error(f"Failed to import document {original_name} in {record_dir.name}: {e}")
                continue
            self.result.record_document(success=True)
            created += 1

        logger.info(f"Imported {created} of {len(rows)} documents for {record_dir.name}")
        return created

    def _import_document(
        self,
        session: RepositorySession,
        parent_id: str,
        record_dir: Path,
        row: dict[str, str],
        original_name: str,
    ) -> None:
        document = session.new_object(self.config.document_type)
        for name, value in self.mapper.map_row(
            session, self.config.document_type, row, skip=("object_name",)
        ).items():
            document.set(name, value)
        document.set("object_name", clean_object_name(original_name))

        staged: Path | None = None
        temporary = False
        content = locate_content(record_dir, original_name) if original_name else None
        try:
            if content is not None:
                staged, temporary = stage_short_path(content)
                content_format = self.formats.resolve(session, content.name)
                self.runner.run(
                    "set_content",
                    session.set_content,
                    document,
                    staged,
                    None if content_format == UNKNOWN_FORMAT else content_format,
                    target=content.name,
                )
            elif original_name:
                logger.warning(f"Content file missing for {original_name} in {record_dir.name}")

            document.link(parent_id)
            self.runner.run("save", session.save, document, target=original_name)
        finally:
            if temporary and staged is not None:
                staged.unlink(missing_ok=True)
