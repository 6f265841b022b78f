"""Concurrent record exporter.

One query selects every top-level record of a kind; each record is then
handed to a worker thread that borrows its own pooled session, writes the
record's movement register, document metadata and content files, collects
its repeating attribute values, and appends the record's row to the shared
ledger under one lock.
"""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from pathlib import Path
from typing import Any

from recordmigrate.config.models import ExportConfig
from recordmigrate.constants import (
    DOCUMENT_METADATA_CSV,
    EXPORT_ERROR_COLUMN,
    EXPORT_STATUS_COLUMN,
    FORMAT_TYPE,
    IMPORT_ERROR_COLUMN,
    IMPORT_STATUS_COLUMN,
    MOVEMENT_REGISTER_CSV,
    PROGRESS_LOGGING_INTERVAL,
    STATUS_EXPORT_TIMEOUT,
    STATUS_FAILED,
    STATUS_SUCCESS,
)
from recordmigrate.export.keywords import KeywordMap
from recordmigrate.export.kinds import (
    DOCUMENT_COLUMNS,
    EXPORT_HEADER,
    FLAG_SOURCE_COLUMNS,
    FOLDER_COLUMNS,
    MOVEMENT_COLUMNS,
    RecordKind,
    derive_flags,
    layout_for,
)
from recordmigrate.ledger.csv_ledger import CheckpointLedger, LedgerWriter, write_table
from recordmigrate.metrics import MigrationResult
from recordmigrate.repository.base import RepositorySession
from recordmigrate.repository.pool import SessionPool
from recordmigrate.repository.query import Condition, Eq, InFolder, Query
from recordmigrate.utils.dates import format_repository_date
from recordmigrate.utils.path_utils import sanitize_record_name

logger = logging.getLogger(__name__)


def format_cell(value: Any) -> str:
    """Render an attribute value as a CSV cell (first value of a repeating attribute)."""
    if isinstance(value, list):
        value = value[0] if value else None
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return format_repository_date(value)
    return str(value)


class RecordExporter:
    """Exports one record kind at a time from the legacy repository.

    Example:
        >>> exporter = RecordExporter(pool, config.export, KeywordMap(config.export.keyword_attributes))
        >>> result = exporter.export(RecordKind.GROUP)
        >>> exporter.keywords.write(exporter.output_dir)
    """

    def __init__(self, pool: SessionPool, config: ExportConfig, keywords: KeywordMap | None = None):
        self.pool = pool
        self.config = config
        self.output_dir = Path(config.output_dir)
        self.keywords = keywords if keywords is not None else KeywordMap(config.keyword_attributes)
        self._format_cache: dict[str, str] = {}
        self._format_lock = threading.Lock()

    def csv_path(self, kind: RecordKind) -> Path:
        return self.output_dir / layout_for(kind).csv_name

    def export(self, kind: RecordKind, extra_filter: tuple[Condition, ...] = ()) -> MigrationResult:
        """Export every record of a kind.

        Args:
            kind: Record kind to export
            extra_filter: Additional source conditions (e.g. a creation date window)

        Returns:
            MigrationResult with exported_records / failed_exports / skipped_rows

        Raises:
            PoolExhaustedError: If no session is available for the listing query
            RepositoryOperationFailed: If the listing query itself fails
        """
        layout = layout_for(kind)
        result = MigrationResult(phase=f"export:{kind}")
        csv_path = self.csv_path(kind)
        records_dir = self.output_dir / layout.records_dir
        records_dir.mkdir(parents=True, exist_ok=True)
        export_documents = layout.exports_documents and self.config.export_documents

        import_columns, carried = self._carried_rows(csv_path)

        query = Query(
            self.config.folder_type,
            tuple(FOLDER_COLUMNS + FLAG_SOURCE_COLUMNS),
            layout.where + tuple(extra_filter),
            distinct=True,
        )
        logger.info(f"Exporting {kind} records: {query.to_dql()}")
        with self.pool.session() as session:
            records = session.query(query)

        pending = [r for r in records if r.get("r_object_id") and str(r["r_object_id"]) not in carried]
        logger.info(
            f"Found {len(records)} {kind} records "
            f"({len(records) - len(pending)} already exported, {len(pending)} to export)"
        )

        writer = LedgerWriter(csv_path, EXPORT_HEADER + import_columns)
        for row in carried.values():
            writer.write_dict(row)
        result.increment("skipped_rows", len(carried))

        emitted: set[str] = set()
        emit_lock = threading.Lock()

        def emit(record_id: str, values: dict[str, Any]) -> bool:
            # First writer for a record wins; timeout marks and late workers race here
            with emit_lock:
                if record_id in emitted:
                    return False
                emitted.add(record_id)
            return writer.write_dict(values)

        executor = ThreadPoolExecutor(max_workers=self.config.threads, thread_name_prefix=f"export-{kind}")
        futures: dict[Future[bool], dict[str, Any]] = {}
        try:
            for number, record in enumerate(pending, start=1):
                row = {column: format_cell(record.get(column)) for column in FOLDER_COLUMNS}
                row.update(derive_flags(record))
                future = executor.submit(
                    self._export_record, row, records_dir, export_documents, emit, result, number
                )
                futures[future] = row

            done, not_done = wait(futures, timeout=self.config.drain_timeout)
            if not_done:
                logger.error(
                    f"Export drain timed out after {self.config.drain_timeout:g}s; "
                    f"{len(not_done)} {kind} records not finished"
                )
                for future in not_done:
                    future.cancel()
                    row = dict(futures[future])
                    row[EXPORT_STATUS_COLUMN] = STATUS_EXPORT_TIMEOUT
                    row[EXPORT_ERROR_COLUMN] = f"Not finished within {self.config.drain_timeout:g}s"
                    if emit(row["r_object_id"], row):
                        result.increment("failed_exports")
                        result.record_error(f"{row['object_name']}: {STATUS_EXPORT_TIMEOUT}")

            for future in done:
                if future.exception() is not None:
                    logger.error(f"Export worker crashed: {future.exception()}")
        finally:
            writer.close()
            executor.shutdown(wait=False, cancel_futures=True)

        result.finish()
        logger.info(
            f"Exported {result.exported_records} {kind} records to {csv_path} "
            f"({result.failed_exports} failed, {result.skipped_rows} carried forward)"
        )
        return result

    def _carried_rows(self, csv_path: Path) -> tuple[list[str], dict[str, dict[str, str]]]:
        """Rows from a previous run that already succeeded, keyed by source id.

        Returns:
            Import status columns present in the previous ledger, and the carried rows
        """
        if not self.config.resume or not csv_path.exists():
            return [], {}
        header, rows = CheckpointLedger(csv_path, EXPORT_STATUS_COLUMN, EXPORT_ERROR_COLUMN).read()
        present = {column.lower() for column in header}
        import_columns = [c for c in (IMPORT_STATUS_COLUMN, IMPORT_ERROR_COLUMN) if c in present]
        carried = {row.get("r_object_id"): row.as_dict() for row in rows if row.is_success}
        carried.pop("", None)
        if carried:
            logger.info(f"Resume: carrying forward {len(carried)} successful rows from {csv_path.name}")
        return import_columns, carried

    def _export_record(
        self,
        row: dict[str, Any],
        records_dir: Path,
        export_documents: bool,
        emit: Callable[[str, dict[str, Any]], bool],
        result: MigrationResult,
        number: int,
    ) -> bool:
        record_id = row["r_object_id"]
        name = row["object_name"]
        status, error = STATUS_SUCCESS, ""

        if name:
            try:
                with self.pool.session() as session:
                    record_dir = records_dir / sanitize_record_name(name)
                    record_dir.mkdir(parents=True, exist_ok=True)
                    self._export_movements(session, record_dir, row.get("uid_number", ""))
                    if export_documents:
                        self._export_documents(session, record_dir, record_id)
                    self.keywords.collect(session.fetch(record_id))
            except Exception as e:
                status, error = STATUS_FAILED, str(e)
                logger.error(f"Export failed for {name}: {e}")
        else:
            status, error = STATUS_FAILED, "Missing object_name"

        row = dict(row)
        row[EXPORT_STATUS_COLUMN] = status
        row[EXPORT_ERROR_COLUMN] = error
        if not emit(record_id, row):
            logger.warning(f"Dropped late export result for {name or record_id} ({status})")
            return False

        if status == STATUS_SUCCESS:
            result.increment("exported_records")
        else:
            result.increment("failed_exports")
            result.record_error(f"{name or record_id}: {error}")
        if number % PROGRESS_LOGGING_INTERVAL == 0:
            logger.info(f"Export progress: {number} records processed")
        return True

    def _export_movements(self, session: RepositorySession, record_dir: Path, uid_number: str) -> int:
        query = Query(self.config.movement_type, tuple(MOVEMENT_COLUMNS), (Eq("letter_number", uid_number),))
        entries = session.query(query)
        rows = [{column: format_cell(entry.get(column)) for column in MOVEMENT_COLUMNS} for entry in entries]
        write_table(record_dir / MOVEMENT_REGISTER_CSV, MOVEMENT_COLUMNS, rows)

        for entry in entries:
            movement_id = entry.get("r_object_id")
            if movement_id and self.config.movement_keyword_attributes:
                self.keywords.collect(session.fetch(movement_id), self.config.movement_keyword_attributes)
        return len(rows)

    def _export_documents(self, session: RepositorySession, record_dir: Path, record_id: str) -> int:
        query = Query(
            self.config.document_type,
            tuple(DOCUMENT_COLUMNS + ["r_content_size"]),
            (InFolder(record_id, descend=True),),
            distinct=True,
            row_based=True,
        )
        documents = session.query(query)
        rows = [{column: format_cell(doc.get(column)) for column in DOCUMENT_COLUMNS} for doc in documents]
        write_table(record_dir / DOCUMENT_METADATA_CSV, DOCUMENT_COLUMNS, rows)

        for doc in documents:
            if float(doc.get("r_content_size") or 0) > 0:
                self._download_content(session, record_dir, doc)
        return len(rows)

    def _download_content(self, session: RepositorySession, record_dir: Path, doc: dict[str, Any]) -> Path:
        object_id = str(doc["r_object_id"])
        base_name = sanitize_record_name(str(doc.get("object_name") or object_id))
        extension = self.dos_extension(session, format_cell(doc.get("a_content_type")))
        suffix = f".{extension}" if extension else ""

        destination = record_dir / f"{base_name}{suffix}"
        if destination.exists():
            destination = record_dir / f"{base_name}_{object_id}{suffix}"
        return session.get_content(object_id, destination)

    def dos_extension(self, session: RepositorySession, format_name: str) -> str:
        """File extension registered for a content format, cached per run."""
        if not format_name:
            return ""
        with self._format_lock:
            if format_name in self._format_cache:
                return self._format_cache[format_name]

        rows = session.query(Query(FORMAT_TYPE, ("dos_extension",), (Eq("name", format_name),)))
        extension = format_cell(rows[0].get("dos_extension")) if rows else ""
        with self._format_lock:
            self._format_cache[format_name] = extension
        return extension
