"""Unit tests for the concurrent record exporter."""

import csv
from datetime import datetime
from pathlib import Path

from recordmigrate.config.models import ExportConfig, MigrationConfig
from recordmigrate.constants import (
    DOCUMENT_METADATA_CSV,
    EXPORT_ERROR_COLUMN,
    EXPORT_STATUS_COLUMN,
    MOVEMENT_REGISTER_CSV,
    SOURCE_FOLDER_TYPE,
    STATUS_EXPORT_TIMEOUT,
    STATUS_FAILED,
    STATUS_SUCCESS,
)
from recordmigrate.demo import SOURCE_CABINET, build_source
from recordmigrate.exceptions import RepositoryOperationFailed
from recordmigrate.export.exporter import RecordExporter, format_cell
from recordmigrate.export.kinds import EXPORT_HEADER, RecordKind, derive_flags, layout_for
from recordmigrate.ledger.csv_ledger import read_table
from recordmigrate.repository.memory import InMemoryRepository
from recordmigrate.repository.pool import SessionPool


def export_config(config: MigrationConfig, **overrides) -> ExportConfig:
    return config.export.model_copy(update=overrides)


def ledger_rows(config: ExportConfig, kind: RecordKind) -> list[dict[str, str]]:
    return read_table(Path(config.output_dir) / layout_for(kind).csv_name)[1]


def test_format_cell() -> None:
    """Test CSV rendering of attribute values."""
    assert format_cell(None) == ""
    assert format_cell(True) == "true"
    assert format_cell(["HO", "RO"]) == "HO"
    assert format_cell([]) == ""
    assert format_cell(datetime(2024, 6, 1, 10, 30)) == "06/01/2024 10:30:00"
    assert format_cell(3) == "3"


def test_derive_flags() -> None:
    """Test derived boolean columns."""
    flags = derive_flags(
        {"endorse_group_id": ["", "E1"], "foward_group_id": "  ", "group_letter_id": True, "bulk_letter": "TRUE"}
    )

    assert flags == {"is_endorsed": "true", "is_forward": "false", "is_group": "true", "is_bulk": "true"}


def test_export_single_records(
    source_pool: SessionPool, migration_config: MigrationConfig, source_repo: InMemoryRepository
) -> None:
    """Test export of single letters with movements, documents, content and keywords."""
    config = export_config(migration_config)
    exporter = RecordExporter(source_pool, config)

    result = exporter.export(RecordKind.SINGLE)

    assert result.exported_records == 2
    assert result.failed_exports == 0
    header, rows = read_table(exporter.csv_path(RecordKind.SINGLE))
    assert header == EXPORT_HEADER
    assert sorted(row["object_name"] for row in rows) == ["4200-2024-25", "4201-2024-25"]
    assert all(row[EXPORT_STATUS_COLUMN] == STATUS_SUCCESS for row in rows)
    assert all(row["is_group"] == "false" and row["is_bulk"] == "false" for row in rows)

    record_dir = Path(config.output_dir) / "digidak_single_records" / "4200-2024-25"
    movements = read_table(record_dir / MOVEMENT_REGISTER_CSV)[1]
    assert [m["letter_number"] for m in movements] == ["UID0000"]
    assert movements[0]["send_to"] == "Anita Desai"
    documents = read_table(record_dir / DOCUMENT_METADATA_CSV)[1]
    assert [d["object_name"] for d in documents] == ["letter_0.docx"]
    assert (record_dir / "letter_0.docx.docx").read_bytes() == b"Demo content 0"

    first = next(row for row in rows if row["object_name"] == "4200-2024-25")
    assert exporter.keywords.values(first["r_object_id"], "workflow_users") == ["Rahul Kumar"]
    assert exporter.keywords.values(movements[0]["r_object_id"], "send_to") == ["Anita Desai"]


def test_export_group_and_subletter_filters(source_pool: SessionPool, migration_config: MigrationConfig) -> None:
    """Test that each kind selects its own records and subletters skip documents."""
    config = export_config(migration_config)
    exporter = RecordExporter(source_pool, config)

    exporter.export(RecordKind.GROUP)
    exporter.export(RecordKind.SUBLETTER)

    groups = ledger_rows(config, RecordKind.GROUP)
    subletters = ledger_rows(config, RecordKind.SUBLETTER)
    assert [(row["object_name"], row["is_group"]) for row in groups] == [("G67/2024-25", "true")]
    assert [(row["object_name"], row["is_bulk"]) for row in subletters] == [("4245-2024-25", "true")]

    root = Path(config.output_dir)
    assert (root / "digidak_group_records" / "G67_2024-25" / DOCUMENT_METADATA_CSV).exists()
    subletter_dir = root / "digidak_subletter_records" / "4245-2024-25"
    assert (subletter_dir / MOVEMENT_REGISTER_CSV).exists()
    assert not (subletter_dir / DOCUMENT_METADATA_CSV).exists()


def test_export_without_documents(source_pool: SessionPool, migration_config: MigrationConfig) -> None:
    """Test that document export can be switched off."""
    config = export_config(migration_config, export_documents=False)

    RecordExporter(source_pool, config).export(RecordKind.SINGLE)

    record_dir = Path(config.output_dir) / "digidak_single_records" / "4200-2024-25"
    assert (record_dir / MOVEMENT_REGISTER_CSV).exists()
    assert not (record_dir / DOCUMENT_METADATA_CSV).exists()


def test_content_failure_fails_record_and_resume_retries_it(
    source_pool: SessionPool, migration_config: MigrationConfig, source_repo: InMemoryRepository
) -> None:
    """Test that a failed record is retried on resume while successful rows carry forward."""
    config = export_config(migration_config)
    source_repo.fail_next("get_content", RepositoryOperationFailed("content store offline"))

    first = RecordExporter(source_pool, config).export(RecordKind.SINGLE)

    assert first.exported_records == 1
    assert first.failed_exports == 1
    failed = [row for row in ledger_rows(config, RecordKind.SINGLE) if row[EXPORT_STATUS_COLUMN] == STATUS_FAILED]
    assert len(failed) == 1
    assert "content store offline" in failed[0][EXPORT_ERROR_COLUMN]

    second = RecordExporter(source_pool, config).export(RecordKind.SINGLE)

    assert second.skipped_rows == 1
    assert second.exported_records == 1
    rows = ledger_rows(config, RecordKind.SINGLE)
    assert len(rows) == 2
    assert all(row[EXPORT_STATUS_COLUMN] == STATUS_SUCCESS for row in rows)


def test_resume_carries_forward_every_success(
    source_pool: SessionPool, migration_config: MigrationConfig, source_repo: InMemoryRepository
) -> None:
    """Test that a rerun after a clean export re-reads no records."""
    config = export_config(migration_config)
    RecordExporter(source_pool, config).export(RecordKind.SINGLE)
    fetches = source_repo.operation_count("get_content")

    result = RecordExporter(source_pool, config).export(RecordKind.SINGLE)

    assert result.skipped_rows == 2
    assert result.exported_records == 0
    assert source_repo.operation_count("get_content") == fetches
    assert len(ledger_rows(config, RecordKind.SINGLE)) == 2


def test_no_resume_exports_everything_again(source_pool: SessionPool, migration_config: MigrationConfig) -> None:
    """Test that resume can be disabled."""
    config = export_config(migration_config, resume=False)
    RecordExporter(source_pool, config).export(RecordKind.SINGLE)

    result = RecordExporter(source_pool, config).export(RecordKind.SINGLE)

    assert result.skipped_rows == 0
    assert result.exported_records == 2


def test_record_without_name_is_failed(
    source_pool: SessionPool, migration_config: MigrationConfig, source_repo: InMemoryRepository
) -> None:
    """Test that a record without an object name is written as FAILED."""
    cabinet_id = source_repo.make_path(SOURCE_CABINET)
    source_repo.add_object(SOURCE_FOLDER_TYPE, {"group_letter_id": False, "bulk_letter": "false"}, [cabinet_id])
    config = export_config(migration_config)

    result = RecordExporter(source_pool, config).export(RecordKind.SINGLE)

    assert result.failed_exports == 1
    unnamed = [row for row in ledger_rows(config, RecordKind.SINGLE) if not row["object_name"]]
    assert unnamed[0][EXPORT_ERROR_COLUMN] == "Missing object_name"


def test_drain_timeout_marks_unfinished_records(
    source_pool: SessionPool, migration_config: MigrationConfig, source_repo: InMemoryRepository
) -> None:
    """Test that records still running at the drain deadline are marked as timed out."""
    config = export_config(migration_config, drain_timeout=0.2)
    source_repo.delay("get_content", 1.0)

    result = RecordExporter(source_pool, config).export(RecordKind.SINGLE)

    assert result.failed_exports == 2
    statuses = {row[EXPORT_STATUS_COLUMN] for row in ledger_rows(config, RecordKind.SINGLE)}
    assert statuses == {STATUS_EXPORT_TIMEOUT}
    assert all(STATUS_EXPORT_TIMEOUT in error for error in result.errors)


def test_many_records_through_a_small_pool(migration_config: MigrationConfig) -> None:
    """Test that interleaved workers write each record exactly once as a whole row."""
    records = 24
    source = build_source(records=records)
    source.delay("get_content", 0.02)
    config = export_config(migration_config, threads=6)
    pool = SessionPool(source.connect, size=2, acquire_timeout=10)
    try:
        result = RecordExporter(pool, config).export(RecordKind.SINGLE)
    finally:
        pool.shutdown()

    assert (result.exported_records, result.failed_exports) == (records, 0)
    path = Path(config.output_dir) / layout_for(RecordKind.SINGLE).csv_name
    with path.open(newline="", encoding="utf-8") as f:
        header, *lines = list(csv.reader(f))
    assert header == EXPORT_HEADER
    assert len(lines) == records
    assert all(len(line) == len(header) for line in lines)

    rows = [dict(zip(header, line, strict=True)) for line in lines]
    assert sorted(row["object_name"] for row in rows) == sorted(f"{4200 + i}-2024-25" for i in range(records))
    assert [row[EXPORT_STATUS_COLUMN] for row in rows] == [STATUS_SUCCESS] * records
