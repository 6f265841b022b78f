"""Unit tests for the sequential record importer."""

from datetime import datetime
from pathlib import Path

import pytest

from recordmigrate.config.models import ImportConfig
from recordmigrate.constants import (
    DOCUMENT_METADATA_CSV,
    IMPORT_ERROR_COLUMN,
    IMPORT_STATUS_COLUMN,
    MOVEMENT_REGISTER_CSV,
    MOVEMENT_REGISTER_UPDATED_CSV,
    STATUS_CLEANUP_FAILED,
    STATUS_FAILED,
    STATUS_SUCCESS,
    TARGET_DOCUMENT_TYPE,
    TARGET_FOLDER_TYPE,
    TARGET_MOVEMENT_TYPE,
)
from recordmigrate.exceptions import ObjectNotFoundError, RepositoryOperationFailed
from recordmigrate.export.keywords import KeywordMap
from recordmigrate.export.kinds import MOVEMENT_COLUMNS, RecordKind, layout_for
from recordmigrate.folder.hierarchy import FolderHierarchyBuilder
from recordmigrate.importer.importer import RecordImporter
from recordmigrate.ledger.csv_ledger import read_table, write_table
from recordmigrate.metrics import MigrationResult
from recordmigrate.repository.memory import InMemoryRepository
from recordmigrate.repository.pool import SessionPool
from tests.conftest import create_test_export, create_test_export_row

SOURCE_ID = "0b0100000000000001"
FOLDER_PATH = "/Digidak Legacy/4200-2024-25"


def write_record_files(export_dir: Path, name: str = "4200-2024-25") -> Path:
    record_dir = export_dir / layout_for(RecordKind.SINGLE).records_dir / name
    record_dir.mkdir(parents=True, exist_ok=True)
    write_table(
        record_dir / MOVEMENT_REGISTER_CSV,
        MOVEMENT_COLUMNS,
        [
            {
                "r_object_id": "0901000000000000a1",
                "object_name": "movement-UID0000",
                "modified_from": "Rahul Kumar",
                "status": "Closed",
                "completion_date": "06/02/2024 10:30:00",
                "letter_number": "UID0000",
                "send_to": "Anita Desai",
            }
        ],
    )
    write_table(
        record_dir / DOCUMENT_METADATA_CSV,
        ["r_object_id", "object_name", "document_type", "a_content_type"],
        [{"r_object_id": "0901000000000000b1", "object_name": "letter_0.docx", "document_type": "Inward"}],
    )
    (record_dir / "letter_0.docx").write_bytes(b"Demo content 0")
    return record_dir


def make_importer(
    target_pool: SessionPool, config: ImportConfig, builder: FolderHierarchyBuilder, **kwargs
) -> RecordImporter:
    return RecordImporter(target_pool, config, builder, retry_wait=0.01, **kwargs)


def ledger(export_dir: Path) -> list[dict[str, str]]:
    return read_table(export_dir / layout_for(RecordKind.SINGLE).csv_name)[1]


def test_import_single_record(
    target_pool: SessionPool,
    import_config: ImportConfig,
    builder: FolderHierarchyBuilder,
    export_dir: Path,
    target_repo: InMemoryRepository,
    result: MigrationResult,
) -> None:
    """Test folder, movement and document creation for one record."""
    create_test_export(export_dir, RecordKind.SINGLE, [create_test_export_row("4200-2024-25", SOURCE_ID)])
    record_dir = write_record_files(export_dir)
    keywords = KeywordMap()
    keywords.add(SOURCE_ID, "workflow_users", "ecm_ho_delhi")
    keywords.add(SOURCE_ID, "office_type", "HO")

    make_importer(target_pool, import_config, builder, keywords=keywords).import_kind(RecordKind.SINGLE)

    assert result.imported_records == 1
    assert result.folders_created == 2
    assert ledger(export_dir)[0][IMPORT_STATUS_COLUMN] == STATUS_SUCCESS

    session = target_repo.connect()
    folder = session.fetch_by_path(FOLDER_PATH)
    assert folder.object_type == TARGET_FOLDER_TYPE
    assert folder.get("letter_subject") == "Subject of 4200-2024-25"
    assert folder.get("status") == "Closed"
    assert folder.get("migrated_id") == SOURCE_ID
    assert folder.get("is_migrated") is True
    assert folder.get("entry_date") == datetime(2024, 6, 1, 10, 30)
    assert folder.values("workflow_groups") == ["ecm_ho_delhi"]
    assert folder.values("source_vertical") == ["HO"]
    assert builder.folder_id(FOLDER_PATH) == folder.object_id

    [movement] = target_repo.objects_of_type(TARGET_MOVEMENT_TYPE)
    assert movement.get("performer") == "rkumar"
    assert movement.values("assigned_user") == ["anita.desai"]
    assert movement.get("i_folder_id") == folder.object_id
    assert movement.get("completed_date") == datetime(2024, 6, 2, 10, 30)
    assert result.movement_registers_created == 1
    assert (record_dir / MOVEMENT_REGISTER_UPDATED_CSV).exists()

    [document] = target_repo.objects_of_type(TARGET_DOCUMENT_TYPE)
    assert document.name == "letter_0"
    assert document.folder_ids == [folder.object_id]
    assert document.get("a_content_type") == "msw12"
    assert target_repo.content_of(document.object_id) == b"Demo content 0"
    assert (result.total_documents, result.successful_imports) == (1, 1)


def test_rerun_after_success_makes_no_writes(
    target_pool: SessionPool,
    import_config: ImportConfig,
    builder: FolderHierarchyBuilder,
    export_dir: Path,
    target_repo: InMemoryRepository,
    result: MigrationResult,
) -> None:
    """Test that SUCCESS rows are copied through without touching the repository."""
    create_test_export(export_dir, RecordKind.SINGLE, [create_test_export_row("4200-2024-25", SOURCE_ID)])
    write_record_files(export_dir)
    make_importer(target_pool, import_config, builder).import_kind(RecordKind.SINGLE)
    ledger_path = export_dir / layout_for(RecordKind.SINGLE).csv_name
    committed = ledger_path.read_bytes()
    writes = target_repo.write_count
    reads = target_repo.operation_count("fetch_by_path")

    make_importer(target_pool, import_config, builder).import_kind(RecordKind.SINGLE)

    assert ledger_path.read_bytes() == committed
    assert target_repo.write_count == writes
    assert target_repo.operation_count("fetch_by_path") == reads
    assert result.skipped_rows == 1
    assert result.imported_records == 1
    assert len(target_repo.objects_of_type(TARGET_FOLDER_TYPE)) == 1


def test_failed_row_is_retried_on_resume(
    target_pool: SessionPool,
    import_config: ImportConfig,
    builder: FolderHierarchyBuilder,
    export_dir: Path,
    target_repo: InMemoryRepository,
    result: MigrationResult,
) -> None:
    """Test that only rows not marked SUCCESS are imported again."""
    create_test_export(
        export_dir,
        RecordKind.SINGLE,
        [
            create_test_export_row("4200-2024-25", import_status="SUCCESS"),
            create_test_export_row("4201-2024-25", import_status="FAILED", import_error="boom"),
        ],
    )

    make_importer(target_pool, import_config, builder).import_kind(RecordKind.SINGLE)

    assert result.skipped_rows == 1
    assert result.imported_records == 1
    rows = ledger(export_dir)
    assert [(r[IMPORT_STATUS_COLUMN], r[IMPORT_ERROR_COLUMN]) for r in rows] == [
        (STATUS_SUCCESS, ""),
        (STATUS_SUCCESS, ""),
    ]
    session = target_repo.connect()
    assert session.fetch_by_path(FOLDER_PATH) is None
    assert session.fetch_by_path("/Digidak Legacy/4201-2024-25") is not None


def test_leftover_folder_is_unlinked(
    target_pool: SessionPool,
    import_config: ImportConfig,
    builder: FolderHierarchyBuilder,
    export_dir: Path,
    target_repo: InMemoryRepository,
) -> None:
    """Test that an object left by an earlier run is unlinked before create."""
    leftover_id = target_repo.make_path(FOLDER_PATH)
    create_test_export(export_dir, RecordKind.SINGLE, [create_test_export_row("4200-2024-25")])

    make_importer(target_pool, import_config, builder).import_kind(RecordKind.SINGLE)

    session = target_repo.connect()
    assert session.fetch(leftover_id).folder_ids == []
    assert session.fetch_by_path(FOLDER_PATH).object_id != leftover_id
    assert ledger(export_dir)[0][IMPORT_STATUS_COLUMN] == STATUS_SUCCESS


def test_leftover_folder_is_deleted_in_delete_mode(
    target_pool: SessionPool,
    import_config: ImportConfig,
    builder: FolderHierarchyBuilder,
    export_dir: Path,
    target_repo: InMemoryRepository,
) -> None:
    """Test that delete mode destroys the leftover tree."""
    leftover_id = target_repo.make_path(FOLDER_PATH)
    target_repo.add_object("dm_document", {"object_name": "stale.pdf"}, [leftover_id])
    create_test_export(export_dir, RecordKind.SINGLE, [create_test_export_row("4200-2024-25")])
    config = import_config.model_copy(update={"cleanup_mode": "delete"})

    make_importer(target_pool, config, builder).import_kind(RecordKind.SINGLE)

    session = target_repo.connect()
    with pytest.raises(ObjectNotFoundError):
        session.fetch(leftover_id)
    assert session.fetch_by_path(FOLDER_PATH) is not None


def test_cleanup_failure_skips_row(
    target_pool: SessionPool,
    import_config: ImportConfig,
    builder: FolderHierarchyBuilder,
    export_dir: Path,
    target_repo: InMemoryRepository,
    result: MigrationResult,
) -> None:
    """Test that a failed cleanup marks the row and leaves the leftover alone."""
    leftover_id = target_repo.make_path(FOLDER_PATH)
    create_test_export(export_dir, RecordKind.SINGLE, [create_test_export_row("4200-2024-25")])
    target_repo.fail_next("execute", RepositoryOperationFailed("object is checked out"))

    make_importer(target_pool, import_config, builder).import_kind(RecordKind.SINGLE)

    row = ledger(export_dir)[0]
    assert row[IMPORT_STATUS_COLUMN] == STATUS_CLEANUP_FAILED
    assert "object is checked out" in row[IMPORT_ERROR_COLUMN]
    assert result.failed_records == 1
    assert target_repo.connect().fetch_by_path(FOLDER_PATH).object_id == leftover_id


def test_row_without_name_fails(
    target_pool: SessionPool,
    import_config: ImportConfig,
    builder: FolderHierarchyBuilder,
    export_dir: Path,
    result: MigrationResult,
) -> None:
    """Test that a blank object name fails only its own row."""
    create_test_export(
        export_dir,
        RecordKind.SINGLE,
        [create_test_export_row(""), create_test_export_row("4200-2024-25")],
        make_dirs=False,
    )

    make_importer(target_pool, import_config, builder).import_kind(RecordKind.SINGLE)

    rows = ledger(export_dir)
    assert (rows[0][IMPORT_STATUS_COLUMN], rows[0][IMPORT_ERROR_COLUMN]) == (STATUS_FAILED, "Missing object_name")
    assert rows[1][IMPORT_STATUS_COLUMN] == STATUS_SUCCESS
    assert (result.failed_records, result.imported_records) == (1, 1)


def test_content_timeout_fails_record_and_replaces_session(
    target_pool: SessionPool,
    import_config: ImportConfig,
    builder: FolderHierarchyBuilder,
    export_dir: Path,
    target_repo: InMemoryRepository,
    result: MigrationResult,
) -> None:
    """Test that a hung content upload fails the record and its session is replaced."""
    create_test_export(export_dir, RecordKind.SINGLE, [create_test_export_row("4200-2024-25")])
    write_record_files(export_dir)
    target_repo.delay("set_content", 1.0)
    config = import_config.model_copy(update={"content_timeout": 0.2})
    importer = make_importer(target_pool, config, builder)

    importer.import_kind(RecordKind.SINGLE)

    row = ledger(export_dir)[0]
    assert row[IMPORT_STATUS_COLUMN] == STATUS_FAILED
    assert "set_content timed out after 0.2s" in row[IMPORT_ERROR_COLUMN]
    assert importer.runner.timeouts == 1
    assert result.failed_imports == 1
    assert target_repo.sessions_opened == 3
    importer.runner.shutdown()


def test_existing_parent_from_folder_id_column(
    target_pool: SessionPool,
    import_config: ImportConfig,
    builder: FolderHierarchyBuilder,
    export_dir: Path,
    target_repo: InMemoryRepository,
) -> None:
    """Test that an i_folder_id column naming an existing folder selects the parent."""
    parent_id = target_repo.make_path("/Archive/2024")
    create_test_export(
        export_dir,
        RecordKind.SINGLE,
        [
            create_test_export_row("4200-2024-25", i_folder_id=parent_id),
            create_test_export_row("4201-2024-25", i_folder_id="0b00000000deadbeef"),
        ],
    )

    make_importer(target_pool, import_config, builder).import_kind(RecordKind.SINGLE)

    session = target_repo.connect()
    assert session.fetch_by_path("/Archive/2024/4200-2024-25") is not None
    assert session.fetch_by_path("/Digidak Legacy/4201-2024-25") is not None


def test_subletters_import_under_their_group(
    target_pool: SessionPool,
    import_config: ImportConfig,
    builder: FolderHierarchyBuilder,
    export_dir: Path,
    target_repo: InMemoryRepository,
) -> None:
    """Test that subletters are created inside the group folder imported before them."""
    create_test_export(export_dir, RecordKind.GROUP, [create_test_export_row("G67/2024-25", group_letter_id="true")])
    create_test_export(export_dir, RecordKind.SUBLETTER, [create_test_export_row("4245-2024-25", is_bulk="true")])
    importer = make_importer(target_pool, import_config, builder)

    importer.import_kind(RecordKind.GROUP)
    importer.import_kind(RecordKind.SUBLETTER)

    session = target_repo.connect()
    group = session.fetch_by_path("/Digidak Legacy/G67-2024-25")
    subletter = session.fetch_by_path("/Digidak Legacy/G67-2024-25/4245-2024-25")
    assert subletter.folder_ids == [group.object_id]
    assert group.get("is_group") == "true"


def test_missing_ledger_is_a_no_op(
    target_pool: SessionPool, import_config: ImportConfig, builder: FolderHierarchyBuilder, result: MigrationResult
) -> None:
    """Test that a kind without an export ledger is skipped."""
    make_importer(target_pool, import_config, builder).import_kind(RecordKind.GROUP)

    assert result.imported_records == 0
