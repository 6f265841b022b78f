"""End-to-end migration runs against seeded in-memory repositories."""

from pathlib import Path

import pytest

from recordmigrate.constants import IMPORT_STATUS_COLUMN, STATUS_SUCCESS, TARGET_DOCUMENT_TYPE
from recordmigrate.demo import build_source, build_target, demo_config
from recordmigrate.export.kinds import RecordKind, layout_for
from recordmigrate.ledger.csv_ledger import read_table
from recordmigrate.pipeline import MigrationPipeline
from recordmigrate.repository.memory import InMemoryRepository

pytestmark = pytest.mark.integration


def csv_snapshot(export_dir: Path) -> dict[str, bytes]:
    return {
        path.relative_to(export_dir).as_posix(): path.read_bytes()
        for path in sorted(export_dir.rglob("*.csv"))
        if not path.name.startswith("import_log_")
    }


@pytest.fixture
def source() -> InMemoryRepository:
    """Source repository with one single letter, one group and one subletter.

    Returns:
        InMemoryRepository: Seeded source repository.
    """
    return build_source(records=1)


@pytest.fixture
def target() -> InMemoryRepository:
    """Empty target repository.

    Returns:
        InMemoryRepository: Target with types, users and shared ACLs.
    """
    return build_target()


@pytest.fixture
def pipeline(tmp_path: Path, source: InMemoryRepository, target: InMemoryRepository) -> MigrationPipeline:
    """Pipeline over the in-memory repositories.

    Returns:
        MigrationPipeline: Pipeline rooted in tmp_path.
    """
    with MigrationPipeline(
        demo_config(tmp_path), source_factory=source.connect, target_factory=target.connect
    ) as pipeline:
        yield pipeline


def test_full_migration(pipeline: MigrationPipeline, target: InMemoryRepository) -> None:
    """Test export then import of every record kind."""
    exported = pipeline.run_export()
    imported = pipeline.run_import()

    assert (exported.exported_records, exported.failed_exports) == (3, 0)
    assert (imported.imported_records, imported.failed_records) == (3, 0)
    assert imported.folders_created == 4
    assert imported.movement_registers_created == 3
    assert imported.total_documents == imported.successful_imports + imported.failed_imports
    assert imported.successful_imports == 1

    session = target.connect()
    single = session.fetch_by_path("/Digidak Legacy/4200-2024-25")
    assert single.object_type == "cms_digidak_folder"
    assert single.get("acl_name") == "ecm_legacy_digidak_wb"
    assert session.fetch_by_path("/Digidak Legacy/G67-2024-25/4245-2024-25") is not None
    [document] = target.objects_of_type(TARGET_DOCUMENT_TYPE)
    assert target.content_of(document.object_id) == b"Demo content 0"

    for kind in RecordKind:
        _, rows = read_table(pipeline.export_dir / layout_for(kind).csv_name)
        assert [row[IMPORT_STATUS_COLUMN] for row in rows] == [STATUS_SUCCESS]


def test_rerun_is_idempotent(
    pipeline: MigrationPipeline, source: InMemoryRepository, target: InMemoryRepository
) -> None:
    """Test that rerunning both phases skips finished work."""
    pipeline.run_export()
    pipeline.run_import()
    committed = csv_snapshot(pipeline.export_dir)
    downloads = source.operation_count("get_content")
    writes = target.write_count

    again = pipeline.run_export()
    rerun = pipeline.run_import()

    assert source.operation_count("get_content") == downloads
    assert (again.exported_records, again.skipped_rows) == (0, 3)
    assert target.write_count == writes
    assert rerun.skipped_rows == 3
    assert rerun.imported_records == 0
    assert csv_snapshot(pipeline.export_dir) == committed


def test_import_resumes_after_failure(pipeline: MigrationPipeline, target: InMemoryRepository) -> None:
    """Test that a record failing on the first import is retried by the next one."""
    pipeline.run_export()
    target.delay("set_content", 1.0)
    pipeline.config.import_.content_timeout = 0.2

    first = pipeline.run_import([RecordKind.SINGLE])

    assert first.failed_records == 1
    target.delay("set_content", 0)
    pipeline.config.import_.content_timeout = 30

    second = pipeline.run_import([RecordKind.SINGLE])

    assert (second.imported_records, second.failed_records) == (1, 0)
    assert len(target.objects_of_type(TARGET_DOCUMENT_TYPE)) == 1


def test_acl_phase_reapplies(pipeline: MigrationPipeline, target: InMemoryRepository) -> None:
    """Test the standalone ACL phase over imported folders."""
    pipeline.run_export()
    pipeline.run_import()

    result = pipeline.run_acl()

    assert result.acls_applied + result.acl_failures == 3
    assert result.acls_applied >= 2
    assert target.connect().fetch_by_path("/Digidak Legacy/4245-2024-25") is None
