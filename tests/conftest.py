"""Shared pytest fixtures and factory functions for recordmigrate tests.

This module provides seeded in-memory repositories, pools over them and
small export trees written straight to disk, so that tests exercise the real
session protocol without a server.
"""

import zlib
from collections.abc import Iterator
from pathlib import Path

import pytest

from recordmigrate.config.models import ImportConfig, MigrationConfig
from recordmigrate.demo import build_source, build_target, demo_config
from recordmigrate.export.kinds import EXPORT_HEADER, RecordKind, layout_for
from recordmigrate.folder.hierarchy import FolderHierarchyBuilder
from recordmigrate.ledger.csv_ledger import write_table
from recordmigrate.metrics import MigrationResult
from recordmigrate.repository.memory import InMemoryRepository
from recordmigrate.repository.pool import SessionPool
from recordmigrate.utils.path_utils import sanitize_record_name

#
# Repository Fixtures
#


@pytest.fixture
def source_repo() -> InMemoryRepository:
    """Legacy repository seeded with two single letters, one group and one subletter.

    Returns:
        InMemoryRepository: Seeded source repository.
    """
    return build_source(records=2)


@pytest.fixture
def target_repo() -> InMemoryRepository:
    """Target repository with the wrapper-guarded folder type, users, groups and ACLs.

    Returns:
        InMemoryRepository: Seeded target repository.
    """
    return build_target()


@pytest.fixture
def source_pool(source_repo: InMemoryRepository) -> Iterator[SessionPool]:
    """Session pool over the source repository.

    Returns:
        SessionPool: Pool of two source sessions.
    """
    pool = SessionPool(source_repo.connect, size=2, acquire_timeout=5)
    yield pool
    pool.shutdown()


@pytest.fixture
def target_pool(target_repo: InMemoryRepository) -> Iterator[SessionPool]:
    """Session pool over the target repository.

    Returns:
        SessionPool: Pool of two target sessions.
    """
    pool = SessionPool(target_repo.connect, size=2, acquire_timeout=5)
    yield pool
    pool.shutdown()


#
# Configuration Fixtures
#


@pytest.fixture
def migration_config(tmp_path: Path) -> MigrationConfig:
    """Demo configuration with export and import rooted in tmp_path.

    Returns:
        MigrationConfig: Configuration for in-memory runs.
    """
    return demo_config(tmp_path)


@pytest.fixture
def export_dir(migration_config: MigrationConfig) -> Path:
    """Export root shared by the exporter and importer.

    Returns:
        Path: Export directory (created).
    """
    path = Path(migration_config.import_.export_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def import_config(migration_config: MigrationConfig) -> ImportConfig:
    """Import settings with a short content timeout.

    Returns:
        ImportConfig: Import configuration.
    """
    return migration_config.import_.model_copy(update={"content_timeout": 5.0})


@pytest.fixture
def result() -> MigrationResult:
    """Fresh result for one phase.

    Returns:
        MigrationResult: Empty result.
    """
    return MigrationResult(phase="test")


@pytest.fixture
def builder(
    target_pool: SessionPool, migration_config: MigrationConfig, export_dir: Path, result: MigrationResult
) -> FolderHierarchyBuilder:
    """Folder hierarchy builder over the target pool.

    Returns:
        FolderHierarchyBuilder: Builder sharing the result fixture.
    """
    return FolderHierarchyBuilder(
        target_pool,
        migration_config.folders,
        export_dir,
        wrapped_types=migration_config.import_.two_phase_types,
        base_type=migration_config.import_.base_type,
        result=result,
    )


#
# Factory Functions
#


def create_test_export_row(object_name: str, record_id: str = "", **values: str) -> dict[str, str]:
    """Create one export ledger row with every column of the export header.

    Args:
        object_name: Record name
        record_id: Source r_object_id (derived from the name when omitted)
        **values: Extra or overriding column values

    Returns:
        Row dict keyed by export header column.
    """
    row = {column: "" for column in EXPORT_HEADER}
    row.update(
        {
            "r_object_id": record_id or f"0b01{zlib.crc32(object_name.encode()):012d}",
            "object_name": object_name,
            "subjects": f"Subject of {object_name}",
            "r_creation_date": "06/01/2024 10:30:00",
            "export_status": "SUCCESS",
        }
    )
    row.update(values)
    return row


def create_test_export(
    export_dir: Path,
    kind: RecordKind,
    rows: list[dict[str, str]],
    make_dirs: bool = True,
) -> Path:
    """Write an export ledger and (optionally) one empty record directory per row.

    Columns present in a row but not in the export header are appended.

    Returns:
        Path to the written ledger.
    """
    layout = layout_for(kind)
    csv_path = export_dir / layout.csv_name
    columns = list(EXPORT_HEADER)
    for row in rows:
        columns.extend(column for column in row if column not in columns)
    write_table(csv_path, columns, rows)
    if make_dirs:
        for row in rows:
            record_dir = export_dir / layout.records_dir / sanitize_record_name(row["object_name"])
            record_dir.mkdir(parents=True, exist_ok=True)
    return csv_path
