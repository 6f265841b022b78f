"""Sequential, resumable record import.

Rows of an export ledger are processed in file order, each with a fresh
pooled session. A row that already reads ``SUCCESS`` is copied through
without touching the repository; every other row is cleaned up, created,
given its children and ACL, and written back with its outcome before the next
row starts.
"""

import logging
from pathlib import Path
from typing import Any

from recordmigrate.acl.workflow import WorkflowAclPlanner
from recordmigrate.config.models import ImportConfig
from recordmigrate.constants import (
    IMPORT_ERROR_COLUMN,
    IMPORT_STATUS_COLUMN,
    PROGRESS_LOGGING_INTERVAL,
    STATUS_CLEANUP_FAILED,
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
)
from recordmigrate.exceptions import (
    CleanupFailed,
    ContentOperationTimeout,
    HierarchyError,
    ObjectNotFoundError,
    PoolExhaustedError,
    RepositoryError,
)
from recordmigrate.export.keywords import KeywordMap
from recordmigrate.export.kinds import RecordKind, layout_for
from recordmigrate.folder.hierarchy import KIND_FOLDER_TYPES, FolderHierarchyBuilder
from recordmigrate.folder.metadata import AttributeMapper
from recordmigrate.folder.models import FolderDescriptor, join_path, normalize_folder_name
from recordmigrate.importer.create import TwoPhaseCreate
from recordmigrate.importer.documents import DocumentImporter
from recordmigrate.importer.movements import MovementImporter
from recordmigrate.importer.timeouts import TimeoutRunner
from recordmigrate.ledger.csv_ledger import CheckpointLedger, LedgerRow
from recordmigrate.ledger.import_log import ImportLog
from recordmigrate.metrics import MigrationResult
from recordmigrate.repository.base import RepositorySession
from recordmigrate.repository.pool import SessionPool
from recordmigrate.repository.query import UpdateObject
from recordmigrate.users.resolver import UserLoginResolver
from recordmigrate.utils.path_utils import sanitize_record_name

logger = logging.getLogger(__name__)


class RecordImporter:
    """Imports record folders, their movement registers and documents.

    Example:
        >>> importer = RecordImporter(pool, config.import_, builder, keywords=KeywordMap.load(export_dir))
        >>> result = importer.import_kind(RecordKind.SINGLE)
        >>> result.folders_created
        12
    """

    def __init__(
        self,
        pool: SessionPool,
        config: ImportConfig,
        builder: FolderHierarchyBuilder,
        keywords: KeywordMap | None = None,
        resolver: UserLoginResolver | None = None,
        acl_planner: WorkflowAclPlanner | None = None,
        result: MigrationResult | None = None,
        import_log: ImportLog | None = None,
        runner: TimeoutRunner | None = None,
        retry_wait: float | None = None,
    ):
        """Initialize the importer.

        Args:
            pool: Target repository session pool
            config: Import settings
            builder: Folder hierarchy builder (shares the path cache)
            keywords: Repeating attribute values by source record id
            resolver: User login resolver for movement entries
            acl_planner: Applies workflow ACLs to created folders (None skips ACLs)
            result: Shared result; a new one is created if omitted
            import_log: Per-run log receiving one line per row
            runner: Time-bounded executor for content and save calls
            retry_wait: Back-off base for two-phase create retries (seconds)
        """
        self.pool = pool
        self.config = config
        self.builder = builder
        self.keywords = keywords if keywords is not None else KeywordMap()
        self.resolver = resolver if resolver is not None else UserLoginResolver()
        self.acl_planner = acl_planner
        self.result = result if result is not None else builder.result
        self.import_log = import_log
        self.runner = runner if runner is not None else TimeoutRunner(config.content_timeout)
        self.retry_wait = retry_wait
        self.mapper = AttributeMapper(config.mapping, config.constants, config.date_formats)
        self.documents = DocumentImporter(config, self.runner, self.result)
        self.movements = MovementImporter(config, self.runner, self.result, self.resolver, self.keywords)

    @property
    def export_dir(self) -> Path:
        return Path(self.config.export_dir)

    def import_kind(self, kind: RecordKind) -> MigrationResult:
        """Import one record kind from its export ledger and records directory."""
        layout = layout_for(kind)
        csv_path = self.export_dir / layout.csv_name
        if not csv_path.exists():
            logger.warning(f"No export ledger for {kind} records at {csv_path}")
            return self.result
        return self.import_csv(csv_path, self.export_dir / layout.records_dir, kind=kind)

    def import_csv(
        self,
        csv_path: Path,
        records_dir: Path,
        target_path: str | None = None,
        kind: RecordKind = RecordKind.SINGLE,
    ) -> MigrationResult:
        """Import every pending row of a ledger.

        Args:
            csv_path: Export ledger; rewritten in place with ``import_status``/``import_error``
            records_dir: Directory holding one sub-directory per record
            target_path: Parent folder for every row (default: resolved per row by the builder)
            kind: Record kind of the ledger

        Returns:
            The shared MigrationResult

        Raises:
            PoolExhaustedError: If no session becomes available for a row
            HierarchyError: If the cabinet cannot be found or created
        """
        ledger = CheckpointLedger(Path(csv_path), IMPORT_STATUS_COLUMN, IMPORT_ERROR_COLUMN)
        records_dir = Path(records_dir)
        logger.info(f"Importing {kind} records from {csv_path}")

        processed = 0
        with ledger.transaction() as txn:
            for row in txn:
                if row.is_success:
                    self.result.increment("skipped_rows")
                    txn.skip(row)
                    self._log(row, STATUS_SKIPPED)
                    continue

                status, error, counts = self._process_row(row, records_dir, target_path, kind)
                row.set_status(status, error)
                txn.write(row)
                self._log(row, status, error, *counts)

                processed += 1
                if processed % PROGRESS_LOGGING_INTERVAL == 0:
                    logger.info(f"Import progress: {processed} {kind} rows processed")

        logger.info(
            f"Finished {kind} import from {Path(csv_path).name}: {processed} processed, "
            f"{len(txn) - processed} already imported"
        )
        return self.result

    def _log(
        self, row: LedgerRow, status: str, error: str = "", object_id: str | None = None,
        movements: int = 0, documents: int = 0,
    ) -> None:
        if self.import_log is None:
            return
        self.import_log.log(
            row.number,
            row.get("object_name"),
            object_id or row.get("r_object_id"),
            status,
            error,
            movements,
            documents,
        )

    def _process_row(
        self, row: LedgerRow, records_dir: Path, target_path: str | None, kind: RecordKind
    ) -> tuple[str, str, tuple[str | None, int, int]]:
        """Run one row at the row boundary: any failure becomes the row's status."""
        name = row.get("object_name").strip()
        if not name:
            self.result.increment("failed_records")
            self.result.record_error(f"Row {row.number}: missing object_name")
            return STATUS_FAILED, "Missing object_name", (None, 0, 0)

        with self.pool.session() as session:
            try:
                object_id, movements, documents = self._import_row(session, row, records_dir, target_path, kind)
            except (HierarchyError, PoolExhaustedError):
                raise
            except CleanupFailed as e:
                self.result.increment("failed_records")
                self.result.record_error(f"{name}: {e}")
                logger.error(f"Skipping {name}: {e}")
                return STATUS_CLEANUP_FAILED, str(e), (None, 0, 0)
            except ContentOperationTimeout as e:
                # A hung call may still hold the session; the pool replaces it on release
                session.disconnect()
                self.result.increment("failed_records")
                self.result.record_error(f"{name}: {e}")
                logger.error(f"Import of {name} timed out: {e}")
                return STATUS_FAILED, str(e), (None, 0, 0)
            except Exception as e:
                self.result.increment("failed_records")
                self.result.record_error(f"{name}: {e}")
                logger.error(f"Import of {name} failed: {e}")
                return STATUS_FAILED, str(e), (None, 0, 0)

        self.result.increment("imported_records")
        return STATUS_SUCCESS, "", (object_id, movements, documents)

    def _import_row(
        self,
        session: RepositorySession,
        row: LedgerRow,
        records_dir: Path,
        target_path: str | None,
        kind: RecordKind,
    ) -> tuple[str, int, int]:
        source_name = row.get("object_name").strip()
        folder_name = normalize_folder_name(source_name)

        parent_path, parent_id = self.resolve_parent(session, row, target_path, kind)
        path = join_path(parent_path, folder_name)
        self.cleanup(session, path, parent_path)

        object_id = self.create(session, row, folder_name, parent_id)
        self.result.increment("folders_created")
        self.builder.register(
            FolderDescriptor(
                folder_id=object_id,
                name=folder_name,
                path=path,
                folder_type=KIND_FOLDER_TYPES[RecordKind(kind)],
                parent_id=parent_id,
            )
        )
        logger.info(f"Imported {kind} record {path}")

        movements = documents = 0
        record_dir = records_dir / sanitize_record_name(source_name)
        if record_dir.is_dir():
            if self.config.import_movements:
                movements = self.movements.import_movements(session, object_id, record_dir)
            if self.config.import_documents:
                documents = self.documents.import_documents(session, object_id, record_dir)
        else:
            logger.warning(f"Record directory not found on disk: {record_dir}")

        if self.acl_planner is not None:
            applied = self.acl_planner.apply(session, object_id, kind, row.as_dict())
            self.result.increment("acls_applied" if applied else "acl_failures")
        return object_id, movements, documents

    def resolve_parent(
        self, session: RepositorySession, row: LedgerRow, target_path: str | None, kind: RecordKind
    ) -> tuple[str, str]:
        """Parent (path, id) for a row.

        An ``i_folder_id`` column naming an existing folder wins; otherwise the
        caller's target path, or the path the builder resolves for the kind.
        """
        folder_ref = row.get("i_folder_id").strip()
        if folder_ref:
            try:
                parent = session.fetch(folder_ref)
                if parent.path:
                    return parent.path, parent.object_id
                logger.warning(f"Parent {folder_ref} has no path; using the default parent")
            except ObjectNotFoundError as e:
                logger.warning(f"Parent folder {folder_ref} not found ({e}); using the default parent")

        parent_path = target_path or self.builder.resolve_parent_path(kind, row.get("object_name").strip())
        if parent_path == self.builder.cabinet_path:
            return parent_path, self.builder.ensure_cabinet(session).folder_id

        parent_id = self.builder.folder_id(parent_path)
        if parent_id is None:
            parent = session.fetch_by_path(parent_path)
            if parent is None:
                raise ObjectNotFoundError(f"Parent folder {parent_path} does not exist")
            parent_id = parent.object_id
        return parent_path, parent_id

    def cleanup(self, session: RepositorySession, path: str, parent_path: str) -> None:
        """Clear an object left at ``path`` by an earlier run.

        Raises:
            CleanupFailed: If the object cannot be unlinked or deleted
        """
        existing = session.fetch_by_path(path)
        if existing is None:
            return

        logger.info(f"Found existing object at {path}; cleaning up ({self.config.cleanup_mode})")
        try:
            if self.config.cleanup_mode == "delete":
                self.builder.delete_tree(session, existing.object_id)
            else:
                statement = UpdateObject(existing.object_type, existing.object_id, unlink=parent_path)
                if session.execute(statement) == 0:
                    raise CleanupFailed(f"Unlink of {path} affected no objects")
        except RepositoryError as e:
            raise CleanupFailed(f"Cleanup of {path} failed: {e}") from e
        self.builder.forget(path)

    def create(self, session: RepositorySession, row: LedgerRow, folder_name: str, parent_id: str) -> str:
        """Create the record folder and return its id."""
        folder_type = self.config.folder_type
        attributes = self.mapper.map_row(session, folder_type, row, skip=("object_name",))
        repeating = self.keyword_values(session, folder_type, row.get("r_object_id").strip(), attributes)

        if folder_type in self.config.two_phase_types:
            kwargs: dict[str, Any] = {}
            if self.retry_wait is not None:
                kwargs["retry_wait"] = self.retry_wait
            create = TwoPhaseCreate(
                session,
                folder_name,
                parent_id,
                self.config.base_type,
                folder_type,
                attributes,
                repeating,
                runner=self.runner,
                **kwargs,
            )
            return create.run()

        folder = session.new_object(folder_type)
        folder.set("object_name", folder_name)
        for name, value in attributes.items():
            folder.set(name, value)
        for name, values in repeating.items():
            folder.remove_all(name)
            for value in values:
                folder.append_value(name, value)
        folder.link(parent_id)
        return self.runner.run("save", session.save, folder, target=folder_name).object_id

    def keyword_values(
        self, session: RepositorySession, object_type: str, source_id: str, attributes: dict[str, Any]
    ) -> dict[str, list[str]]:
        """Repeating values for a record from the keyword map, keyed by target attribute.

        Values for an attribute the type holds as single-valued are set once
        into ``attributes`` instead, with a warning.
        """
        repeating: dict[str, list[str]] = {}
        if not source_id:
            return repeating
        for source_name, values in self.keywords.for_record(source_id).items():
            target = self.config.repeating_attributes.get(source_name)
            if target is None or not values:
                continue
            info = session.describe_attribute(object_type, target)
            if info is None:
                logger.warning(f"Type {object_type} has no attribute {target}; dropping {source_name} values")
                continue
            if info.repeating:
                repeating[target] = list(values)
            else:
                logger.warning(f"Attribute {target} is not repeating; setting its first value only")
                attributes[target] = values[0]
        return repeating
