"""Wires the migration phases together over pooled repository sessions."""

import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from recordmigrate.acl.service import AclService
from recordmigrate.acl.workflow import WorkflowAclPlanner
from recordmigrate.config.models import MigrationConfig, RepositoryConfig
from recordmigrate.constants import IMPORT_STATUS_COLUMN, STATUS_SUCCESS
from recordmigrate.export.exporter import RecordExporter
from recordmigrate.export.keywords import KeywordMap
from recordmigrate.export.kinds import IMPORT_ORDER, RecordKind, layout_for
from recordmigrate.folder.hierarchy import FolderHierarchyBuilder
from recordmigrate.importer.importer import RecordImporter
from recordmigrate.importer.timeouts import TimeoutRunner
from recordmigrate.ledger.csv_ledger import read_table
from recordmigrate.ledger.import_log import ImportLog
from recordmigrate.metrics import MigrationResult
from recordmigrate.repository.pool import SessionFactory, SessionPool, SessionPoolRegistry
from recordmigrate.repository.rest import RestRepository
from recordmigrate.users.resolver import UserLoginResolver

logger = logging.getLogger(__name__)


class MigrationPipeline:
    """Runs export, folder setup, import and ACL phases.

    Pools come from a :class:`SessionPoolRegistry` keyed by role and repository
    identity; sessions are opened through the REST adapter unless a factory is
    supplied (the in-memory repository's ``connect`` for tests and the demo).

    Example:
        >>> pipeline = MigrationPipeline(load_config())
        >>> export = pipeline.run_export()
        >>> imported = pipeline.run_import()
        >>> pipeline.close()
    """

    def __init__(
        self,
        config: MigrationConfig,
        source_factory: SessionFactory | None = None,
        target_factory: SessionFactory | None = None,
        registry: SessionPoolRegistry | None = None,
    ):
        self.config = config
        self.registry = registry if registry is not None else SessionPoolRegistry()
        self._source_factory = source_factory
        self._target_factory = target_factory

    @property
    def export_dir(self) -> Path:
        return Path(self.config.import_.export_dir)

    def _pool(self, role: str, repository: RepositoryConfig, factory: SessionFactory | None) -> SessionPool:
        if factory is None:
            factory = RestRepository(repository).connect
        return self.registry.get(
            f"{role}:{repository.identity}",
            factory,
            size=self.config.pool.size,
            timeout=self.config.pool.acquire_timeout,
        )

    def source_pool(self) -> SessionPool:
        return self._pool("source", self.config.source, self._source_factory)

    def target_pool(self) -> SessionPool:
        return self._pool("target", self.config.target, self._target_factory)

    def builder(self, result: MigrationResult | None = None) -> FolderHierarchyBuilder:
        return FolderHierarchyBuilder(
            self.target_pool(),
            self.config.folders,
            self.export_dir,
            wrapped_types=self.config.import_.two_phase_types,
            base_type=self.config.import_.base_type,
            result=result,
        )

    def acl_planner(self, builder: FolderHierarchyBuilder, resolver: UserLoginResolver, keywords: KeywordMap):
        return WorkflowAclPlanner(
            AclService(self.config.acl),
            resolver,
            builder,
            keywords=keywords,
            config=self.config.acl,
            folder_type=self.config.import_.folder_type,
            groups_attribute=self.config.import_.repeating_attributes.get("workflow_users", "workflow_groups"),
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def run_export(self, kinds: Iterable[RecordKind] = IMPORT_ORDER) -> MigrationResult:
        """Export each record kind from the source and write the repeating value files."""
        export = self.config.export
        output_dir = Path(export.output_dir)
        attributes = list(dict.fromkeys(export.keyword_attributes + export.movement_keyword_attributes))
        # Rows carried forward on resume are not re-read, so keep their values from the last run
        if export.resume and output_dir.is_dir():
            keywords = KeywordMap.load(output_dir, attributes)
        else:
            keywords = KeywordMap(attributes)

        exporter = RecordExporter(self.source_pool(), export, keywords)
        result = MigrationResult(phase="export")
        for kind in kinds:
            result.merge(exporter.export(RecordKind(kind)))
        keywords.write(output_dir)
        result.finish()
        logger.info(f"Export finished: {result}")
        return result

    def run_folders(self, load_existing: bool = False) -> MigrationResult:
        """Create the folder structure from the export tree, or probe for an existing one."""
        result = MigrationResult(phase="folders")
        builder = self.builder(result)
        if load_existing:
            found = builder.load_existing()
            logger.info(f"Found {found} existing record folders")
        else:
            builder.setup_structure()
        result.finish()
        return result

    def run_import(self, kinds: Iterable[RecordKind] = IMPORT_ORDER) -> MigrationResult:
        """Import every record kind in dependency order (groups before their subletters)."""
        settings = self.config.import_
        result = MigrationResult(phase="import")
        builder = self.builder(result)
        keywords = KeywordMap.load(self.export_dir)
        resolver = UserLoginResolver(self.config.users.batch_size)
        planner = self.acl_planner(builder, resolver, keywords) if self.config.acl.apply_workflow_acls else None

        log_path = Path(settings.import_log) if settings.import_log else (
            self.export_dir / f"import_log_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv"
        )
        with ImportLog(log_path) as import_log, TimeoutRunner(settings.content_timeout) as runner:
            importer = RecordImporter(
                self.target_pool(),
                settings,
                builder,
                keywords=keywords,
                resolver=resolver,
                acl_planner=planner,
                result=result,
                import_log=import_log,
                runner=runner,
            )
            for kind in kinds:
                importer.import_kind(RecordKind(kind))

        if runner.timeouts:
            logger.warning(f"{runner.timeouts} content operations timed out")
        result.finish()
        logger.info(f"Import finished: {result}")
        return result

    def run_acl(self, kinds: Iterable[RecordKind] = IMPORT_ORDER) -> MigrationResult:
        """Re-apply workflow ACLs to folders a previous import created."""
        result = MigrationResult(phase="acl")
        builder = self.builder(result)
        builder.load_existing()
        keywords = KeywordMap.load(self.export_dir)
        planner = self.acl_planner(builder, UserLoginResolver(self.config.users.batch_size), keywords)

        pool = self.target_pool()
        for kind in kinds:
            kind = RecordKind(kind)
            csv_path = self.export_dir / layout_for(kind).csv_name
            if not csv_path.exists():
                continue
            _, rows = read_table(csv_path)
            for row in rows:
                name = row.get("object_name", "").strip()
                if not name or row.get(IMPORT_STATUS_COLUMN, "").strip().upper() != STATUS_SUCCESS:
                    continue
                path = builder.record_path(kind, name)
                folder_id = builder.folder_id(path)
                if folder_id is None:
                    result.record_error(f"{name}: folder {path} not found")
                    continue
                with pool.session() as session:
                    applied = planner.apply(session, folder_id, kind, row)
                result.increment("acls_applied" if applied else "acl_failures")

        result.finish()
        logger.info(f"ACL phase finished: {result.acls_applied} applied, {result.acl_failures} not applied")
        return result

    def close(self) -> None:
        self.registry.shutdown_all()

    def __enter__(self) -> "MigrationPipeline":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
