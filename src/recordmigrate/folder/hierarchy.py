"""Folder hierarchy builder for the migrated cabinet.

Layout on the target::

    /<cabinet>/<single record>
    /<cabinet>/<group record>
    /<cabinet>/<group record>/<subletter record>

The builder keeps a path -> descriptor cache shared by the importer and the
ACL phase, resolves which group a subletter belongs to, and can delete a
folder tree iteratively when a previous run left one behind.
"""

import logging
import threading
from collections.abc import Iterable
from pathlib import Path

from recordmigrate.config.models import FolderConfig
from recordmigrate.constants import BASE_FOLDER_TYPE, CABINET_TYPE
from recordmigrate.exceptions import HierarchyError, RepositoryError
from recordmigrate.export.kinds import IMPORT_ORDER, RecordKind, layout_for
from recordmigrate.folder.models import FolderDescriptor, FolderType, join_path, normalize_folder_name
from recordmigrate.ledger.csv_ledger import read_table
from recordmigrate.metrics import MigrationResult
from recordmigrate.repository.base import RepositoryObject, RepositorySession
from recordmigrate.repository.pool import SessionPool
from recordmigrate.repository.query import ChangeType, InFolder, Query
from recordmigrate.utils.path_utils import sanitize_record_name

logger = logging.getLogger(__name__)

KIND_FOLDER_TYPES = {
    RecordKind.SINGLE: FolderType.SINGLE_RECORD,
    RecordKind.GROUP: FolderType.GROUP_RECORD,
    RecordKind.SUBLETTER: FolderType.SUBLETTER_RECORD,
}


class FolderHierarchyBuilder:
    """Creates, finds and caches the folders of the migrated hierarchy.

    Methods that run inside an importer row take the row's session; the
    standalone phases (:meth:`setup_structure`, :meth:`load_existing`) borrow
    their own from the pool.
    """

    def __init__(
        self,
        pool: SessionPool,
        config: FolderConfig,
        export_dir: Path,
        wrapped_types: Iterable[str] = (),
        base_type: str = BASE_FOLDER_TYPE,
        result: MigrationResult | None = None,
    ):
        """Initialize the builder.

        Args:
            pool: Target repository session pool
            config: Folder hierarchy settings
            export_dir: Export root (read for subletter parents and record directories)
            wrapped_types: Types that must be changed to ``base_type`` before destroy
            base_type: Plain folder type used for downgrades
            result: Shared result counting created folders
        """
        self.pool = pool
        self.config = config
        self.export_dir = Path(export_dir)
        self.wrapped_types = set(wrapped_types)
        self.base_type = base_type
        self.result = result if result is not None else MigrationResult(phase="folders")
        self._folders: dict[str, FolderDescriptor] = {}
        self._lock = threading.Lock()
        self._subletter_groups: dict[str, str] | None = None

    @property
    def cabinet_path(self) -> str:
        return self.config.cabinet_path

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def register(self, descriptor: FolderDescriptor) -> None:
        with self._lock:
            self._folders[descriptor.path] = descriptor

    def forget(self, path: str) -> None:
        with self._lock:
            self._folders.pop(path, None)

    def folder_id(self, path: str) -> str | None:
        with self._lock:
            descriptor = self._folders.get(path)
        return descriptor.folder_id if descriptor else None

    def descriptor(self, path: str) -> FolderDescriptor | None:
        with self._lock:
            return self._folders.get(path)

    def all_folders(self, folder_type: FolderType | None = None) -> list[FolderDescriptor]:
        with self._lock:
            folders = list(self._folders.values())
        if folder_type is not None:
            folders = [f for f in folders if f.folder_type == folder_type]
        return folders

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def ensure_cabinet(self, session: RepositorySession) -> FolderDescriptor:
        """Find or create the cabinet.

        Raises:
            HierarchyError: If the cabinet can neither be found nor created
        """
        cached = self.descriptor(self.cabinet_path)
        if cached is not None:
            return cached

        try:
            existing = session.fetch_by_path(self.cabinet_path)
            if existing is None:
                cabinet = session.new_object(CABINET_TYPE)
                cabinet.set("object_name", self.config.cabinet_name)
                existing = session.save(cabinet)
                self.result.increment("folders_created")
                logger.info(f"Created cabinet {self.cabinet_path}")
            else:
                logger.debug(f"Using existing cabinet {self.cabinet_path}")
        except RepositoryError as e:
            raise HierarchyError(f"Cannot resolve cabinet {self.cabinet_path}: {e}") from e

        descriptor = FolderDescriptor(
            folder_id=existing.object_id,
            name=self.config.cabinet_name,
            path=self.cabinet_path,
            folder_type=FolderType.CABINET,
        )
        self.register(descriptor)
        return descriptor

    def ensure_folder(
        self,
        session: RepositorySession,
        name: str,
        parent_path: str,
        folder_type: FolderType,
        object_type: str = BASE_FOLDER_TYPE,
    ) -> FolderDescriptor:
        """Find or create a folder under an existing parent.

        Raises:
            HierarchyError: If the parent folder does not exist
        """
        path = join_path(parent_path, name)
        cached = self.descriptor(path)
        if cached is not None:
            return cached

        existing = session.fetch_by_path(path)
        parent_id = self.folder_id(parent_path)
        if existing is None:
            if parent_id is None:
                parent = session.fetch_by_path(parent_path)
                if parent is None:
                    raise HierarchyError(f"Parent folder {parent_path} does not exist for {name}")
                parent_id = parent.object_id
            folder = session.new_object(object_type)
            folder.set("object_name", name)
            folder.link(parent_id)
            existing = session.save(folder)
            self.result.increment("folders_created")
            logger.debug(f"Created folder {path}")

        descriptor = FolderDescriptor(
            folder_id=existing.object_id,
            name=name,
            path=path,
            folder_type=folder_type,
            parent_id=parent_id or (existing.folder_ids[0] if existing.folder_ids else None),
        )
        self.register(descriptor)
        return descriptor

    # ------------------------------------------------------------------
    # Parent resolution
    # ------------------------------------------------------------------

    def _load_subletter_groups(self) -> dict[str, str]:
        if self._subletter_groups is not None:
            return self._subletter_groups

        groups: dict[str, str] = {}
        csv_path = self.export_dir / layout_for(RecordKind.SUBLETTER).csv_name
        if csv_path.exists():
            header, rows = read_table(csv_path)
            if "group_id" in header:
                for row in rows:
                    name = row.get("object_name", "").strip()
                    group = row.get("group_id", "").strip()
                    if name and group:
                        groups[name] = normalize_folder_name(group)
            else:
                logger.debug(f"{csv_path.name} has no group_id column")
        self._subletter_groups = groups
        return groups

    def exported_names(self, kind: RecordKind, root: Path | None = None) -> dict[str, str]:
        """Sanitized record directory name -> exported object name, from the kind's ledger."""
        csv_path = (root or self.export_dir) / layout_for(kind).csv_name
        if not csv_path.exists():
            return {}
        names: dict[str, str] = {}
        for row in read_table(csv_path)[1]:
            name = row.get("object_name", "").strip()
            if name:
                names.setdefault(sanitize_record_name(name), name)
        return names

    def _first_group_on_disk(self) -> str | None:
        group_dir = self.export_dir / layout_for(RecordKind.GROUP).records_dir
        if not group_dir.is_dir():
            return None
        dirs = sorted(p.name for p in group_dir.iterdir() if p.is_dir())
        if not dirs:
            return None
        return normalize_folder_name(self.exported_names(RecordKind.GROUP).get(dirs[0], dirs[0]))

    def subletter_group(self, name: str) -> str:
        """Name of the group folder a subletter belongs under.

        Order: the subletter export's ``group_id`` column, then the configured
        override, then the first group folder found on disk (or the configured
        default group). The last step is a guess and is logged as one.
        """
        from_csv = self._load_subletter_groups().get(name)
        if from_csv:
            return from_csv

        override = self.config.subletter_parents.get(name)
        if override:
            return normalize_folder_name(override)

        fallback = self._first_group_on_disk() or self.config.default_group
        logger.warning(
            f"No group mapping for subletter {name}; guessing parent group {fallback} "
            "(first group folder found)"
        )
        return fallback

    def resolve_parent_path(self, kind: RecordKind, name: str) -> str:
        """Path of the folder a record of this kind is created in."""
        if RecordKind(kind) == RecordKind.SUBLETTER:
            return join_path(self.cabinet_path, self.subletter_group(name))
        return self.cabinet_path

    def record_path(self, kind: RecordKind, name: str) -> str:
        """Full path of a record's folder.

        Examples:
            >>> builder.record_path(RecordKind.SUBLETTER, "4245-2024-25")
            '/Digidak Legacy/G67-2024-25/4245-2024-25'
        """
        return join_path(self.resolve_parent_path(kind, name), normalize_folder_name(name))

    # ------------------------------------------------------------------
    # Standalone phases
    # ------------------------------------------------------------------

    def setup_structure(self, export_dir: Path | None = None) -> list[FolderDescriptor]:
        """Create the cabinet and one folder per record directory on disk.

        Subletters are created only when their group folder exists.

        Returns:
            Descriptors of every record folder found or created
        """
        root = Path(export_dir) if export_dir is not None else self.export_dir
        created: list[FolderDescriptor] = []
        with self.pool.session() as session:
            self.ensure_cabinet(session)
            for kind in IMPORT_ORDER:
                records_dir = root / layout_for(kind).records_dir
                if not records_dir.is_dir():
                    continue
                exported = self.exported_names(kind, root)
                for record_dir in sorted(p for p in records_dir.iterdir() if p.is_dir()):
                    source_name = exported.get(record_dir.name, record_dir.name)
                    name = normalize_folder_name(source_name)
                    parent_path = self.resolve_parent_path(kind, source_name)
                    if self.descriptor(parent_path) is None and session.fetch_by_path(parent_path) is None:
                        logger.warning(f"Skipping subletter {name}: parent {parent_path} does not exist")
                        continue
                    created.append(self.ensure_folder(session, name, parent_path, KIND_FOLDER_TYPES[kind]))
        logger.info(f"Folder structure ready: {len(created)} record folders under {self.cabinet_path}")
        return created

    def expected_paths(self) -> dict[str, RecordKind]:
        """Record folder paths implied by the export ledgers."""
        paths: dict[str, RecordKind] = {}
        for kind in IMPORT_ORDER:
            csv_path = self.export_dir / layout_for(kind).csv_name
            if not csv_path.exists():
                continue
            _, rows = read_table(csv_path)
            for row in rows:
                name = row.get("object_name", "").strip()
                if name:
                    paths[self.record_path(kind, name)] = kind
        return paths

    def load_existing(self, expected_paths: dict[str, RecordKind] | None = None) -> int:
        """Rebuild the path cache by probing the target for expected folders.

        Args:
            expected_paths: Path -> kind to probe (default: derived from the export ledgers)

        Returns:
            Number of folders found
        """
        paths = expected_paths if expected_paths is not None else self.expected_paths()
        found = 0
        with self.pool.session() as session:
            self.ensure_cabinet(session)
            for path, kind in paths.items():
                folder = session.fetch_by_path(path)
                if folder is None:
                    logger.warning(f"Expected folder not found: {path}")
                    continue
                self.register(self.describe(folder, path, KIND_FOLDER_TYPES[RecordKind(kind)]))
                found += 1
        logger.info(f"Loaded {found} of {len(paths)} existing record folders")
        return found

    @staticmethod
    def describe(folder: RepositoryObject, path: str, folder_type: FolderType) -> FolderDescriptor:
        return FolderDescriptor(
            folder_id=folder.object_id,
            name=folder.name,
            path=path,
            folder_type=folder_type,
            parent_id=folder.folder_ids[0] if folder.folder_ids else None,
        )

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_tree(self, session: RepositorySession, object_id: str) -> int:
        """Delete a folder and everything beneath it.

        Walks the tree with an explicit stack, then removes children before
        parents. Objects also linked elsewhere are only unlinked. Wrapped
        types are changed to the base type first so they can be destroyed.

        Returns:
            Number of objects destroyed
        """
        order: list[tuple[str, str | None]] = []
        stack: list[tuple[str, str | None]] = [(object_id, None)]
        seen: set[str] = set()
        while stack:
            current, parent = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            order.append((current, parent))
            children = session.query(Query("dm_sysobject", ("r_object_id",), (InFolder(current),)))
            stack.extend((row["r_object_id"], current) for row in children)

        destroyed = 0
        for current, parent in reversed(order):
            obj = session.fetch(current)
            if parent is not None and len(obj.folder_ids) > 1:
                session.unlink(current, parent)
                continue
            if obj.object_type in self.wrapped_types:
                session.execute(ChangeType(obj.object_type, self.base_type, current))
            session.destroy(current)
            destroyed += 1

        with self._lock:
            stale = [path for path, d in self._folders.items() if d.folder_id in seen]
            for path in stale:
                del self._folders[path]
        logger.debug(f"Deleted tree {object_id}: {destroyed} objects destroyed")
        return destroyed
