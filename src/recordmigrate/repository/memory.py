"""In-memory repository used by tests and the ``demo`` command.

Implements the same :class:`~recordmigrate.repository.base.RepositorySession`
protocol as the REST adapter, including the behaviors the migration code has to
cope with: unique folder names per parent, types guarded by a business-object
wrapper that cannot be instantiated directly, and injectable faults and delays.
"""

import copy
import itertools
import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from recordmigrate.constants import (
    ACL_TYPE,
    BASE_FOLDER_TYPE,
    CABINET_TYPE,
    FORMAT_TYPE,
    GROUP_TYPE,
    USER_TYPE,
)
from recordmigrate.exceptions import (
    ObjectNotFoundError,
    RepositoryConnectionError,
    RepositoryOperationFailed,
)
from recordmigrate.repository.base import AttributeInfo, AttributeType, RepositoryObject
from recordmigrate.repository.query import ChangeType, DestroyObject, Query, Statement, UpdateObject

logger = logging.getLogger(__name__)

SYSOBJECT_TYPE = "dm_sysobject"

# Two-character id prefixes, as the repository assigns them per type family
_ID_PREFIXES = {CABINET_TYPE: "0c", ACL_TYPE: "45", USER_TYPE: "11", GROUP_TYPE: "12", FORMAT_TYPE: "27"}


@dataclass
class TypeDefinition:
    """Schema of one in-memory repository type.

    Attributes:
        name: Type name
        super_type: Parent type name (None only for dm_sysobject)
        is_folder: Objects of this type act as folders (unique names per parent)
        repeating: Attribute names that hold lists
        dates: Attribute names typed as time
        attributes: Closed attribute set, or None to accept any attribute
    """

    name: str
    super_type: str | None = SYSOBJECT_TYPE
    is_folder: bool = False
    repeating: frozenset[str] = frozenset()
    dates: frozenset[str] = frozenset()
    attributes: frozenset[str] | None = None


@dataclass
class _Fault:
    error: Exception
    remaining: int


@dataclass
class _Stats:
    writes: int = 0
    reads: int = 0
    operations: dict[str, int] = field(default_factory=lambda: defaultdict(int))


class InMemoryRepository:
    """Thread-safe in-memory object store.

    Example:
        >>> repo = InMemoryRepository()
        >>> session = repo.connect()
        >>> cabinet = session.new_object("dm_cabinet")
        >>> cabinet.set("object_name", "Archive")
        >>> session.save(cabinet).path
        '/Archive'
    """

    def __init__(self, wrapped_types: set[str] | None = None):
        """Initialize an empty repository with the system types registered.

        Args:
            wrapped_types: Types whose business-object wrapper blocks direct
                instantiation; new objects of these types cannot be saved.
        """
        self.wrapped_types = set(wrapped_types or ())
        self._lock = threading.RLock()
        self._types: dict[str, TypeDefinition] = {}
        self._objects: dict[str, RepositoryObject] = {}
        self._contents: dict[str, bytes] = {}
        self._faults: dict[str, list[_Fault]] = defaultdict(list)
        self._delays: dict[str, float] = {}
        self._ids = itertools.count(1)
        self._stats = _Stats()
        self.sessions_opened = 0

        self.register_type(SYSOBJECT_TYPE, super_type=None)
        self.register_type(BASE_FOLDER_TYPE, is_folder=True, repeating={"r_folder_path"})
        self.register_type(CABINET_TYPE, super_type=BASE_FOLDER_TYPE, is_folder=True)
        self.register_type("dm_document")
        self.register_type(ACL_TYPE, repeating={"r_accessor_name", "r_accessor_permit"})
        self.register_type(USER_TYPE)
        self.register_type(GROUP_TYPE, repeating={"users_names", "groups_names"})
        self.register_type(FORMAT_TYPE)

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def register_type(
        self,
        name: str,
        super_type: str | None = SYSOBJECT_TYPE,
        is_folder: bool = False,
        repeating: set[str] | frozenset[str] = frozenset(),
        dates: set[str] | frozenset[str] = frozenset(),
        attributes: set[str] | None = None,
    ) -> None:
        """Register or replace a type definition."""
        with self._lock:
            self._types[name] = TypeDefinition(
                name=name,
                super_type=super_type,
                is_folder=is_folder,
                repeating=frozenset(repeating),
                dates=frozenset(dates),
                attributes=frozenset(attributes) if attributes is not None else None,
            )

    def add_user(self, user_name: str, login_name: str | None = None) -> str:
        return self._insert(
            USER_TYPE,
            {
                "object_name": user_name,
                "user_name": user_name,
                "user_login_name": login_name or user_name,
            },
        )

    def add_group(self, group_name: str, members: list[str] | None = None) -> str:
        return self._insert(
            GROUP_TYPE,
            {"object_name": group_name, "group_name": group_name, "users_names": list(members or [])},
        )

    def add_format(self, name: str, dos_extension: str) -> str:
        return self._insert(FORMAT_TYPE, {"object_name": name, "name": name, "dos_extension": dos_extension})

    def add_acl(self, name: str, domain: str, grants: list[tuple[str, int]] | None = None) -> str:
        grants = grants or []
        return self._insert(
            ACL_TYPE,
            {
                "object_name": name,
                "owner_name": domain,
                "r_accessor_name": [accessor for accessor, _ in grants],
                "r_accessor_permit": [permit for _, permit in grants],
            },
        )

    def add_object(
        self,
        object_type: str,
        attributes: dict[str, Any],
        folder_ids: list[str] | None = None,
        content: bytes | None = None,
    ) -> str:
        """Insert an object directly, bypassing wrapper and uniqueness checks."""
        object_id = self._insert(object_type, attributes, folder_ids)
        if content is not None:
            with self._lock:
                self._contents[object_id] = content
                self._objects[object_id].attributes["r_content_size"] = len(content)
        return object_id

    def make_path(self, path: str, object_type: str = BASE_FOLDER_TYPE) -> str:
        """Create every missing folder along an absolute path, returning the leaf id."""
        parts = [p for p in path.split("/") if p]
        parent_id: str | None = None
        current = ""
        for depth, part in enumerate(parts):
            current += "/" + part
            existing = self._find_by_path(current)
            if existing is not None:
                parent_id = existing.object_id
                continue
            folder_type = CABINET_TYPE if depth == 0 else object_type
            parent_id = self._insert(
                folder_type, {"object_name": part}, [parent_id] if parent_id else None
            )
        if parent_id is None:
            raise ValueError(f"Path '{path}' has no components")
        return parent_id

    def fail_next(self, operation: str, error: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls of a session operation raise ``error``."""
        with self._lock:
            self._faults[operation].append(_Fault(error, times))

    def delay(self, operation: str, seconds: float) -> None:
        """Make every call of a session operation sleep first (0 removes the delay)."""
        with self._lock:
            if seconds <= 0:
                self._delays.pop(operation, None)
            else:
                self._delays[operation] = seconds

    def connect(self) -> "InMemorySession":
        with self._lock:
            self.sessions_opened += 1
        return InMemorySession(self)

    # ------------------------------------------------------------------
    # Inspection helpers for tests and the demo command
    # ------------------------------------------------------------------

    @property
    def write_count(self) -> int:
        with self._lock:
            return self._stats.writes

    def operation_count(self, operation: str) -> int:
        with self._lock:
            return self._stats.operations.get(operation, 0)

    def objects_of_type(self, object_type: str) -> list[RepositoryObject]:
        with self._lock:
            return [self._snapshot(o) for o in self._objects.values() if o.object_type == object_type]

    def content_of(self, object_id: str) -> bytes | None:
        with self._lock:
            return self._contents.get(object_id)

    # ------------------------------------------------------------------
    # Internals shared with InMemorySession
    # ------------------------------------------------------------------

    def _before(self, operation: str, write: bool = False) -> None:
        delay = self._delays.get(operation)
        if delay:
            time.sleep(delay)
        with self._lock:
            self._stats.operations[operation] += 1
            if write:
                self._stats.writes += 1
            else:
                self._stats.reads += 1
            faults = self._faults.get(operation)
            if faults:
                fault = faults[0]
                fault.remaining -= 1
                if fault.remaining <= 0:
                    faults.pop(0)
                raise fault.error

    def _new_id(self, object_type: str) -> str:
        definition = self._types.get(object_type)
        if object_type in _ID_PREFIXES:
            prefix = _ID_PREFIXES[object_type]
        elif definition is not None and definition.is_folder:
            prefix = "0b"
        else:
            prefix = "09"
        return f"{prefix}{next(self._ids):014x}"

    def _insert(
        self, object_type: str, attributes: dict[str, Any], folder_ids: list[str] | None = None
    ) -> str:
        with self._lock:
            object_id = self._new_id(object_type)
            self._objects[object_id] = RepositoryObject(
                object_type=object_type,
                attributes=dict(attributes),
                object_id=object_id,
                folder_ids=list(folder_ids or []),
            )
            return object_id

    def _type_chain(self, object_type: str) -> list[TypeDefinition]:
        chain: list[TypeDefinition] = []
        current: str | None = object_type
        while current is not None:
            definition = self._types.get(current)
            if definition is None:
                definition = TypeDefinition(name=current)
            chain.append(definition)
            current = definition.super_type
        return chain

    def _is_instance(self, object_type: str, query_type: str) -> bool:
        return any(d.name == query_type for d in self._type_chain(object_type))

    def _is_folder(self, object_type: str) -> bool:
        return any(d.is_folder for d in self._type_chain(object_type))

    def _describe(self, object_type: str, name: str) -> AttributeInfo | None:
        chain = self._type_chain(object_type)
        closed = [d.attributes for d in chain if d.attributes is not None]
        if closed and chain[0].attributes is not None:
            known = set().union(*closed) | {"object_name", "r_folder_path", "acl_name", "acl_domain"}
            if name not in known:
                return None
        repeating = any(name in d.repeating for d in chain)
        is_date = any(name in d.dates for d in chain)
        return AttributeInfo(
            name=name,
            data_type=AttributeType.TIME if is_date else AttributeType.STRING,
            repeating=repeating,
        )

    def _paths(self, obj: RepositoryObject) -> list[str]:
        if not self._is_folder(obj.object_type) and not obj.folder_ids:
            return []
        if not obj.folder_ids:
            return [f"/{obj.name}"]
        paths: list[str] = []
        for folder_id in obj.folder_ids:
            parent = self._objects.get(folder_id)
            if parent is None:
                continue
            paths.extend(f"{p}/{obj.name}" for p in self._paths(parent))
        return paths

    def _find_by_path(self, path: str) -> RepositoryObject | None:
        with self._lock:
            for obj in self._objects.values():
                if path in self._paths(obj):
                    return obj
        return None

    def _snapshot(self, obj: RepositoryObject) -> RepositoryObject:
        clone = copy.deepcopy(obj)
        if self._is_folder(obj.object_type):
            clone.attributes["r_folder_path"] = self._paths(obj)
        return clone

    def _get(self, object_id: str) -> RepositoryObject:
        obj = self._objects.get(object_id)
        if obj is None:
            raise ObjectNotFoundError(f"Object not found: {object_id}")
        return obj

    # FolderIndex protocol used by InFolder conditions

    def resolve_folder(self, ref: str) -> str | None:
        if ref.startswith("/"):
            found = self._find_by_path(ref)
            return found.object_id if found else None
        return ref if ref in self._objects else None

    def ancestor_ids(self, obj: RepositoryObject, descend: bool) -> set[str]:
        seen: set[str] = set()
        stack = list(obj.folder_ids)
        while stack:
            folder_id = stack.pop()
            if folder_id in seen:
                continue
            seen.add(folder_id)
            if descend and (parent := self._objects.get(folder_id)) is not None:
                stack.extend(parent.folder_ids)
        return seen

    def _remove(self, obj: RepositoryObject) -> None:
        if obj.object_type in self.wrapped_types:
            raise RepositoryOperationFailed(f"Destroy of '{obj.object_type}' requires its business object")
        if any(obj.object_id in other.folder_ids for other in self._objects.values()):
            raise RepositoryOperationFailed(f"Folder {obj.object_id} is not empty")
        del self._objects[obj.object_id]
        self._contents.pop(obj.object_id, None)

    def _check_unique_name(self, obj: RepositoryObject) -> None:
        if not self._is_folder(obj.object_type):
            return
        for other in self._objects.values():
            if other.object_id == obj.object_id or not self._is_folder(other.object_type):
                continue
            if other.name != obj.name:
                continue
            if set(other.folder_ids) & set(obj.folder_ids) or (
                not other.folder_ids and not obj.folder_ids
            ):
                raise RepositoryOperationFailed(
                    f"An object named '{obj.name}' already exists in the target folder"
                )


class InMemorySession:
    """Session handle onto an :class:`InMemoryRepository`."""

    def __init__(self, repository: InMemoryRepository):
        self.repository = repository
        self._connected = True

    def _require_connection(self) -> None:
        if not self._connected:
            raise RepositoryConnectionError("Session is disconnected")

    def is_connected(self) -> bool:
        return self._connected

    def disconnect(self) -> None:
        self._connected = False

    def query(self, query: Query) -> list[dict[str, Any]]:
        self._require_connection()
        repo = self.repository
        repo._before("query")
        rows: list[dict[str, Any]] = []
        seen: set[tuple[str, ...]] = set()
        with repo._lock:
            for obj in repo._objects.values():
                if not repo._is_instance(obj.object_type, query.object_type):
                    continue
                snapshot = repo._snapshot(obj)
                if not query.matches(snapshot, repo):
                    continue
                row = query.project(snapshot)
                if query.distinct:
                    key = tuple(repr(row.get(c)) for c in row)
                    if key in seen:
                        continue
                    seen.add(key)
                rows.append(row)
        return rows

    def execute(self, statement: Statement) -> int:
        self._require_connection()
        repo = self.repository
        repo._before("execute", write=True)
        with repo._lock:
            obj = repo._objects.get(statement.object_id)
            if obj is None:
                return 0
            if isinstance(statement, ChangeType):
                if obj.object_type != statement.from_type:
                    return 0
                obj.object_type = statement.to_type
                return 1
            if isinstance(statement, DestroyObject):
                repo._remove(obj)
                return 1
            if isinstance(statement, UpdateObject):
                for name in statement.truncate:
                    obj.attributes[name] = []
                obj.attributes.update(statement.set_values)
                for name, values in statement.append_values.items():
                    current = obj.attributes.get(name)
                    current = [] if current is None else (current if isinstance(current, list) else [current])
                    obj.attributes[name] = current + list(values)
                if statement.unlink:
                    folder = repo._find_by_path(statement.unlink)
                    if folder is None or folder.object_id not in obj.folder_ids:
                        raise RepositoryOperationFailed(
                            f"Object {obj.object_id} is not linked to {statement.unlink}"
                        )
                    obj.folder_ids.remove(folder.object_id)
                return 1
        raise RepositoryOperationFailed(f"Unsupported statement: {type(statement).__name__}")

    def fetch(self, object_id: str) -> RepositoryObject:
        self._require_connection()
        self.repository._before("fetch")
        with self.repository._lock:
            return self.repository._snapshot(self.repository._get(object_id))

    def fetch_by_path(self, path: str) -> RepositoryObject | None:
        self._require_connection()
        self.repository._before("fetch_by_path")
        found = self.repository._find_by_path(path.rstrip("/") or "/")
        if found is None:
            return None
        with self.repository._lock:
            return self.repository._snapshot(found)

    def new_object(self, object_type: str) -> RepositoryObject:
        self._require_connection()
        return RepositoryObject(object_type=object_type)

    def save(self, obj: RepositoryObject) -> RepositoryObject:
        self._require_connection()
        repo = self.repository
        repo._before("save", write=True)
        with repo._lock:
            if obj.is_new and obj.object_type in repo.wrapped_types:
                raise RepositoryOperationFailed(
                    f"Business object for type '{obj.object_type}' cannot be instantiated directly"
                )
            for name in obj.attributes:
                if repo._describe(obj.object_type, name) is None:
                    raise RepositoryOperationFailed(
                        f"Type '{obj.object_type}' has no attribute '{name}'"
                    )
            for folder_id in obj.folder_ids:
                if folder_id not in repo._objects:
                    raise ObjectNotFoundError(f"Link target folder not found: {folder_id}")

            object_id = obj.object_id or repo._new_id(obj.object_type)
            stored = RepositoryObject(
                object_type=obj.object_type,
                attributes={k: copy.deepcopy(v) for k, v in obj.attributes.items() if k != "r_folder_path"},
                object_id=object_id,
                folder_ids=list(obj.folder_ids),
            )
            repo._check_unique_name(stored)

            if obj.content_path is not None:
                data = Path(obj.content_path).read_bytes()
                repo._contents[object_id] = data
                stored.attributes["r_content_size"] = len(data)
                if obj.content_format:
                    stored.attributes["a_content_type"] = obj.content_format

            repo._objects[object_id] = stored
            obj.object_id = object_id
            obj.content_path = None
            if repo._is_folder(obj.object_type):
                obj.attributes["r_folder_path"] = repo._paths(stored)
            return obj

    def set_content(self, obj: RepositoryObject, local_path: Path, content_format: str | None) -> None:
        self._require_connection()
        self.repository._before("set_content")
        if not Path(local_path).is_file():
            raise RepositoryOperationFailed(f"Content file not found: {local_path}")
        obj.content_path = Path(local_path)
        obj.content_format = content_format

    def get_content(self, object_id: str, destination: Path) -> Path:
        self._require_connection()
        self.repository._before("get_content")
        with self.repository._lock:
            data = self.repository._contents.get(object_id)
        if data is None:
            raise ObjectNotFoundError(f"Object {object_id} has no content")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(data)
        return destination

    def set_acl(self, obj: RepositoryObject, acl: RepositoryObject) -> None:
        self._require_connection()
        self.repository._before("set_acl")
        if acl.object_id is None or acl.object_id not in self.repository._objects:
            raise ObjectNotFoundError(f"ACL '{acl.name}' is not saved")
        obj.set("acl_name", acl.name)
        obj.set("acl_domain", acl.get("owner_name"))

    def link(self, object_id: str, folder_id: str) -> None:
        self._require_connection()
        repo = self.repository
        repo._before("link", write=True)
        with repo._lock:
            obj = repo._get(object_id)
            repo._get(folder_id)
            if folder_id not in obj.folder_ids:
                obj.folder_ids.append(folder_id)
                try:
                    repo._check_unique_name(obj)
                except RepositoryOperationFailed:
                    obj.folder_ids.remove(folder_id)
                    raise

    def unlink(self, object_id: str, folder_id: str) -> None:
        self._require_connection()
        repo = self.repository
        repo._before("unlink", write=True)
        with repo._lock:
            obj = repo._get(object_id)
            if folder_id not in obj.folder_ids:
                raise RepositoryOperationFailed(f"Object {object_id} is not linked to {folder_id}")
            obj.folder_ids.remove(folder_id)

    def destroy(self, object_id: str) -> None:
        self._require_connection()
        repo = self.repository
        repo._before("destroy", write=True)
        with repo._lock:
            repo._remove(repo._get(object_id))

    def describe_attribute(self, object_type: str, name: str) -> AttributeInfo | None:
        self._require_connection()
        with self.repository._lock:
            return self.repository._describe(object_type, name)
