"""Repository capability interface shared by the in-memory and REST implementations.

Every repository-facing component depends only on :class:`RepositorySession`;
the concrete session comes from a pool whose factory decides whether it talks
to a real repository or to :class:`~recordmigrate.repository.memory.InMemoryRepository`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from recordmigrate.repository.query import Query, Statement


class AttributeType(StrEnum):
    """Data type of a repository attribute."""

    STRING = "string"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    DOUBLE = "double"
    TIME = "time"
    ID = "id"


@dataclass(frozen=True)
class AttributeInfo:
    """Schema information for one attribute of a repository type."""

    name: str
    data_type: AttributeType = AttributeType.STRING
    repeating: bool = False


@dataclass
class RepositoryObject:
    """A repository object as seen by a client session.

    Changes made through the helpers only live in this copy until the object
    is passed to :meth:`RepositorySession.save`.

    Attributes:
        object_type: Repository type name (e.g. "dm_folder")
        attributes: Attribute values by name; repeating attributes hold lists
        object_id: Repository-assigned id, None until first save
        folder_ids: Ids of the folders the object is linked into
        content_path: Local file staged for upload on the next save
        content_format: Format name for the staged content
    """

    object_type: str
    attributes: dict[str, Any] = field(default_factory=dict)
    object_id: str | None = None
    folder_ids: list[str] = field(default_factory=list)
    content_path: Path | None = None
    content_format: str | None = None

    @property
    def name(self) -> str:
        return str(self.attributes.get("object_name", ""))

    @property
    def path(self) -> str | None:
        """First folder path of a folder object, or None for non-folders."""
        paths = self.attributes.get("r_folder_path")
        if isinstance(paths, list):
            return paths[0] if paths else None
        return paths or None

    @property
    def is_new(self) -> bool:
        return self.object_id is None

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self.attributes[name] = value

    def values(self, name: str) -> list[Any]:
        """All values of an attribute as a list (single values are wrapped)."""
        value = self.attributes.get(name)
        if value is None:
            return []
        if isinstance(value, list):
            return list(value)
        return [value]

    def value_count(self, name: str) -> int:
        return len(self.values(name))

    def value_at(self, name: str, index: int) -> Any:
        return self.values(name)[index]

    def append_value(self, name: str, value: Any) -> None:
        current = self.attributes.get(name)
        if current is None:
            self.attributes[name] = [value]
        elif isinstance(current, list):
            current.append(value)
        else:
            self.attributes[name] = [current, value]

    def remove_all(self, name: str) -> None:
        self.attributes[name] = []

    def link(self, folder_id: str) -> None:
        """Link this (unsaved or modified) object into a folder on next save."""
        if folder_id not in self.folder_ids:
            self.folder_ids.append(folder_id)


@runtime_checkable
class RepositorySession(Protocol):
    """One authenticated connection to a content repository.

    Sessions are not thread-safe; a session is borrowed by exactly one
    worker at a time through :class:`~recordmigrate.repository.pool.SessionPool`.
    """

    def is_connected(self) -> bool: ...

    def disconnect(self) -> None: ...

    def query(self, query: Query) -> list[dict[str, Any]]:
        """Run a read query and return one dict per result row."""
        ...

    def execute(self, statement: Statement) -> int:
        """Run an update statement and return the number of objects affected."""
        ...

    def fetch(self, object_id: str) -> RepositoryObject:
        """Fetch a fresh copy of an object; raises ObjectNotFoundError."""
        ...

    def fetch_by_path(self, path: str) -> RepositoryObject | None: ...

    def new_object(self, object_type: str) -> RepositoryObject: ...

    def save(self, obj: RepositoryObject) -> RepositoryObject:
        """Create or update an object, uploading any staged content."""
        ...

    def set_content(self, obj: RepositoryObject, local_path: Path, content_format: str | None) -> None: ...

    def get_content(self, object_id: str, destination: Path) -> Path: ...

    def set_acl(self, obj: RepositoryObject, acl: RepositoryObject) -> None:
        """Point an object at an ACL object by reference (not yet saved)."""
        ...

    def link(self, object_id: str, folder_id: str) -> None: ...

    def unlink(self, object_id: str, folder_id: str) -> None: ...

    def destroy(self, object_id: str) -> None: ...

    def describe_attribute(self, object_type: str, name: str) -> AttributeInfo | None:
        """Schema lookup; None when the type has no such attribute."""
        ...
