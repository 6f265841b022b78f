"""Structured queries and update statements.

Queries are plain dataclasses so that the in-memory repository can evaluate
them directly while the REST adapter renders them to DQL with
:meth:`Query.to_dql`. String literals are escaped by doubling single quotes.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from recordmigrate.repository.base import RepositoryObject


class FolderIndex(Protocol):
    """Folder lookups needed to evaluate :class:`InFolder` without a server."""

    def resolve_folder(self, ref: str) -> str | None: ...

    def ancestor_ids(self, obj: RepositoryObject, descend: bool) -> set[str]: ...


def quote(value: str) -> str:
    """Quote a string literal for DQL, doubling embedded single quotes."""
    return "'" + value.replace("'", "''") + "'"


def literal(value: Any) -> str:
    """Render a Python value as a DQL literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(value)
    if isinstance(value, datetime):
        return f"DATE({quote(value.strftime('%m/%d/%Y %H:%M:%S'))},'mm/dd/yyyy hh:mi:ss')"
    return quote(str(value))


def normalize(value: Any) -> str:
    """Comparable string form of an attribute value."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    text = str(value)
    if text.lower() in ("true", "false"):
        return text.lower()
    return text


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    return [value]


class Condition:
    """Base class for WHERE-clause conditions."""

    def to_dql(self) -> str:
        raise NotImplementedError

    def matches(self, obj: RepositoryObject, index: FolderIndex) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class Eq(Condition):
    """``attr = value``; with ``any_`` set, matches a repeating attribute."""

    attribute: str
    value: Any
    any_: bool = False

    def to_dql(self) -> str:
        prefix = "ANY " if self.any_ else ""
        return f"{prefix}{self.attribute} = {literal(self.value)}"

    def matches(self, obj: RepositoryObject, index: FolderIndex) -> bool:
        expected = normalize(self.value)
        return any(normalize(v) == expected for v in _as_list(obj.get(self.attribute)))


@dataclass(frozen=True)
class Ne(Condition):
    """``attr != value``; a missing value counts as not equal."""

    attribute: str
    value: Any

    def to_dql(self) -> str:
        return f"{self.attribute} != {literal(self.value)}"

    def matches(self, obj: RepositoryObject, index: FolderIndex) -> bool:
        expected = normalize(self.value)
        return all(normalize(v) != expected for v in _as_list(obj.get(self.attribute)))


@dataclass(frozen=True)
class In(Condition):
    """``attr IN (v1, v2, ...)``."""

    attribute: str
    values: tuple[Any, ...]

    def to_dql(self) -> str:
        rendered = ", ".join(literal(v) for v in self.values)
        return f"{self.attribute} IN ({rendered})"

    def matches(self, obj: RepositoryObject, index: FolderIndex) -> bool:
        expected = {normalize(v) for v in self.values}
        return any(normalize(v) in expected for v in _as_list(obj.get(self.attribute)))


@dataclass(frozen=True)
class IEq(Condition):
    """Case-insensitive equality: ``LOWER(attr) = lower(value)``."""

    attribute: str
    value: str

    def to_dql(self) -> str:
        return f"LOWER({self.attribute}) = {quote(self.value.lower())}"

    def matches(self, obj: RepositoryObject, index: FolderIndex) -> bool:
        expected = self.value.lower()
        return any(normalize(v).lower() == expected for v in _as_list(obj.get(self.attribute)))


@dataclass(frozen=True)
class InFolder(Condition):
    """``FOLDER(ID('id'), DESCEND)`` or ``FOLDER('/path')``.

    Args:
        folder: Folder id, or an absolute path when it starts with ``/``
        descend: Include objects in sub-folders at any depth
    """

    folder: str
    descend: bool = False

    def to_dql(self) -> str:
        target = quote(self.folder) if self.folder.startswith("/") else f"ID({quote(self.folder)})"
        suffix = ", DESCEND" if self.descend else ""
        return f"FOLDER({target}{suffix})"

    def matches(self, obj: RepositoryObject, index: FolderIndex) -> bool:
        folder_id = index.resolve_folder(self.folder)
        if folder_id is None:
            return False
        return folder_id in index.ancestor_ids(obj, self.descend)


@dataclass(frozen=True)
class Query:
    """A read query against one repository type.

    Examples:
        >>> Query("dm_user", ("user_name",), (Eq("user_name", "o'neil"),)).to_dql()
        "SELECT user_name FROM dm_user WHERE user_name = 'o''neil'"
    """

    object_type: str
    columns: Sequence[str] = ("r_object_id",)
    where: Sequence[Condition] = ()
    distinct: bool = False
    row_based: bool = False

    def to_dql(self) -> str:
        distinct = "DISTINCT " if self.distinct else ""
        dql = f"SELECT {distinct}{', '.join(self.columns)} FROM {self.object_type}"
        if self.where:
            dql += " WHERE " + " AND ".join(c.to_dql() for c in self.where)
        if self.row_based:
            dql += " ENABLE (ROW_BASED)"
        return dql

    def matches(self, obj: RepositoryObject, index: FolderIndex) -> bool:
        return all(condition.matches(obj, index) for condition in self.where)

    def project(self, obj: RepositoryObject) -> dict[str, Any]:
        """Select this query's columns from an object (``*`` selects all)."""
        if list(self.columns) == ["*"]:
            row = dict(obj.attributes)
        else:
            row = {column: obj.get(column) for column in self.columns}
        if "r_object_id" in self.columns or list(self.columns) == ["*"]:
            row["r_object_id"] = obj.object_id
        if "r_object_type" in self.columns:
            row["r_object_type"] = obj.object_type
        if "i_folder_id" in self.columns:
            row["i_folder_id"] = list(obj.folder_ids)
        return row


class Statement:
    """Base class for update statements."""

    object_id: str

    def to_dql(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class UpdateObject(Statement):
    """``UPDATE <type> OBJECTS SET ... WHERE r_object_id = '<id>'``.

    Args:
        object_type: Type named in the statement
        object_id: Target object id
        set_values: Single-valued attributes to set
        append_values: Repeating attributes to append to
        truncate: Repeating attributes to clear before appending
        unlink: Folder path to unlink the object from
    """

    object_type: str
    object_id: str
    set_values: dict[str, Any] = field(default_factory=dict)
    append_values: dict[str, list[Any]] = field(default_factory=dict)
    truncate: tuple[str, ...] = ()
    unlink: str | None = None

    def to_dql(self) -> str:
        clauses: list[str] = [f"TRUNCATE {name}" for name in self.truncate]
        clauses += [f"SET {name} = {literal(value)}" for name, value in self.set_values.items()]
        for name, values in self.append_values.items():
            clauses += [f"APPEND {name} = {literal(value)}" for value in values]
        if self.unlink:
            clauses.append(f"UNLINK {quote(self.unlink)}")
        return (
            f"UPDATE {self.object_type} OBJECTS {', '.join(clauses)} "
            f"WHERE r_object_id = {quote(self.object_id)}"
        )


@dataclass(frozen=True)
class ChangeType(Statement):
    """``CHANGE <from> OBJECTS TO "<to>" WHERE r_object_id = '<id>'``."""

    from_type: str
    to_type: str
    object_id: str

    def to_dql(self) -> str:
        return (
            f'CHANGE {self.from_type} OBJECTS TO "{self.to_type}" '
            f"WHERE r_object_id = {quote(self.object_id)}"
        )


@dataclass(frozen=True)
class DestroyObject(Statement):
    """``DELETE <type> OBJECTS WHERE r_object_id = '<id>'``."""

    object_type: str
    object_id: str

    def to_dql(self) -> str:
        return f"DELETE {self.object_type} OBJECTS WHERE r_object_id = {quote(self.object_id)}"


def chunked(values: Sequence[str], size: int) -> Iterable[tuple[str, ...]]:
    """Split values into tuples of at most ``size`` items."""
    for start in range(0, len(values), size):
        yield tuple(values[start : start + size])
