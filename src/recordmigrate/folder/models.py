"""Folder descriptors for the migrated hierarchy."""

from dataclasses import dataclass
from enum import StrEnum


class FolderType(StrEnum):
    """Role of a folder in the cabinet / group / single / subletter hierarchy."""

    CABINET = "cabinet"
    GROUP_RECORD = "group"
    SINGLE_RECORD = "single"
    SUBLETTER_RECORD = "subletter"


@dataclass
class FolderDescriptor:
    """A folder known to the hierarchy builder.

    Identity is the full path for lookups and the repository id for linkage.
    """

    folder_id: str
    name: str
    path: str
    folder_type: FolderType
    parent_id: str | None = None
    acl_id: str | None = None

    @property
    def parent_path(self) -> str:
        return self.path.rsplit("/", 1)[0] or "/"


def normalize_folder_name(name: str) -> str:
    """Folder names cannot contain ``/``; group ids use ``-`` in its place.

    Examples:
        >>> normalize_folder_name("G67/2024-25")
        'G67-2024-25'
    """
    return name.strip().replace("/", "-")


def join_path(parent: str, name: str) -> str:
    return f"{parent.rstrip('/')}/{name}"
