"""Repository access: session protocol, structured queries and session pooling."""

from recordmigrate.repository.base import (
    AttributeInfo,
    AttributeType,
    RepositoryObject,
    RepositorySession,
)
from recordmigrate.repository.memory import InMemoryRepository, InMemorySession
from recordmigrate.repository.pool import SessionPool, SessionPoolRegistry
from recordmigrate.repository.query import (
    ChangeType,
    DestroyObject,
    Eq,
    IEq,
    In,
    InFolder,
    Ne,
    Query,
    UpdateObject,
)

__all__ = [
    "AttributeInfo",
    "AttributeType",
    "ChangeType",
    "DestroyObject",
    "Eq",
    "IEq",
    "In",
    "InFolder",
    "InMemoryRepository",
    "InMemorySession",
    "Ne",
    "Query",
    "RepositoryObject",
    "RepositorySession",
    "SessionPool",
    "SessionPoolRegistry",
    "UpdateObject",
]
