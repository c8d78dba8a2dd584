"""Persistence module for Taskboard."""

from taskboard.persistence.models import (
    Collection,
    TaskRecord,
    UserRecord,
    UNASSIGNED_NAME,
)
from taskboard.persistence.query import QueryError
from taskboard.persistence.store import (
    EntityStore,
    InMemoryEntityStore,
    DuplicateIdError,
)

__all__ = [
    # Models
    "Collection",
    "TaskRecord",
    "UserRecord",
    "UNASSIGNED_NAME",
    # Protocols
    "EntityStore",
    # In-memory implementation
    "InMemoryEntityStore",
    # Exceptions
    "DuplicateIdError",
    "QueryError",
]
