"""Persistence domain models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4


UNASSIGNED_NAME = "unassigned"


class Collection(str, Enum):
    """Entity collections held by the store."""
    TASKS = "tasks"
    USERS = "users"


# Document field names (wire names, shared with where/sort/select queries)
ID = "_id"
NAME = "name"
DEADLINE = "deadline"
DESCRIPTION = "description"
COMPLETED = "completed"
ASSIGNED_USER = "assignedUser"
ASSIGNED_USER_NAME = "assignedUserName"
EMAIL = "email"
PENDING_TASKS = "pendingTasks"
DATE_CREATED = "dateCreated"


def new_id() -> str:
    """Generate an opaque record identifier."""
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_datetime(value: datetime) -> str:
    return to_utc(value).isoformat()


def parse_datetime(value: Any) -> datetime:
    """Accept a datetime, an ISO-8601 string, or epoch milliseconds."""
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, bool):
        raise TypeError("boolean is not a datetime")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return to_utc(datetime.fromisoformat(str(value).strip()))


@dataclass
class TaskRecord:
    """
    A task document.

    ``assigned_user`` is empty for unassigned tasks; ``assigned_user_name``
    caches the assignee's name as of the last write to this task.
    """
    id: str
    name: str
    deadline: datetime
    description: str = ""
    completed: bool = False
    assigned_user: str = ""
    assigned_user_name: str = UNASSIGNED_NAME
    date_created: datetime = field(default_factory=utcnow)

    @classmethod
    def create(cls, name: str, deadline: datetime, **kwargs) -> "TaskRecord":
        """Create a new task with generated ID."""
        return cls(id=new_id(), name=name, deadline=to_utc(deadline), **kwargs)

    @property
    def is_pending(self) -> bool:
        """True when the task belongs in its assignee's pending set."""
        return bool(self.assigned_user) and not self.completed

    def to_document(self) -> Dict[str, Any]:
        return {
            ID: self.id,
            NAME: self.name,
            DEADLINE: format_datetime(self.deadline),
            DESCRIPTION: self.description,
            COMPLETED: self.completed,
            ASSIGNED_USER: self.assigned_user,
            ASSIGNED_USER_NAME: self.assigned_user_name,
            DATE_CREATED: format_datetime(self.date_created),
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "TaskRecord":
        return cls(
            id=doc[ID],
            name=doc.get(NAME, ""),
            deadline=parse_datetime(doc[DEADLINE]),
            description=doc.get(DESCRIPTION) or "",
            completed=bool(doc.get(COMPLETED, False)),
            assigned_user=doc.get(ASSIGNED_USER) or "",
            assigned_user_name=doc.get(ASSIGNED_USER_NAME) or UNASSIGNED_NAME,
            date_created=parse_datetime(doc[DATE_CREATED]) if doc.get(DATE_CREATED) else utcnow(),
        )


@dataclass
class UserRecord:
    """A user document. ``pending_tasks`` holds ids of incomplete assigned tasks."""
    id: str
    name: str
    email: str
    pending_tasks: List[str] = field(default_factory=list)
    date_created: datetime = field(default_factory=utcnow)

    @classmethod
    def create(cls, name: str, email: str) -> "UserRecord":
        """Create a new user with generated ID and no pending tasks."""
        return cls(id=new_id(), name=name, email=email)

    def to_document(self) -> Dict[str, Any]:
        return {
            ID: self.id,
            NAME: self.name,
            EMAIL: self.email,
            PENDING_TASKS: list(dict.fromkeys(self.pending_tasks)),
            DATE_CREATED: format_datetime(self.date_created),
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "UserRecord":
        return cls(
            id=doc[ID],
            name=doc.get(NAME, ""),
            email=doc.get(EMAIL, ""),
            pending_tasks=list(doc.get(PENDING_TASKS) or []),
            date_created=parse_datetime(doc[DATE_CREATED]) if doc.get(DATE_CREATED) else utcnow(),
        )


def assignment_name(user_id: Optional[str], user_name: Optional[str]) -> str:
    """Cached display name for an assignment target."""
    if not user_id:
        return UNASSIGNED_NAME
    return user_name or UNASSIGNED_NAME
