"""Request and response schemas.

Request bodies are deliberately permissive: required-field and format
checks belong to the lifecycle operations so that a missing name or an
unparseable deadline is reported as a validation failure (400) with the
same message whichever surface called in.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from taskboard.persistence.models import TaskRecord, UserRecord, UNASSIGNED_NAME


class TaskBody(BaseModel):
    """Task create/replace body."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    deadline: Optional[Union[int, float, str]] = None
    description: Optional[str] = ""
    completed: bool = False
    assigned_user: Optional[str] = Field("", alias="assignedUser")
    assigned_user_name: Optional[str] = Field(None, alias="assignedUserName")


class UserBody(BaseModel):
    """User create/replace body."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[str] = None
    pending_tasks: Optional[List[str]] = Field(None, alias="pendingTasks")


class TaskResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    name: str
    deadline: datetime
    description: str = ""
    completed: bool = False
    assigned_user: str = Field("", alias="assignedUser")
    assigned_user_name: str = Field(UNASSIGNED_NAME, alias="assignedUserName")
    date_created: datetime = Field(alias="dateCreated")

    @classmethod
    def from_record(cls, task: TaskRecord) -> "TaskResponse":
        return cls(
            id=task.id,
            name=task.name,
            deadline=task.deadline,
            description=task.description,
            completed=task.completed,
            assigned_user=task.assigned_user,
            assigned_user_name=task.assigned_user_name,
            date_created=task.date_created,
        )


class UserResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    name: str
    email: str
    pending_tasks: List[str] = Field(default_factory=list, alias="pendingTasks")
    date_created: datetime = Field(alias="dateCreated")

    @classmethod
    def from_record(cls, user: UserRecord) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            pending_tasks=list(user.pending_tasks),
            date_created=user.date_created,
        )


class PendingSetDiffResponse(BaseModel):
    to_add: List[str] = Field(alias="toAdd")
    to_remove: List[str] = Field(alias="toRemove")
    unchanged: List[str]


class AuditResponse(BaseModel):
    users_checked: int = Field(alias="usersChecked")
    tasks_checked: int = Field(alias="tasksChecked")
    drift: Dict[str, PendingSetDiffResponse]
    orphaned_tasks: List[str] = Field(alias="orphanedTasks")
    repaired: bool
    clean: bool


ListResult = Union[int, List[Dict[str, Any]]]
