"""
Task lifecycle operations.

Loads current task state, validates the requested fields, and hands the
assignment change to the AssignmentReconciler. All validation and
reference checks happen before the first write.
"""

import logging
from datetime import datetime
from typing import Any, List, Mapping, Optional, Tuple, Union

from taskboard.domain.exceptions import (
    ConflictError,
    InvalidReferenceError,
    NotFoundError,
    ValidationFailedError,
)
from taskboard.domain.services.assignment_reconciler import AssignmentReconciler
from taskboard.domain.services.validation import require_bool, require_deadline, require_text
from taskboard.persistence.models import (
    DEADLINE,
    DESCRIPTION,
    ID,
    NAME,
    UNASSIGNED_NAME,
    Collection,
    TaskRecord,
    UserRecord,
    format_datetime,
)
from taskboard.persistence.query import Document
from taskboard.persistence.store import EntityStore

logger = logging.getLogger(__name__)

UPDATE_ATTEMPTS = 3


class TaskLifecycleOps:
    """Create, update and delete tasks while keeping pending sets in step."""

    def __init__(
        self,
        store: EntityStore,
        reconciler: Optional[AssignmentReconciler] = None,
        list_limit: int = 100,
    ):
        self._store = store
        self._reconciler = reconciler or AssignmentReconciler(store)
        self._list_limit = list_limit

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, task_id: str, select: Optional[Mapping[str, Any]] = None) -> Document:
        docs = await self._store.find(Collection.TASKS, {ID: task_id}, projection=select, limit=1)
        if not docs:
            raise NotFoundError("task", task_id)
        return docs[0]

    async def find(
        self,
        where: Optional[Mapping[str, Any]] = None,
        sort: Optional[Mapping[str, Any]] = None,
        select: Optional[Mapping[str, Any]] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Document]:
        """List tasks; ``limit`` defaults to the configured task list limit."""
        return await self._store.find(
            Collection.TASKS,
            where,
            projection=select,
            sort=sort,
            skip=skip,
            limit=self._list_limit if limit is None else limit,
        )

    async def count(self, where: Optional[Mapping[str, Any]] = None) -> int:
        return await self._store.count(Collection.TASKS, where)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _resolve_assignee(
        self,
        assigned_user: Optional[str],
        assigned_user_name: Optional[str],
    ) -> Tuple[str, str]:
        """
        Return (user id, display name) for the requested assignment.

        The name always comes from the user record; a supplied name is only
        a cached copy and may lag a rename.
        """
        if not assigned_user:
            if assigned_user_name and assigned_user_name != UNASSIGNED_NAME:
                raise ValidationFailedError(
                    "assignedUserName given without assignedUser",
                    field="assignedUserName",
                )
            return "", UNASSIGNED_NAME

        user_doc = await self._store.get(Collection.USERS, assigned_user)
        if user_doc is None:
            raise InvalidReferenceError("user", assigned_user)
        user = UserRecord.from_document(user_doc)

        if assigned_user_name and assigned_user_name != user.name:
            logger.debug(
                "Replacing cached assignee name %r with %r", assigned_user_name, user.name
            )
        return user.id, user.name

    async def on_create(
        self,
        name: str,
        deadline: Union[datetime, str],
        description: Optional[str] = "",
        completed: bool = False,
        assigned_user: Optional[str] = "",
        assigned_user_name: Optional[str] = None,
    ) -> TaskRecord:
        """Insert a task and add it to its assignee's pending set if still open."""
        name = require_text(name, "name")
        deadline = require_deadline(deadline)
        completed = require_bool(completed, "completed")
        user_id, user_name = await self._resolve_assignee(assigned_user, assigned_user_name)

        task = TaskRecord.create(
            name=name,
            deadline=deadline,
            description=description or "",
            completed=completed,
            assigned_user=user_id,
            assigned_user_name=user_name,
        )
        await self._store.insert(Collection.TASKS, task.to_document())
        logger.info("Task created: %s", task.id, extra={"task_id": task.id, "user_id": user_id})

        if not user_id:
            return task

        await self._reconciler.reconcile_task_assignment(
            task.id,
            previous_user_id=user_id,
            previous_completed=completed,
            new_user_id=user_id,
            new_completed=completed,
            new_user_name=user_name,
            if_unchanged=True,
        )
        # Reread: the assignee may have been deleted mid-create
        current = await self._store.get(Collection.TASKS, task.id)
        return task if current is None else TaskRecord.from_document(current)

    async def on_update(
        self,
        task_id: str,
        name: str,
        deadline: Union[datetime, str],
        description: Optional[str] = "",
        completed: bool = False,
        assigned_user: Optional[str] = "",
        assigned_user_name: Optional[str] = None,
    ) -> TaskRecord:
        """
        Replace a task's fields and move it between pending sets as needed.

        The assignment write only lands if the task still holds the state
        it was read with. Otherwise the task is reloaded and the move is
        retried, up to ``UPDATE_ATTEMPTS`` times before a ConflictError.
        """
        previous_doc = await self._store.get(Collection.TASKS, task_id)
        if previous_doc is None:
            raise NotFoundError("task", task_id)

        name = require_text(name, "name")
        deadline = require_deadline(deadline)
        completed = require_bool(completed, "completed")
        user_id, user_name = await self._resolve_assignee(assigned_user, assigned_user_name)
        extra_fields = {
            NAME: name,
            DEADLINE: format_datetime(deadline),
            DESCRIPTION: description or "",
        }

        for attempt in range(1, UPDATE_ATTEMPTS + 1):
            previous = TaskRecord.from_document(previous_doc)
            report = await self._reconciler.reconcile_task_assignment(
                task_id,
                previous_user_id=previous.assigned_user,
                previous_completed=previous.completed,
                new_user_id=user_id,
                new_completed=completed,
                new_user_name=user_name,
                extra_fields=extra_fields,
                if_unchanged=True,
            )
            if not report.conflicted:
                break
            logger.info(
                "Task %s changed concurrently (attempt %d)",
                task_id,
                attempt,
                extra={"task_id": task_id},
            )
            previous_doc = await self._store.get(Collection.TASKS, task_id)
            if previous_doc is None:
                raise NotFoundError("task", task_id)
        else:
            raise ConflictError(
                f"Task '{task_id}' kept changing during update; retry the request",
                details={"task_id": task_id, "attempts": UPDATE_ATTEMPTS},
            )

        updated = await self._store.get(Collection.TASKS, task_id)
        if updated is None:
            # Deleted concurrently; the reconciler already skipped the write
            raise NotFoundError("task", task_id)
        logger.info(
            "Task updated: %s",
            task_id,
            extra={"task_id": task_id, "user_id": user_id, "steps": report.summary},
        )
        return TaskRecord.from_document(updated)

    async def on_delete(self, task_id: str) -> TaskRecord:
        """
        Remove a task from its owner's pending set, then delete it.

        The owner recorded on the deleted document is released again, in
        case the task was reassigned between the read and the delete.
        """
        doc = await self._store.get(Collection.TASKS, task_id)
        if doc is None:
            raise NotFoundError("task", task_id)
        task = TaskRecord.from_document(doc)

        await self._reconciler.release_task(task.id, task.assigned_user)

        deleted = await self._store.delete(Collection.TASKS, task_id)
        if deleted is None:
            raise NotFoundError("task", task_id)
        deleted_task = TaskRecord.from_document(deleted)
        await self._reconciler.release_task(task.id, deleted_task.assigned_user)

        logger.info("Task deleted: %s", task_id, extra={"task_id": task_id})
        return deleted_task
