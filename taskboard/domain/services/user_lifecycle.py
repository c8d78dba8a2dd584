"""
User lifecycle operations.

Email uniqueness is a check-then-insert guard: two concurrent requests with
the same new email can both pass it. The store has no unique index to
back it up, so this window is accepted rather than closed here.

A rename is not pushed to the assignedUserName cached on tasks; each task
picks up the new name the next time it is written.
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional

from taskboard.domain.exceptions import (
    ConflictError,
    InvalidReferenceError,
    NotFoundError,
)
from taskboard.domain.services.assignment_reconciler import (
    AssignmentReconciler,
    PendingSetDiff,
)
from taskboard.domain.services.validation import require_email, require_id_list, require_text
from taskboard.persistence.models import (
    ASSIGNED_USER,
    EMAIL,
    ID,
    NAME,
    Collection,
    UserRecord,
)
from taskboard.persistence.query import Document
from taskboard.persistence.store import EntityStore

logger = logging.getLogger(__name__)


class UserLifecycleOps:
    """Create, update and delete users; pending sets go through the reconciler."""

    def __init__(
        self,
        store: EntityStore,
        reconciler: Optional[AssignmentReconciler] = None,
    ):
        self._store = store
        self._reconciler = reconciler or AssignmentReconciler(store)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, user_id: str, select: Optional[Mapping[str, Any]] = None) -> Document:
        docs = await self._store.find(Collection.USERS, {ID: user_id}, projection=select, limit=1)
        if not docs:
            raise NotFoundError("user", user_id)
        return docs[0]

    async def find(
        self,
        where: Optional[Mapping[str, Any]] = None,
        sort: Optional[Mapping[str, Any]] = None,
        select: Optional[Mapping[str, Any]] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Document]:
        return await self._store.find(
            Collection.USERS, where, projection=select, sort=sort, skip=skip, limit=limit
        )

    async def count(self, where: Optional[Mapping[str, Any]] = None) -> int:
        return await self._store.count(Collection.USERS, where)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    async def _load(self, user_id: str) -> UserRecord:
        doc = await self._store.get(Collection.USERS, user_id)
        if doc is None:
            raise NotFoundError("user", user_id)
        return UserRecord.from_document(doc)

    async def _ensure_email_free(self, email: str, exclude_user_id: Optional[str] = None) -> None:
        filter_: dict = {EMAIL: email}
        if exclude_user_id:
            filter_[ID] = {"$ne": exclude_user_id}
        if await self._store.count(Collection.USERS, filter_) > 0:
            raise ConflictError(
                "A user with this email already exists.",
                details={"email": email},
            )

    async def _ensure_tasks_exist(self, task_ids: List[str]) -> None:
        if not task_ids:
            return
        found = await self._store.find(
            Collection.TASKS, {ID: {"$in": task_ids}}, projection={ID: 1}
        )
        missing = sorted(set(task_ids) - {doc[ID] for doc in found})
        if missing:
            raise InvalidReferenceError("task", missing[0], details={"missing": missing})

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def on_create(
        self,
        name: str,
        email: str,
        pending_tasks: Optional[Iterable[str]] = None,
    ) -> UserRecord:
        """Insert a user with an empty pending set, then apply ``pending_tasks``."""
        name = require_text(name, "name")
        email = require_email(email)
        desired = require_id_list(pending_tasks, "pendingTasks")
        await self._ensure_email_free(email)
        await self._ensure_tasks_exist(desired)

        user = UserRecord.create(name=name, email=email)
        await self._store.insert(Collection.USERS, user.to_document())
        logger.info("User created: %s", user.id, extra={"user_id": user.id})

        if desired:
            await self._reconciler.reconcile_bulk_pending_tasks(user.id, desired)
            return await self._load(user.id)
        return user

    async def on_update_core_fields(self, user_id: str, name: str, email: str) -> UserRecord:
        """Update name and email. Cached task names are left to lag."""
        name = require_text(name, "name")
        email = require_email(email)
        current = await self._load(user_id)
        await self._ensure_email_free(email, exclude_user_id=user_id)
        return await self._write_core_fields(current, name, email)

    async def _write_core_fields(self, current: UserRecord, name: str, email: str) -> UserRecord:
        updated = await self._store.update_fields(
            Collection.USERS, current.id, {NAME: name, EMAIL: email}
        )
        if updated is None:
            raise NotFoundError("user", current.id)
        if name != current.name:
            logger.info(
                "User %s renamed; cached assignee names refresh on next task write",
                current.id,
                extra={"user_id": current.id},
            )
        return UserRecord.from_document(updated)

    async def on_replace_pending_tasks(
        self,
        user_id: str,
        desired_task_ids: Iterable[str],
    ) -> UserRecord:
        """Replace the pending set wholesale via the bulk reconciliation."""
        desired = require_id_list(desired_task_ids, "pendingTasks")
        await self._load(user_id)
        await self._ensure_tasks_exist(desired)

        report = await self._reconciler.reconcile_bulk_pending_tasks(user_id, desired)
        logger.info(
            "Pending tasks replaced for user %s",
            user_id,
            extra={"user_id": user_id, "steps": report.summary},
        )
        return await self._load(user_id)

    async def on_replace(
        self,
        user_id: str,
        name: str,
        email: str,
        pending_tasks: Optional[Iterable[str]] = None,
    ) -> UserRecord:
        """Full replacement: core fields, then the pending set.

        Every check runs before the first write.
        """
        name = require_text(name, "name")
        email = require_email(email)
        desired = require_id_list(pending_tasks, "pendingTasks")
        current = await self._load(user_id)
        await self._ensure_email_free(email, exclude_user_id=user_id)
        await self._ensure_tasks_exist(desired)

        await self._write_core_fields(current, name, email)
        await self._reconciler.reconcile_bulk_pending_tasks(user_id, desired)
        return await self._load(user_id)

    async def on_delete(self, user_id: str) -> UserRecord:
        """
        Delete the user, then unassign every task still referencing it.

        Tasks are looked up after the delete so an assignment that lands
        in between is either found here or rejected by the reconciler.
        """
        await self._load(user_id)

        deleted = await self._store.delete(Collection.USERS, user_id)
        if deleted is None:
            raise NotFoundError("user", user_id)

        owned = await self._store.find(
            Collection.TASKS, {ASSIGNED_USER: user_id}, projection={ID: 1}
        )
        report = await self._reconciler.unassign_tasks(user_id, [doc[ID] for doc in owned])
        logger.info(
            "User deleted: %s (%d tasks unassigned)",
            user_id,
            len(owned),
            extra={"user_id": user_id, "steps": report.summary},
        )
        return UserRecord.from_document(deleted)

    async def rebuild_pending_tasks(self, user_id: str) -> PendingSetDiff:
        """Recompute one user's pending set from the task documents."""
        await self._load(user_id)
        drift = await self._reconciler.rebuild_pending_tasks(user_id)
        if drift is None:
            raise NotFoundError("user", user_id)
        return drift
