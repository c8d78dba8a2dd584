"""
AssignmentReconciler: keeps Task.assignedUser and User.pendingTasks in step.

The store offers per-document atomic updates and nothing wider, so every
cross-entity effect is a sequence of single-document steps tagged
"add", "remove" or "set". Each step is idempotent: running a whole
reconciliation again after an interruption converges to the same state.

A step whose target no longer resolves is a stale reference. It is logged,
recorded in the report, and skipped; the remaining steps still run.

The task document is the source of truth for pending sets.
rebuild_pending_tasks() and audit() recompute pending sets from it and are
run explicitly, never as a side effect of a request.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

from taskboard.domain.exceptions import StaleReferenceError
from taskboard.persistence.models import (
    ASSIGNED_USER,
    ASSIGNED_USER_NAME,
    COMPLETED,
    ID,
    PENDING_TASKS,
    UNASSIGNED_NAME,
    Collection,
    TaskRecord,
    UserRecord,
    assignment_name,
)
from taskboard.persistence.query import Document
from taskboard.persistence.store import EntityStore

logger = logging.getLogger(__name__)


class StepOp(str, Enum):
    """Kind of single-document step."""
    ADD = "add"
    REMOVE = "remove"
    SET = "set"


class StepStatus(str, Enum):
    """Outcome of one step."""
    APPLIED = "applied"
    STALE = "stale"
    CONFLICT = "conflict"


@dataclass
class StepOutcome:
    """One applied or skipped step."""
    op: StepOp
    collection: Collection
    record_id: str
    values: List[str] = field(default_factory=list)
    status: StepStatus = StepStatus.APPLIED


@dataclass
class ReconciliationReport:
    """Ordered record of the steps a reconciliation ran."""
    steps: List[StepOutcome] = field(default_factory=list)

    @property
    def stale(self) -> List[StepOutcome]:
        return [s for s in self.steps if s.status == StepStatus.STALE]

    @property
    def conflicted(self) -> bool:
        """True if a guarded task write found the task changed underneath it."""
        return any(s.status == StepStatus.CONFLICT for s in self.steps)

    @property
    def fully_converged(self) -> bool:
        return all(s.status == StepStatus.APPLIED for s in self.steps)

    @property
    def summary(self) -> Dict[str, int]:
        counts: Dict[str, int] = defaultdict(int)
        for step in self.steps:
            counts[f"{step.op.value}_{step.status.value}"] += 1
        return dict(counts)


@dataclass(frozen=True)
class PendingSetDiff:
    """Difference between a stored pending set and a target pending set."""
    to_add: FrozenSet[str] = frozenset()
    to_remove: FrozenSet[str] = frozenset()
    unchanged: FrozenSet[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "toAdd": sorted(self.to_add),
            "toRemove": sorted(self.to_remove),
            "unchanged": sorted(self.unchanged),
        }


@dataclass
class AuditReport:
    """Result of an integrity scan across all users and tasks."""
    users_checked: int = 0
    tasks_checked: int = 0
    drift: Dict[str, PendingSetDiff] = field(default_factory=dict)
    orphaned_tasks: List[str] = field(default_factory=list)
    repaired: bool = False
    repair_steps: List[StepOutcome] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.drift and not self.orphaned_tasks

    def to_dict(self) -> Dict[str, Any]:
        return {
            "usersChecked": self.users_checked,
            "tasksChecked": self.tasks_checked,
            "drift": {user_id: diff.to_dict() for user_id, diff in sorted(self.drift.items())},
            "orphanedTasks": sorted(self.orphaned_tasks),
            "repaired": self.repaired,
            "clean": self.is_clean,
        }


def diff_pending_sets(current: Iterable[str], desired: Iterable[str]) -> PendingSetDiff:
    """Compute adds and removes needed to turn ``current`` into ``desired``.

    Order and duplicates in either input do not affect the result.
    """
    current_ids = frozenset(current)
    desired_ids = frozenset(desired)
    return PendingSetDiff(
        to_add=desired_ids - current_ids,
        to_remove=current_ids - desired_ids,
        unchanged=current_ids & desired_ids,
    )


def _resource(collection: Collection) -> str:
    return "task" if collection == Collection.TASKS else "user"


def _pending_on(task_doc: Optional[Document], user_id: str) -> bool:
    return (
        task_doc is not None
        and task_doc.get(ASSIGNED_USER) == user_id
        and not task_doc.get(COMPLETED)
    )


class AssignmentReconciler:
    """Applies assignment changes to both collections, one document at a time."""

    def __init__(self, store: EntityStore):
        self._store = store

    @staticmethod
    def _mark_stale(
        report: ReconciliationReport,
        op: StepOp,
        collection: Collection,
        record_id: str,
        values: List[str],
        exc: StaleReferenceError,
    ) -> None:
        logger.warning(
            "Stale reference skipped: %s",
            exc.message,
            extra={"step": op.value, "collection": collection.value, "record_id": record_id},
        )
        report.steps.append(StepOutcome(op, collection, record_id, values, StepStatus.STALE))

    async def _step(
        self,
        report: ReconciliationReport,
        op: StepOp,
        collection: Collection,
        record_id: str,
        values: List[str],
        action: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run one store call; a None/False result marks the step stale."""
        try:
            result = await action()
            if result is None or result is False:
                raise StaleReferenceError(_resource(collection), record_id)
        except StaleReferenceError as exc:
            self._mark_stale(report, op, collection, record_id, values, exc)
            return None
        report.steps.append(StepOutcome(op, collection, record_id, values))
        return result

    def _pull(
        self, report: ReconciliationReport, user_id: str, task_ids: List[str]
    ) -> Awaitable[Optional[bool]]:
        return self._step(
            report, StepOp.REMOVE, Collection.USERS, user_id, task_ids,
            lambda: self._store.pull_from_set(Collection.USERS, user_id, PENDING_TASKS, task_ids),
        )

    def _add(
        self, report: ReconciliationReport, user_id: str, task_ids: List[str]
    ) -> Awaitable[Optional[bool]]:
        return self._step(
            report, StepOp.ADD, Collection.USERS, user_id, task_ids,
            lambda: self._store.add_to_set(Collection.USERS, user_id, PENDING_TASKS, task_ids),
        )

    def _set_task(
        self,
        report: ReconciliationReport,
        task_id: str,
        fields: Mapping[str, Any],
        where: Optional[Mapping[str, Any]] = None,
    ) -> Awaitable[Optional[Document]]:
        return self._step(
            report, StepOp.SET, Collection.TASKS, task_id, [fields.get(ASSIGNED_USER, "")],
            lambda: self._store.update_fields(Collection.TASKS, task_id, fields, where=where),
        )

    async def reconcile_task_assignment(
        self,
        task_id: str,
        previous_user_id: str,
        previous_completed: bool,
        new_user_id: str,
        new_completed: bool,
        new_user_name: Optional[str],
        extra_fields: Optional[Mapping[str, Any]] = None,
        if_unchanged: bool = False,
    ) -> ReconciliationReport:
        """
        Move one task between pending sets and write its assignment fields.

        Steps, in order:
            1. pull the task from the previous user's set if the user changed
            2. pull it from (completed) or add it to (incomplete) the new
               user's set
            3. set assignedUser / assignedUserName / completed on the task,
               together with any ``extra_fields``

        The previous user is always cleared before the new one gains the
        task, so no observer sees the task pending on both users.

        If the step 3 write does not land, the step 2 add is taken back
        unless the task as it now stands is pending on the new user. If
        the new user is gone once the write lands, the task is unassigned.

        Args:
            if_unchanged: Only write the task while it still holds the
                previous assignedUser and completed values. A task changed
                in between is recorded as a CONFLICT step and the caller
                should reload and retry.
        """
        report = ReconciliationReport()
        previous_user_id = previous_user_id or ""
        new_user_id = new_user_id or ""

        logger.debug(
            "Reconciling task %s: %s/%s -> %s/%s",
            task_id, previous_user_id or "-", previous_completed,
            new_user_id or "-", new_completed,
        )

        if previous_user_id and previous_user_id != new_user_id:
            await self._pull(report, previous_user_id, [task_id])

        if new_user_id:
            if new_completed:
                await self._pull(report, new_user_id, [task_id])
            else:
                await self._add(report, new_user_id, [task_id])

        fields: Dict[str, Any] = dict(extra_fields or {})
        fields.update({
            ASSIGNED_USER: new_user_id,
            ASSIGNED_USER_NAME: assignment_name(new_user_id, new_user_name),
            COMPLETED: bool(new_completed),
        })
        where = None
        if if_unchanged:
            where = {ASSIGNED_USER: previous_user_id, COMPLETED: bool(previous_completed)}

        updated = await self._store.update_fields(Collection.TASKS, task_id, fields, where=where)
        if updated is not None:
            report.steps.append(StepOutcome(StepOp.SET, Collection.TASKS, task_id, [new_user_id]))
            if new_user_id and await self._store.get(Collection.USERS, new_user_id) is None:
                await self._set_task(
                    report,
                    task_id,
                    {ASSIGNED_USER: "", ASSIGNED_USER_NAME: UNASSIGNED_NAME},
                    where={ASSIGNED_USER: new_user_id},
                )
            return report

        current = await self._store.get(Collection.TASKS, task_id)
        if current is None:
            self._mark_stale(
                report, StepOp.SET, Collection.TASKS, task_id, [new_user_id],
                StaleReferenceError("task", task_id),
            )
        else:
            logger.info(
                "Task %s changed since it was read; assignment write skipped",
                task_id,
                extra={"task_id": task_id},
            )
            report.steps.append(
                StepOutcome(StepOp.SET, Collection.TASKS, task_id, [new_user_id], StepStatus.CONFLICT)
            )

        if new_user_id and not new_completed and not _pending_on(current, new_user_id):
            await self._pull(report, new_user_id, [task_id])
        return report

    async def reconcile_bulk_pending_tasks(
        self,
        user_id: str,
        desired_task_ids: Iterable[str],
    ) -> ReconciliationReport:
        """
        Replace a user's pending set, reassigning tasks on both sides.

        Removed tasks are unassigned only while they still point at this
        user. Added tasks are taken from their previous owners, reassigned,
        and then added (incomplete) or pulled (completed). Not linearizable
        against concurrent writes to the same tasks; the last task write wins.
        """
        report = ReconciliationReport()

        user_doc = await self._store.get(Collection.USERS, user_id)
        if user_doc is None:
            self._mark_stale(
                report, StepOp.SET, Collection.USERS, user_id, [],
                StaleReferenceError("user", user_id),
            )
            return report
        user = UserRecord.from_document(user_doc)

        diff = diff_pending_sets(user.pending_tasks, desired_task_ids)
        logger.info(
            "Replacing pending tasks for user %s: +%d -%d =%d",
            user_id, len(diff.to_add), len(diff.to_remove), len(diff.unchanged),
        )

        # Removals: task side first, so a rebuild after interruption agrees
        if diff.to_remove:
            for task_id in sorted(diff.to_remove):
                await self._set_task(
                    report,
                    task_id,
                    {ASSIGNED_USER: "", ASSIGNED_USER_NAME: UNASSIGNED_NAME},
                    where={ASSIGNED_USER: user_id},
                )
            await self._pull(report, user_id, sorted(diff.to_remove))

        if diff.to_add:
            await self._take_over_tasks(report, user, sorted(diff.to_add))

        return report

    async def _take_over_tasks(
        self,
        report: ReconciliationReport,
        user: UserRecord,
        task_ids: List[str],
    ) -> None:
        found = await self._store.find(Collection.TASKS, {ID: {"$in": task_ids}})
        tasks = {doc[ID]: TaskRecord.from_document(doc) for doc in found}

        for missing in sorted(set(task_ids) - tasks.keys()):
            self._mark_stale(
                report, StepOp.SET, Collection.TASKS, missing, [user.id],
                StaleReferenceError("task", missing),
            )

        previous_owners: Dict[str, List[str]] = defaultdict(list)
        for task in tasks.values():
            if task.assigned_user and task.assigned_user != user.id:
                previous_owners[task.assigned_user].append(task.id)
        for owner_id in sorted(previous_owners):
            await self._pull(report, owner_id, sorted(previous_owners[owner_id]))

        incomplete: List[str] = []
        completed: List[str] = []
        for task_id in sorted(tasks):
            updated = await self._set_task(
                report,
                task_id,
                {ASSIGNED_USER: user.id, ASSIGNED_USER_NAME: assignment_name(user.id, user.name)},
            )
            if updated is None:
                continue
            if updated.get(COMPLETED):
                completed.append(task_id)
            else:
                incomplete.append(task_id)

        if incomplete:
            await self._add(report, user.id, incomplete)
        if completed:
            await self._pull(report, user.id, completed)

    async def release_task(self, task_id: str, user_id: str) -> ReconciliationReport:
        """Drop a task that is being deleted from its owner's pending set."""
        report = ReconciliationReport()
        if user_id:
            await self._pull(report, user_id, [task_id])
        return report

    async def unassign_tasks(self, user_id: str, task_ids: Iterable[str]) -> ReconciliationReport:
        """Clear the assignment on tasks that still point at ``user_id``."""
        report = ReconciliationReport()
        for task_id in sorted(set(task_ids)):
            await self._set_task(
                report,
                task_id,
                {ASSIGNED_USER: "", ASSIGNED_USER_NAME: UNASSIGNED_NAME},
                where={ASSIGNED_USER: user_id},
            )
        return report

    async def expected_pending_tasks(self, user_id: str) -> List[str]:
        """Pending set implied by the task documents for one user."""
        docs = await self._store.find(
            Collection.TASKS,
            {ASSIGNED_USER: user_id, COMPLETED: False},
            projection={ID: 1},
        )
        return sorted(doc[ID] for doc in docs)

    async def rebuild_pending_tasks(self, user_id: str) -> Optional[PendingSetDiff]:
        """
        Recompute a user's pending set from the task documents.

        Returns the drift that was corrected, or None if the user is gone.
        """
        user_doc = await self._store.get(Collection.USERS, user_id)
        if user_doc is None:
            return None

        expected = await self.expected_pending_tasks(user_id)
        drift = diff_pending_sets(user_doc.get(PENDING_TASKS) or [], expected)
        if drift.is_empty:
            return drift

        updated = await self._store.update_fields(
            Collection.USERS, user_id, {PENDING_TASKS: expected}
        )
        if updated is None:
            logger.warning("Rebuild skipped: user %s vanished", user_id)
            return None

        logger.warning(
            "Rebuilt pending tasks for user %s: added %s removed %s",
            user_id, sorted(drift.to_add), sorted(drift.to_remove),
        )
        return drift

    async def audit(self, repair: bool = False) -> AuditReport:
        """
        Scan every user and task for pending-set drift and orphaned tasks.

        Args:
            repair: Rebuild drifted pending sets and unassign tasks whose
                assigned user no longer exists.
        """
        users = await self._store.find(Collection.USERS)
        tasks = [TaskRecord.from_document(doc) for doc in await self._store.find(Collection.TASKS)]
        user_ids = {doc[ID] for doc in users}

        expected: Dict[str, set] = defaultdict(set)
        orphaned: List[str] = []
        for task in tasks:
            if not task.assigned_user:
                continue
            if task.assigned_user not in user_ids:
                orphaned.append(task.id)
            elif not task.completed:
                expected[task.assigned_user].add(task.id)

        report = AuditReport(
            users_checked=len(users),
            tasks_checked=len(tasks),
            orphaned_tasks=sorted(orphaned),
        )
        for doc in users:
            drift = diff_pending_sets(doc.get(PENDING_TASKS) or [], expected.get(doc[ID], ()))
            if not drift.is_empty:
                report.drift[doc[ID]] = drift

        if report.is_clean:
            logger.info("Audit clean: %d users, %d tasks", report.users_checked, report.tasks_checked)
            return report

        logger.warning(
            "Audit found %d drifted users and %d orphaned tasks",
            len(report.drift), len(report.orphaned_tasks),
        )
        if not repair:
            return report

        for user_id in sorted(report.drift):
            await self.rebuild_pending_tasks(user_id)
        by_id = {task.id: task for task in tasks}
        repairs = ReconciliationReport()
        for task_id in report.orphaned_tasks:
            await self._set_task(
                repairs,
                task_id,
                {ASSIGNED_USER: "", ASSIGNED_USER_NAME: UNASSIGNED_NAME},
                where={ASSIGNED_USER: by_id[task_id].assigned_user},
            )
        if repairs.steps:
            logger.info("Orphaned tasks repaired", extra={"steps": repairs.summary})
        report.repair_steps = repairs.steps
        report.repaired = True
        return report
