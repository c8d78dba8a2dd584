"""Tests for AssignmentReconciler."""

from datetime import datetime, timezone

import pytest

from taskboard.domain.services.assignment_reconciler import (
    AssignmentReconciler,
    PendingSetDiff,
    StepOp,
    StepStatus,
    diff_pending_sets,
)
from taskboard.persistence.models import Collection, TaskRecord, UserRecord


DEADLINE = datetime(2030, 1, 1, tzinfo=timezone.utc)


async def add_user(store, name: str, pending=()) -> UserRecord:
    user = UserRecord.create(name=name, email=f"{name}@example.com")
    user.pending_tasks = list(pending)
    await store.insert(Collection.USERS, user.to_document())
    return user


async def add_task(store, name: str, user: UserRecord = None, completed: bool = False) -> TaskRecord:
    task = TaskRecord.create(
        name=name,
        deadline=DEADLINE,
        completed=completed,
        assigned_user=user.id if user else "",
        assigned_user_name=user.name if user else "unassigned",
    )
    await store.insert(Collection.TASKS, task.to_document())
    return task


async def pending(store, user_id: str) -> list:
    return sorted((await store.get(Collection.USERS, user_id))["pendingTasks"])


async def task_doc(store, task_id: str) -> dict:
    return await store.get(Collection.TASKS, task_id)


class TestDiffPendingSets:
    """Tests for the pure set diff."""

    def test_diff(self):
        diff = diff_pending_sets(["t1", "t2"], ["t2", "t3"])

        assert diff.to_add == {"t3"}
        assert diff.to_remove == {"t1"}
        assert diff.unchanged == {"t2"}

    def test_order_and_duplicates_do_not_matter(self):
        assert diff_pending_sets(["a", "b", "a"], ["b", "a"]).is_empty

    def test_to_dict_is_sorted(self):
        diff = PendingSetDiff(to_add=frozenset({"z", "a"}))
        assert diff.to_dict() == {"toAdd": ["a", "z"], "toRemove": [], "unchanged": []}


class TestReconcileTaskAssignment:
    """Single-task moves between pending sets."""

    @pytest.mark.asyncio
    async def test_assign_unassigned_task(self, store, reconciler):
        alice = await add_user(store, "alice")
        task = await add_task(store, "t")

        report = await reconciler.reconcile_task_assignment(
            task.id, "", False, alice.id, False, alice.name
        )

        assert report.fully_converged
        assert await pending(store, alice.id) == [task.id]
        doc = await task_doc(store, task.id)
        assert doc["assignedUser"] == alice.id
        assert doc["assignedUserName"] == "alice"

    @pytest.mark.asyncio
    async def test_reassign_moves_between_users(self, store, reconciler):
        alice = await add_user(store, "alice")
        bob = await add_user(store, "bob")
        task = await add_task(store, "t", alice)
        await store.add_to_set(Collection.USERS, alice.id, "pendingTasks", [task.id])

        report = await reconciler.reconcile_task_assignment(
            task.id, alice.id, False, bob.id, False, bob.name
        )

        assert [s.op for s in report.steps] == [StepOp.REMOVE, StepOp.ADD, StepOp.SET]
        assert await pending(store, alice.id) == []
        assert await pending(store, bob.id) == [task.id]
        assert (await task_doc(store, task.id))["assignedUserName"] == "bob"

    @pytest.mark.asyncio
    async def test_completion_removes_from_pending(self, store, reconciler):
        alice = await add_user(store, "alice")
        task = await add_task(store, "t", alice)
        await store.add_to_set(Collection.USERS, alice.id, "pendingTasks", [task.id])

        await reconciler.reconcile_task_assignment(
            task.id, alice.id, False, alice.id, True, alice.name
        )

        assert await pending(store, alice.id) == []
        doc = await task_doc(store, task.id)
        assert doc["completed"] is True
        assert doc["assignedUser"] == alice.id

    @pytest.mark.asyncio
    async def test_unassign_resets_name(self, store, reconciler):
        alice = await add_user(store, "alice")
        task = await add_task(store, "t", alice)
        await store.add_to_set(Collection.USERS, alice.id, "pendingTasks", [task.id])

        await reconciler.reconcile_task_assignment(task.id, alice.id, False, "", False, None)

        assert await pending(store, alice.id) == []
        doc = await task_doc(store, task.id)
        assert doc["assignedUser"] == ""
        assert doc["assignedUserName"] == "unassigned"

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, store, reconciler):
        """Running the same reconciliation twice yields the same state."""
        alice = await add_user(store, "alice")
        bob = await add_user(store, "bob")
        task = await add_task(store, "t", alice)
        await store.add_to_set(Collection.USERS, alice.id, "pendingTasks", [task.id])

        for _ in range(2):
            await reconciler.reconcile_task_assignment(
                task.id, alice.id, False, bob.id, False, bob.name
            )

        assert await pending(store, alice.id) == []
        assert await pending(store, bob.id) == [task.id]

    @pytest.mark.asyncio
    async def test_deleted_previous_user_is_skipped_as_stale(self, store, reconciler):
        alice = await add_user(store, "alice")
        bob = await add_user(store, "bob")
        task = await add_task(store, "t", alice)
        await store.delete(Collection.USERS, alice.id)

        report = await reconciler.reconcile_task_assignment(
            task.id, alice.id, False, bob.id, False, bob.name
        )

        assert len(report.stale) == 1
        assert report.stale[0].record_id == alice.id
        assert report.stale[0].status == StepStatus.STALE
        assert await pending(store, bob.id) == [task.id]
        assert (await task_doc(store, task.id))["assignedUser"] == bob.id

    @pytest.mark.asyncio
    async def test_extra_fields_written_with_assignment(self, store, reconciler):
        task = await add_task(store, "old")

        await reconciler.reconcile_task_assignment(
            task.id, "", False, "", False, None, extra_fields={"name": "new"}
        )

        assert (await task_doc(store, task.id))["name"] == "new"

    @pytest.mark.asyncio
    async def test_task_gone_before_write_takes_back_add(self, store, reconciler):
        """A task deleted before its write leaves no entry in the new pending set."""
        bob = await add_user(store, "bob")

        report = await reconciler.reconcile_task_assignment(
            "gone", "", False, bob.id, False, bob.name
        )

        assert [(s.op, s.status) for s in report.steps] == [
            (StepOp.ADD, StepStatus.APPLIED),
            (StepOp.SET, StepStatus.STALE),
            (StepOp.REMOVE, StepStatus.APPLIED),
        ]
        assert await pending(store, bob.id) == []

    @pytest.mark.asyncio
    async def test_changed_task_is_a_conflict(self, store, reconciler):
        alice = await add_user(store, "alice")
        bob = await add_user(store, "bob", pending=["t-placeholder"])
        carol = await add_user(store, "carol")
        task = await add_task(store, "t", carol)
        await store.add_to_set(Collection.USERS, carol.id, "pendingTasks", [task.id])

        report = await reconciler.reconcile_task_assignment(
            task.id, alice.id, False, bob.id, False, bob.name, if_unchanged=True
        )

        assert report.conflicted
        assert not report.fully_converged
        assert await pending(store, bob.id) == ["t-placeholder"]
        assert await pending(store, carol.id) == [task.id]
        assert (await task_doc(store, task.id))["assignedUser"] == carol.id

    @pytest.mark.asyncio
    async def test_conflict_keeps_entry_already_matching_task(self, store, reconciler):
        """Another writer already moved the task to the same user."""
        alice = await add_user(store, "alice")
        bob = await add_user(store, "bob")
        task = await add_task(store, "t", bob)

        report = await reconciler.reconcile_task_assignment(
            task.id, alice.id, False, bob.id, False, bob.name, if_unchanged=True
        )

        assert report.conflicted
        assert await pending(store, bob.id) == [task.id]

    @pytest.mark.asyncio
    async def test_missing_new_user_leaves_task_unassigned(self, store, reconciler):
        alice = await add_user(store, "alice")
        task = await add_task(store, "t", alice)
        await store.add_to_set(Collection.USERS, alice.id, "pendingTasks", [task.id])

        report = await reconciler.reconcile_task_assignment(
            task.id, alice.id, False, "ghost", False, "Ghost"
        )

        assert [s.record_id for s in report.stale] == ["ghost"]
        assert await pending(store, alice.id) == []
        doc = await task_doc(store, task.id)
        assert doc["assignedUser"] == ""
        assert doc["assignedUserName"] == "unassigned"


class TestReconcileBulkPendingTasks:
    """Wholesale replacement of a user's pending set."""

    @pytest.mark.asyncio
    async def test_replace_t1_t2_with_t2_t3(self, store, reconciler):
        alice = await add_user(store, "alice")
        t1 = await add_task(store, "t1", alice)
        t2 = await add_task(store, "t2", alice)
        t3 = await add_task(store, "t3")
        await store.add_to_set(Collection.USERS, alice.id, "pendingTasks", [t1.id, t2.id])

        report = await reconciler.reconcile_bulk_pending_tasks(alice.id, [t2.id, t3.id])

        assert report.fully_converged
        assert await pending(store, alice.id) == sorted([t2.id, t3.id])
        assert (await task_doc(store, t1.id))["assignedUser"] == ""
        assert (await task_doc(store, t1.id))["assignedUserName"] == "unassigned"
        assert (await task_doc(store, t3.id))["assignedUser"] == alice.id
        assert (await task_doc(store, t3.id))["assignedUserName"] == "alice"

    @pytest.mark.asyncio
    async def test_takes_task_from_previous_owner(self, store, reconciler):
        alice = await add_user(store, "alice")
        bob = await add_user(store, "bob")
        task = await add_task(store, "t", bob)
        await store.add_to_set(Collection.USERS, bob.id, "pendingTasks", [task.id])

        await reconciler.reconcile_bulk_pending_tasks(alice.id, [task.id])

        assert await pending(store, bob.id) == []
        assert await pending(store, alice.id) == [task.id]

    @pytest.mark.asyncio
    async def test_completed_task_is_assigned_but_not_pending(self, store, reconciler):
        alice = await add_user(store, "alice")
        done = await add_task(store, "done", completed=True)

        await reconciler.reconcile_bulk_pending_tasks(alice.id, [done.id])

        assert await pending(store, alice.id) == []
        assert (await task_doc(store, done.id))["assignedUser"] == alice.id

    @pytest.mark.asyncio
    async def test_removed_task_owned_elsewhere_is_left_alone(self, store, reconciler):
        """Removal only unassigns tasks that still point at this user."""
        alice = await add_user(store, "alice")
        bob = await add_user(store, "bob")
        task = await add_task(store, "t", bob)
        # alice's pending set is already wrong; the task belongs to bob
        await store.add_to_set(Collection.USERS, alice.id, "pendingTasks", [task.id])

        report = await reconciler.reconcile_bulk_pending_tasks(alice.id, [])

        assert await pending(store, alice.id) == []
        assert (await task_doc(store, task.id))["assignedUser"] == bob.id
        assert len(report.stale) == 1

    @pytest.mark.asyncio
    async def test_missing_task_is_stale(self, store, reconciler):
        alice = await add_user(store, "alice")

        report = await reconciler.reconcile_bulk_pending_tasks(alice.id, ["ghost"])

        assert [s.record_id for s in report.stale] == ["ghost"]
        assert await pending(store, alice.id) == []

    @pytest.mark.asyncio
    async def test_missing_user_is_stale(self, store, reconciler):
        report = await reconciler.reconcile_bulk_pending_tasks("ghost", ["t1"])

        assert not report.fully_converged
        assert report.steps[0].collection == Collection.USERS

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, store, reconciler):
        alice = await add_user(store, "alice")
        t1 = await add_task(store, "t1", alice)
        t2 = await add_task(store, "t2")
        await store.add_to_set(Collection.USERS, alice.id, "pendingTasks", [t1.id])

        await reconciler.reconcile_bulk_pending_tasks(alice.id, [t2.id])
        second = await reconciler.reconcile_bulk_pending_tasks(alice.id, [t2.id])

        assert second.steps == []
        assert await pending(store, alice.id) == [t2.id]


class TestReleaseAndUnassign:
    """Cascade helpers used by the delete paths."""

    @pytest.mark.asyncio
    async def test_release_task(self, store, reconciler):
        alice = await add_user(store, "alice")
        task = await add_task(store, "t", alice)
        await store.add_to_set(Collection.USERS, alice.id, "pendingTasks", [task.id])

        await reconciler.release_task(task.id, alice.id)

        assert await pending(store, alice.id) == []

    @pytest.mark.asyncio
    async def test_release_unassigned_task_is_noop(self, reconciler):
        report = await reconciler.release_task("t", "")
        assert report.steps == []

    @pytest.mark.asyncio
    async def test_unassign_tasks_skips_reassigned(self, store, reconciler):
        alice = await add_user(store, "alice")
        bob = await add_user(store, "bob")
        mine = await add_task(store, "mine", alice)
        moved = await add_task(store, "moved", bob)

        report = await reconciler.unassign_tasks(alice.id, [mine.id, moved.id])

        assert (await task_doc(store, mine.id))["assignedUser"] == ""
        assert (await task_doc(store, moved.id))["assignedUser"] == bob.id
        assert [s.record_id for s in report.stale] == [moved.id]


class TestRebuildAndAudit:
    """Recomputing pending sets from the task documents."""

    @pytest.mark.asyncio
    async def test_rebuild_corrects_drift(self, store, reconciler):
        alice = await add_user(store, "alice", pending=["stale-id"])
        task = await add_task(store, "t", alice)
        await add_task(store, "done", alice, completed=True)

        drift = await reconciler.rebuild_pending_tasks(alice.id)

        assert drift.to_add == {task.id}
        assert drift.to_remove == {"stale-id"}
        assert await pending(store, alice.id) == [task.id]

    @pytest.mark.asyncio
    async def test_rebuild_without_drift(self, store, reconciler):
        alice = await add_user(store, "alice")

        drift = await reconciler.rebuild_pending_tasks(alice.id)

        assert drift.is_empty

    @pytest.mark.asyncio
    async def test_rebuild_missing_user(self, reconciler):
        assert await reconciler.rebuild_pending_tasks("ghost") is None

    @pytest.mark.asyncio
    async def test_audit_clean(self, store, reconciler):
        alice = await add_user(store, "alice")
        task = await add_task(store, "t", alice)
        await store.add_to_set(Collection.USERS, alice.id, "pendingTasks", [task.id])

        report = await reconciler.audit()

        assert report.is_clean
        assert report.users_checked == 1
        assert report.tasks_checked == 1

    @pytest.mark.asyncio
    async def test_audit_reports_without_repairing(self, store, reconciler):
        alice = await add_user(store, "alice")
        task = await add_task(store, "t", alice)

        report = await reconciler.audit()

        assert alice.id in report.drift
        assert report.repaired is False
        assert await pending(store, alice.id) == []
        assert task.id in report.drift[alice.id].to_add

    @pytest.mark.asyncio
    async def test_audit_repair(self, store, reconciler):
        alice = await add_user(store, "alice")
        ghost = await add_user(store, "ghost")
        task = await add_task(store, "t", alice)
        orphan = await add_task(store, "orphan", ghost)
        await store.delete(Collection.USERS, ghost.id)

        report = await reconciler.audit(repair=True)

        assert report.repaired is True
        assert report.orphaned_tasks == [orphan.id]
        assert await pending(store, alice.id) == [task.id]
        assert (await task_doc(store, orphan.id))["assignedUser"] == ""
        assert (await reconciler.audit()).is_clean

    @pytest.mark.asyncio
    async def test_audit_repair_records_orphan_steps(self, store, reconciler):
        ghost = await add_user(store, "ghost")
        bob = await add_user(store, "bob")
        orphan = await add_task(store, "orphan", ghost)
        await store.delete(Collection.USERS, ghost.id)

        report = await reconciler.audit(repair=True)

        assert [(s.op, s.record_id, s.status) for s in report.repair_steps] == [
            (StepOp.SET, orphan.id, StepStatus.APPLIED),
        ]
        assert (await task_doc(store, orphan.id))["assignedUserName"] == "unassigned"
        assert await pending(store, bob.id) == []

    @pytest.mark.asyncio
    async def test_audit_repair_skips_orphan_reassigned_meanwhile(self, store, reconciler, monkeypatch):
        """An orphan picked up by another user before the repair is left alone."""
        ghost = await add_user(store, "ghost")
        bob = await add_user(store, "bob")
        orphan = await add_task(store, "orphan", ghost)
        await store.delete(Collection.USERS, ghost.id)
        original_find = store.find

        async def find_then_reassign(collection, *args, **kwargs):
            docs = await original_find(collection, *args, **kwargs)
            if collection == Collection.TASKS:
                await store.update_fields(
                    Collection.TASKS, orphan.id, {"assignedUser": bob.id, "assignedUserName": "bob"}
                )
            return docs

        monkeypatch.setattr(store, "find", find_then_reassign)
        report = await reconciler.audit(repair=True)

        assert report.orphaned_tasks == [orphan.id]
        assert [s.status for s in report.repair_steps] == [StepStatus.STALE]
        assert (await task_doc(store, orphan.id))["assignedUser"] == bob.id
