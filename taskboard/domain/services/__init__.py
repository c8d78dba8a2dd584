"""Lifecycle services and the assignment reconciler."""

from taskboard.domain.services.assignment_reconciler import (
    AssignmentReconciler,
    AuditReport,
    PendingSetDiff,
    ReconciliationReport,
    StepOp,
    StepStatus,
    diff_pending_sets,
)
from taskboard.domain.services.task_lifecycle import TaskLifecycleOps
from taskboard.domain.services.user_lifecycle import UserLifecycleOps

__all__ = [
    "AssignmentReconciler",
    "AuditReport",
    "PendingSetDiff",
    "ReconciliationReport",
    "StepOp",
    "StepStatus",
    "diff_pending_sets",
    "TaskLifecycleOps",
    "UserLifecycleOps",
]
