"""Admin endpoints for assignment integrity."""

from fastapi import APIRouter, Depends, Query

from taskboard.api.dependencies import get_reconciler
from taskboard.api.schemas import AuditResponse
from taskboard.domain.services import AssignmentReconciler

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/reconcile", response_model=AuditResponse)
async def reconcile_assignments(
    repair: bool = Query(False, description="Rebuild drifted users and unassign orphans"),
    reconciler: AssignmentReconciler = Depends(get_reconciler),
) -> AuditResponse:
    """
    Compare every user's pendingTasks with the task documents.

    Tasks are authoritative. With ``repair=true`` drifted pending sets are
    rebuilt and tasks pointing at deleted users are unassigned; the report
    always describes what was found before repairing.
    """
    report = await reconciler.audit(repair=repair)
    return AuditResponse(**report.to_dict())
