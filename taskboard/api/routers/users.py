"""Users API router.

- GET    /api/users               - List users (where/sort/select/skip/limit/count)
- POST   /api/users               - Create a user, optionally with pendingTasks
- GET    /api/users/{id}          - Get one user
- PUT    /api/users/{id}          - Replace a user, including pendingTasks
- DELETE /api/users/{id}          - Delete a user and unassign their tasks
- POST   /api/users/{id}/rebuild  - Recompute pendingTasks from the tasks
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status

from taskboard.api.dependencies import get_user_ops
from taskboard.api.query_params import ListQuery, ensure_record_id, parse_select
from taskboard.api.schemas import ListResult, PendingSetDiffResponse, UserBody, UserResponse
from taskboard.domain.services import UserLifecycleOps

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=None)
async def list_users(
    query: ListQuery = Depends(),
    ops: UserLifecycleOps = Depends(get_user_ops),
) -> ListResult:
    if query.count:
        return await ops.count(query.where)
    return await ops.find(
        where=query.where,
        sort=query.sort,
        select=query.select,
        skip=query.skip,
        limit=query.limit,
    )


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserBody,
    ops: UserLifecycleOps = Depends(get_user_ops),
) -> UserResponse:
    user = await ops.on_create(
        name=body.name,
        email=body.email,
        pending_tasks=body.pending_tasks,
    )
    return UserResponse.from_record(user)


@router.get("/{user_id}", response_model=None)
async def get_user(
    user_id: str,
    select: Optional[Dict[str, Any]] = Depends(parse_select),
    ops: UserLifecycleOps = Depends(get_user_ops),
) -> Dict[str, Any]:
    ensure_record_id(user_id, "user")
    return await ops.get(user_id, select=select)


@router.put("/{user_id}", response_model=UserResponse)
async def replace_user(
    user_id: str,
    body: UserBody,
    ops: UserLifecycleOps = Depends(get_user_ops),
) -> UserResponse:
    """Full replacement; an omitted pendingTasks clears the pending set."""
    ensure_record_id(user_id, "user")
    user = await ops.on_replace(
        user_id,
        name=body.name,
        email=body.email,
        pending_tasks=body.pending_tasks,
    )
    return UserResponse.from_record(user)


@router.delete("/{user_id}", response_model=UserResponse)
async def delete_user(
    user_id: str,
    ops: UserLifecycleOps = Depends(get_user_ops),
) -> UserResponse:
    ensure_record_id(user_id, "user")
    user = await ops.on_delete(user_id)
    return UserResponse.from_record(user)


@router.post("/{user_id}/rebuild", response_model=PendingSetDiffResponse)
async def rebuild_user_pending_tasks(
    user_id: str,
    ops: UserLifecycleOps = Depends(get_user_ops),
) -> PendingSetDiffResponse:
    ensure_record_id(user_id, "user")
    drift = await ops.rebuild_pending_tasks(user_id)
    logger.info(
        "Rebuilt pending tasks for user %s", user_id,
        extra={"user_id": user_id, "drift": drift.to_dict()},
    )
    return PendingSetDiffResponse(**drift.to_dict())
