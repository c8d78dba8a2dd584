"""Tasks API router.

- GET    /api/tasks        - List tasks (where/sort/select/skip/limit/count)
- POST   /api/tasks        - Create a task
- GET    /api/tasks/{id}   - Get one task
- PUT    /api/tasks/{id}   - Replace a task
- DELETE /api/tasks/{id}   - Delete a task
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status

from taskboard.api.dependencies import get_task_ops
from taskboard.api.query_params import ListQuery, ensure_record_id, parse_select
from taskboard.api.schemas import ListResult, TaskBody, TaskResponse
from taskboard.domain.services import TaskLifecycleOps

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("", response_model=None)
async def list_tasks(
    query: ListQuery = Depends(),
    ops: TaskLifecycleOps = Depends(get_task_ops),
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


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    body: TaskBody,
    ops: TaskLifecycleOps = Depends(get_task_ops),
) -> TaskResponse:
    task = await ops.on_create(
        name=body.name,
        deadline=body.deadline,
        description=body.description,
        completed=body.completed,
        assigned_user=body.assigned_user,
        assigned_user_name=body.assigned_user_name,
    )
    return TaskResponse.from_record(task)


@router.get("/{task_id}", response_model=None)
async def get_task(
    task_id: str,
    select: Optional[Dict[str, Any]] = Depends(parse_select),
    ops: TaskLifecycleOps = Depends(get_task_ops),
) -> Dict[str, Any]:
    ensure_record_id(task_id, "task")
    return await ops.get(task_id, select=select)


@router.put("/{task_id}", response_model=TaskResponse)
async def replace_task(
    task_id: str,
    body: TaskBody,
    ops: TaskLifecycleOps = Depends(get_task_ops),
) -> TaskResponse:
    ensure_record_id(task_id, "task")
    task = await ops.on_update(
        task_id,
        name=body.name,
        deadline=body.deadline,
        description=body.description,
        completed=body.completed,
        assigned_user=body.assigned_user,
        assigned_user_name=body.assigned_user_name,
    )
    return TaskResponse.from_record(task)


@router.delete("/{task_id}", response_model=TaskResponse)
async def delete_task(
    task_id: str,
    ops: TaskLifecycleOps = Depends(get_task_ops),
) -> TaskResponse:
    ensure_record_id(task_id, "task")
    task = await ops.on_delete(task_id)
    return TaskResponse.from_record(task)
