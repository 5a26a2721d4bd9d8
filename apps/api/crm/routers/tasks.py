from __future__ import annotations

from fastapi import APIRouter, Depends

from crm.deps import get_current_user_email, get_gateway
from crm.gateway import SqlGateway
from crm.schemas import Envelope, TaskCreateIn, TaskReorderIn, TaskStatusIn, TaskStatus, TaskUpdateIn
from crm.tasks.lifecycle import (
  change_status,
  create_task,
  cycle_priority,
  delete_task,
  generate_recurring_task_instances,
  get_task,
  list_tasks,
  reorder_tasks,
  update_task,
)

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("", response_model=Envelope, response_model_exclude_none=True)
async def list_tasks_route(
  status: TaskStatus | None = None,
  related_account_id: str | None = None,
  gateway: SqlGateway = Depends(get_gateway),
) -> Envelope:
  filters = {}
  if status:
    filters["status"] = status
  if related_account_id:
    filters["related_account_id"] = related_account_id
  rows = await list_tasks(gateway, filters)
  return Envelope(data=rows, count=len(rows))


@router.post("", response_model=Envelope, response_model_exclude_none=True)
async def create_task_route(
  payload: TaskCreateIn,
  gateway: SqlGateway = Depends(get_gateway),
  user_email: str | None = Depends(get_current_user_email),
) -> Envelope:
  task = await create_task(gateway, payload.model_dump(), current_user_email=user_email)
  return Envelope(data=task)


@router.post("/reorder", response_model=Envelope, response_model_exclude_none=True)
async def reorder_tasks_route(payload: TaskReorderIn, gateway: SqlGateway = Depends(get_gateway)) -> Envelope:
  n = await reorder_tasks(gateway, payload.task_ids)
  return Envelope(data={"updated": n})


@router.post("/generate-recurring", response_model=Envelope, response_model_exclude_none=True)
async def generate_recurring_route(gateway: SqlGateway = Depends(get_gateway)) -> Envelope:
  result = await generate_recurring_task_instances(gateway)
  return Envelope(data=result.as_dict())


@router.get("/{task_id}", response_model=Envelope, response_model_exclude_none=True)
async def get_task_route(task_id: str, gateway: SqlGateway = Depends(get_gateway)) -> Envelope:
  return Envelope(data=await get_task(gateway, task_id))


@router.patch("/{task_id}", response_model=Envelope, response_model_exclude_none=True)
async def update_task_route(
  task_id: str,
  payload: TaskUpdateIn,
  gateway: SqlGateway = Depends(get_gateway),
  user_email: str | None = Depends(get_current_user_email),
) -> Envelope:
  task = await update_task(gateway, task_id, payload.model_dump(exclude_unset=True), current_user_email=user_email)
  return Envelope(data=task)


@router.post("/{task_id}/status", response_model=Envelope, response_model_exclude_none=True)
async def change_status_route(
  task_id: str,
  payload: TaskStatusIn,
  gateway: SqlGateway = Depends(get_gateway),
  user_email: str | None = Depends(get_current_user_email),
) -> Envelope:
  task = await change_status(gateway, task_id, payload.status, current_user_email=user_email)
  return Envelope(data=task)


@router.post("/{task_id}/cycle-priority", response_model=Envelope, response_model_exclude_none=True)
async def cycle_priority_route(task_id: str, gateway: SqlGateway = Depends(get_gateway)) -> Envelope:
  task, changes = await cycle_priority(gateway, task_id)
  return Envelope(data={"task": task, "order": [{"id": id, "order": order} for id, order in changes]})


@router.delete("/{task_id}", response_model=Envelope, response_model_exclude_none=True)
async def delete_task_route(task_id: str, gateway: SqlGateway = Depends(get_gateway)) -> Envelope:
  await delete_task(gateway, task_id)
  return Envelope(data={"id": task_id})
