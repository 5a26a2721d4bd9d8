from __future__ import annotations

from datetime import date, datetime
from typing import Any

import structlog

from crm.dates import business_today, now_utc, to_date, to_datetime
from crm.gateway import Gateway, GatewayError, ValidationError
from crm.notifications.service import (
  SweepResult,
  cleanup_task_notifications,
  create_task_assignment_notifications,
  create_task_notifications,
)
from crm.sequences.service import unblock_next_task
from crm.tasks.recurrence import advance_recurrence, compute_next_recurrence_date

logger = structlog.get_logger()

Row = dict[str, Any]

STATUSES = ("todo", "in_progress", "blocked", "completed")

BLOCKED_MESSAGE = "This task is blocked. Complete the task it is waiting on first."

# De-escalating cycle; the step after trivial wraps to critical.
PRIORITY_CYCLE = ("critical", "blocker", "major", "normal", "minor", "trivial")
PRIORITY_RANK = {p: len(PRIORITY_CYCLE) - i for i, p in enumerate(PRIORITY_CYCLE)}

RECURRENCE_FIELDS = (
  "is_recurring",
  "recurrence_pattern",
  "recurrence_interval",
  "recurrence_days_of_week",
  "recurrence_day_of_month",
  "recurrence_end_date",
  "recurrence_count",
  "due_date",
)

# Copied from a recurring parent onto each generated instance.
INSTANCE_FIELDS = (
  "title",
  "description",
  "assigned_to",
  "due_time",
  "priority",
  "category",
  "related_account_id",
  "related_contact_id",
  "labels",
  "estimated_time",
)


class TransitionError(Exception):
  status_code = 409

  def __init__(self, message: str) -> None:
    super().__init__(message)
    self.message = message


def next_priority(priority: str | None) -> str:
  if priority not in PRIORITY_CYCLE:
    return PRIORITY_CYCLE[0]
  return PRIORITY_CYCLE[(PRIORITY_CYCLE.index(priority) + 1) % len(PRIORITY_CYCLE)]


def _validate_choice(name: str, value: Any, choices: tuple[str, ...]) -> None:
  if value not in choices:
    raise ValidationError(f"Invalid {name}: {value!r}")


def task_order_key(task: Row) -> tuple:
  due = to_date(task.get("due_date"))
  created = to_datetime(task.get("created_at"))
  return (
    -PRIORITY_RANK.get(task.get("priority") or "normal", 0),
    due is None,
    due or date.max,
    int(task.get("order") or 0),
    created.timestamp() if created else 0.0,
    str(task.get("id")),
  )


def relinearize(tasks: list[Row]) -> list[tuple[str, int]]:
  """(id, order) for every task whose position in the global priority/due order differs from its stored order."""
  ordered = sorted(tasks, key=task_order_key)
  return [(str(t["id"]), i) for i, t in enumerate(ordered) if t.get("order") != i]


async def relinearize_task_order(gateway: Gateway) -> list[tuple[str, int]]:
  changes = relinearize(await gateway.list("Tasks"))
  if changes:
    await gateway.update_many("Tasks", [(id, {"order": order}) for id, order in changes])
  logger.info("task_order_relinearized", changed=len(changes))
  return changes


async def change_status(
  gateway: Gateway,
  task_id: str,
  new_status: str,
  *,
  current_user_email: str | None = None,
  now: datetime | None = None,
) -> Row:
  _validate_choice("status", new_status, STATUSES)
  task = await gateway.get("Tasks", task_id)
  old_status = task.get("status")
  if new_status == "completed" and old_status == "blocked":
    raise TransitionError(BLOCKED_MESSAGE)
  if new_status == old_status:
    return task

  fields: dict[str, Any] = {"status": new_status}
  if new_status == "completed":
    fields["completed_date"] = now or now_utc()
  elif old_status == "completed":
    fields["completed_date"] = None
  updated = await gateway.update("Tasks", task_id, fields)
  logger.info("task_status_changed", task_id=task_id, old_status=old_status, new_status=new_status)

  if new_status == "completed":
    await cleanup_task_notifications(gateway, task_id)
    await unblock_next_task(gateway, task_id)
  elif old_status == "completed":
    await _notify_due_date(gateway, updated, current_user_email=current_user_email, now=now)
  return updated


async def cycle_priority(gateway: Gateway, task_id: str) -> tuple[Row, list[tuple[str, int]]]:
  task = await gateway.get("Tasks", task_id)
  await gateway.update("Tasks", task_id, {"priority": next_priority(task.get("priority"))})
  changes = await relinearize_task_order(gateway)
  return await gateway.get("Tasks", task_id), changes


async def reorder_tasks(gateway: Gateway, task_ids: list[str]) -> int:
  """Persist a manual drag-reorder: each task's order becomes its index."""
  return await gateway.update_many("Tasks", [(id, {"order": i}) for i, id in enumerate(task_ids)])


async def _notify_due_date(gateway: Gateway, task: Row, *, current_user_email: str | None, now: datetime | None) -> None:
  try:
    await create_task_notifications(gateway, task, current_user_email=current_user_email, now=now)
  except GatewayError as e:
    logger.warning("task_notifications_failed", task_id=task["id"], error=e.message)


async def _notify_assignment(gateway: Gateway, task: Row, previous_assigned_to: Any) -> None:
  try:
    await create_task_assignment_notifications(gateway, task, previous_assigned_to)
  except GatewayError as e:
    logger.warning("assignment_notifications_failed", task_id=task["id"], error=e.message)


async def create_task(
  gateway: Gateway,
  fields: dict[str, Any],
  *,
  current_user_email: str | None = None,
  now: datetime | None = None,
) -> Row:
  data = {k: v for k, v in dict(fields).items() if k != "id"}
  if not str(data.get("title") or "").strip():
    raise ValidationError("title is required")
  data.setdefault("priority", "normal")
  data.setdefault("status", "todo")
  data.setdefault("description", "")
  _validate_choice("priority", data["priority"], PRIORITY_CYCLE)
  _validate_choice("status", data["status"], STATUSES)
  if data["status"] == "completed":
    data.setdefault("completed_date", now or now_utc())

  if data.get("order") is None:
    orders = [int(t.get("order") or 0) for t in await gateway.list("Tasks")]
    data["order"] = (max(orders) + 1) if orders else 0

  if data.get("is_recurring"):
    data["next_recurrence_date"] = compute_next_recurrence_date(data, business_today(now))

  task = await gateway.create("Tasks", data)
  logger.info("task_created", task_id=task["id"], status=task["status"], recurring=bool(task.get("is_recurring")))
  await _notify_due_date(gateway, task, current_user_email=current_user_email, now=now)
  await _notify_assignment(gateway, task, None)
  return task


async def update_task(
  gateway: Gateway,
  task_id: str,
  fields: dict[str, Any],
  *,
  current_user_email: str | None = None,
  now: datetime | None = None,
) -> Row:
  data = {k: v for k, v in dict(fields).items() if k != "id"}
  existing = await gateway.get("Tasks", task_id)

  new_status = data.pop("status", None)
  if new_status is not None:
    _validate_choice("status", new_status, STATUSES)
    if new_status == "completed" and existing.get("status") == "blocked":
      raise TransitionError(BLOCKED_MESSAGE)
  if "priority" in data:
    _validate_choice("priority", data["priority"], PRIORITY_CYCLE)
  data.pop("completed_date", None)

  task = existing
  if data:
    if any(k in data for k in RECURRENCE_FIELDS):
      merged = {**existing, **data}
      data["next_recurrence_date"] = compute_next_recurrence_date(merged, business_today(now))
    task = await gateway.update("Tasks", task_id, data)

  if new_status is not None and new_status != task.get("status"):
    task = await change_status(gateway, task_id, new_status, current_user_email=current_user_email, now=now)

  if "assigned_to" in data and data["assigned_to"] != existing.get("assigned_to"):
    await _notify_assignment(gateway, task, existing.get("assigned_to"))
  if "due_date" in data and to_date(task.get("due_date")) != to_date(existing.get("due_date")):
    await _notify_due_date(gateway, task, current_user_email=current_user_email, now=now)
  return task


async def delete_task(gateway: Gateway, task_id: str) -> None:
  await gateway.get("Tasks", task_id)
  await gateway.delete("Tasks", task_id)
  # Dependents would otherwise stay blocked on a task that no longer exists.
  await unblock_next_task(gateway, task_id)
  await cleanup_task_notifications(gateway, task_id)
  logger.info("task_deleted", task_id=task_id)


async def get_task(gateway: Gateway, task_id: str) -> Row:
  return await gateway.get("Tasks", task_id)


async def list_tasks(gateway: Gateway, filters: dict[str, Any] | None = None) -> list[Row]:
  rows = await gateway.filter("Tasks", filters) if filters else await gateway.list("Tasks")
  rows.sort(key=lambda t: (int(t.get("order") or 0), str(t["id"])))
  return rows


async def _stop_recurrence(gateway: Gateway, parent: Row) -> None:
  await gateway.update("Tasks", parent["id"], {"is_recurring": False, "next_recurrence_date": None})


async def generate_recurring_task_instances(gateway: Gateway, *, now: datetime | None = None) -> SweepResult:
  """Create the due instance of every recurring parent and advance its next date."""
  result = SweepResult(name="recurring")
  today = business_today(now)
  try:
    tasks = await gateway.list("Tasks")
  except GatewayError as e:
    result.errors += 1
    logger.error("recurring_sweep_failed", error=e.message)
    return result

  for parent in tasks:
    if not parent.get("is_recurring") or parent.get("parent_task_id"):
      continue
    next_date = to_date(parent.get("next_recurrence_date"))
    if not next_date or next_date > today:
      continue
    try:
      end = to_date(parent.get("recurrence_end_date"))
      if end and end < next_date:
        await _stop_recurrence(gateway, parent)
        result.bump("stopped")
        continue
      limit = parent.get("recurrence_count")
      if limit:
        instances = await gateway.filter("Tasks", {"parent_task_id": parent["id"]})
        if len(instances) >= int(limit):
          await _stop_recurrence(gateway, parent)
          result.bump("stopped")
          continue

      instance = {k: parent.get(k) for k in INSTANCE_FIELDS if parent.get(k) is not None}
      instance.update(
        {
          "status": "todo",
          "due_date": next_date,
          "parent_task_id": parent["id"],
          "is_recurring": False,
          "order": 0,
        }
      )
      created = await gateway.create("Tasks", instance)
      result.created += 1
      await _notify_due_date(gateway, created, current_user_email=None, now=now)

      following = advance_recurrence(parent, next_date)
      if following is None:
        await _stop_recurrence(gateway, parent)
        result.bump("stopped")
      else:
        await gateway.update("Tasks", parent["id"], {"next_recurrence_date": following})
        result.updated += 1
    except GatewayError as e:
      result.errors += 1
      logger.warning("recurring_instance_failed", parent_task_id=parent["id"], error=e.message)

  logger.info("recurring_sweep_completed", **{k: v for k, v in result.as_dict().items() if k != "name"})
  return result
