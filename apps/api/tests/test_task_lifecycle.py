from __future__ import annotations

from datetime import date, timedelta

import pytest

from crm.dates import business_today
from crm.gateway import SqlGateway
from crm.sequences.service import unblock_next_task
from crm.tasks.lifecycle import (
  PRIORITY_CYCLE,
  TransitionError,
  change_status,
  create_task,
  cycle_priority,
  generate_recurring_task_instances,
  next_priority,
  relinearize,
  reorder_tasks,
  update_task,
)
from conftest import make_task, make_user


def test_priority_cycle_closes_after_six_steps() -> None:
  for start in PRIORITY_CYCLE:
    p = start
    for _ in range(6):
      p = next_priority(p)
    assert p == start
  assert next_priority("trivial") == "critical"


def test_relinearize_orders_by_priority_then_due_date_undated_last() -> None:
  tasks = [
    {"id": "a", "priority": "normal", "due_date": None, "order": 0},
    {"id": "b", "priority": "normal", "due_date": date(2026, 3, 5), "order": 1},
    {"id": "c", "priority": "critical", "due_date": None, "order": 2},
    {"id": "d", "priority": "normal", "due_date": date(2026, 3, 2), "order": 3},
  ]
  changes = dict(relinearize(tasks))
  assert changes == {"c": 0, "d": 1, "b": 2, "a": 3}
  assert relinearize([{**t, "order": changes[t["id"]]} for t in tasks]) == []


@pytest.mark.anyio
async def test_blocked_task_cannot_complete_and_state_is_untouched(gateway: SqlGateway) -> None:
  first = await make_task(gateway, "First")
  second = await make_task(gateway, "Second", status="blocked", blocked_by_task_id=first["id"])

  with pytest.raises(TransitionError):
    await change_status(gateway, second["id"], "completed")

  again = await gateway.get("Tasks", second["id"])
  assert again["status"] == "blocked"
  assert again["completed_date"] is None


@pytest.mark.anyio
async def test_completion_unblocks_dependents_once(gateway: SqlGateway) -> None:
  first = await make_task(gateway, "First")
  second = await make_task(gateway, "Second", status="blocked", blocked_by_task_id=first["id"])
  third = await make_task(gateway, "Third", status="blocked", blocked_by_task_id=second["id"])

  done = await change_status(gateway, first["id"], "completed")
  assert done["completed_date"] is not None
  assert (await gateway.get("Tasks", second["id"]))["status"] == "todo"
  assert (await gateway.get("Tasks", third["id"]))["status"] == "blocked"

  # Repeating the completion or the unblock has no further effect.
  assert (await change_status(gateway, first["id"], "completed"))["completed_date"] == done["completed_date"]
  assert await unblock_next_task(gateway, first["id"]) == []


@pytest.mark.anyio
async def test_undo_completion_clears_date_and_renotifies(gateway: SqlGateway) -> None:
  user = await make_user(gateway, "rep@example.com")
  yesterday = business_today() - timedelta(days=1)
  task = await make_task(gateway, "Call back", assigned_to=user["email"], due_date=yesterday)

  await change_status(gateway, task["id"], "completed")
  assert await gateway.filter("Notifications", {"related_task_id": task["id"], "is_read": False}) == []

  reopened = await change_status(gateway, task["id"], "todo")
  assert reopened["completed_date"] is None
  unread = await gateway.filter("Notifications", {"related_task_id": task["id"], "is_read": False})
  assert [n["type"] for n in unread] == ["task_overdue"]
  assert unread[0]["message"] == '"Call back" is overdue by 1 day'


@pytest.mark.anyio
async def test_cycle_priority_relinearizes_all_tasks(gateway: SqlGateway) -> None:
  a = await make_task(gateway, "A", priority="normal", order=0)
  b = await make_task(gateway, "B", priority="normal", order=1)

  task, changes = await cycle_priority(gateway, a["id"])
  assert task["priority"] == "minor"
  assert dict(changes) == {b["id"]: 0, a["id"]: 1}
  assert (await gateway.get("Tasks", b["id"]))["order"] == 0

  for _ in range(5):
    task, _ = await cycle_priority(gateway, a["id"])
  assert task["priority"] == "normal"


@pytest.mark.anyio
async def test_reorder_persists_index_as_order(gateway: SqlGateway) -> None:
  ids = [(await make_task(gateway, f"T{i}", order=i))["id"] for i in range(3)]
  assert await reorder_tasks(gateway, list(reversed(ids))) == 3
  assert [(await gateway.get("Tasks", id))["order"] for id in ids] == [2, 1, 0]


@pytest.mark.anyio
async def test_create_task_defaults_and_notifications(gateway: SqlGateway) -> None:
  user = await make_user(gateway, "owner@example.com")
  await make_task(gateway, "Existing", order=4)

  task = await create_task(gateway, {"title": "Follow up", "assigned_to": "owner@example.com", "due_date": business_today()})
  assert task["priority"] == "normal"
  assert task["status"] == "todo"
  assert task["order"] == 5

  types = sorted(n["type"] for n in await gateway.filter("Notifications", {"user_id": user["id"]}))
  assert types == ["task_assigned", "task_due_today"]


@pytest.mark.anyio
async def test_create_recurring_task_computes_next_date(gateway: SqlGateway) -> None:
  due = business_today() + timedelta(days=3)
  task = await create_task(
    gateway,
    {"title": "Weekly check", "is_recurring": True, "recurrence_pattern": "daily", "recurrence_interval": 2, "due_date": due},
  )
  assert task["next_recurrence_date"] == due + timedelta(days=2)


@pytest.mark.anyio
async def test_update_task_notifies_new_assignees_only(gateway: SqlGateway) -> None:
  a = await make_user(gateway, "a@example.com")
  b = await make_user(gateway, "b@example.com")
  task = await create_task(gateway, {"title": "Shared", "assigned_to": "a@example.com"})

  await update_task(gateway, task["id"], {"assigned_to": "a@example.com, b@example.com"})
  assigned = await gateway.filter("Notifications", {"type": "task_assigned"})
  assert sorted(n["user_id"] for n in assigned) == sorted([a["id"], b["id"]])


@pytest.mark.anyio
async def test_update_task_rejects_completing_blocked_task_before_writing(gateway: SqlGateway) -> None:
  first = await make_task(gateway, "First")
  second = await make_task(gateway, "Second", status="blocked", blocked_by_task_id=first["id"])
  with pytest.raises(TransitionError):
    await update_task(gateway, second["id"], {"title": "Renamed", "status": "completed"})
  assert (await gateway.get("Tasks", second["id"]))["title"] == "Second"


@pytest.mark.anyio
async def test_recurring_instances_until_count_reached(gateway: SqlGateway) -> None:
  today = business_today()
  parent = await make_task(
    gateway,
    "Invoice",
    is_recurring=True,
    recurrence_pattern="daily",
    recurrence_interval=1,
    recurrence_count=2,
    next_recurrence_date=today,
  )

  for _ in range(2):
    result = await generate_recurring_task_instances(gateway)
    assert result.created == 1
    assert (await gateway.get("Tasks", parent["id"]))["next_recurrence_date"] == today + timedelta(days=1)
    await gateway.update("Tasks", parent["id"], {"next_recurrence_date": today})

  instances = await gateway.filter("Tasks", {"parent_task_id": parent["id"]})
  assert len(instances) == 2
  assert all(i["status"] == "todo" and i["due_date"] == today and not i["is_recurring"] for i in instances)

  result = await generate_recurring_task_instances(gateway)
  assert result.created == 0
  stopped = await gateway.get("Tasks", parent["id"])
  assert stopped["is_recurring"] is False
  assert stopped["next_recurrence_date"] is None


@pytest.mark.anyio
async def test_recurring_parent_past_end_date_stops(gateway: SqlGateway) -> None:
  today = business_today()
  parent = await make_task(
    gateway,
    "Old series",
    is_recurring=True,
    recurrence_pattern="weekly",
    recurrence_end_date=today - timedelta(days=1),
    next_recurrence_date=today,
  )
  result = await generate_recurring_task_instances(gateway)
  assert result.created == 0
  assert (await gateway.get("Tasks", parent["id"]))["is_recurring"] is False
