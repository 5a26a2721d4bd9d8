from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from crm.gateway import ConflictError, NotFoundError, SqlGateway, ValidationError, bulk_upsert, coerce_id
from conftest import make_account, make_task, make_user


def test_coerce_id() -> None:
  assert coerce_id(42) == "42"
  assert coerce_id("  abc ") == "abc"
  for bad in (None, True, {"id": 1}, [1], "  "):
    with pytest.raises(ValidationError):
      coerce_id(bad)


@pytest.mark.anyio
async def test_list_reads_every_page(gateway: SqlGateway) -> None:
  for i in range(5):
    await make_account(gateway, f"Account {i}")
  small = SqlGateway(gateway.session, page_size=2)
  rows = await small.list("Accounts")
  assert len(rows) == 5
  assert len({r["id"] for r in rows}) == 5


@pytest.mark.anyio
async def test_inputs_are_coerced_at_the_boundary(gateway: SqlGateway) -> None:
  task = await gateway.create(
    "Tasks",
    {
      "title": "Coerced",
      "due_date": "2026-03-02",
      "is_recurring": "true",
      "order": "3",
      "related_account_id": 42,
      "completed_date": datetime(2026, 3, 2, 9, 30),
    },
  )
  assert task["due_date"] == date(2026, 3, 2)
  assert task["is_recurring"] is True
  assert task["order"] == 3
  assert task["related_account_id"] == "42"
  assert task["completed_date"] == datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

  [found] = await gateway.filter("Tasks", {"related_account_id": 42})
  assert found["id"] == task["id"]
  assert found["completed_date"] == datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


@pytest.mark.anyio
async def test_none_predicate_matches_null(gateway: SqlGateway) -> None:
  dated = await make_task(gateway, "Dated", due_date=date(2026, 3, 2))
  undated = await make_task(gateway, "Undated")
  assert [t["id"] for t in await gateway.filter("Tasks", {"due_date": None})] == [undated["id"]]
  assert [t["id"] for t in await gateway.filter("Tasks", {"due_date": "2026-03-02"})] == [dated["id"]]


@pytest.mark.anyio
async def test_errors_are_typed(gateway: SqlGateway) -> None:
  with pytest.raises(NotFoundError):
    await gateway.get("Accounts", "missing")
  with pytest.raises(ValidationError):
    await gateway.create("Accounts", {"name": "X", "colour": "red"})
  with pytest.raises(ValidationError):
    await gateway.create("Tasks", {"title": "X", "order": "soon"})
  with pytest.raises(ValidationError):
    await gateway.list("Widgets")

  account = await make_account(gateway, "Kept")
  await gateway.delete("Accounts", account["id"])
  with pytest.raises(NotFoundError):
    await gateway.delete("Accounts", account["id"])


@pytest.mark.anyio
async def test_one_unread_notification_per_user_type_and_task(gateway: SqlGateway) -> None:
  user = await make_user(gateway, "a@example.com")
  task = await make_task(gateway, "Dup")
  fields = {"user_id": user["id"], "type": "task_overdue", "title": "Task Overdue", "related_task_id": task["id"]}

  first = await gateway.create("Notifications", fields)
  with pytest.raises(ConflictError):
    await gateway.create("Notifications", fields)

  # The session stays usable after the conflict.
  await gateway.update("Notifications", first["id"], {"is_read": True})
  await gateway.create("Notifications", fields)
  assert len(await gateway.filter("Notifications", {"related_task_id": task["id"]})) == 2


@pytest.mark.anyio
async def test_update_many_commits_all_changes(gateway: SqlGateway) -> None:
  a = await make_task(gateway, "A")
  b = await make_task(gateway, "B")
  assert await gateway.update_many("Tasks", [(a["id"], {"order": 7}), (b["id"], {"order": 8})]) == 2
  assert (await gateway.get("Tasks", a["id"]))["order"] == 7
  assert (await gateway.get("Tasks", b["id"]))["order"] == 8
  assert await gateway.update_many("Tasks", []) == 0


@pytest.mark.anyio
async def test_failed_update_many_leaves_nothing_pending(gateway: SqlGateway) -> None:
  task = await make_task(gateway, "A", order=1)
  with pytest.raises(NotFoundError):
    await gateway.update_many("Tasks", [(task["id"], {"order": 99}), ("missing", {"order": 5})])
  with pytest.raises(ValidationError):
    await gateway.update_many("Tasks", [(task["id"], {"order": 98}), (task["id"], {"order": "soon"})])

  # A later unrelated commit on the same session must not flush the aborted batch.
  await make_account(gateway, "Unrelated")
  assert (await gateway.get("Tasks", task["id"]))["order"] == 1


@pytest.mark.anyio
async def test_bulk_upsert_isolates_bad_records(gateway: SqlGateway) -> None:
  existing = await make_account(gateway, "Old name")
  result = await bulk_upsert(
    gateway,
    "Accounts",
    [
      {"id": existing["id"], "name": "New name"},
      {"name": "Brand new"},
      {"id": "custom-1", "name": "Explicit id"},
      "junk",
      {},
      {"id": "zz", "name": None},
    ],
  )
  assert (result.created, result.updated, result.skipped) == (2, 1, 2)
  assert [e["index"] for e in result.errors] == [5]
  assert (await gateway.get("Accounts", existing["id"]))["name"] == "New name"
  assert (await gateway.get("Accounts", "custom-1"))["name"] == "Explicit id"
  assert len(await gateway.list("Accounts")) == 3


@pytest.mark.anyio
async def test_bulk_upsert_on_natural_key(gateway: SqlGateway) -> None:
  user = await make_user(gateway, "a@example.com")
  result = await bulk_upsert(
    gateway,
    "Users",
    [{"email": "a@example.com", "full_name": "Ada"}, {"full_name": "No email"}],
    key="email",
  )
  assert (result.created, result.updated, result.skipped) == (0, 1, 1)
  assert (await gateway.get("Users", user["id"]))["full_name"] == "Ada"
