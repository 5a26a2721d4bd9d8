from __future__ import annotations

from datetime import datetime, timedelta, timezone

from crm.notifications.reconcile import DesiredNotification, NotificationKey, reconcile

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _want(user: str, type: str, entity: str, **kw) -> DesiredNotification:
  return DesiredNotification(key=NotificationKey(user, type, entity), title="t", message="m", **kw)


def _row(id: str, user: str, type: str, *, task: str | None = None, account: str | None = None, is_read: bool = False, created: datetime = NOW) -> dict:
  return {
    "id": id,
    "user_id": user,
    "type": type,
    "related_task_id": task,
    "related_account_id": account,
    "is_read": is_read,
    "created_at": created,
  }


def test_key_from_row_coerces_ids_to_strings() -> None:
  row = {"user_id": 7, "type": "task_overdue", "related_task_id": 12}
  assert NotificationKey.of(row) == NotificationKey("7", "task_overdue", "12")


def test_missing_keys_are_created_and_existing_unread_are_skipped() -> None:
  desired = [_want("u1", "task_overdue", "t1"), _want("u2", "task_overdue", "t1")]
  actual = [_row("n1", "u1", "task_overdue", task="t1")]
  plan = reconcile(desired, actual, resurrect_read=True)
  assert [d.key.user_id for d in plan.to_create] == ["u2"]
  assert plan.to_update == []
  assert plan.to_delete == []


def test_read_row_is_resurrected_instead_of_duplicated() -> None:
  desired = [_want("u1", "task_overdue", "t1")]
  actual = [
    _row("old", "u1", "task_overdue", task="t1", is_read=True, created=NOW - timedelta(days=3)),
    _row("new", "u1", "task_overdue", task="t1", is_read=True, created=NOW - timedelta(days=1)),
  ]
  plan = reconcile(desired, actual, resurrect_read=True)
  assert plan.to_create == []
  assert [(id, f["is_read"]) for id, f in plan.to_update] == [("new", False)]


def test_reconcile_is_stable_once_applied() -> None:
  desired = [_want("u1", "task_overdue", "t1", related_task_id="t1")]
  first = reconcile(desired, [], resurrect_read=True)
  applied = [{**first.to_create[0].fields(), "id": "n1", "created_at": NOW}]
  assert reconcile(desired, applied, resurrect_read=True).is_empty()


def test_not_before_ignores_older_rows_and_supersedes_unread() -> None:
  start_of_day = NOW.replace(hour=0)
  desired = [_want("u1", "renewal_reminder", "a1", not_before=start_of_day)]
  actual = [
    _row("yesterday", "u1", "renewal_reminder", account="a1", created=NOW - timedelta(days=1)),
  ]
  plan = reconcile(desired, actual, supersede_unread=True)
  assert len(plan.to_create) == 1
  assert plan.to_update == [("yesterday", {"is_read": True})]

  today_row = _row("today", "u1", "renewal_reminder", account="a1", created=NOW)
  assert reconcile(desired, actual + [today_row], supersede_unread=True).is_empty()


def test_rows_for_entities_no_longer_live_are_deleted() -> None:
  actual = [
    _row("keep", "u1", "neglected_account", account="a1", is_read=True),
    _row("drop", "u1", "neglected_account", account="a2"),
  ]
  plan = reconcile([], actual, live_entities={"a1"})
  assert plan.to_delete == ["drop"]


def test_duplicate_desired_keys_create_once() -> None:
  desired = [_want("u1", "end_of_year_analysis", None), _want("u1", "end_of_year_analysis", None)]
  assert len(reconcile(desired, []).to_create) == 1
