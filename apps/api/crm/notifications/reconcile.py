from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, NamedTuple

from crm.dates import to_datetime

NOTIFICATION_TYPES = (
  "task_assigned",
  "task_overdue",
  "task_due_today",
  "task_reminder",
  "renewal_reminder",
  "neglected_account",
  "end_of_year_analysis",
)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class NotificationKey(NamedTuple):
  user_id: str
  type: str
  entity_id: str | None

  @classmethod
  def of(cls, row: dict[str, Any]) -> NotificationKey:
    entity = row.get("related_task_id") or row.get("related_account_id")
    return cls(str(row.get("user_id") or "").strip(), str(row.get("type") or ""), str(entity) if entity else None)


@dataclass(frozen=True)
class DesiredNotification:
  key: NotificationKey
  title: str
  message: str
  related_task_id: str | None = None
  related_account_id: str | None = None
  scheduled_for: datetime | None = None
  # Persisted rows created before this instant do not satisfy the key.
  not_before: datetime | None = None

  def fields(self) -> dict[str, Any]:
    return {
      "user_id": self.key.user_id,
      "type": self.key.type,
      "title": self.title,
      "message": self.message,
      "related_task_id": self.related_task_id,
      "related_account_id": self.related_account_id,
      "scheduled_for": self.scheduled_for,
      "is_read": False,
    }


@dataclass
class ReconcilePlan:
  to_create: list[DesiredNotification] = field(default_factory=list)
  to_update: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
  to_delete: list[str] = field(default_factory=list)

  def is_empty(self) -> bool:
    return not (self.to_create or self.to_update or self.to_delete)


def _created(row: dict[str, Any]) -> datetime | None:
  return to_datetime(row.get("created_at"))


def _is_live(row: dict[str, Any], not_before: datetime | None) -> bool:
  if not_before is None:
    return True
  created = _created(row)
  return created is not None and created >= not_before


def reconcile(
  desired: Iterable[DesiredNotification],
  actual: Iterable[dict[str, Any]],
  *,
  resurrect_read: bool = False,
  supersede_unread: bool = False,
  live_entities: set[str] | None = None,
) -> ReconcilePlan:
  """
  Diff the notifications that should exist against the persisted rows.

  - A desired key is satisfied by any persisted row of the same key created at/after `not_before`.
  - `resurrect_read`: an unsatisfied key with only read rows gets its newest read row flipped unread instead of a new row.
  - `supersede_unread`: when a new row is created, older unread rows of the same key are marked read.
  - `live_entities`: persisted rows whose entity is not in this set are deleted.
  """
  actual = list(actual)
  by_key: dict[NotificationKey, list[dict[str, Any]]] = defaultdict(list)
  for row in actual:
    by_key[NotificationKey.of(row)].append(row)

  plan = ReconcilePlan()
  seen: set[NotificationKey] = set()
  for d in desired:
    if d.key in seen:
      continue
    seen.add(d.key)
    rows = by_key.get(d.key, [])
    live = [r for r in rows if _is_live(r, d.not_before)]

    if resurrect_read:
      if any(not r.get("is_read") for r in live):
        continue
      if live:
        newest = max(live, key=lambda r: (_created(r) or EPOCH, str(r.get("id"))))
        plan.to_update.append((str(newest["id"]), {"is_read": False, "title": d.title, "message": d.message}))
        continue
      plan.to_create.append(d)
      continue

    if live:
      continue
    plan.to_create.append(d)
    if supersede_unread:
      for r in rows:
        if not r.get("is_read"):
          plan.to_update.append((str(r["id"]), {"is_read": True}))

  if live_entities is not None:
    for row in actual:
      entity = NotificationKey.of(row).entity_id
      if entity and entity not in live_entities:
        plan.to_delete.append(str(row["id"]))

  return plan
