from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable

import structlog

from crm.config import settings
from crm.dates import business_today, now_utc, start_of_day, to_date, to_datetime
from crm.gateway import ConflictError, Gateway, GatewayError
from crm.notifications.reconcile import DesiredNotification, NotificationKey, ReconcilePlan, reconcile
from crm.notifications.renewal import calculate_renewal_date

logger = structlog.get_logger()

Row = dict[str, Any]


@dataclass
class SweepResult:
  name: str
  created: int = 0
  updated: int = 0
  deleted: int = 0
  skipped: int = 0
  errors: int = 0
  extra: dict[str, int] = field(default_factory=dict)

  def bump(self, counter: str, n: int = 1) -> None:
    self.extra[counter] = self.extra.get(counter, 0) + n

  def as_dict(self) -> dict[str, Any]:
    return {
      "name": self.name,
      "created": self.created,
      "updated": self.updated,
      "deleted": self.deleted,
      "skipped": self.skipped,
      "errors": self.errors,
      **self.extra,
    }


def parse_assigned_users(assigned_to: Any) -> list[str]:
  if not assigned_to:
    return []
  out: list[str] = []
  for email in str(assigned_to).split(","):
    email = email.strip()
    if email and email not in out:
      out.append(email)
  return out


def _plural(n: int) -> str:
  return "" if abs(n) == 1 else "s"


def _fmt_date(d: date) -> str:
  return f"{d:%b} {d.day}, {d.year}"


async def _users_by_email(gateway: Gateway) -> dict[str, Row]:
  users = await gateway.list("Users")
  return {str(u["email"]).strip().lower(): u for u in users if u.get("email")}


def due_date_notification(title: str, due: date, today: date, now: datetime) -> tuple[str, str, str, datetime] | None:
  """(type, title, message, scheduled_for) for a task due on `due`, or None when more than a week out."""
  days = (due - today).days
  if days < 0:
    return "task_overdue", "Task Overdue", f'"{title}" is overdue by {-days} day{_plural(days)}', now
  if days == 0:
    return "task_due_today", "Task Due Today", f'"{title}" is due today', now
  if days == 1:
    return "task_reminder", "Task Due Tomorrow", f'"{title}" is due tomorrow', start_of_day(today + timedelta(days=1))
  if days <= 7:
    return "task_reminder", "Task Due Soon", f'"{title}" is due in {days} days', start_of_day(due)
  return None


async def create_task_notifications(
  gateway: Gateway,
  task: Row,
  *,
  current_user_email: str | None = None,
  now: datetime | None = None,
) -> int:
  """Replace the due-date notification of every recipient of `task`. Returns the number created."""
  due = to_date(task.get("due_date"))
  if not due or task.get("status") == "completed":
    return 0

  now = now or now_utc()
  today = business_today(now)
  recipients = parse_assigned_users(task.get("assigned_to"))
  if not recipients and current_user_email:
    recipients = [current_user_email]
  users = await _users_by_email(gateway)
  bucket = due_date_notification(str(task.get("title") or ""), due, today, now)

  created = 0
  for email in recipients:
    user = users.get(email.lower())
    if not user:
      logger.warning("notification_recipient_unknown", email=email, task_id=task["id"])
      continue
    existing = await gateway.filter("Notifications", {"user_id": user["id"], "related_task_id": task["id"], "is_read": False})
    stale = [(n["id"], {"is_read": True}) for n in existing if n["type"] != "task_assigned"]
    if stale:
      await gateway.update_many("Notifications", stale)
    if bucket is None:
      continue
    ntype, title, message, scheduled_for = bucket
    try:
      await gateway.create(
        "Notifications",
        {
          "user_id": user["id"],
          "type": ntype,
          "title": title,
          "message": message,
          "related_task_id": task["id"],
          "related_account_id": task.get("related_account_id"),
          "scheduled_for": scheduled_for,
        },
      )
      created += 1
    except ConflictError:
      logger.info("notification_duplicate_skipped", user_id=user["id"], task_id=task["id"], type=ntype)
  return created


async def create_task_assignment_notifications(gateway: Gateway, task: Row, previous_assigned_to: Any = None) -> int:
  current = parse_assigned_users(task.get("assigned_to"))
  previous = {e.lower() for e in parse_assigned_users(previous_assigned_to)}
  newly = [e for e in current if e.lower() not in previous]
  if not newly:
    return 0

  users = await _users_by_email(gateway)
  created = 0
  for email in newly:
    user = users.get(email.lower())
    if not user:
      logger.warning("notification_recipient_unknown", email=email, task_id=task["id"])
      continue
    existing = await gateway.filter(
      "Notifications",
      {"user_id": user["id"], "related_task_id": task["id"], "type": "task_assigned", "is_read": False},
    )
    if existing:
      continue
    try:
      await gateway.create(
        "Notifications",
        {
          "user_id": user["id"],
          "type": "task_assigned",
          "title": "Task Assigned",
          "message": f'The task "{task.get("title") or ""}" has been assigned to you',
          "related_task_id": task["id"],
          "related_account_id": task.get("related_account_id"),
          "scheduled_for": now_utc(),
        },
      )
      created += 1
    except GatewayError as e:
      logger.warning("assignment_notification_failed", email=email, task_id=task["id"], error=e.message)
  return created


async def cleanup_task_notifications(gateway: Gateway, task_id: str) -> int:
  """Mark every unread notification of the task read."""
  unread = await gateway.filter("Notifications", {"related_task_id": task_id, "is_read": False})
  return await gateway.update_many("Notifications", [(n["id"], {"is_read": True}) for n in unread])


# Snoozes


async def check_notification_snoozed(
  gateway: Gateway,
  notification_type: str,
  account_id: str | None = None,
  *,
  now: datetime | None = None,
) -> bool:
  now = now or now_utc()
  snoozes = await gateway.filter(
    "NotificationSnoozes",
    {"notification_type": notification_type, "related_account_id": account_id},
  )
  for s in snoozes:
    until = to_datetime(s.get("snoozed_until"))
    if until and until > now:
      return True
  return False


async def snooze_notification(
  gateway: Gateway,
  notification_type: str,
  account_id: str | None,
  snoozed_until: datetime,
  snoozed_by: str | None = None,
) -> Row:
  existing = await gateway.filter(
    "NotificationSnoozes",
    {"notification_type": notification_type, "related_account_id": account_id},
  )
  fields = {"snoozed_until": snoozed_until, "snoozed_by": snoozed_by}
  if existing:
    row = await gateway.update("NotificationSnoozes", existing[0]["id"], fields)
  else:
    row = await gateway.create(
      "NotificationSnoozes",
      {"notification_type": notification_type, "related_account_id": account_id, **fields},
    )
  logger.info("notification_snoozed", type=notification_type, account_id=account_id, until=str(snoozed_until))
  return row


async def unsnooze_notification(gateway: Gateway, notification_type: str, account_id: str | None = None) -> int:
  existing = await gateway.filter(
    "NotificationSnoozes",
    {"notification_type": notification_type, "related_account_id": account_id},
  )
  for s in existing:
    await gateway.delete("NotificationSnoozes", s["id"])
  return len(existing)


# Inbox


async def list_notifications(gateway: Gateway, user_id: str, *, unread_only: bool = False) -> list[Row]:
  predicates: dict[str, Any] = {"user_id": user_id}
  if unread_only:
    predicates["is_read"] = False
  rows = await gateway.filter("Notifications", predicates)
  rows.sort(key=lambda n: (to_datetime(n.get("created_at")) or now_utc(), n["id"]), reverse=True)
  return rows


async def mark_read(gateway: Gateway, notification_id: str) -> Row:
  return await gateway.update("Notifications", notification_id, {"is_read": True})


async def mark_all_read(gateway: Gateway, user_id: str) -> int:
  unread = await gateway.filter("Notifications", {"user_id": user_id, "is_read": False})
  return await gateway.update_many("Notifications", [(n["id"], {"is_read": True}) for n in unread])


# Sweeps


async def apply_plan(gateway: Gateway, plan: ReconcilePlan, result: SweepResult) -> None:
  """Apply a plan item by item; failures are logged and counted, never raised."""
  for id, fields in plan.to_update:
    try:
      await gateway.update("Notifications", id, fields)
      result.updated += 1
    except GatewayError as e:
      result.errors += 1
      logger.warning("notification_update_failed", sweep=result.name, notification_id=id, error=e.message)
  for d in plan.to_create:
    try:
      await gateway.create("Notifications", d.fields())
      result.created += 1
    except ConflictError:
      result.skipped += 1
      logger.info("notification_duplicate_skipped", sweep=result.name, user_id=d.key.user_id, entity_id=d.key.entity_id)
    except GatewayError as e:
      result.errors += 1
      logger.warning(
        "notification_create_failed",
        sweep=result.name,
        user_id=d.key.user_id,
        entity_id=d.key.entity_id,
        error=e.message,
      )
  for id in plan.to_delete:
    try:
      await gateway.delete("Notifications", id)
      result.deleted += 1
    except GatewayError as e:
      result.errors += 1
      logger.warning("notification_delete_failed", sweep=result.name, notification_id=id, error=e.message)


def _log_result(result: SweepResult) -> SweepResult:
  logger.info(f"{result.name}_sweep_completed", **{k: v for k, v in result.as_dict().items() if k != "name"})
  return result


async def _supersede_due_soon(gateway: Gateway, overdue: set[tuple[str, str | None]], result: SweepResult) -> None:
  """Once a task is overdue, its unread due-today/reminder notifications for the same user are read."""
  stale: list[tuple[str, dict[str, Any]]] = []
  for ntype in ("task_due_today", "task_reminder"):
    for n in await gateway.filter("Notifications", {"type": ntype, "is_read": False}):
      key = NotificationKey.of(n)
      if (key.user_id, key.entity_id) in overdue:
        stale.append((n["id"], {"is_read": True}))
  if stale:
    await gateway.update_many("Notifications", stale)
    result.bump("superseded", len(stale))


async def create_overdue_task_notifications(gateway: Gateway, *, now: datetime | None = None) -> SweepResult:
  result = SweepResult(name="overdue")
  now = now or now_utc()
  today = business_today(now)
  try:
    tasks = await gateway.list("Tasks")
    users = await gateway.list("Users")
    by_email = {str(u["email"]).strip().lower(): u for u in users if u.get("email")}

    desired: list[DesiredNotification] = []
    for task in tasks:
      due = to_date(task.get("due_date"))
      if not due or task.get("status") == "completed" or due >= today:
        continue
      result.bump("overdue_tasks")
      days = (today - due).days
      assigned = parse_assigned_users(task.get("assigned_to"))
      # Unassigned overdue work goes to everyone.
      recipients = [by_email.get(e.lower()) for e in assigned] if assigned else users
      for user in recipients:
        if not user:
          result.skipped += 1
          continue
        desired.append(
          DesiredNotification(
            key=NotificationKey(str(user["id"]), "task_overdue", str(task["id"])),
            title="Task Overdue",
            message=f'"{task.get("title") or ""}" is overdue by {days} day{_plural(days)}',
            related_task_id=task["id"],
            related_account_id=task.get("related_account_id"),
            scheduled_for=now,
          )
        )

    if desired:
      actual = await gateway.filter("Notifications", {"type": "task_overdue"})
      plan = reconcile(desired, actual, resurrect_read=True)
      result.skipped += len(desired) - len(plan.to_create) - len(plan.to_update)
      await apply_plan(gateway, plan, result)
      await _supersede_due_soon(gateway, {(d.key.user_id, d.key.entity_id) for d in desired}, result)
  except GatewayError as e:
    result.errors += 1
    logger.error("overdue_sweep_failed", error=e.message)
  return _log_result(result)


async def update_account_status_with_retry(
  gateway: Gateway,
  account: Row,
  status: str,
  *,
  attempts: int | None = None,
  backoff_seconds: float | None = None,
  sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> bool:
  attempts = max(1, int(attempts or settings.status_update_max_attempts))
  backoff = settings.status_update_backoff_seconds if backoff_seconds is None else backoff_seconds
  for attempt in range(1, attempts + 1):
    try:
      await gateway.update("Accounts", account["id"], {"status": status})
      return True
    except GatewayError as e:
      if attempt >= attempts:
        logger.error("account_status_update_failed", account_id=account["id"], status=status, attempts=attempt, error=e.message)
        return False
      logger.warning("account_status_update_retry", account_id=account["id"], status=status, attempt=attempt, error=e.message)
      await sleep(backoff * (2 ** (attempt - 1)))
  return False


async def create_renewal_notifications(
  gateway: Gateway,
  *,
  now: datetime | None = None,
  backoff_seconds: float | None = None,
  sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> SweepResult:
  result = SweepResult(name="renewal")
  now = now or now_utc()
  today = business_today(now)
  try:
    accounts = await gateway.list("Accounts")
    estimates = await gateway.list("Estimates")
    users = await gateway.list("Users")
    if not users:
      logger.warning("renewal_sweep_no_users")
      return _log_result(result)

    by_account: dict[str, list[Row]] = defaultdict(list)
    for e in estimates:
      if e.get("account_id"):
        by_account[str(e["account_id"])].append(e)

    at_risk: set[str] = set()
    desired: list[DesiredNotification] = []
    for account in accounts:
      if account.get("archived"):
        continue
      renewal = calculate_renewal_date(by_account.get(str(account["id"]), []))
      if renewal is None:
        continue
      days = (renewal - today).days
      should_be_at_risk = days <= settings.renewal_window_days
      status = account.get("status")

      if should_be_at_risk:
        at_risk.add(str(account["id"]))
        if status == "at_risk":
          result.bump("already_at_risk")
        elif status != "churned":
          ok = await update_account_status_with_retry(gateway, account, "at_risk", backoff_seconds=backoff_seconds, sleep=sleep)
          if ok:
            result.bump("status_updated")
          else:
            result.errors += 1
      elif status == "at_risk":
        if await update_account_status_with_retry(gateway, account, "active", backoff_seconds=backoff_seconds, sleep=sleep):
          result.bump("status_updated")
        else:
          result.errors += 1

      if not should_be_at_risk:
        continue
      if await check_notification_snoozed(gateway, "renewal_reminder", account["id"], now=now):
        result.bump("snoozed")
        continue

      if days >= 0:
        message = f"Contract renewal is in {days} day{_plural(days)} ({_fmt_date(renewal)})"
      else:
        message = f"Contract renewal was due {-days} day{_plural(days)} ago ({_fmt_date(renewal)})"
      for user in users:
        desired.append(
          DesiredNotification(
            key=NotificationKey(str(user["id"]), "renewal_reminder", str(account["id"])),
            title=f"Renewal Coming Up: {account.get('name') or ''}",
            message=message,
            related_account_id=account["id"],
            scheduled_for=start_of_day(renewal),
            not_before=start_of_day(today),
          )
        )

    actual = await gateway.filter("Notifications", {"type": "renewal_reminder"})
    plan = reconcile(desired, actual, supersede_unread=True, live_entities=at_risk)
    result.skipped += len(desired) - len(plan.to_create)
    await apply_plan(gateway, plan, result)
  except GatewayError as e:
    result.errors += 1
    logger.error("renewal_sweep_failed", error=e.message)
  return _log_result(result)


def neglect_threshold(segment: str) -> int:
  if segment in ("A", "B"):
    return settings.neglect_threshold_priority_days
  return settings.neglect_threshold_default_days


def neglected_days(account: Row, today: date, now: datetime) -> tuple[bool, int | None]:
  """(is_neglected, days since last interaction or None when never contacted)."""
  if account.get("archived") or account.get("icp_status") == "na":
    return False, None
  snoozed_until = to_datetime(account.get("snoozed_until"))
  if snoozed_until and snoozed_until > now:
    return False, None
  last = to_date(account.get("last_interaction_date"))
  if last is None:
    return True, None
  days = (today - last).days
  return days > neglect_threshold(account.get("revenue_segment") or "C"), days


async def create_neglected_account_notifications(gateway: Gateway, *, now: datetime | None = None) -> SweepResult:
  result = SweepResult(name="neglected")
  now = now or now_utc()
  today = business_today(now)
  try:
    accounts = await gateway.list("Accounts")
    users = await gateway.list("Users")
    if not users:
      logger.warning("neglected_sweep_no_users")
      return _log_result(result)

    neglected: set[str] = set()
    desired: list[DesiredNotification] = []
    for account in accounts:
      is_neglected, days = neglected_days(account, today, now)
      if not is_neglected:
        continue
      neglected.add(str(account["id"]))
      result.bump("neglected_accounts")
      if await check_notification_snoozed(gateway, "neglected_account", account["id"], now=now):
        result.bump("snoozed")
        continue

      segment = account.get("revenue_segment") or "C"
      if days is None:
        message = f"No interactions logged - account needs attention ({segment} segment)"
      else:
        message = (
          f"No contact in {days} day{_plural(days)} - account needs attention "
          f"({segment} segment, {neglect_threshold(segment)}+ day threshold)"
        )
      last = to_date(account.get("last_interaction_date"))
      for user in users:
        desired.append(
          DesiredNotification(
            key=NotificationKey(str(user["id"]), "neglected_account", str(account["id"])),
            title=f"Neglected Account: {account.get('name') or ''}",
            message=message,
            related_account_id=account["id"],
            scheduled_for=start_of_day(today),
            not_before=start_of_day(last) if last else None,
          )
        )

    actual = await gateway.filter("Notifications", {"type": "neglected_account"})
    plan = reconcile(desired, actual, live_entities=neglected)
    result.skipped += len(desired) - len(plan.to_create)
    await apply_plan(gateway, plan, result)
  except GatewayError as e:
    result.errors += 1
    logger.error("neglected_sweep_failed", error=e.message)
  return _log_result(result)


async def create_end_of_year_notification(gateway: Gateway, *, now: datetime | None = None) -> SweepResult:
  result = SweepResult(name="end_of_year")
  now = now or now_utc()
  today = business_today(now)
  if (today.month, today.day) != (12, 15):
    return result
  try:
    users = await gateway.list("Users")
    desired = [
      DesiredNotification(
        key=NotificationKey(str(u["id"]), "end_of_year_analysis", None),
        title="End of Year Data Analysis",
        message=(
          f"It's time to review your {today.year} performance! View comprehensive reports with "
          "win/loss analysis, department breakdowns, and revenue trends."
        ),
        scheduled_for=now,
        not_before=start_of_day(date(today.year, 1, 1)),
      )
      for u in users
    ]
    actual = await gateway.filter("Notifications", {"type": "end_of_year_analysis"})
    plan = reconcile(desired, actual)
    result.skipped += len(desired) - len(plan.to_create)
    await apply_plan(gateway, plan, result)
  except GatewayError as e:
    result.errors += 1
    logger.error("end_of_year_sweep_failed", error=e.message)
  return _log_result(result)
