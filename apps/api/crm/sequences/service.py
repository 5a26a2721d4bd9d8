from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

import structlog

from crm.dates import business_today, now_utc, to_date
from crm.gateway import Gateway, GatewayError, ValidationError

logger = structlog.get_logger()

Row = dict[str, Any]

ACTION_LABELS = {
  "email": "Send Email",
  "call": "Make Call",
  "linkedin": "LinkedIn Message",
  "meeting": "Schedule Meeting",
}


def _int(value: Any, default: int = 0) -> int:
  try:
    return int(value)
  except (TypeError, ValueError):
    return default


def action_label(action_type: Any) -> str:
  return ACTION_LABELS.get(str(action_type or ""), str(action_type or "Task"))


async def create_tasks_from_sequence(
  gateway: Gateway,
  enrollment: Row,
  template: Row,
  account_id: str,
  *,
  current_user_email: str | None = None,
  today: date | None = None,
) -> list[Row]:
  """
  Materialize one task per template step.

  Due dates accumulate `days_after_previous` from the enrollment start. The first task is open,
  every later task is blocked by the task created just before it. A step that fails to
  create is logged and skipped.
  """
  steps = sorted(template.get("steps") or [], key=lambda s: _int(s.get("step_number")))
  start = to_date(enrollment.get("started_date")) or today or business_today()

  created: list[Row] = []
  cumulative = 0
  previous_id: str | None = None
  for i, step in enumerate(steps):
    cumulative += _int(step.get("days_after_previous"))
    step_number = _int(step.get("step_number"), i + 1)
    label = action_label(step.get("action_type"))
    fields = {
      "title": f"{label} - Step {step_number}",
      "description": step.get("template") or step.get("instructions") or f"Complete {label} for this account",
      "assigned_to": current_user_email or "",
      "due_date": start + timedelta(days=cumulative),
      "priority": "normal",
      "status": "todo" if previous_id is None else "blocked",
      "blocked_by_task_id": previous_id,
      "category": "sequence",
      "labels": ["sequence"],
      "order": i,
      "estimated_time": 30,
      "related_account_id": account_id,
      "sequence_enrollment_id": enrollment["id"],
      "sequence_step_number": step_number,
    }
    try:
      task = await gateway.create("Tasks", fields)
    except GatewayError as e:
      logger.error("sequence_task_create_failed", enrollment_id=enrollment["id"], step_number=step_number, error=e.message)
      continue
    created.append(task)
    previous_id = task["id"]

  logger.info("sequence_tasks_created", enrollment_id=enrollment["id"], steps=len(steps), created=len(created))
  return created


async def unblock_next_task(gateway: Gateway, task_id: str) -> list[Row]:
  """Flip every task still blocked by `task_id` to todo."""
  blocked = await gateway.filter("Tasks", {"blocked_by_task_id": task_id, "status": "blocked"})
  out: list[Row] = []
  for t in blocked:
    out.append(await gateway.update("Tasks", t["id"], {"status": "todo"}))
    logger.info("task_unblocked", task_id=t["id"], blocked_by=task_id)
  return out


async def enroll_account(
  gateway: Gateway,
  sequence_id: str,
  account_id: str,
  started_date: date | None = None,
  *,
  current_user_email: str | None = None,
  now: datetime | None = None,
) -> tuple[Row, list[Row]]:
  template = await gateway.get("SequenceTemplates", sequence_id)
  if not template.get("is_active", True):
    raise ValidationError("Sequence is not active")
  await gateway.get("Accounts", account_id)

  today = business_today(now or now_utc())
  enrollment = await gateway.create(
    "SequenceEnrollments",
    {
      "sequence_id": sequence_id,
      "account_id": account_id,
      "started_date": started_date or today,
      "status": "active",
    },
  )
  tasks = await create_tasks_from_sequence(
    gateway,
    enrollment,
    template,
    account_id,
    current_user_email=current_user_email,
    today=today,
  )
  return enrollment, tasks
