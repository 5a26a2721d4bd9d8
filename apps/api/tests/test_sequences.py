from __future__ import annotations

from datetime import date

import pytest

from crm.gateway import SqlGateway, ValidationError
from crm.sequences.service import action_label, create_tasks_from_sequence, enroll_account
from crm.tasks.lifecycle import change_status
from conftest import make_account

STEPS = [
  {"step_number": 2, "action_type": "call", "days_after_previous": 3},
  {"step_number": 1, "action_type": "email", "days_after_previous": 0, "template": "Intro email"},
  {"step_number": 3, "action_type": "meeting", "days_after_previous": 7},
]


def test_action_label_falls_back_to_raw_type() -> None:
  assert action_label("linkedin") == "LinkedIn Message"
  assert action_label("fax") == "fax"
  assert action_label(None) == "Task"


@pytest.mark.anyio
async def test_enrollment_creates_chained_tasks_with_cumulative_due_dates(gateway: SqlGateway) -> None:
  account = await make_account(gateway, "Acme Grounds")
  seq = await gateway.create("SequenceTemplates", {"name": "Onboarding", "steps": STEPS})
  start = date(2026, 3, 2)

  enrollment, tasks = await enroll_account(gateway, seq["id"], account["id"], start, current_user_email="rep@example.com")
  assert enrollment["status"] == "active"
  assert enrollment["started_date"] == start

  assert [t["title"] for t in tasks] == ["Send Email - Step 1", "Make Call - Step 2", "Schedule Meeting - Step 3"]
  assert [t["due_date"] for t in tasks] == [date(2026, 3, 2), date(2026, 3, 5), date(2026, 3, 12)]
  assert [t["status"] for t in tasks] == ["todo", "blocked", "blocked"]
  assert tasks[0]["blocked_by_task_id"] is None
  assert tasks[1]["blocked_by_task_id"] == tasks[0]["id"]
  assert tasks[2]["blocked_by_task_id"] == tasks[1]["id"]
  assert tasks[0]["description"] == "Intro email"
  assert all(t["category"] == "sequence" and t["labels"] == ["sequence"] for t in tasks)
  assert all(t["related_account_id"] == account["id"] and t["assigned_to"] == "rep@example.com" for t in tasks)


@pytest.mark.anyio
async def test_completing_a_step_unblocks_only_the_next(gateway: SqlGateway) -> None:
  account = await make_account(gateway, "Birch Lane")
  seq = await gateway.create("SequenceTemplates", {"name": "Nurture", "steps": STEPS})
  _, tasks = await enroll_account(gateway, seq["id"], account["id"], date(2026, 3, 2))

  await change_status(gateway, tasks[0]["id"], "completed")
  statuses = [(await gateway.get("Tasks", t["id"]))["status"] for t in tasks]
  assert statuses == ["completed", "todo", "blocked"]


@pytest.mark.anyio
async def test_inactive_sequence_cannot_be_enrolled(gateway: SqlGateway) -> None:
  account = await make_account(gateway, "Cedar Court")
  seq = await gateway.create("SequenceTemplates", {"name": "Retired", "steps": STEPS, "is_active": False})
  with pytest.raises(ValidationError):
    await enroll_account(gateway, seq["id"], account["id"])
  assert await gateway.list("SequenceEnrollments") == []


@pytest.mark.anyio
async def test_empty_template_creates_no_tasks(gateway: SqlGateway) -> None:
  enrollment = {"id": "e1", "started_date": date(2026, 3, 2)}
  assert await create_tasks_from_sequence(gateway, enrollment, {"steps": []}, "a1") == []
  assert await gateway.list("Tasks") == []
