from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic import field_validator

from crm.dates import to_date

Priority = Literal["critical", "blocker", "major", "normal", "minor", "trivial"]
TaskStatus = Literal["todo", "in_progress", "blocked", "completed"]
RecurrencePattern = Literal["daily", "weekly", "monthly", "yearly"]
NotificationType = Literal[
  "task_assigned",
  "task_overdue",
  "task_due_today",
  "task_reminder",
  "renewal_reminder",
  "neglected_account",
  "end_of_year_analysis",
]


def _parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


def _parse_date(value: object) -> object:
  if value is None or isinstance(value, date):
    return value
  if isinstance(value, str):
    if not value.strip():
      return None
    d = to_date(value)
    if d is None:
      raise ValueError(f"Invalid date: {value}")
    return d
  return value


def _join_assignees(value: object) -> object:
  if isinstance(value, (list, tuple)):
    return ",".join(str(v).strip() for v in value if str(v).strip())
  return value


class Envelope(BaseModel):
  success: bool = True
  data: Any = None
  error: str | None = None
  count: int | None = None


class TaskCreateIn(BaseModel):
  title: str = Field(min_length=1)
  description: str = ""
  assigned_to: str | None = None
  due_date: date | None = None
  due_time: str | None = None
  priority: Priority = "normal"
  status: TaskStatus = "todo"
  category: str | None = None
  related_account_id: str | None = None
  related_contact_id: str | None = None
  labels: list[str] = Field(default_factory=list)
  order: int | None = None
  estimated_time: int | None = None
  is_recurring: bool = False
  recurrence_pattern: RecurrencePattern | None = None
  recurrence_interval: int = Field(default=1, ge=1)
  recurrence_days_of_week: list[int] | None = None
  recurrence_day_of_month: int | None = Field(default=None, ge=1, le=31)
  recurrence_end_date: date | None = None
  recurrence_count: int | None = Field(default=None, ge=1)
  blocked_by_task_id: str | None = None

  @field_validator("due_date", "recurrence_end_date", mode="before")
  @classmethod
  def _blank_date(cls, v: object) -> object:
    return _parse_date(v)

  @field_validator("assigned_to", mode="before")
  @classmethod
  def _assignees(cls, v: object) -> object:
    return _join_assignees(v)

  @field_validator("recurrence_days_of_week")
  @classmethod
  def _weekdays(cls, v: list[int] | None) -> list[int] | None:
    if v is None:
      return None
    for d in v:
      if d < 0 or d > 6:
        raise ValueError("recurrence_days_of_week values must be 0 (Sunday) to 6 (Saturday)")
    return sorted(set(v))


class TaskUpdateIn(BaseModel):
  title: str | None = Field(default=None, min_length=1)
  description: str | None = None
  assigned_to: str | None = None
  due_date: date | None = None
  due_time: str | None = None
  priority: Priority | None = None
  status: TaskStatus | None = None
  category: str | None = None
  related_account_id: str | None = None
  related_contact_id: str | None = None
  labels: list[str] | None = None
  order: int | None = None
  estimated_time: int | None = None
  is_recurring: bool | None = None
  recurrence_pattern: RecurrencePattern | None = None
  recurrence_interval: int | None = Field(default=None, ge=1)
  recurrence_days_of_week: list[int] | None = None
  recurrence_day_of_month: int | None = Field(default=None, ge=1, le=31)
  recurrence_end_date: date | None = None
  recurrence_count: int | None = Field(default=None, ge=1)
  blocked_by_task_id: str | None = None

  @field_validator("due_date", "recurrence_end_date", mode="before")
  @classmethod
  def _blank_date(cls, v: object) -> object:
    return _parse_date(v)

  @field_validator("assigned_to", mode="before")
  @classmethod
  def _assignees(cls, v: object) -> object:
    return _join_assignees(v)


class TaskStatusIn(BaseModel):
  status: TaskStatus


class TaskReorderIn(BaseModel):
  task_ids: list[str] = Field(min_length=1)


class SnoozeIn(BaseModel):
  notification_type: NotificationType
  related_account_id: str | None = None
  snoozed_until: datetime

  @field_validator("snoozed_until", mode="before")
  @classmethod
  def _until_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class ScorecardSubmitIn(BaseModel):
  account_id: str
  template_id: str
  answers: dict[str, Any] | list[Any] = Field(default_factory=dict)


class ScorecardTemplateUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1)
  description: str | None = None
  questions: list[dict[str, Any]] | None = None
  pass_threshold: int | None = Field(default=None, ge=0, le=100)


class EnrollIn(BaseModel):
  sequence_id: str
  account_id: str
  started_date: date | None = None

  @field_validator("started_date", mode="before")
  @classmethod
  def _blank_date(cls, v: object) -> object:
    return _parse_date(v)


class InteractionIn(BaseModel):
  type: str = "note"
  subject: str | None = None
  content: str | None = None
  contact_id: str | None = None
  interaction_date: datetime | None = None

  @field_validator("interaction_date", mode="before")
  @classmethod
  def _date_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class DataActionIn(BaseModel):
  action: Literal["create", "upsert", "bulk_upsert", "update_with_version", "snooze"] = "create"
  data: Any = None
  key: str = "id"
