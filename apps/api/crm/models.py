from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def new_id() -> str:
  return str(uuid.uuid4())


JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  full_name: Mapped[str | None] = mapped_column(String, nullable=True)
  role: Mapped[str] = mapped_column(String, nullable=False, default="user")
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Account(Base):
  __tablename__ = "accounts"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  name: Mapped[str] = mapped_column(String, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, default="active")  # active | at_risk | churned | prospect
  archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  icp_status: Mapped[str | None] = mapped_column(String, nullable=True)
  revenue_segment: Mapped[str | None] = mapped_column(String, nullable=True)
  last_interaction_date: Mapped[date | None] = mapped_column(Date, nullable=True)
  snoozed_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  organization_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Contact(Base):
  __tablename__ = "contacts"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  account_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  first_name: Mapped[str | None] = mapped_column(String, nullable=True)
  last_name: Mapped[str | None] = mapped_column(String, nullable=True)
  email: Mapped[str | None] = mapped_column(String, nullable=True)
  phone: Mapped[str | None] = mapped_column(String, nullable=True)
  title: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Estimate(Base):
  __tablename__ = "estimates"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  account_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  estimate_number: Mapped[str | None] = mapped_column(String, nullable=True)
  status: Mapped[str | None] = mapped_column(String, nullable=True)
  pipeline_status: Mapped[str | None] = mapped_column(String, nullable=True)
  contract_start: Mapped[date | None] = mapped_column(Date, nullable=True)
  contract_end: Mapped[date | None] = mapped_column(Date, nullable=True)
  total_price: Mapped[float | None] = mapped_column(Float, nullable=True)
  archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Interaction(Base):
  __tablename__ = "interactions"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  account_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
  contact_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
  type: Mapped[str] = mapped_column(String, nullable=False, default="note")
  subject: Mapped[str | None] = mapped_column(String, nullable=True)
  content: Mapped[str | None] = mapped_column(Text, nullable=True)
  interaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  logged_by: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Task(Base):
  __tablename__ = "tasks"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  assigned_to: Mapped[str | None] = mapped_column(String, nullable=True)  # comma separated emails
  due_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
  due_time: Mapped[str | None] = mapped_column(String, nullable=True)
  priority: Mapped[str] = mapped_column(String, nullable=False, default="normal")
  status: Mapped[str] = mapped_column(String, nullable=False, default="todo")
  category: Mapped[str | None] = mapped_column(String, nullable=True, default="other")
  related_account_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  related_contact_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
  labels: Mapped[list[str]] = mapped_column(JsonType, nullable=False, default=list)
  order: Mapped[int] = mapped_column("order", Integer, nullable=False, default=0)
  estimated_time: Mapped[int | None] = mapped_column(Integer, nullable=True)

  is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  recurrence_pattern: Mapped[str | None] = mapped_column(String, nullable=True)  # daily | weekly | monthly | yearly
  recurrence_interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  recurrence_days_of_week: Mapped[list[int] | None] = mapped_column(JsonType, nullable=True)  # 0=Sunday
  recurrence_day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
  recurrence_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
  recurrence_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
  next_recurrence_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
  parent_task_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

  blocked_by_task_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  sequence_enrollment_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  sequence_step_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
  completed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Notification(Base):
  __tablename__ = "notifications"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
  type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  message: Mapped[str] = mapped_column(Text, nullable=False, default="")
  related_task_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  related_account_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  scheduled_for: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# One unread notification per (user, type, task).
Index(
  "ux_notifications_unread_task",
  Notification.user_id,
  Notification.type,
  Notification.related_task_id,
  unique=True,
  postgresql_where=(Notification.related_task_id.isnot(None) & Notification.is_read.is_(False)),
  sqlite_where=(Notification.related_task_id.isnot(None) & Notification.is_read.is_(False)),
)


class NotificationSnooze(Base):
  __tablename__ = "notification_snoozes"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  notification_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  related_account_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  snoozed_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
  snoozed_by: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class SequenceTemplate(Base):
  __tablename__ = "sequences"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  name: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  steps: Mapped[list[dict[str, Any]]] = mapped_column(JsonType, nullable=False, default=list)
  is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class SequenceEnrollment(Base):
  __tablename__ = "sequence_enrollments"
  __table_args__ = (UniqueConstraint("sequence_id", "account_id", name="ux_sequence_enrollment_account"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  sequence_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
  account_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
  started_date: Mapped[date | None] = mapped_column(Date, nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default="active")
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class ScorecardTemplate(Base):
  __tablename__ = "scorecard_templates"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  name: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  questions: Mapped[list[dict[str, Any]]] = mapped_column(JsonType, nullable=False, default=list)
  pass_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=70)
  total_possible_score: Mapped[float | None] = mapped_column(Float, nullable=True)
  is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  version_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  parent_template_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  is_current_version: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class ScorecardResponse(Base):
  __tablename__ = "scorecard_responses"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  account_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
  template_id: Mapped[str] = mapped_column(String(36), nullable=False)
  template_name: Mapped[str | None] = mapped_column(String, nullable=True)
  template_version_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  responses: Mapped[list[dict[str, Any]]] = mapped_column(JsonType, nullable=False, default=list)
  section_scores: Mapped[dict[str, float]] = mapped_column(JsonType, nullable=False, default=dict)
  total_score: Mapped[float] = mapped_column(Float, nullable=False, default=0)
  total_possible_score: Mapped[float] = mapped_column(Float, nullable=False, default=0)
  normalized_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  is_pass: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  completed_by: Mapped[str | None] = mapped_column(String, nullable=True)
  completed_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


COLLECTIONS: dict[str, type[Base]] = {
  "Users": User,
  "Accounts": Account,
  "Contacts": Contact,
  "Estimates": Estimate,
  "Interactions": Interaction,
  "Tasks": Task,
  "Notifications": Notification,
  "NotificationSnoozes": NotificationSnooze,
  "SequenceTemplates": SequenceTemplate,
  "SequenceEnrollments": SequenceEnrollment,
  "ScorecardTemplates": ScorecardTemplate,
  "ScorecardResponses": ScorecardResponse,
}
