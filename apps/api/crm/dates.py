from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

from dateutil import parser as dateparser

from crm.config import settings


def now_utc() -> datetime:
  return datetime.now(timezone.utc)


def business_today(now: datetime | None = None) -> date:
  """Calendar date of `now` in the business timezone."""
  now = now or now_utc()
  if now.tzinfo is None:
    now = now.replace(tzinfo=timezone.utc)
  return now.astimezone(ZoneInfo(settings.business_timezone)).date()


def to_date(value: Any) -> date | None:
  if value is None or value == "":
    return None
  if isinstance(value, datetime):
    return value.date()
  if isinstance(value, date):
    return value
  try:
    return dateparser.parse(str(value)).date()
  except (ValueError, OverflowError):
    return None


def to_datetime(value: Any) -> datetime | None:
  if value is None or value == "":
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, date):
    dt = datetime(value.year, value.month, value.day)
  else:
    try:
      dt = dateparser.parse(str(value))
    except (ValueError, OverflowError):
      return None
  if dt.tzinfo is None:
    dt = dt.replace(tzinfo=timezone.utc)
  return dt


def start_of_day(d: date) -> datetime:
  return datetime(d.year, d.month, d.day, tzinfo=ZoneInfo(settings.business_timezone)).astimezone(timezone.utc)
