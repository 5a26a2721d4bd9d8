from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from dateutil.relativedelta import relativedelta

from crm.dates import to_date

PATTERNS = ("daily", "weekly", "monthly", "yearly")

# Weekly scan window when days of week are configured.
WEEKLY_SCAN_DAYS = 14


def weekday_sun0(d: date) -> int:
  """0 = Sunday ... 6 = Saturday."""
  return (d.weekday() + 1) % 7


def _interval(task: dict[str, Any]) -> int:
  try:
    return max(1, int(task.get("recurrence_interval") or 1))
  except (TypeError, ValueError):
    return 1


def _days_of_week(task: dict[str, Any]) -> list[int]:
  out: set[int] = set()
  for d in task.get("recurrence_days_of_week") or []:
    try:
      out.add(int(d) % 7)
    except (TypeError, ValueError):
      continue
  return sorted(out)


def advance_recurrence(task: dict[str, Any], from_date: date) -> date | None:
  """Next occurrence strictly after `from_date`, or None when the series has ended."""
  pattern = task.get("recurrence_pattern")
  interval = _interval(task)

  if pattern == "daily":
    nxt = from_date + timedelta(days=interval)
  elif pattern == "weekly":
    days = _days_of_week(task)
    if not days:
      nxt = from_date + timedelta(weeks=interval)
    else:
      nxt = None
      for i in range(1, WEEKLY_SCAN_DAYS + 1):
        cand = from_date + timedelta(days=i)
        if weekday_sun0(cand) in days:
          nxt = cand
          break
      if nxt is None:
        jumped = from_date + timedelta(weeks=interval)
        nxt = jumped + timedelta(days=(days[0] - weekday_sun0(jumped)) % 7)
  elif pattern == "monthly":
    nxt = from_date + relativedelta(months=interval)
    dom = task.get("recurrence_day_of_month")
    if dom:
      # relativedelta(day=N) clamps to the last day of short months.
      nxt = nxt + relativedelta(day=max(1, min(31, int(dom))))
  elif pattern == "yearly":
    nxt = from_date + relativedelta(years=interval)
  else:
    return None

  end = to_date(task.get("recurrence_end_date"))
  if end and nxt > end:
    return None
  return nxt


def compute_next_recurrence_date(task: dict[str, Any], today: date) -> date | None:
  if not task.get("is_recurring") or task.get("recurrence_pattern") not in PATTERNS:
    return None
  due = to_date(task.get("due_date"))
  base = due if due and due >= today else today
  return advance_recurrence(task, base)
