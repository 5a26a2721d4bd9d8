from __future__ import annotations

from datetime import date
from typing import Any, Iterable

from crm.dates import to_date

WON_STATUSES = frozenset(
  {
    "contract signed",
    "work complete",
    "billing complete",
    "email contract award",
    "verbal contract award",
    "contract in progress",
    "contract + billing complete",
    "sold",
    "won",
  }
)


def is_won_status(status: Any, pipeline_status: Any = None) -> bool:
  # pipeline_status wins when present.
  if pipeline_status:
    if "sold" in str(pipeline_status).strip().lower():
      return True
  if not status:
    return False
  return str(status).strip().lower() in WON_STATUSES


def calculate_renewal_date(estimates: Iterable[dict[str, Any]]) -> date | None:
  """Latest contract end among the account's won, non-archived estimates."""
  ends = [
    d
    for d in (
      to_date(e.get("contract_end"))
      for e in estimates
      if not e.get("archived") and is_won_status(e.get("status"), e.get("pipeline_status"))
    )
    if d is not None
  ]
  return max(ends) if ends else None
