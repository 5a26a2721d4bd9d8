from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog

from crm.dates import now_utc
from crm.gateway import Gateway
from crm.notifications.service import (
  SweepResult,
  create_end_of_year_notification,
  create_neglected_account_notifications,
  create_overdue_task_notifications,
  create_renewal_notifications,
)
from crm.tasks.lifecycle import generate_recurring_task_instances

logger = structlog.get_logger()


async def run_all_sweeps(gateway: Gateway, *, now: datetime | None = None, **renewal_opts: Any) -> list[SweepResult]:
  """Run every reconciliation sweep in sequence. Sweeps never raise; failures are in the counters."""
  now = now or now_utc()
  results = [
    await generate_recurring_task_instances(gateway, now=now),
    await create_overdue_task_notifications(gateway, now=now),
    await create_renewal_notifications(gateway, now=now, **renewal_opts),
    await create_neglected_account_notifications(gateway, now=now),
    await create_end_of_year_notification(gateway, now=now),
  ]
  logger.info(
    "sweeps_completed",
    created=sum(r.created for r in results),
    errors=sum(r.errors for r in results),
  )
  return results
