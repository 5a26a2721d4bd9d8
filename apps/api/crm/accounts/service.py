from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog

from crm.dates import business_today, now_utc, to_date, to_datetime
from crm.gateway import Gateway, ValidationError

logger = structlog.get_logger()

Row = dict[str, Any]


async def log_interaction(
  gateway: Gateway,
  account_id: str,
  fields: dict[str, Any],
  *,
  logged_by: str | None = None,
  now: datetime | None = None,
) -> Row:
  """Record an interaction and move the account's last contact forward."""
  account = await gateway.get("Accounts", account_id)
  data = {k: v for k, v in dict(fields).items() if k not in ("id", "account_id")}
  when = to_datetime(data.get("interaction_date")) if data.get("interaction_date") else (now or now_utc())
  if when is None:
    raise ValidationError(f"Invalid interaction_date: {data.get('interaction_date')!r}")
  data["interaction_date"] = when
  data.setdefault("logged_by", logged_by)

  interaction = await gateway.create("Interactions", {"account_id": account_id, **data})

  day = business_today(when)
  last = to_date(account.get("last_interaction_date"))
  if last is None or day > last:
    await gateway.update("Accounts", account_id, {"last_interaction_date": day})
    # The account has been contacted; open neglect reminders are resolved.
    stale = await gateway.filter("Notifications", {"type": "neglected_account", "related_account_id": account_id, "is_read": False})
    if stale:
      await gateway.update_many("Notifications", [(n["id"], {"is_read": True}) for n in stale])
  logger.info("interaction_logged", account_id=account_id, interaction_id=interaction["id"], type=interaction.get("type"))
  return interaction


async def list_interactions(gateway: Gateway, account_id: str) -> list[Row]:
  rows = await gateway.filter("Interactions", {"account_id": account_id})
  rows.sort(key=lambda r: (to_datetime(r.get("interaction_date")) or now_utc(), r["id"]), reverse=True)
  return rows
