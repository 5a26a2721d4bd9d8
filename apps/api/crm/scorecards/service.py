from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog

from crm.config import settings
from crm.dates import now_utc
from crm.gateway import ConflictError, Gateway, GatewayError
from crm.scorecards.engine import score_scorecard

logger = structlog.get_logger()

Row = dict[str, Any]

# Never carried over from the caller when a new template version is written.
VERSION_FIELDS = ("id", "version_number", "parent_template_id", "is_current_version", "created_at", "updated_at")


def lineage_root(template: Row) -> str:
  return str(template.get("parent_template_id") or template["id"])


async def list_template_versions(gateway: Gateway, template_id: str) -> list[Row]:
  template = await gateway.get("ScorecardTemplates", template_id)
  root = lineage_root(template)
  rows = [await gateway.get("ScorecardTemplates", root)]
  rows.extend(await gateway.filter("ScorecardTemplates", {"parent_template_id": root}))
  rows.sort(key=lambda t: int(t.get("version_number") or 1))
  return rows


async def current_template_version(gateway: Gateway, template_id: str) -> Row:
  template = await gateway.get("ScorecardTemplates", template_id)
  if template.get("is_current_version", True):
    return template
  for row in reversed(await list_template_versions(gateway, template_id)):
    if row.get("is_current_version"):
      return row
  return template


async def update_template_with_version(gateway: Gateway, template_id: str, fields: dict[str, Any]) -> Row:
  """Write `fields` as a new version of the template; the old row stops being current."""
  old = await gateway.get("ScorecardTemplates", template_id)
  if not old.get("is_current_version", True):
    raise ConflictError("Only the current version of a template can be updated")

  base = {k: v for k, v in old.items() if k not in VERSION_FIELDS}
  base.update({k: v for k, v in dict(fields).items() if k not in VERSION_FIELDS})
  base.update(
    {
      "version_number": int(old.get("version_number") or 1) + 1,
      "parent_template_id": lineage_root(old),
      "is_current_version": True,
      "is_default": old.get("is_default", False),
    }
  )
  new = await gateway.create("ScorecardTemplates", base)
  await gateway.update("ScorecardTemplates", old["id"], {"is_current_version": False})
  logger.info("scorecard_template_versioned", template_id=new["id"], previous_id=old["id"], version=new["version_number"])
  return new


async def submit_scorecard(
  gateway: Gateway,
  account_id: str,
  template_id: str,
  answers: Any,
  *,
  completed_by: str | None = None,
  now: datetime | None = None,
) -> Row:
  await gateway.get("Accounts", account_id)
  template = await current_template_version(gateway, template_id)
  threshold = template.get("pass_threshold")
  result = score_scorecard(
    template,
    answers,
    pass_threshold=settings.scorecard_pass_threshold if threshold is None else threshold,
  )

  response = await gateway.create(
    "ScorecardResponses",
    {
      "account_id": account_id,
      "template_id": template["id"],
      "template_name": template.get("name"),
      "template_version_number": int(template.get("version_number") or 1),
      "completed_by": completed_by,
      "completed_date": now or now_utc(),
      **result.as_dict(),
    },
  )
  try:
    await gateway.update("Accounts", account_id, {"organization_score": result.normalized_score})
  except GatewayError as e:
    logger.warning("account_score_update_failed", account_id=account_id, error=e.message)
  logger.info(
    "scorecard_submitted",
    account_id=account_id,
    template_id=template["id"],
    normalized_score=result.normalized_score,
    is_pass=result.is_pass,
  )
  return response
