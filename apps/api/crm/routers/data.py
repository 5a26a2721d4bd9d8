from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request

from crm.deps import get_current_user_email, get_gateway
from crm.gateway import SqlGateway, ValidationError, bulk_upsert
from crm.models import COLLECTIONS
from crm.notifications.service import snooze_notification
from crm.schemas import DataActionIn, Envelope
from crm.scorecards.service import update_template_with_version
from crm.tasks.lifecycle import create_task, delete_task, update_task

router = APIRouter(prefix="/api/data", tags=["data"])

_ALIASES = {name.lower(): name for name in COLLECTIONS}


def resolve_collection(name: str) -> str:
  """`accounts`, `notificationSnoozes` and `notification_snoozes` all name a collection."""
  key = name.replace("_", "").replace("-", "").lower()
  if key in _ALIASES:
    return _ALIASES[key]
  raise ValidationError(f"Unknown collection: {name}")


def _query_value(v: str) -> Any:
  if v == "null":
    return None
  return v


async def _create(gateway: SqlGateway, collection: str, data: dict[str, Any], user_email: str | None) -> dict[str, Any]:
  if collection == "Tasks":
    return await create_task(gateway, data, current_user_email=user_email)
  return await gateway.create(collection, data)


async def _update(gateway: SqlGateway, collection: str, id: str, data: dict[str, Any], user_email: str | None) -> dict[str, Any]:
  if collection == "Tasks":
    return await update_task(gateway, id, data, current_user_email=user_email)
  return await gateway.update(collection, id, data)


def _record(data: Any) -> dict[str, Any]:
  if not isinstance(data, dict):
    raise ValidationError("data must be an object")
  return data


@router.get("/{collection}", response_model=Envelope, response_model_exclude_none=True)
async def read_collection(collection: str, request: Request, gateway: SqlGateway = Depends(get_gateway)) -> Envelope:
  name = resolve_collection(collection)
  params = {k: _query_value(v) for k, v in request.query_params.items()}
  id = params.pop("id", None)
  if id:
    return Envelope(data=await gateway.get(name, id))
  rows = await gateway.filter(name, params) if params else await gateway.list(name)
  return Envelope(data=rows, count=len(rows))


@router.post("/{collection}", response_model=Envelope, response_model_exclude_none=True)
async def write_collection(
  collection: str,
  payload: DataActionIn,
  gateway: SqlGateway = Depends(get_gateway),
  user_email: str | None = Depends(get_current_user_email),
) -> Envelope:
  name = resolve_collection(collection)
  action = payload.action

  if action == "create":
    return Envelope(data=await _create(gateway, name, _record(payload.data), user_email))

  if action == "upsert":
    data = _record(payload.data)
    key_value = data.get(payload.key)
    existing = await gateway.filter(name, {payload.key: key_value}) if key_value not in (None, "") else []
    if existing:
      return Envelope(data=await _update(gateway, name, existing[0]["id"], data, user_email))
    return Envelope(data=await _create(gateway, name, data, user_email))

  if action == "bulk_upsert":
    if not isinstance(payload.data, list):
      raise ValidationError("data must be a list of records")
    if name == "Tasks":
      raise ValidationError("Tasks cannot be bulk upserted")
    result = await bulk_upsert(gateway, name, payload.data, key=payload.key)
    return Envelope(data=result.as_dict(), count=result.created + result.updated)

  if action == "update_with_version":
    if name != "ScorecardTemplates":
      raise ValidationError("update_with_version only applies to ScorecardTemplates")
    data = dict(_record(payload.data))
    id = data.pop("id", None)
    if not id:
      raise ValidationError("id is required")
    return Envelope(data=await update_template_with_version(gateway, id, data))

  # snooze
  if name != "NotificationSnoozes":
    raise ValidationError("snooze only applies to NotificationSnoozes")
  data = _record(payload.data)
  until = data.get("snoozed_until")
  if not until or not data.get("notification_type"):
    raise ValidationError("notification_type and snoozed_until are required")
  row = await snooze_notification(
    gateway,
    data["notification_type"],
    data.get("related_account_id"),
    until,
    snoozed_by=data.get("snoozed_by") or user_email,
  )
  return Envelope(data=row)


@router.put("/{collection}", response_model=Envelope, response_model_exclude_none=True)
async def update_collection(
  collection: str,
  payload: dict[str, Any] = Body(...),
  gateway: SqlGateway = Depends(get_gateway),
  user_email: str | None = Depends(get_current_user_email),
) -> Envelope:
  name = resolve_collection(collection)
  data = dict(payload)
  id = data.pop("id", None)
  if not id:
    raise ValidationError("id is required")
  return Envelope(data=await _update(gateway, name, id, data, user_email))


@router.delete("/{collection}", response_model=Envelope, response_model_exclude_none=True)
async def delete_from_collection(collection: str, id: str, gateway: SqlGateway = Depends(get_gateway)) -> Envelope:
  name = resolve_collection(collection)
  if name == "Tasks":
    await delete_task(gateway, id)
  else:
    await gateway.delete(name, id)
  return Envelope(data={"id": id})
