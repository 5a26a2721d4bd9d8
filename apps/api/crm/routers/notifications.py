from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from crm.deps import get_current_user, get_gateway
from crm.gateway import SqlGateway
from crm.notifications.service import (
  list_notifications,
  mark_all_read,
  mark_read,
  snooze_notification,
  unsnooze_notification,
)
from crm.schemas import Envelope, NotificationType, SnoozeIn
from crm.sweeps import run_all_sweeps

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=Envelope, response_model_exclude_none=True)
async def list_my_notifications(
  unread_only: bool = False,
  gateway: SqlGateway = Depends(get_gateway),
  user: dict[str, Any] = Depends(get_current_user),
) -> Envelope:
  rows = await list_notifications(gateway, user["id"], unread_only=unread_only)
  return Envelope(data=rows, count=len(rows))


@router.post("/read-all", response_model=Envelope, response_model_exclude_none=True)
async def mark_all_notifications_read(
  gateway: SqlGateway = Depends(get_gateway),
  user: dict[str, Any] = Depends(get_current_user),
) -> Envelope:
  n = await mark_all_read(gateway, user["id"])
  return Envelope(data={"updated": n})


@router.post("/refresh", response_model=Envelope, response_model_exclude_none=True)
async def refresh_notifications(gateway: SqlGateway = Depends(get_gateway)) -> Envelope:
  results = await run_all_sweeps(gateway)
  return Envelope(data=[r.as_dict() for r in results])


@router.get("/snoozes", response_model=Envelope, response_model_exclude_none=True)
async def list_snoozes(gateway: SqlGateway = Depends(get_gateway)) -> Envelope:
  rows = await gateway.list("NotificationSnoozes")
  return Envelope(data=rows, count=len(rows))


@router.post("/snoozes", response_model=Envelope, response_model_exclude_none=True)
async def create_snooze(
  payload: SnoozeIn,
  gateway: SqlGateway = Depends(get_gateway),
  user: dict[str, Any] = Depends(get_current_user),
) -> Envelope:
  row = await snooze_notification(
    gateway,
    payload.notification_type,
    payload.related_account_id,
    payload.snoozed_until,
    snoozed_by=user["email"],
  )
  return Envelope(data=row)


@router.delete("/snoozes", response_model=Envelope, response_model_exclude_none=True)
async def delete_snooze(
  notification_type: NotificationType,
  related_account_id: str | None = None,
  gateway: SqlGateway = Depends(get_gateway),
) -> Envelope:
  n = await unsnooze_notification(gateway, notification_type, related_account_id)
  return Envelope(data={"deleted": n})


@router.post("/{notification_id}/read", response_model=Envelope, response_model_exclude_none=True)
async def mark_notification_read(
  notification_id: str,
  gateway: SqlGateway = Depends(get_gateway),
  user: dict[str, Any] = Depends(get_current_user),
) -> Envelope:
  row = await gateway.get("Notifications", notification_id)
  if str(row["user_id"]) != str(user["id"]):
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
  return Envelope(data=await mark_read(gateway, notification_id))
