from __future__ import annotations

from fastapi import APIRouter, Depends

from crm.accounts.service import list_interactions, log_interaction
from crm.deps import get_current_user_email, get_gateway
from crm.gateway import SqlGateway
from crm.schemas import Envelope, InteractionIn

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.get("/{account_id}/interactions", response_model=Envelope, response_model_exclude_none=True)
async def list_interactions_route(account_id: str, gateway: SqlGateway = Depends(get_gateway)) -> Envelope:
  rows = await list_interactions(gateway, account_id)
  return Envelope(data=rows, count=len(rows))


@router.post("/{account_id}/interactions", response_model=Envelope, response_model_exclude_none=True)
async def log_interaction_route(
  account_id: str,
  payload: InteractionIn,
  gateway: SqlGateway = Depends(get_gateway),
  user_email: str | None = Depends(get_current_user_email),
) -> Envelope:
  row = await log_interaction(gateway, account_id, payload.model_dump(exclude_none=True), logged_by=user_email)
  return Envelope(data=row)
