from __future__ import annotations

from fastapi import APIRouter, Depends

from crm.deps import get_current_user_email, get_gateway
from crm.gateway import SqlGateway
from crm.schemas import EnrollIn, Envelope
from crm.sequences.service import enroll_account

router = APIRouter(prefix="/sequences", tags=["sequences"])


@router.post("/enroll", response_model=Envelope, response_model_exclude_none=True)
async def enroll_account_route(
  payload: EnrollIn,
  gateway: SqlGateway = Depends(get_gateway),
  user_email: str | None = Depends(get_current_user_email),
) -> Envelope:
  enrollment, tasks = await enroll_account(
    gateway,
    payload.sequence_id,
    payload.account_id,
    payload.started_date,
    current_user_email=user_email,
  )
  return Envelope(data={"enrollment": enrollment, "tasks": tasks}, count=len(tasks))
