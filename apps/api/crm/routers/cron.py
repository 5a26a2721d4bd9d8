from __future__ import annotations

from fastapi import APIRouter, Depends

from crm.deps import get_gateway, require_cron_secret
from crm.gateway import SqlGateway
from crm.schemas import Envelope
from crm.sweeps import run_all_sweeps

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.api_route("/refresh-notifications", methods=["GET", "POST"], response_model=Envelope, response_model_exclude_none=True)
async def cron_refresh_notifications(gateway: SqlGateway = Depends(get_gateway)) -> Envelope:
  results = await run_all_sweeps(gateway)
  return Envelope(data=[r.as_dict() for r in results])
