from __future__ import annotations

from fastapi import APIRouter, Depends

from crm.deps import get_current_user_email, get_gateway
from crm.gateway import SqlGateway
from crm.schemas import Envelope, ScorecardSubmitIn, ScorecardTemplateUpdateIn
from crm.scorecards.service import list_template_versions, submit_scorecard, update_template_with_version

router = APIRouter(prefix="/scorecards", tags=["scorecards"])


@router.post("/submit", response_model=Envelope, response_model_exclude_none=True)
async def submit_scorecard_route(
  payload: ScorecardSubmitIn,
  gateway: SqlGateway = Depends(get_gateway),
  user_email: str | None = Depends(get_current_user_email),
) -> Envelope:
  row = await submit_scorecard(gateway, payload.account_id, payload.template_id, payload.answers, completed_by=user_email)
  return Envelope(data=row)


@router.put("/templates/{template_id}", response_model=Envelope, response_model_exclude_none=True)
async def update_template_route(
  template_id: str,
  payload: ScorecardTemplateUpdateIn,
  gateway: SqlGateway = Depends(get_gateway),
) -> Envelope:
  row = await update_template_with_version(gateway, template_id, payload.model_dump(exclude_unset=True))
  return Envelope(data=row)


@router.get("/templates/{template_id}/versions", response_model=Envelope, response_model_exclude_none=True)
async def template_versions_route(template_id: str, gateway: SqlGateway = Depends(get_gateway)) -> Envelope:
  rows = await list_template_versions(gateway, template_id)
  return Envelope(data=rows, count=len(rows))
