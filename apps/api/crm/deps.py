from __future__ import annotations

import secrets
from typing import Any

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from crm.config import settings
from crm.db import SessionLocal
from crm.gateway import SqlGateway

USER_HEADER = "X-User-Email"


async def get_db() -> AsyncSession:
  async with SessionLocal() as session:
    yield session


async def get_gateway(db: AsyncSession = Depends(get_db)) -> SqlGateway:
  return SqlGateway(db)


async def get_current_user_email(x_user_email: str | None = Header(default=None, alias=USER_HEADER)) -> str | None:
  email = (x_user_email or "").strip()
  return email or None


async def get_current_user(
  gateway: SqlGateway = Depends(get_gateway),
  email: str | None = Depends(get_current_user_email),
) -> dict[str, Any]:
  if not email:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"{USER_HEADER} header required")
  for u in await gateway.list("Users"):
    if str(u.get("email") or "").strip().lower() == email.lower():
      return u
  raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")


async def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
  if not settings.cron_secret:
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Cron secret not configured")
  expected = f"Bearer {settings.cron_secret}"
  if not authorization or not secrets.compare_digest(authorization, expected):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
