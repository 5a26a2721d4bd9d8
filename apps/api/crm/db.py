from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from crm.config import settings
from crm.models import Base

engine = create_async_engine(settings.database_url, pool_pre_ping=True)

SessionLocal = async_sessionmaker(
  engine,
  class_=AsyncSession,
  expire_on_commit=False,
  autoflush=False,
)


async def init_db() -> None:
  """Create any missing tables."""
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
  await engine.dispose()
