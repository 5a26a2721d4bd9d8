from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./crm_test.db")

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

from crm.config import settings
from crm.db import SessionLocal, engine
from crm.gateway import SqlGateway
from crm.main import app
from crm.models import Base


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_db() -> None:
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.drop_all)
    await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
async def db() -> None:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  if "test" not in db_name:
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. crm_test)."
    )
  await _reset_db()
  yield
  await engine.dispose()


@pytest.fixture
async def gateway(db) -> SqlGateway:
  async with SessionLocal() as session:
    yield SqlGateway(session)


@pytest.fixture
async def client(db) -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


async def make_user(gateway: SqlGateway, email: str, **fields: Any) -> dict[str, Any]:
  return await gateway.create("Users", {"email": email, "full_name": email.split("@")[0], **fields})


async def make_account(gateway: SqlGateway, name: str, **fields: Any) -> dict[str, Any]:
  return await gateway.create("Accounts", {"name": name, **fields})


async def make_task(gateway: SqlGateway, title: str, **fields: Any) -> dict[str, Any]:
  return await gateway.create("Tasks", {"title": title, **fields})
