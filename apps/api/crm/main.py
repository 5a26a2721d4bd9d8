from __future__ import annotations

import asyncio

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from crm.config import settings
from crm.db import SessionLocal, init_db
from crm.gateway import GatewayError, SqlGateway
from crm.middleware.logging import LoggingMiddleware, configure_logging
from crm.routers.accounts import router as accounts_router
from crm.routers.cron import router as cron_router
from crm.routers.data import router as data_router
from crm.routers.notifications import router as notifications_router
from crm.routers.scorecards import router as scorecards_router
from crm.routers.sequences import router as sequences_router
from crm.routers.tasks import router as tasks_router
from crm.scorecards.engine import ScorecardError
from crm.sweeps import run_all_sweeps
from crm.tasks.lifecycle import TransitionError

configure_logging(settings.log_level)
logger = structlog.get_logger()

app = FastAPI(
  title="Account Desk API",
  version="0.1.0",
  docs_url="/docs" if settings.api_docs_enabled else None,
  redoc_url="/redoc" if settings.api_docs_enabled else None,
  openapi_url="/openapi.json" if settings.api_docs_enabled else None,
)


def _error(status_code: int, message: str) -> JSONResponse:
  return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@app.exception_handler(GatewayError)
async def _gateway_error_handler(_, exc: GatewayError) -> JSONResponse:
  if exc.status_code >= 500:
    logger.error("gateway_error", error=exc.message)
  return _error(exc.status_code, exc.message)


@app.exception_handler(TransitionError)
async def _transition_error_handler(_, exc: TransitionError) -> JSONResponse:
  return _error(exc.status_code, exc.message)


@app.exception_handler(ScorecardError)
async def _scorecard_error_handler(_, exc: ScorecardError) -> JSONResponse:
  return _error(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def _request_validation_handler(_, exc: RequestValidationError) -> JSONResponse:
  errors = exc.errors()
  first = errors[0] if errors else {}
  where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
  msg = first.get("msg") or "Invalid request"
  return _error(400, f"{where}: {msg}" if where else msg)


@app.exception_handler(StarletteHTTPException)
async def _http_error_handler(_, exc: StarletteHTTPException) -> JSONResponse:
  return _error(exc.status_code, str(exc.detail))


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_credentials=True,
  allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
  allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)

app.include_router(tasks_router)
app.include_router(notifications_router)
app.include_router(scorecards_router)
app.include_router(sequences_router)
app.include_router(accounts_router)
app.include_router(data_router)
app.include_router(cron_router)


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version, "buildSha": settings.build_sha}


_sweep_loop_task: asyncio.Task | None = None


def _is_test_db() -> bool:
  try:
    db_name = settings.database_url.rsplit("/", 1)[-1]
    return "test" in db_name
  except Exception:
    return False


async def _sweep_loop() -> None:
  while True:
    await asyncio.sleep(max(30, int(settings.reconcile_interval_seconds)))
    async with SessionLocal() as db:
      try:
        await run_all_sweeps(SqlGateway(db))
      except Exception:
        # Never crash the app due to sweep failures.
        logger.exception("sweep_loop_failed")


@app.on_event("startup")
async def _startup() -> None:
  global _sweep_loop_task
  await init_db()
  logger.info("api_started", version=settings.app_version)
  if _is_test_db():
    return
  if settings.reconcile_loop_enabled and _sweep_loop_task is None:
    _sweep_loop_task = asyncio.create_task(_sweep_loop())


@app.on_event("shutdown")
async def _shutdown() -> None:
  global _sweep_loop_task
  if _sweep_loop_task is not None:
    _sweep_loop_task.cancel()
    _sweep_loop_task = None
