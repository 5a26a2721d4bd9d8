from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
  structlog.configure(
    processors=[
      structlog.contextvars.merge_contextvars,
      structlog.processors.add_log_level,
      structlog.processors.TimeStamper(fmt="iso"),
      structlog.processors.format_exc_info,
      structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
    cache_logger_on_first_use=True,
  )


class LoggingMiddleware(BaseHTTPMiddleware):
  """Request/response logging bound to a request id."""

  async def dispatch(self, request: Request, call_next: Callable) -> Response:
    start = time.perf_counter()
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
      request_id=request_id,
      method=request.method,
      path=request.url.path,
    )
    logger.debug("request_started")

    try:
      response = await call_next(request)
    except Exception as exc:
      logger.exception("request_failed", error=str(exc), duration_ms=round((time.perf_counter() - start) * 1000, 2))
      raise

    elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
    logger.info("request_completed", status_code=response.status_code, duration_ms=elapsed_ms)
    response.headers[REQUEST_ID_HEADER] = request_id
    response.headers["X-Process-Time"] = str(elapsed_ms)
    return response
