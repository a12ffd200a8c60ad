"""
Logging Middleware

Structured request logging with a per-request trace ID.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable

import structlog
from fastapi import Request, Response

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    """Filter structlog output below ``level`` and stamp events with an ISO timestamp."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=True,
    )


async def logging_middleware(request: Request, call_next: Callable) -> Response:
    """
    Bind a trace ID and request details to the logging context.

    The trace ID is echoed in ``X-Trace-ID`` and ``X-Request-ID``. A caller
    supplied ``X-Request-ID`` is reused.
    """
    trace_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        trace_id=trace_id,
        http_method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    start_time = time.time()

    try:
        response = await call_next(request)
    except Exception as exc:
        logger.error(
            "Request failed",
            error=str(exc),
            error_type=type(exc).__name__,
            duration=time.time() - start_time,
            exc_info=True,
        )
        raise

    logger.info(
        "Request completed",
        status_code=response.status_code,
        duration=time.time() - start_time,
    )

    response.headers["X-Trace-ID"] = trace_id
    response.headers["X-Request-ID"] = trace_id
    return response
