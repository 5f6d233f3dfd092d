"""Logging setup for the flowpath service.

Records are written to stdout as ``key=value`` pairs. While an HTTP request is
being served, every record also carries the request id and the acting user
(from ``X-User-Id``), so a flow edit or traversal step can be traced back to
who made it.
"""

from __future__ import annotations

import logging
import logging.config
import uuid
from contextvars import ContextVar
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from flowpath.settings import get_settings

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
acting_user_ctx_var: ContextVar[str | None] = ContextVar("acting_user", default=None)

# Quiet by default; DEVELOPMENT_MODE turns SQL statement logging on
_SQL_LOGGER = "sqlalchemy.engine"


class RequestContextFilter(logging.Filter):
    """Stamp records with the current request id and acting user ("-" outside requests)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx_var.get() or "-"
        record.user_id = acting_user_ctx_var.get() or "-"
        return True


def _build_config(log_level: str, *, sql_level: str = "WARNING") -> dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"request_context": {"()": RequestContextFilter}},
        "formatters": {
            "kv": {
                "format": (
                    "level=%(levelname)s logger=%(name)s request_id=%(request_id)s "
                    "user=%(user_id)s message=%(message)s"
                )
            }
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "kv",
                "filters": ["request_context"],
                "level": log_level,
            }
        },
        "loggers": {_SQL_LOGGER: {"level": sql_level}},
        "root": {"handlers": ["stdout"], "level": log_level},
    }


def setup_logging(log_level: str | None = None) -> None:
    """Configure root logging from ``LOG_LEVEL`` unless a level is passed in."""
    settings = get_settings()
    level = (log_level or settings.log_level).upper()
    sql_level = "INFO" if settings.development_mode else "WARNING"
    logging.config.dictConfig(_build_config(level, sql_level=sql_level))


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind the request id and acting user for the duration of a request.

    An incoming ``X-Request-ID`` is reused, otherwise a UUID4 is minted; either
    way it is returned in the response's ``X-Request-ID`` header.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        user_id = (request.headers.get("X-User-Id") or "").strip() or None
        request_token = request_id_ctx_var.set(request_id)
        user_token = acting_user_ctx_var.set(user_id)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            acting_user_ctx_var.reset(user_token)
            request_id_ctx_var.reset(request_token)


__all__ = [
    "RequestContextFilter",
    "RequestContextMiddleware",
    "acting_user_ctx_var",
    "request_id_ctx_var",
    "setup_logging",
]
