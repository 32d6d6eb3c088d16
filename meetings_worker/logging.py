from __future__ import annotations

import json
import logging
import os
import time
import uuid
from typing import Any, Dict

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra={"fields": {...}}`` is merged in."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        data: Dict[str, Any] = {
            "level": record.levelname,
            "ts": int(record.created * 1000),
            "logger": record.name,
            "message": record.getMessage(),
        }
        data.update(getattr(record, "fields", None) or {})
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(level: int | str | None = None) -> None:
    """Route everything through one JSON stream handler.

    The level comes from ``WORKER_LOG_LEVEL`` (name or number) unless given.
    """
    level = level if level is not None else os.getenv("WORKER_LOG_LEVEL", "INFO").strip().upper()
    if isinstance(level, str) and level.isdigit():
        level = int(level)
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    try:
        root.setLevel(level)
    except ValueError:
        root.setLevel(logging.INFO)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        request.state.request_id = request_id
        start = time.perf_counter()
        response = await call_next(request)
        logging.getLogger("app.access").info(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={
                "fields": {
                    "request_id": request_id,
                    "status": response.status_code,
                    "duration_ms": int((time.perf_counter() - start) * 1000),
                }
            },
        )
        response.headers["X-Request-ID"] = request_id
        return response
