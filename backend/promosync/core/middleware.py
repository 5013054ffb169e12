"""Custom ASGI middleware used by the cache read API."""

from __future__ import annotations

import re
import time
import uuid
from urllib.parse import unquote

from fastapi import Request, Response
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from promosync.core.logging import location_ctx_var, request_id_ctx_var

# routing has not run yet, so path params are not available here
STORE_PATH_RE = re.compile(r"^/api/stores/([^/]+)")


def location_from_path(path: str) -> str | None:
    match = STORE_PATH_RE.match(path)
    return unquote(match.group(1)) if match else None


class RequestContextLogMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and its store, then logs one access line."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        location_id = location_from_path(request.url.path)
        request_token = request_id_ctx_var.set(request_id)
        location_token = location_ctx_var.set(location_id) if location_id else None
        start = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            status_code = response.status_code if response else 500
            logger.bind(
                method=request.method,
                path=str(request.url.path),
                location_id=location_id or "-",
                status=status_code,
                duration_ms=round(duration_ms, 2),
            ).info("request_completed")
            if response is not None:
                response.headers.setdefault("X-Request-ID", request_id)
            if location_token is not None:
                location_ctx_var.reset(location_token)
            request_id_ctx_var.reset(request_token)
