"""Shared middleware for request ids and request metrics."""

import os
import time
import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from opstower_shared.request_context import set_request_id, generate_request_id, get_request_id
from opstower_shared.file_store import FileStore

logger = logging.getLogger("opstower.http")


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-Id") or generate_request_id()
        set_request_id(rid)
        response = await call_next(request)
        response.headers["X-Request-Id"] = rid
        return response


class RequestMetricsMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, data_dir: str):
        super().__init__(app)
        self.metrics_path = os.path.join(data_dir, "metrics", "request_metrics.jsonl")

    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration_ms = round((time.time() - start) * 1000, 2)
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms}ms)"
        )
        try:
            FileStore.append_jsonl(self.metrics_path, {
                "timestamp": time.time(),
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "request_id": get_request_id(),
            })
        except OSError as e:
            logger.warning(f"Could not record request metrics: {e}")
        return response
