import logging
import os
import random
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# Context variable used by log filter to inject request id
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
logger = logging.getLogger("bistro.http")

LOG_SAMPLE_2XX = float(os.getenv("LOG_SAMPLE_2XX", "0.1"))


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag every request with an id and emit one access log line for it.

    Successful requests are sampled at ``LOG_SAMPLE_2XX``; 4xx and 5xx
    responses are always logged.
    """

    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_ctx.set(req_id)
        request.state.request_id = req_id
        start = time.perf_counter()
        try:
            response = await call_next(request)
            status = response.status_code
            if status >= 300 or random.random() < LOG_SAMPLE_2XX:
                log_fn = logger.error if status >= 500 else logger.info
                log_fn(
                    "%s %s -> %d",
                    request.method,
                    request.url.path,
                    status,
                    extra={
                        "route": request.url.path,
                        "status": status,
                        "latency_ms": int((time.perf_counter() - start) * 1000),
                        "user": getattr(request.state, "user_id", None),
                    },
                )
        finally:
            request_id_ctx.reset(token)
        response.headers["X-Request-ID"] = req_id
        return response
