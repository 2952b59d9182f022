from __future__ import annotations

import time
import uuid

from aiohttp import web

from logger import bind_context, get_logger, reset_context

LOGGER = get_logger("http")


@web.middleware
async def logging_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Inject a request_id into the logging context for each HTTP request."""

    request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex[:8]
    request["request_id"] = request_id
    tokens = bind_context(request_id=request_id)
    started = time.perf_counter()
    try:
        response = await handler(request)
    finally:
        reset_context(tokens)
    LOGGER.debug(
        "HTTP request served",
        request_id=request_id,
        payload={
            "method": request.method,
            "path": request.path,
            "status": response.status,
            "ms": round((time.perf_counter() - started) * 1000, 1),
        },
    )
    return response
