"""Request logging middleware.

One line per HTTP request with method, path, status code, latency, the
calling player (if any) and a short request ID. The request_id is placed on
request.state so routers can echo it in ApiResponse, and returned to the
client as `X-Request-Id`.

Log format:
    INFO [POST] /api/v1/trade/offers/123/accept → 200 (18ms) player=p-42 req_a1b2c3d4e5f6
"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("el.request")


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.request_id = f"req_{uuid.uuid4().hex[:12]}"

        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000

        # 5xx are storage / unexpected failures; surface them above INFO
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "[%s] %s → %d (%.0fms) player=%s %s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request.headers.get("X-Player-Id", "-"),
            request.state.request_id,
        )
        response.headers["X-Request-Id"] = request.state.request_id
        return response
