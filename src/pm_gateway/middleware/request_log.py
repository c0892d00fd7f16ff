"""Request logging middleware.

Every request gets a short request ID in request.state (echoed in the
ApiResponse envelope and the X-Request-ID header) and one log line:

    INFO [POST] /api/v1/payments/withdraw → 200 (412ms) req_a1b2c3d4e5f6

Health checks are not logged.
"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("betipredict.request")

QUIET_PATHS = frozenset({"/health"})


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.request_id = f"req_{uuid.uuid4().hex[:12]}"

        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request.state.request_id

        if request.url.path not in QUIET_PATHS:
            log = logger.warning if response.status_code >= 500 else logger.info
            log(
                "[%s] %s → %d (%.0fms) %s",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
                request.state.request_id,
            )
        return response
