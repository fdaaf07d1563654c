"""
Per-request context: request id, timing, access log and body size limit.
"""

import logging
import time
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

logger = logging.getLogger("api.access")

REQUEST_ID_HEADER = "X-Request-ID"
MAX_BODY_SIZE = 1024 * 1024  # 1MB; processor webhooks are far smaller

# Probes hit these every few seconds
_QUIET_PREFIXES = ("/api/v1/health",)


def resolve_request_id(incoming: str | None) -> str:
    """Echo a caller-supplied id only when it is a valid UUID."""
    if incoming:
        try:
            return str(uuid.UUID(incoming))
        except ValueError:
            pass
    return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns a request id, rejects oversized bodies and logs each request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        start = time.perf_counter()

        content_length = request.headers.get("content-length")
        if (
            request.method in ("POST", "PUT", "PATCH")
            and content_length
            and content_length.isdigit()
            and int(content_length) > MAX_BODY_SIZE
        ):
            response: Response = JSONResponse(
                status_code=413, content={"detail": "Request body too large (max 1MB)"}
            )
        else:
            response = await call_next(request)

        duration_ms = round((time.perf_counter() - start) * 1000, 1)
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"

        path = request.url.path
        if not path.startswith(_QUIET_PREFIXES):
            logger.info(
                "%s %s %s %.1fms",
                request.method,
                path,
                response.status_code,
                duration_ms,
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
        return response
