"""
Request correlation id

The id comes from ``X-Request-ID`` or is generated, is stored on
``request.state`` for the error envelopes, bound to structlog contextvars
for every log line of the request, and echoed on the response.
"""
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


REQUEST_ID_HEADER = "X-Request-ID"


def client_ip(request: Request) -> str:
    # first hop of X-Forwarded-For is the original client
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip(request),
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
