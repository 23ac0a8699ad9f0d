"""
Access logging middleware

One ``request_started`` and one completion event per call, with the
authenticated user (when a route resolved one) and the duration.
"""
import json
import time
from typing import Any, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)

QUIET_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})

MASKED_KEYS = frozenset({"password", "token", "access_token", "secret", "api_key", "authorization"})

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def mask_sensitive(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: "***" if str(k).lower() in MASKED_KEYS else mask_sensitive(v) for k, v in data.items()}
    if isinstance(data, list):
        return [mask_sensitive(v) for v in data]
    return data


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    JSON bodies are included only when body logging is on (settings default in
    DEBUG, or an ``X-Log-Body`` header), truncated to LOG_REQUEST_BODY_MAX_BYTES.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.log_body_by_default = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT and settings.DEBUG
        self.max_body_bytes = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        fields = {"method": request.method, "path": request.url.path}
        if request.query_params:
            fields["query_params"] = dict(request.query_params)
        if request.method in _BODY_METHODS and self._wants_body(request):
            body = await self._read_body(request)
            if body is not None:
                fields["body"] = body
        logger.info("request_started", **fields)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration_ms=self._elapsed_ms(started),
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
                **fields,
            )
            raise

        duration_ms = self._elapsed_ms(started)
        response.headers["X-Process-Time"] = f"{duration_ms / 1000:.3f}"
        self._log_completion(request, response, duration_ms, fields)
        return response

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)

    def _wants_body(self, request: Request) -> bool:
        header = (request.headers.get("X-Log-Body") or "").lower()
        if header in {"true", "1", "yes"}:
            return True
        if header in {"false", "0", "no"}:
            return False
        return self.log_body_by_default

    async def _read_body(self, request: Request) -> Optional[Any]:
        if "application/json" not in request.headers.get("content-type", "").lower():
            return None
        raw = await request.body()
        if not raw:
            return None
        text = raw[: self.max_body_bytes].decode("utf-8", errors="ignore")
        try:
            return mask_sensitive(json.loads(text))
        except ValueError:
            # truncated payload
            return text

    @staticmethod
    def _log_completion(request: Request, response: Response, duration_ms: int, fields: dict) -> None:
        event = {
            "status_code": response.status_code,
            "duration_ms": duration_ms,
            "user_id": getattr(request.state, "user_id", None),
            **fields,
        }
        if response.status_code >= 500:
            logger.error("request_server_error", **event)
        elif response.status_code >= 400:
            logger.warning("request_client_error", **event)
        else:
            logger.info("request_completed", **event)
