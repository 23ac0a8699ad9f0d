"""
Base class for outbound REST API clients

Transport concerns shared by the integrations:
- transient failures (timeouts, network errors, 429 and 5xx) are retried with backoff
- error statuses are mapped onto APIError subclasses
- every retry is logged with the attempt number
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.logging_config import get_logger


logger = get_logger(__name__)


@dataclass
class APIResponse:
    status_code: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    elapsed_ms: float = 0.0
    request_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400


class APIError(Exception):
    """Raised for any failed outbound call"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[APIResponse] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response = response
        self.request_id = response.request_id if response else None
        super().__init__(message)

    def __str__(self):
        if self.status_code:
            return f"{self.message} (status {self.status_code})"
        return self.message


class AuthenticationError(APIError):
    pass


class RateLimitError(APIError):
    pass


class ServerError(APIError):
    pass


class RetryableAPIError(APIError):
    """Transient status; raised inside the retry loop only"""


RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

_ERROR_BY_STATUS = {
    401: AuthenticationError,
    403: AuthenticationError,
    429: RateLimitError,
}


def _error_message(response: APIResponse) -> str:
    if isinstance(response.data, dict):
        for key in ("message", "error", "detail", "code"):
            if response.data.get(key):
                return str(response.data[key])
    return f"API request failed with status {response.status_code}"


def _raise_for_status(response: APIResponse) -> None:
    error_class = _ERROR_BY_STATUS.get(response.status_code)
    if error_class is None:
        error_class = ServerError if response.status_code >= 500 else APIError
    raise error_class(_error_message(response), status_code=response.status_code, response=response)


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "api_request_retry",
        attempt=state.attempt_number,
        wait_seconds=round(state.next_action.sleep, 2) if state.next_action else None,
        error=str(exc),
    )


class BaseAPIClient:
    """
    Async HTTP client with retries

    Subclasses add the endpoint-specific calls.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: endpoint root, a trailing slash is stripped
            timeout: per request timeout in seconds
            max_retries: retries after the first attempt
            retry_delay: base backoff in seconds
            headers: default headers merged into every request
            transport: custom httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.default_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "OrderCancellationService/1.0",
            **(headers or {}),
        }
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _build_url(self, endpoint: str) -> str:
        endpoint = endpoint.lstrip("/")
        return f"{self.base_url}/{endpoint}" if endpoint else self.base_url

    async def _send_once(self, method: str, url: str, **kwargs) -> APIResponse:
        started = time.perf_counter()
        raw = await self._get_client().request(method, url, **kwargs)
        data = None
        if "application/json" in raw.headers.get("content-type", ""):
            try:
                data = raw.json()
            except ValueError:
                data = None
        response = APIResponse(
            status_code=raw.status_code,
            data=data,
            headers=dict(raw.headers),
            elapsed_ms=(time.perf_counter() - started) * 1000,
            request_id=raw.headers.get("x-request-id"),
        )
        logger.debug(
            "api_response",
            method=method,
            url=url,
            status_code=response.status_code,
            elapsed_ms=round(response.elapsed_ms, 1),
        )

        if response.status_code in RETRY_STATUS_CODES:
            retry_after = response.headers.get("retry-after")
            if response.status_code == 429 and retry_after:
                try:
                    await asyncio.sleep(float(retry_after))
                except ValueError:
                    pass
            raise RetryableAPIError(
                f"Transient API error with status {response.status_code}",
                status_code=response.status_code,
                response=response,
            )
        if response.is_error:
            _raise_for_status(response)
        return response

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> APIResponse:
        """
        Send one request with retries

        Raises:
            APIError: on a non-retryable error status, or once retries are exhausted
        """
        url = self._build_url(endpoint)
        request_headers = {**self.default_headers, **(headers or {})}

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay, max=self.retry_delay * 8),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError, RetryableAPIError)),
            before_sleep=_log_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._send_once(method, url, json=json_data, headers=request_headers)
        except httpx.TimeoutException as exc:
            raise APIError(f"Request timeout after {self.timeout}s") from exc
        except httpx.NetworkError as exc:
            raise APIError(f"Network error: {exc}") from exc
        except RetryableAPIError as exc:
            _raise_for_status(exc.response)

    async def post(self, endpoint: str, json_data: Optional[Dict[str, Any]] = None, **kwargs) -> APIResponse:
        return await self._request("POST", endpoint, json_data=json_data, **kwargs)
