"""Shared aiohttp client with circuit breaker protection and rate limiting."""

import asyncio
import logging
from typing import Any

import aiohttp

from core.errors import PipelineError
from core.logging.context import get_log_context
from core.resilience.circuit_breaker import CircuitBreakerConfig, get_circuit_breaker
from core.resilience.rate_limiter import RateLimiterConfig, get_rate_limiter
from core.types import ErrorCategory
from registry_sync.metrics import http_request_duration_seconds

logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 2.0


class ApiError(PipelineError):
    """Non-success response or transport failure from an upstream API."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        retry_after: float | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause, context={"status_code": status_code})
        self.status_code = status_code
        self.category = category
        self.retry_after = retry_after


# (label, category) per status code
_STATUS_MAP: dict[int, tuple[str, ErrorCategory]] = {
    401: ("Unauthorized", ErrorCategory.AUTH),
    403: ("Forbidden", ErrorCategory.PERMANENT),
    404: ("Not found", ErrorCategory.PERMANENT),
    408: ("Request timeout", ErrorCategory.TRANSIENT),
    409: ("Conflict", ErrorCategory.PERMANENT),
    422: ("Unprocessable", ErrorCategory.PERMANENT),
    429: ("Rate limited", ErrorCategory.TRANSIENT),
}


def classify_api_error(status: int, url: str, retry_after: float | None = None) -> ApiError:
    """Map an HTTP status to an ApiError; unlisted 4xx are permanent, the rest transient."""
    entry = _STATUS_MAP.get(status)
    if entry:
        label, category = entry
    elif 400 <= status < 500:
        label, category = "Client error", ErrorCategory.PERMANENT
    else:
        label, category = "Server error", ErrorCategory.TRANSIENT
    return ApiError(
        f"{label} ({status}): {url}",
        status_code=status,
        category=category,
        retry_after=retry_after,
    )


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class BaseApiClient:
    """
    Async JSON client for one upstream service.

    Subclasses supply ``service_name`` and call ``_request``. A session can
    be injected (shared connector, tests); otherwise one is created lazily
    and owned by the client.
    """

    service_name = "api"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 30,
        max_concurrent: int = 20,
        headers: dict[str, str] | None = None,
        circuit_config: CircuitBreakerConfig | None = None,
        rate_config: RateLimiterConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else ""
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(
                f"{type(self).__name__} base_url must start with http:// or https://, "
                f"got: {self.base_url!r}"
            )

        self.timeout_seconds = timeout_seconds
        self.max_concurrent = max_concurrent
        self._default_headers = {"Accept": "application/json", **(headers or {})}

        self._session = session
        self._owns_session = session is None
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._closed = False
        self._circuit = get_circuit_breaker(self.service_name, circuit_config)
        self._rate_limiter = (
            get_rate_limiter(self.service_name, rate_config) if rate_config else None
        )

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._closed:
            raise RuntimeError(f"{type(self).__name__} is closed, cannot create new session")
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_concurrent,
                limit_per_host=self.max_concurrent,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers=self._default_headers,
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        self._closed = True
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            await asyncio.sleep(0)
        self._session = None

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    @staticmethod
    def _get_context_ids() -> dict[str, str]:
        return {k: v for k, v in get_log_context().items() if v}

    def _observe(self, status: int | str, duration: float) -> None:
        http_request_duration_seconds.labels(
            service=self.service_name, status=str(status)
        ).observe(duration)

    async def _handle_error_response(
        self, response: aiohttp.ClientResponse, url: str, method: str, duration: float
    ) -> None:
        """Read the error body, classify, record circuit failure, and raise."""
        try:
            body = await response.text()
            body_log = body[:500] + "..." if len(body) > 500 else body
        except (aiohttp.ClientError, UnicodeDecodeError):
            body_log = "<unable to read response body>"

        error = classify_api_error(
            response.status, url, _parse_retry_after(response.headers.get("Retry-After"))
        )
        self._circuit.record_failure(error)
        logger.warning(
            "API request failed",
            extra={
                **self._get_context_ids(),
                "service": self.service_name,
                "api_method": method,
                "api_url": url,
                "http_status": response.status,
                "error_category": error.category.value,
                "response_body": body_log,
                "duration_seconds": round(duration, 3),
            },
        )
        raise error

    async def _request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        data: str | bytes | None = None,
        headers: dict[str, str] | None = None,
        not_found_ok: bool = False,
        parse: str = "json",
    ) -> Any:
        """
        Perform one request and return the decoded body.

        Args:
            url: Absolute URL (see ``self.url``)
            not_found_ok: Return None on 404 instead of raising
            parse: ``json``, ``text`` or ``none``

        Raises:
            ApiError: Non-2xx status, timeout or connection failure
            CircuitOpenError: Circuit for this service is open
        """
        session = await self._ensure_session()
        ctx = self._get_context_ids()

        self._circuit.check()
        if self._rate_limiter is not None:
            await self._rate_limiter.acquire()

        async with self._semaphore:
            loop = asyncio.get_running_loop()
            start_time = loop.time()
            try:
                async with session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    data=data,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as response:
                    duration = loop.time() - start_time
                    self._observe(response.status, duration)

                    if response.status == 404 and not_found_ok:
                        self._circuit.record_success()
                        return None
                    if response.status >= 400:
                        await self._handle_error_response(response, url, method, duration)

                    if parse == "json":
                        body = await response.json(content_type=None)
                    elif parse == "text":
                        body = await response.text()
                    else:
                        body = None
                    self._circuit.record_success()

                    slow = duration > SLOW_REQUEST_SECONDS
                    logger.log(
                        logging.INFO if slow else logging.DEBUG,
                        "Slow API request" if slow else "API request succeeded",
                        extra={
                            **ctx,
                            "service": self.service_name,
                            "api_method": method,
                            "http_status": response.status,
                            "duration_seconds": round(duration, 3),
                        },
                    )
                    return body

            except TimeoutError as e:
                duration = loop.time() - start_time
                self._observe("timeout", duration)
                error = ApiError(
                    f"Timeout after {self.timeout_seconds}s: {url}",
                    category=ErrorCategory.TRANSIENT,
                    cause=e,
                )
                self._circuit.record_failure(error)
                logger.warning(
                    "API request timeout",
                    extra={
                        **ctx,
                        "service": self.service_name,
                        "api_method": method,
                        "api_url": url,
                        "timeout_seconds": self.timeout_seconds,
                        "error_category": "transient",
                    },
                )
                raise error from e

            except aiohttp.ClientError as e:
                duration = loop.time() - start_time
                self._observe("error", duration)
                error = ApiError(
                    f"Connection error: {e}",
                    category=ErrorCategory.TRANSIENT,
                    cause=e,
                )
                self._circuit.record_failure(error)
                logger.error(
                    "API connection error",
                    exc_info=True,
                    extra={
                        **ctx,
                        "service": self.service_name,
                        "api_method": method,
                        "api_url": url,
                        "error_category": "transient",
                    },
                )
                raise error from e


__all__ = ["ApiError", "BaseApiClient", "classify_api_error"]
