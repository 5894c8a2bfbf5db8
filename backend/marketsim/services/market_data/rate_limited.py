import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import httpx

from marketsim.core.config import settings
from marketsim.core.exceptions import (
    ProviderClientError,
    ProviderError,
    ProviderRateLimited,
    ProviderRetriesExhausted,
    ProviderServerError,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class _RateLimiter:
    """Serialises calls and keeps at least ``min_delay`` seconds between them."""

    def __init__(self, min_delay: float, sleep: Sleep) -> None:
        self.min_delay = min_delay
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._next_time = 0.0

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    async def wait(self) -> None:
        """Must be called with ``lock`` held."""
        now = time.monotonic()
        if now < self._next_time:
            await self._sleep(self._next_time - now)

    def mark_call(self) -> None:
        self._next_time = max(self._next_time, time.monotonic() + self.min_delay)


def classify_response(response: httpx.Response) -> Optional[ProviderError]:
    """None for a success, otherwise the provider error matching the status code."""
    status = response.status_code
    if status < 400:
        return None
    message = f"{response.request.method} {response.request.url.path} returned HTTP {status}"
    if status == 429:
        return ProviderRateLimited(message, status)
    if status >= 500:
        return ProviderServerError(message, status)
    return ProviderClientError(message, status)


class RateLimitedFetcher:
    """
    JSON-over-HTTP client for rate-limited providers.

    All calls go through one lock with a fixed delay between them. HTTP 429
    and 5xx (and network failures) are retried after fixed backoffs up to
    ``max_attempts`` calls; any other 4xx fails immediately.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        request_delay_sec: Optional[float] = None,
        rate_limit_backoff_sec: Optional[float] = None,
        server_error_backoff_sec: Optional[float] = None,
        max_attempts: Optional[int] = None,
        timeout_sec: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.request_delay_sec = (
            settings.PROVIDER_REQUEST_DELAY_SEC if request_delay_sec is None else request_delay_sec
        )
        self.rate_limit_backoff_sec = (
            settings.PROVIDER_RATE_LIMIT_BACKOFF_SEC
            if rate_limit_backoff_sec is None
            else rate_limit_backoff_sec
        )
        self.server_error_backoff_sec = (
            settings.PROVIDER_SERVER_ERROR_BACKOFF_SEC
            if server_error_backoff_sec is None
            else server_error_backoff_sec
        )
        self.max_attempts = settings.PROVIDER_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.timeout_sec = settings.PROVIDER_TIMEOUT_SEC if timeout_sec is None else timeout_sec
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._limiter = _RateLimiter(self.request_delay_sec, sleep)
        self.calls = 0

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_sec)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RateLimitedFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _call(self, url: str, params: Optional[dict]) -> httpx.Response:
        async with self._limiter.lock:
            await self._limiter.wait()
            try:
                return await self.client.get(url, params=params)
            finally:
                self.calls += 1
                self._limiter.mark_call()

    async def get_json(self, url: str, params: Optional[dict] = None) -> Any:
        """GET ``url`` and decode the JSON body, retrying throttling and server errors."""
        last_error: Optional[ProviderError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self._call(url, params)
            except httpx.TransportError as e:
                error: Optional[ProviderError] = ProviderServerError(f"GET {url} failed: {e}")
            else:
                error = classify_response(response)
                if error is None:
                    return response.json()

            if isinstance(error, ProviderClientError):
                raise error

            last_error = error
            if attempt >= self.max_attempts:
                break

            backoff = (
                self.rate_limit_backoff_sec
                if isinstance(error, ProviderRateLimited)
                else self.server_error_backoff_sec
            )
            logger.warning(f"{error} (attempt {attempt}/{self.max_attempts}), retrying in {backoff}s")
            await self._sleep(backoff)

        raise ProviderRetriesExhausted(
            f"Gave up after {self.max_attempts} attempts: {last_error}",
            last_error.status_code if last_error else None,
        )
