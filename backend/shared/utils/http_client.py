"""
Async HTTP client wrapper for provider requests.
Includes retry logic, timeout management, and metrics collection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

import httpx

from shared.errors import MalformedPayload, UpstreamRejected, UpstreamUnavailable
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_LATENCY, PROVIDER_REQUESTS

logger = get_logger(__name__)

ResponseHook = Callable[[httpx.Response], None]


class ProviderHTTPClient:
    """
    Async HTTP client tailored for sports data provider APIs.

    Retries 429 (honouring Retry-After) and transient 5xx/network errors up to
    `max_retries` attempts, fails fast on any other 4xx. Failures surface as
    UpstreamUnavailable / UpstreamRejected / MalformedPayload.
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_s: float = 10.0,
        max_retries: int = 3,
        max_retry_after_s: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._default_headers = headers or {}
        self._timeout = timeout_s
        self._max_retries = max(1, max_retries)
        self._max_retry_after_s = max_retry_after_s
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None
        self._hooks: list[ResponseHook] = []

    @property
    def provider(self) -> str:
        return self._provider

    def add_response_hook(self, hook: ResponseHook) -> None:
        """Register a callback run on every successful response (e.g. quota headers)."""
        self._hooks.append(hook)

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        self._get_client()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._default_headers,
                timeout=httpx.Timeout(self._timeout, connect=5.0),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _retry_after(self, resp: httpx.Response, attempt: int) -> float:
        raw = resp.headers.get("Retry-After")
        try:
            delay = float(raw) if raw is not None else float(attempt)
        except ValueError:
            delay = float(attempt)
        return max(0.0, min(delay, self._max_retry_after_s))

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        GET `path` and return the decoded JSON object.

        Raises:
            UpstreamRejected: Non-retryable 4xx.
            UpstreamUnavailable: Network/timeout/5xx/429 after all attempts.
            MalformedPayload: Body is not a JSON object.
        """
        client = self._get_client()

        last_error = "no attempt made"
        last_status: Optional[int] = None

        for attempt in range(1, self._max_retries + 1):
            start_time = time.perf_counter()
            try:
                resp = await client.get(path, params=params)
            except httpx.TimeoutException:
                last_error = "timeout"
                PROVIDER_REQUESTS.labels(provider=self._provider, endpoint=path, status="timeout").inc()
                logger.warning("provider_timeout", provider=self._provider, path=path, attempt=attempt)
                if attempt < self._max_retries:
                    await self._sleep(1.0 * attempt)
                continue
            except httpx.TransportError as exc:
                last_error = f"network error: {exc}"
                PROVIDER_REQUESTS.labels(provider=self._provider, endpoint=path, status="error").inc()
                logger.warning(
                    "provider_network_error",
                    provider=self._provider,
                    path=path,
                    error=str(exc),
                    attempt=attempt,
                )
                if attempt < self._max_retries:
                    await self._sleep(1.0 * attempt)
                continue
            finally:
                PROVIDER_LATENCY.labels(provider=self._provider).observe(
                    time.perf_counter() - start_time
                )

            PROVIDER_REQUESTS.labels(
                provider=self._provider, endpoint=path, status=str(resp.status_code)
            ).inc()
            last_status = resp.status_code

            if resp.status_code == 429:
                last_error = "rate limited"
                logger.warning("provider_rate_limited", provider=self._provider, path=path, attempt=attempt)
                if attempt < self._max_retries:
                    await self._sleep(self._retry_after(resp, attempt))
                continue

            if resp.status_code >= 500:
                last_error = f"server error {resp.status_code}"
                logger.warning(
                    "provider_server_error",
                    provider=self._provider,
                    path=path,
                    status=resp.status_code,
                    attempt=attempt,
                )
                if attempt < self._max_retries:
                    await self._sleep(1.0 * attempt)
                continue

            if resp.status_code >= 400:
                logger.error(
                    "provider_http_error",
                    provider=self._provider,
                    path=path,
                    status=resp.status_code,
                )
                raise UpstreamRejected(
                    self._provider,
                    f"{path} rejected with {resp.status_code}",
                    status=resp.status_code,
                )

            try:
                data = resp.json()
            except ValueError as exc:
                raise MalformedPayload(self._provider, f"{path} returned invalid JSON: {exc}") from exc
            if not isinstance(data, dict):
                raise MalformedPayload(self._provider, f"{path} returned {type(data).__name__}, expected object")

            for hook in self._hooks:
                hook(resp)

            logger.debug(
                "provider_request_success",
                provider=self._provider,
                path=path,
                status=resp.status_code,
                latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            return data

        raise UpstreamUnavailable(
            self._provider,
            f"{path} failed after {self._max_retries} attempts ({last_error})",
            status=last_status,
        )
