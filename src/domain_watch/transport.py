"""
Retrying transport for the domain watch system.

Every outbound request of both verdict sources goes through this module, so
both inherit the same pacing and retry behavior:

- a randomized delay, uniform in [jitter_min, jitter_max), before each attempt
- up to ``max_retries`` additional attempts on a non-2xx response or a
  transport-level failure, with a fixed pause between attempts
- ``ExhaustedRetriesError`` carrying the last status code or error once all
  attempts have failed
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx

from .audit_logger import AuditLogger
from .config import RetryConfig
from .enums import LogLevel
from .exceptions import ExhaustedRetriesError


@dataclass
class TransportRequest:
    """An outbound HTTP request description."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    params: Optional[dict[str, str]] = None
    json: Optional[Any] = None


class RetryingTransport:
    """
    Shared outbound HTTP transport with jittered pacing and bounded retries.

    The transport owns a single ``httpx.AsyncClient`` unless one is injected,
    in which case the caller stays responsible for closing it.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[AuditLogger] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize the transport.

        Args:
            config: Retry and timeout configuration
            client: Optional pre-built httpx client (e.g. with a mock transport)
            logger: Optional audit logger
            sleep: Coroutine used for all waits (defaults to asyncio.sleep)
            rng: Random source for the pre-attempt delay
        """
        self._config = config or RetryConfig()
        self._client = client
        self._owns_client = client is None
        self._logger = logger
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    async def __aenter__(self) -> "RetryingTransport":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    @property
    def config(self) -> RetryConfig:
        return self._config

    @property
    def max_attempts(self) -> int:
        """Total attempts per request: the first one plus the retries."""
        return self._config.max_retries + 1

    def jitter_delay(self) -> float:
        """Draw the pre-attempt delay, uniform in [jitter_min, jitter_max)."""
        low = self._config.jitter_min_seconds
        high = self._config.jitter_max_seconds
        return low + self._rng.random() * (high - low)

    async def execute(self, request: TransportRequest) -> httpx.Response:
        """
        Send a request, retrying on non-2xx responses and transport errors.

        Args:
            request: The request to send

        Returns:
            The first successful (2xx) response

        Raises:
            ExhaustedRetriesError: If every attempt failed
        """
        client = self._ensure_client()
        last_status_code: Optional[int] = None
        last_error: Optional[str] = None
        attempt = 0

        while attempt < self.max_attempts:
            attempt += 1
            await self._sleep(self.jitter_delay())

            try:
                response = await client.request(
                    request.method,
                    request.url,
                    headers=request.headers,
                    params=request.params,
                    json=request.json,
                )
            except httpx.HTTPError as e:
                last_status_code = None
                last_error = f"{type(e).__name__}: {e}"
                self._log(
                    LogLevel.WARN,
                    f"Request attempt {attempt}/{self.max_attempts} failed",
                    {"url": request.url, "error": last_error},
                )
            else:
                if response.is_success:
                    return response
                last_status_code = response.status_code
                last_error = None
                self._log(
                    LogLevel.WARN,
                    f"Request attempt {attempt}/{self.max_attempts} returned HTTP {response.status_code}",
                    {"url": request.url, "status_code": response.status_code},
                )

            if attempt < self.max_attempts:
                await self._sleep(self._config.retry_delay_seconds)

        error = ExhaustedRetriesError(
            url=request.url,
            attempts=attempt,
            last_status_code=last_status_code,
            last_error=last_error,
        )
        if self._logger:
            self._logger.log_error(
                "RetryingTransport",
                error.message,
                request_url=request.url,
                response_status_code=last_status_code,
                additional_data={"attempts": attempt},
            )
        raise error

    async def aclose(self) -> None:
        """Close the owned HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=True,
                timeout=httpx.Timeout(self._config.timeout_seconds),
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, "RetryingTransport", message, data)
