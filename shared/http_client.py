"""
HTTP client utilities for talking to the job store and upload targets.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from shared.errors import TransportError
from shared.logging_utils import setup_logging

logger = setup_logging("http-client")

MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_CAP_SECONDS = 5.0

# Failures of the request itself; HTTP error statuses are never retried.
TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


@dataclass
class HTTPResponse:
    """Fully-read response; the connection is already released."""

    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        if not self.body:
            return {}
        return json.loads(self.body)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


def backoff_delay(attempt: int) -> float:
    """Delay before retrying after the given (1-based) failed attempt: 1s, 2s, 4s... capped at 5s."""
    return min(BACKOFF_BASE_SECONDS * (2 ** (attempt - 1)), BACKOFF_CAP_SECONDS)


class AsyncHTTPClient:
    """Async HTTP client with transport-level retry."""

    def __init__(self, timeout: float = 30, max_attempts: int = MAX_ATTEMPTS) -> None:
        """Initialize HTTP client."""
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_attempts = max_attempts
        self.session: aiohttp.ClientSession | None = None
        self._sleep = asyncio.sleep

    async def __aenter__(self) -> "AsyncHTTPClient":
        """Enter async context manager."""
        self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        if self.session:
            await self.session.close()
            self.session = None

    @staticmethod
    async def _prepare_request(coro_or_ctx: Any) -> Any:
        """Normalize aiohttp request result to an async context manager."""
        if asyncio.iscoroutine(coro_or_ctx):
            return await coro_or_ctx
        return coro_or_ctx

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        data: bytes | None = None,
    ) -> HTTPResponse:
        """Perform a single request and read the whole body. Never raises on HTTP status."""
        if not self.session:
            raise RuntimeError("HTTP client not initialized. Use async context manager.")

        kwargs: dict[str, Any] = {"headers": headers}
        if json_body is not None:
            kwargs["json"] = json_body
        if data is not None:
            kwargs["data"] = data

        request_ctx = await self._prepare_request(self.session.request(method, url, **kwargs))
        async with request_ctx as response:
            body = await response.read()
            return HTTPResponse(
                status=response.status,
                body=body or b"",
                headers=dict(response.headers or {}),
                url=url,
            )

    async def request_with_retry(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        data: bytes | None = None,
    ) -> HTTPResponse:
        """
        Perform a request, retrying only when the request itself fails.

        A non-2xx response is returned to the caller untouched.

        Raises:
            TransportError: when every attempt failed at the transport level
        """
        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.request(method, url, headers=headers, json_body=json_body, data=data)
            except TRANSPORT_ERRORS as exc:
                last_error = exc
                logger.warning("Attempt %s/%s failed for %s %s: %s", attempt, self.max_attempts, method, url, exc)
                if attempt < self.max_attempts:
                    delay = backoff_delay(attempt)
                    logger.info("Retrying in %.1fs...", delay)
                    await self._sleep(delay)

        raise TransportError(
            f"{method} {url} failed after {self.max_attempts} attempts: {last_error}",
            url=url,
            attempts=self.max_attempts,
        ) from last_error

    async def get(self, url: str, headers: dict[str, str] | None = None) -> HTTPResponse:
        """Perform GET request."""
        return await self.request_with_retry("GET", url, headers=headers)

    async def patch(
        self,
        url: str,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> HTTPResponse:
        """Perform PATCH request with a JSON body."""
        return await self.request_with_retry("PATCH", url, headers=headers, json_body=data)

    async def put(
        self,
        url: str,
        data: bytes,
        headers: dict[str, str] | None = None,
    ) -> HTTPResponse:
        """Perform PUT request with a raw body."""
        return await self.request_with_retry("PUT", url, headers=headers, data=data)
