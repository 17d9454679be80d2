"""Request executor: one timed HTTP call per iteration, never raising."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import aiohttp

from stampede._internal.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping

    from stampede.dsl.scenario import RequestSpec

logger = get_logger("dsl.http_client")


@dataclass(frozen=True)
class ResponseOutcome:
    """Outcome of a single HTTP request.

    Attributes:
        status: HTTP status code, or None when the request never got a
            response.
        body: Full response body, or None on transport failure.
        latency_ms: Time from send to full body read (or to the failure)
            in milliseconds.
        headers: Response headers (case-insensitive when they come from
            a real response).
        error: ``"<ExceptionType>: <message>"`` on transport failure,
            None otherwise.
    """

    status: int | None
    body: bytes | None
    latency_ms: float
    headers: Mapping[str, str] = field(default_factory=dict)
    error: str | None = None

    @property
    def transport_failed(self) -> bool:
        """Return True if the request did not produce an HTTP response."""
        return self.error is not None

    @property
    def error_type(self) -> str | None:
        """Return the exception type name of a transport failure."""
        if self.error is None:
            return None
        return self.error.split(":")[0].strip()

    def text(self, encoding: str = "utf-8") -> str:
        """Decode the body as text.

        Raises:
            ValueError: If the outcome has no body.
        """
        if self.body is None:
            msg = "Response has no body"
            raise ValueError(msg)
        return self.body.decode(encoding, errors="replace")

    def json(self) -> Any:
        """Parse the body as JSON.

        Raises:
            ValueError: If the outcome has no body or the body is not JSON.
        """
        return json.loads(self.text())


class HttpExecutor:
    """Async HTTP request executor wrapping ``aiohttp.ClientSession``.

    Each virtual user owns one executor, and with it one connection pool,
    the way an independent client would. ``execute`` measures latency and
    converts every transport failure (connection refused, DNS failure,
    timeout) into a ``ResponseOutcome`` with ``error`` set. It never
    retries.

    Attributes:
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, timeout: float = 10.0) -> None:
        """Initialize the executor.

        Args:
            timeout: Total per-request timeout in seconds, covering connect,
                send and body read.
        """
        self.timeout = timeout
        self._client_timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> HttpExecutor:
        """Open the underlying aiohttp session."""
        self._session = aiohttp.ClientSession(timeout=self._client_timeout)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Close the underlying aiohttp session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def execute(self, spec: RequestSpec) -> ResponseOutcome:
        """Send one request and wait for the full response.

        Args:
            spec: The materialized request.

        Returns:
            The outcome. Transport failures are reported through
            ``ResponseOutcome.error``, never raised.

        Raises:
            RuntimeError: If the executor is used outside of an async
                context manager.
        """
        if self._session is None:
            msg = "HttpExecutor must be used as an async context manager"
            raise RuntimeError(msg)

        start = time.perf_counter()
        try:
            async with self._session.request(
                spec.method,
                spec.url,
                data=spec.body,
                headers=spec.headers,
            ) as resp:
                body = await resp.read()
                latency_ms = (time.perf_counter() - start) * 1000
                return ResponseOutcome(
                    status=resp.status,
                    body=body,
                    latency_ms=latency_ms,
                    headers=resp.headers.copy(),
                )
        except (aiohttp.ClientError, TimeoutError, OSError) as exc:
            latency_ms = (time.perf_counter() - start) * 1000
            logger.debug("%s %s failed: %r", spec.method, spec.url, exc)
            return ResponseOutcome(
                status=None,
                body=None,
                latency_ms=latency_ms,
                error=f"{type(exc).__name__}: {exc}",
            )
