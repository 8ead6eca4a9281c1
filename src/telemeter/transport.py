"""Outbound transports to the collector.

Two ways to deliver a payload:

* ``beacon`` hands the POST to a background task and returns as soon as
  it is handed off. The caller never learns the outcome; it survives the
  caller going away, which suits queued batch traffic.
* ``request`` awaits the POST under a timeout and reports the outcome,
  which immediate sends and retry logic need.
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum
from typing import Protocol

import httpx

from telemeter.runtime_logging import get_runtime_logger
from telemeter.version import __version__

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "User-Agent": f"telemeter/{__version__}",
}


class TransportError(Exception):
    """Raised by transports for failed or non-2xx collector calls."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class Transport(Protocol):
    supports_beacon: bool

    def beacon(self, endpoint: str, body: bytes) -> bool:
        ...

    async def request(self, endpoint: str, body: bytes, timeout: float) -> bool:
        ...

    async def aclose(self) -> None:
        ...


class DeliveryStrategy(str, Enum):
    BEACON_FIRST = "beacon_first"
    REQUEST_ONLY = "request_only"


def probe_strategy(transport: Transport) -> DeliveryStrategy:
    """Startup capability check for the batch path."""
    if getattr(transport, "supports_beacon", False):
        return DeliveryStrategy.BEACON_FIRST
    return DeliveryStrategy.REQUEST_ONLY


class HttpTransport:
    supports_beacon = True

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        beacon_timeout: float = 10.0,
    ) -> None:
        self._client = client or httpx.AsyncClient(headers=DEFAULT_HEADERS, timeout=None)
        self._owns_client = client is None
        self.beacon_timeout = beacon_timeout
        self._inflight: set[asyncio.Task[None]] = set()
        self._closed = False
        self._logger = get_runtime_logger("transport")

    async def _post(self, endpoint: str, body: bytes, timeout: float) -> httpx.Response:
        try:
            return await self._client.post(endpoint, content=body, headers=DEFAULT_HEADERS, timeout=timeout)
        except httpx.HTTPError as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc

    def beacon(self, endpoint: str, body: bytes) -> bool:
        if self._closed or self._client.is_closed:
            return False
        try:
            task = asyncio.get_running_loop().create_task(self._beacon(endpoint, body))
        except RuntimeError:
            return False
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return True

    async def _beacon(self, endpoint: str, body: bytes) -> None:
        try:
            async with asyncio.timeout(self.beacon_timeout):
                response = await self._post(endpoint, body, self.beacon_timeout)
        except (TransportError, TimeoutError) as exc:
            self._logger.warning("transport.beacon.failed", endpoint=endpoint, error=str(exc) or "timeout")
            return
        if response.is_success:
            self._logger.debug("transport.beacon.sent", endpoint=endpoint, status=response.status_code)
        else:
            self._logger.warning("transport.beacon.rejected", endpoint=endpoint, status=response.status_code)

    async def request(self, endpoint: str, body: bytes, timeout: float) -> bool:
        try:
            async with asyncio.timeout(timeout):
                response = await self._post(endpoint, body, timeout)
        except TimeoutError:
            self._logger.warning("transport.request.timeout", endpoint=endpoint, timeout_s=timeout)
            return False
        except TransportError as exc:
            self._logger.warning("transport.request.failed", endpoint=endpoint, error=str(exc))
            return False

        if not response.is_success:
            self._logger.warning(
                "transport.request.rejected",
                endpoint=endpoint,
                status=response.status_code,
                reason=response.reason_phrase,
            )
            return False
        self._logger.debug("transport.request.sent", endpoint=endpoint, status=response.status_code)
        return True

    async def aclose(self, *, grace: float = 2.0) -> None:
        self._closed = True
        if self._inflight:
            pending = list(self._inflight)
            _done, still_running = await asyncio.wait(pending, timeout=grace)
            for task in still_running:
                task.cancel()
            for task in still_running:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        if self._owns_client:
            await self._client.aclose()
