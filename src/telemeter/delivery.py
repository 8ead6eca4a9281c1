"""Collector payloads, single-event retry and batch delivery."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Protocol, Sequence

from telemeter.config.models import CollectorSettings, RetrySettings
from telemeter.dedup import DedupGate
from telemeter.environment import Environment
from telemeter.identity import EventData
from telemeter.runtime_logging import get_runtime_logger
from telemeter.transport import DeliveryStrategy, Transport, TransportError

Sleeper = Callable[[float], Awaitable[None]]


class NamedEvent(Protocol):
    name: str
    data: dict[str, Any]


def backoff_delay_ms(attempt: int, retry: RetrySettings) -> int:
    """Wait after failed attempt ``attempt`` (1-indexed) before the next one."""
    return min(retry.base_delay_ms * 2 ** (attempt - 1), retry.max_delay_ms)


def encode(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")


class DeliveryEngine:
    def __init__(
        self,
        transport: Transport,
        environment: Environment,
        *,
        collector: CollectorSettings | None = None,
        retry: RetrySettings | None = None,
        dedup: DedupGate | None = None,
        strategy: DeliveryStrategy = DeliveryStrategy.REQUEST_ONLY,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.transport = transport
        self.environment = environment
        self.collector = collector or CollectorSettings()
        self.retry = retry or RetrySettings()
        self.dedup = dedup
        self.strategy = strategy
        self._sleep = sleep
        self._logger = get_runtime_logger("delivery")

    def _event_body(self, event: NamedEvent) -> dict[str, Any]:
        return {
            "website": self.collector.website_id,
            "hostname": self.collector.hostname,
            "name": event.name,
            "language": self.environment.language,
            "data": event.data,
        }

    def build_single_payload(self, event: NamedEvent) -> dict[str, Any]:
        return {"type": "event", "payload": self._event_body(event)}

    def build_batch_payload(self, events: Sequence[NamedEvent]) -> dict[str, Any]:
        return {"type": "events", "payload": [self._event_body(event) for event in events]}

    async def send_event_with_retry(
        self,
        event: EventData,
        *,
        max_retries: int | None = None,
        timeout_ms: int | None = None,
    ) -> bool:
        attempts = max_retries or self.retry.max_attempts
        timeout = (timeout_ms or self.collector.timeout_ms) / 1000
        body = encode(self.build_single_payload(event))

        for attempt in range(1, attempts + 1):
            try:
                # Immediate sends always need the outcome, so never beacon.
                delivered = await self.transport.request(self.collector.endpoint, body, timeout)
            except TransportError as exc:
                self._logger.warning("delivery.attempt.error", event_name=event.name, attempt=attempt, error=str(exc))
                delivered = False

            if delivered:
                self._logger.debug("delivery.sent", event_name=event.name, attempt=attempt)
                if self.dedup is not None:
                    await self.dedup.record_sent(event.name, event.data)
                return True

            if attempt < attempts:
                delay = backoff_delay_ms(attempt, self.retry)
                self._logger.debug(
                    "delivery.retry.wait",
                    event_name=event.name,
                    attempt=attempt,
                    delay_ms=delay,
                )
                await self._sleep(delay / 1000)

        self._logger.warning("delivery.exhausted", event_name=event.name, attempts=attempts)
        return False

    async def send_events_batch(self, events: Sequence[NamedEvent]) -> bool:
        if not events:
            return True

        try:
            body = encode(self.build_batch_payload(events))
            endpoint = self.collector.endpoint

            if self.strategy is DeliveryStrategy.BEACON_FIRST:
                if self.transport.beacon(endpoint, body):
                    self._logger.debug("delivery.batch.beacon", size=len(events))
                    return True
                self._logger.debug("delivery.batch.beacon_refused", size=len(events))

            delivered = await self.transport.request(endpoint, body, self.collector.timeout_ms / 1000)
        except (TransportError, TypeError, ValueError) as exc:
            self._logger.error("delivery.batch.failed", size=len(events), error=str(exc))
            return False

        self._logger.debug("delivery.batch.request", size=len(events), delivered=delivered)
        return delivered
