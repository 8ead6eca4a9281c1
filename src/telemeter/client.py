"""Public entry point: one ``TelemetryClient`` per host process.

Construct it once at startup and hand it to call sites::

    async with TelemetryClient.from_settings() as telemetry:
        await telemetry.send_event("copy", {"format": "markdown", "source": "popup"})

None of the public coroutines raise on pipeline failures; they return
``False`` or an empty status instead.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Awaitable, Callable, Sequence

from telemeter.clock import Clock, utc_now
from telemeter.config.models import TelemetrySettings
from telemeter.config.store import SettingsStore
from telemeter.dedup import DedupGate
from telemeter.delivery import DeliveryEngine, NamedEvent
from telemeter.environment import Environment
from telemeter.event_queue import DrainResult, EventQueue
from telemeter.identity import ContextBuilder
from telemeter.runtime_logging import get_runtime_logger
from telemeter.scheduler import QueueStatus, Scheduler
from telemeter.storage.kv import KeyValueStore, SqliteStore
from telemeter.storage.safe import SafeStorage
from telemeter.transport import DeliveryStrategy, HttpTransport, Transport, probe_strategy

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(slots=True, frozen=True)
class SendOptions:
    """Per-call send switches. ``None`` means "use the default"."""

    immediate: bool | None = None
    skip_dedup: bool | None = None
    max_retries: int | None = None
    timeout_ms: int | None = None

    def over(self, defaults: SendOptions) -> SendOptions:
        """Return ``defaults`` with every field set here taking precedence."""
        values = {}
        for item in fields(self):
            value = getattr(self, item.name)
            values[item.name] = getattr(defaults, item.name) if value is None else value
        return SendOptions(**values)


class TelemetryClient:
    def __init__(
        self,
        settings: TelemetrySettings | None = None,
        *,
        store: KeyValueStore | None = None,
        transport: Transport | None = None,
        environment: Environment | None = None,
        strategy: DeliveryStrategy | None = None,
        clock: Clock = utc_now,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.settings = settings or TelemetrySettings()
        self.environment = environment or Environment.current()
        self.transport = transport or HttpTransport()
        self._owns_transport = transport is None
        self._logger = get_runtime_logger("client")

        keys = self.settings.storage.keys
        self.storage = SafeStorage(store if store is not None else SqliteStore(), self.settings.storage, sleep=sleep)
        self.context = ContextBuilder(self.storage, self.environment, user_id_key=keys.user_id, clock=clock)
        self.dedup = DedupGate(self.storage, self.settings.dedup, prefix=keys.dedup_prefix, clock=clock)
        self.delivery = DeliveryEngine(
            self.transport,
            self.environment,
            collector=self.settings.collector,
            retry=self.settings.retry,
            dedup=self.dedup,
            strategy=strategy or probe_strategy(self.transport),
            sleep=sleep,
        )
        self.queue = EventQueue(
            self.storage,
            self.delivery.send_events_batch,
            self.settings.queue,
            max_attempts=self.settings.retry.max_attempts,
            storage_key=keys.queue,
            clock=clock,
        )
        self.scheduler = Scheduler(self.queue, self.dedup)

    @classmethod
    def from_settings(cls, path: Path | None = None, **kwargs: Any) -> "TelemetryClient":
        return cls(SettingsStore(path).load(), **kwargs)

    async def __aenter__(self) -> "TelemetryClient":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def start(self) -> None:
        if self.settings.enabled:
            self.scheduler.start()

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.dedup.aclose()
        if self._owns_transport:
            await self.transport.aclose()

    async def send_event(
        self,
        name: str,
        properties: dict[str, Any] | None = None,
        options: SendOptions | None = None,
    ) -> bool:
        """Send now (``immediate``) or enqueue; False when blocked or failed.

        A queued event counts as handed off, so enqueueing returns True.
        """
        options = options or SendOptions()
        if not self.settings.enabled:
            self._logger.debug("client.disabled", event_name=name)
            return False

        try:
            if not options.skip_dedup and await self.dedup.is_duplicate(name, properties):
                self._logger.debug("client.duplicate", event_name=name)
                return False

            event = await self.context.build_event_data(name, properties)
            if options.immediate:
                return await self.delivery.send_event_with_retry(
                    event,
                    max_retries=options.max_retries,
                    timeout_ms=options.timeout_ms,
                )
            await self.queue.enqueue(event)
            return True
        except Exception as exc:
            self._logger.error("client.send.failed", event_name=name, error=str(exc))
            return False

    async def send_events_batch(self, events: Sequence[NamedEvent]) -> bool:
        try:
            return await self.delivery.send_events_batch(events)
        except Exception as exc:
            self._logger.error("client.batch.failed", size=len(events), error=str(exc))
            return False

    async def process_event_queue(self) -> DrainResult:
        try:
            return await self.scheduler.process_event_queue()
        except Exception as exc:
            self._logger.error("client.process.failed", error=str(exc))
            return DrainResult()

    async def clear_event_queue(self) -> bool:
        try:
            return await self.scheduler.clear_event_queue()
        except Exception as exc:
            self._logger.error("client.clear.failed", error=str(exc))
            return False

    async def get_queue_status(self) -> QueueStatus:
        try:
            return await self.scheduler.get_queue_status()
        except Exception as exc:
            self._logger.error("client.status.failed", error=str(exc))
            return QueueStatus(length=0, processing=False, oldest_event=None, newest_event=None)
