"""Bounded, persisted FIFO of events waiting for batch delivery."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from telemeter.clock import Clock, epoch_ms, utc_now
from telemeter.config.models import QueueSettings
from telemeter.identity import EventData
from telemeter.runtime_logging import get_runtime_logger
from telemeter.storage.safe import SafeStorage


@dataclass(slots=True)
class QueuedEvent:
    name: str
    data: dict[str, Any]
    queued_at: int
    retry_count: int = 0

    def to_record(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "data": self.data,
            "queuedAt": self.queued_at,
            "retryCount": self.retry_count,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "QueuedEvent":
        data = record.get("data")
        return cls(
            name=str(record.get("name", "")),
            data=data if isinstance(data, dict) else {},
            queued_at=int(record.get("queuedAt") or 0),
            retry_count=int(record.get("retryCount") or 0),
        )


BatchSender = Callable[[list[QueuedEvent]], Awaitable[bool]]


@dataclass(slots=True)
class DrainResult:
    sent: int = 0
    retained: int = 0
    dropped: int = 0
    skipped: bool = False
    failed_batches: int = 0
    dropped_names: list[str] = field(default_factory=list)


def chunked(items: list[QueuedEvent], size: int) -> list[list[QueuedEvent]]:
    return [items[start : start + size] for start in range(0, len(items), size)]


class EventQueue:
    """Queue of not-yet-delivered events persisted under one storage key.

    Single writer per installation is assumed; ``processing`` keeps a timer
    tick and a manual flush from draining at the same time.
    """

    def __init__(
        self,
        storage: SafeStorage,
        send_batch: BatchSender,
        settings: QueueSettings | None = None,
        *,
        max_attempts: int = 3,
        storage_key: str = "analytics_queue",
        clock: Clock = utc_now,
    ) -> None:
        self.storage = storage
        self.send_batch = send_batch
        self.settings = settings or QueueSettings()
        self.max_attempts = max_attempts
        self.storage_key = storage_key
        self.clock = clock
        self.processing = False
        self._logger = get_runtime_logger("queue")

    async def get_queue(self) -> list[QueuedEvent]:
        raw = (await self.storage.safe_get([self.storage_key])).get(self.storage_key)
        if not isinstance(raw, list):
            return []
        events: list[QueuedEvent] = []
        for record in raw:
            if not isinstance(record, dict):
                continue
            try:
                events.append(QueuedEvent.from_record(record))
            except (TypeError, ValueError) as exc:
                self._logger.warning("queue.record.invalid", error=str(exc))
        return events

    async def _persist(self, events: list[QueuedEvent]) -> bool:
        return await self.storage.safe_set(self.storage_key, [event.to_record() for event in events])

    async def enqueue(self, event: EventData) -> bool:
        queue = await self.get_queue()
        while queue and len(queue) >= self.settings.max_size:
            oldest = queue.pop(0)
            self._logger.warning("queue.full.drop_oldest", event_name=oldest.name, max_size=self.settings.max_size)

        queue.append(
            QueuedEvent(
                name=event.name,
                data=dict(event.data),
                queued_at=epoch_ms(self.clock()),
                retry_count=0,
            )
        )
        persisted = await self._persist(queue)
        self._logger.debug("queue.enqueue", event_name=event.name, length=len(queue), persisted=persisted)
        return persisted

    async def process_queue(self) -> DrainResult:
        if self.processing:
            self._logger.debug("queue.process.skipped")
            return DrainResult(skipped=True)

        self.processing = True
        try:
            return await self._drain()
        finally:
            self.processing = False

    async def _drain(self) -> DrainResult:
        result = DrainResult()
        queue = await self.get_queue()
        if not queue:
            return result

        self._logger.debug("queue.process.start", length=len(queue))
        survivors: list[QueuedEvent] = []

        for batch in chunked(queue, self.settings.batch_size):
            try:
                delivered = await self.send_batch(batch)
            except Exception as exc:
                # Unexpected sender failure: keep the batch as-is for the next drain.
                self._logger.error("queue.batch.error", size=len(batch), error=str(exc))
                result.failed_batches += 1
                survivors.extend(batch)
                continue

            if delivered:
                result.sent += len(batch)
                continue

            result.failed_batches += 1
            for event in batch:
                event.retry_count += 1
                if event.retry_count < self.max_attempts:
                    survivors.append(event)
                else:
                    result.dropped += 1
                    result.dropped_names.append(event.name)
                    self._logger.warning(
                        "queue.event.discarded",
                        event_name=event.name,
                        retry_count=event.retry_count,
                        queued_at=event.queued_at,
                    )

        result.retained = len(survivors)
        await self._persist(survivors)
        self._logger.info(
            "queue.process.done",
            sent=result.sent,
            retained=result.retained,
            dropped=result.dropped,
        )
        return result

    async def clear(self) -> bool:
        cleared = await self._persist([])
        self._logger.info("queue.cleared", persisted=cleared)
        return cleared
