"""Recurring queue drain plus the manual flush/reset/status surface."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import asdict, dataclass
from typing import Any

from telemeter.dedup import DedupGate
from telemeter.event_queue import DrainResult, EventQueue
from telemeter.runtime_logging import get_runtime_logger


@dataclass(slots=True)
class QueueStatus:
    length: int
    processing: bool
    oldest_event: int | None
    newest_event: int | None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class Scheduler:
    def __init__(self, queue: EventQueue, dedup: DedupGate, *, interval_ms: int | None = None) -> None:
        self.queue = queue
        self.dedup = dedup
        self.interval_ms = interval_ms or queue.settings.process_interval_ms
        self._timer: asyncio.Task[None] | None = None
        self._logger = get_runtime_logger("scheduler")

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> None:
        """Start the drain timer on the running loop; a second call is a no-op."""
        if self.running:
            return
        self._timer = asyncio.create_task(self._tick_loop())
        self._logger.info("scheduler.started", interval_ms=self.interval_ms)

    async def stop(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is None:
            return
        timer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await timer
        self._logger.info("scheduler.stopped")

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_ms / 1000)
            if self.queue.processing:
                continue
            try:
                await self.queue.process_queue()
            except Exception as exc:
                self._logger.warning("scheduler.tick.failed", error=str(exc))

    async def process_event_queue(self) -> DrainResult:
        return await self.queue.process_queue()

    async def clear_event_queue(self) -> bool:
        return await self.queue.clear()

    async def get_queue_status(self) -> QueueStatus:
        events = await self.queue.get_queue()
        return QueueStatus(
            length=len(events),
            processing=self.queue.processing,
            oldest_event=events[0].queued_at if events else None,
            newest_event=events[-1].queued_at if events else None,
        )

    async def cleanup_dedup_records(self) -> int:
        return await self.dedup.cleanup_dedup_records()
