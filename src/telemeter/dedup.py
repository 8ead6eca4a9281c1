"""Suppress repeats of the same event inside a per-kind time window.

A dedup key is the event name plus the values of that kind's identifying
fields, e.g. ``copy|format:markdown|source:popup``. The last successful
immediate send of each key is persisted as epoch milliseconds under
``<dedup_prefix><key>``.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Mapping

from telemeter.clock import Clock, epoch_ms, utc_now
from telemeter.config.models import DedupSettings
from telemeter.runtime_logging import get_runtime_logger
from telemeter.storage.safe import SafeStorage

KEY_FIELDS: Mapping[str, tuple[str, ...]] = {
    "install": ("install_type",),
    "update": ("install_type", "previous_version"),
    "copy": ("format", "source"),
    "error": ("error_type", "component"),
}


def dedup_key(name: str, data: Mapping[str, Any] | None) -> str:
    parts = [name]
    if isinstance(data, Mapping):
        for field_name in KEY_FIELDS.get(name, ()):
            if data.get(field_name) is not None:
                parts.append(f"{field_name}:{data[field_name]}")
    return "|".join(parts)


class DedupGate:
    def __init__(
        self,
        storage: SafeStorage,
        settings: DedupSettings | None = None,
        *,
        prefix: str = "dedup_",
        clock: Clock = utc_now,
    ) -> None:
        self.storage = storage
        self.settings = settings or DedupSettings()
        self.prefix = prefix
        self.clock = clock
        self._cleanup_task: asyncio.Task[int] | None = None
        self._logger = get_runtime_logger("dedup")

    def storage_key(self, name: str, data: Mapping[str, Any] | None) -> str:
        return f"{self.prefix}{dedup_key(name, data)}"

    def _now_ms(self) -> int:
        return epoch_ms(self.clock())

    async def is_duplicate(self, name: str, data: Mapping[str, Any] | None) -> bool:
        """True when an equivalent event was sent within ``interval(name)``.

        Any failure answers False: the gate never blocks on its own errors.
        """
        try:
            key = self.storage_key(name, data)
            last_sent = (await self.storage.safe_get([key])).get(key)
            if not isinstance(last_sent, (int, float)) or isinstance(last_sent, bool):
                return False

            elapsed = self._now_ms() - last_sent
            interval = self.settings.interval_for(name)
            if elapsed < interval:
                self._logger.debug("dedup.blocked", key=key, elapsed_ms=elapsed, interval_ms=interval)
                return True
            return False
        except Exception as exc:
            self._logger.warning("dedup.check.failed", event_name=name, error=str(exc))
            return False

    async def record_sent(self, name: str, data: Mapping[str, Any] | None) -> None:
        try:
            key = self.storage_key(name, data)
            await self.storage.safe_set(key, self._now_ms())
        except Exception as exc:
            self._logger.warning("dedup.record.failed", event_name=name, error=str(exc))
            return
        self.schedule_cleanup()

    def schedule_cleanup(self) -> None:
        """Start a delayed background sweep unless one is already pending."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._delayed_cleanup())

    async def _delayed_cleanup(self) -> int:
        await asyncio.sleep(self.settings.cleanup_delay_ms / 1000)
        return await self.cleanup_dedup_records()

    async def cleanup_dedup_records(self) -> int:
        """Remove dedup records older than the cleanup horizon; return how many."""
        try:
            items = await self.storage.safe_get(None)
            now = self._now_ms()
            horizon = self.settings.cleanup_interval_ms
            expired = [
                key
                for key, value in items.items()
                if key.startswith(self.prefix)
                and isinstance(value, (int, float))
                and not isinstance(value, bool)
                and now - value > horizon
            ]
            if expired:
                await self.storage.safe_remove(expired)
                self._logger.debug("dedup.cleanup", removed=len(expired))
            return len(expired)
        except Exception as exc:
            self._logger.warning("dedup.cleanup.failed", error=str(exc))
            return 0

    async def aclose(self) -> None:
        """Stop waiting on a pending sweep and run it now instead."""
        task = self._cleanup_task
        self._cleanup_task = None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        await self.cleanup_dedup_records()
