"""Retrying, never-raising wrapper around a key-value store."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable

from telemeter.config.models import StorageSettings
from telemeter.runtime_logging import get_runtime_logger
from telemeter.storage.kv import KeyValueStore, Keys, normalize_keys

Sleeper = Callable[[float], Awaitable[None]]


class SafeStorage:
    """Best-effort access to the persisted state.

    Each call retries up to ``max_retries`` times, waiting
    ``retry_delay_ms * attempt`` between attempts. On exhaustion reads
    return ``{}`` and writes return ``False``; nothing is raised except
    cancellation.
    """

    def __init__(
        self,
        store: KeyValueStore,
        settings: StorageSettings | None = None,
        *,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.store = store
        self.settings = settings or StorageSettings()
        self._sleep = sleep
        self._logger = get_runtime_logger("storage")

    async def _backoff(self, attempt: int) -> None:
        await self._sleep(self.settings.retry_delay_ms * attempt / 1000)

    async def safe_lookup(self, keys: Keys = None) -> dict[str, Any] | None:
        """Like :meth:`safe_get`, but ``None`` when every attempt failed."""
        attempts = self.settings.max_retries
        for attempt in range(1, attempts + 1):
            try:
                return await self.store.get(keys)
            except Exception as exc:
                self._logger.warning("storage.get.failed", attempt=attempt, keys=normalize_keys(keys), error=str(exc))
                if attempt == attempts:
                    self._logger.error("storage.get.exhausted", attempts=attempts, keys=normalize_keys(keys))
                    return None
                await self._backoff(attempt)
        return None

    async def safe_get(self, keys: Keys = None) -> dict[str, Any]:
        found = await self.safe_lookup(keys)
        return {} if found is None else found

    async def safe_set(self, key: str, value: Any) -> bool:
        attempts = self.settings.max_retries
        for attempt in range(1, attempts + 1):
            try:
                await self.store.set(key, value)
                return True
            except Exception as exc:
                self._logger.warning("storage.set.failed", attempt=attempt, key=key, error=str(exc))
                if attempt == attempts:
                    self._logger.error("storage.set.exhausted", attempts=attempts, key=key)
                    return False
                await self._backoff(attempt)
        return False

    async def safe_remove(self, keys: str | Iterable[str]) -> bool:
        keys = normalize_keys(keys) or []
        attempts = self.settings.max_retries
        for attempt in range(1, attempts + 1):
            try:
                await self.store.remove(keys)
                return True
            except Exception as exc:
                self._logger.warning("storage.remove.failed", attempt=attempt, keys=keys, error=str(exc))
                if attempt == attempts:
                    self._logger.error("storage.remove.exhausted", attempts=attempts, keys=keys)
                    return False
                await self._backoff(attempt)
        return False
