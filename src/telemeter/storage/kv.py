"""Key-value stores backing the pipeline's persisted state.

The pipeline only needs ``get``/``set``/``remove``; values are anything
JSON-serializable. ``get(None)`` returns every stored item, which the dedup
sweep relies on.
"""

from __future__ import annotations

import asyncio
import copy
import json
import sqlite3
from pathlib import Path
from typing import Any, Iterable, Protocol

from telemeter.paths import store_db_path

Keys = str | Iterable[str] | None


def normalize_keys(keys: Keys) -> list[str] | None:
    if keys is None:
        return None
    if isinstance(keys, str):
        return [keys]
    return list(keys)


class KeyValueStore(Protocol):
    async def get(self, keys: Keys = None) -> dict[str, Any]:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...

    async def remove(self, keys: str | Iterable[str]) -> None:
        ...


class MemoryStore:
    """Process-local store; values are deep-copied on the way in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._items: dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, keys: Keys = None) -> dict[str, Any]:
        wanted = normalize_keys(keys)
        if wanted is None:
            return copy.deepcopy(self._items)
        return {key: copy.deepcopy(self._items[key]) for key in wanted if key in self._items}

    async def set(self, key: str, value: Any) -> None:
        self._items[key] = copy.deepcopy(value)

    async def remove(self, keys: str | Iterable[str]) -> None:
        for key in normalize_keys(keys) or []:
            self._items.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._items)


class SqliteStore:
    """SQLite-backed store; blocking calls run in a worker thread."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or store_db_path()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL
                )
                """
            )

    async def get(self, keys: Keys = None) -> dict[str, Any]:
        return await asyncio.to_thread(self._get, normalize_keys(keys))

    async def set(self, key: str, value: Any) -> None:
        value_json = json.dumps(value, sort_keys=True)
        await asyncio.to_thread(self._set, key, value_json)

    async def remove(self, keys: str | Iterable[str]) -> None:
        await asyncio.to_thread(self._remove, normalize_keys(keys) or [])

    def _get(self, keys: list[str] | None) -> dict[str, Any]:
        with self._connect() as conn:
            if keys is None:
                rows = conn.execute("SELECT key, value_json FROM kv").fetchall()
            elif not keys:
                return {}
            else:
                placeholders = ", ".join("?" for _ in keys)
                rows = conn.execute(
                    f"SELECT key, value_json FROM kv WHERE key IN ({placeholders})",
                    keys,
                ).fetchall()
        return {str(row["key"]): json.loads(str(row["value_json"])) for row in rows}

    def _set(self, key: str, value_json: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv (key, value_json) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json
                """,
                (key, value_json),
            )

    def _remove(self, keys: list[str]) -> None:
        if not keys:
            return
        with self._connect() as conn:
            conn.executemany("DELETE FROM kv WHERE key = ?", [(key,) for key in keys])
