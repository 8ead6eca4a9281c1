from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from fakes import FlakyStore, SleepRecorder, quiet_logging

from telemeter.config.models import StorageSettings
from telemeter.storage.kv import MemoryStore, SqliteStore
from telemeter.storage.safe import SafeStorage


class SqliteStoreTests(unittest.IsolatedAsyncioTestCase):
    async def test_set_get_remove_and_get_all(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = SqliteStore(Path(tmp) / "kv.sqlite3")
            await store.set("queue", [{"name": "copy", "retryCount": 0}])
            await store.set("dedup_copy", 1700000000000)
            await store.set("dedup_copy", 1700000000500)

            self.assertEqual(await store.get("dedup_copy"), {"dedup_copy": 1700000000500})
            self.assertEqual(await store.get(["missing"]), {})
            everything = await store.get(None)
            self.assertEqual(set(everything), {"queue", "dedup_copy"})
            self.assertEqual(everything["queue"][0]["name"], "copy")

            await store.remove(["queue", "missing"])
            self.assertEqual(set(await store.get()), {"dedup_copy"})

    async def test_data_survives_a_new_instance(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "kv.sqlite3"
            await SqliteStore(path).set("analytics_uid", "u_abc12345")
            self.assertEqual(await SqliteStore(path).get("analytics_uid"), {"analytics_uid": "u_abc12345"})


class MemoryStoreTests(unittest.IsolatedAsyncioTestCase):
    async def test_values_are_copied(self) -> None:
        store = MemoryStore()
        value = {"a": [1]}
        await store.set("k", value)
        value["a"].append(2)
        fetched = await store.get("k")
        fetched["k"]["a"].append(3)
        self.assertEqual(store.snapshot(), {"k": {"a": [1]}})


class SafeStorageTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        quiet_logging()
        self.store = FlakyStore({"k": 1})
        self.sleep = SleepRecorder()
        self.safe = SafeStorage(
            self.store,
            StorageSettings(max_retries=3, retry_delay_ms=100),
            sleep=self.sleep,
        )

    async def test_transient_failure_is_retried_with_linear_delay(self) -> None:
        self.store.failures["get"] = 2
        self.assertEqual(await self.safe.safe_get(["k"]), {"k": 1})
        self.assertEqual(self.store.calls["get"], 3)
        self.assertEqual(self.sleep.calls, [0.1, 0.2])

    async def test_get_degrades_to_empty_result(self) -> None:
        self.store.failures["get"] = 10
        self.assertEqual(await self.safe.safe_get(["k"]), {})
        self.assertEqual(self.store.calls["get"], 3)
        # no sleep after the final attempt
        self.assertEqual(len(self.sleep.calls), 2)

    async def test_set_and_remove_report_false_on_exhaustion(self) -> None:
        self.store.failures["set"] = 10
        self.store.failures["remove"] = 10
        self.assertFalse(await self.safe.safe_set("k", 2))
        self.assertFalse(await self.safe.safe_remove("k"))
        self.assertEqual(self.store.snapshot(), {"k": 1})

    async def test_set_and_remove_succeed(self) -> None:
        self.store.failures["set"] = 1
        self.assertTrue(await self.safe.safe_set("k", 2))
        self.assertEqual(self.store.snapshot(), {"k": 2})
        self.assertTrue(await self.safe.safe_remove(["k"]))
        self.assertEqual(self.store.snapshot(), {})


if __name__ == "__main__":
    unittest.main()
