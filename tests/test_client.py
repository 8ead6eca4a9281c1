from __future__ import annotations

import asyncio
import unittest

from fakes import CHROME_ON_MAC, FakeClock, FakeTransport, FlakyStore, SleepRecorder, quiet_logging

from telemeter.client import SendOptions, TelemetryClient
from telemeter.config.models import QueueSettings, TelemetrySettings
from telemeter.environment import Environment
from telemeter.event_queue import QueuedEvent
from telemeter.identity import EventData
from telemeter.scheduler import QueueStatus
from telemeter.transport import DeliveryStrategy

ENV = Environment(user_agent=CHROME_ON_MAC, app_version="2.0.0", language="en-US")


class TelemetryClientTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        quiet_logging()
        self.store = FlakyStore()
        self.clock = FakeClock()
        self.sleep = SleepRecorder()
        self.transport = FakeTransport()

    def make_client(self, settings: TelemetrySettings | None = None) -> TelemetryClient:
        client = TelemetryClient(
            settings,
            store=self.store,
            transport=self.transport,
            environment=ENV,
            clock=self.clock,
            sleep=self.sleep,
        )
        self.addAsyncCleanup(client.aclose)
        return client

    async def test_immediate_send_success_leaves_queue_empty(self) -> None:
        client = self.make_client()

        ok = await client.send_event("install", {"install_type": "first"}, SendOptions(immediate=True))

        self.assertTrue(ok)
        self.assertEqual(len(self.transport.requests), 1)
        self.assertEqual(self.store.snapshot().get("analytics_queue", []), [])
        self.assertEqual((await client.get_queue_status()).length, 0)

    async def test_duplicate_within_interval_then_allowed_again(self) -> None:
        client = self.make_client()
        props = {"format": "markdown", "source": "popup"}
        immediate = SendOptions(immediate=True)

        first = await client.send_event("copy", props, immediate)
        second = await client.send_event("copy", props, immediate)
        self.clock.advance(500)
        third = await client.send_event("copy", props, immediate)

        self.assertEqual((first, second, third), (True, False, True))
        self.assertEqual(len(self.transport.requests), 2)

    async def test_skip_dedup_bypasses_gate(self) -> None:
        client = self.make_client()
        immediate = SendOptions(immediate=True)
        await client.send_event("error", {"error_type": "x"}, immediate)
        ok = await client.send_event("error", {"error_type": "x"}, SendOptions(immediate=True, skip_dedup=True))
        self.assertTrue(ok)

    async def test_queued_sends_never_record_dedup_marks(self) -> None:
        client = self.make_client()
        props = {"format": "url", "source": "shortcut"}

        self.assertTrue(await client.send_event("copy", props))
        self.assertTrue(await client.send_event("copy", props))
        await client.process_event_queue()

        self.assertFalse(any(key.startswith("dedup_") for key in self.store.snapshot()))

    async def test_queued_send_under_load_with_failing_transport(self) -> None:
        self.transport.default = False
        settings = TelemetrySettings(queue=QueueSettings(max_size=50, batch_size=8))
        client = self.make_client(settings)

        for index in range(60):
            self.assertTrue(await client.send_event("copy", {"format": "url", "n": index}))

        result = await client.process_event_queue()

        queue = self.store.snapshot()["analytics_queue"]
        self.assertEqual(len(queue), 50)
        self.assertEqual(queue[0]["data"]["n"], 10)
        self.assertTrue(all(item["retryCount"] == 1 for item in queue))
        self.assertEqual(result.retained, 50)

    async def test_retry_exhaustion_over_drain_cycles(self) -> None:
        self.transport.default = False
        client = self.make_client()
        await client.send_event("open_popup", {})

        for expected in (1, 2):
            await client.process_event_queue()
            self.assertEqual(self.store.snapshot()["analytics_queue"][0]["retryCount"], expected)

        await client.process_event_queue()
        self.assertEqual(self.store.snapshot()["analytics_queue"], [])

    async def test_queue_status(self) -> None:
        client = self.make_client()
        self.assertEqual(
            await client.get_queue_status(),
            QueueStatus(length=0, processing=False, oldest_event=None, newest_event=None),
        )

        await client.send_event("a", {})
        first_at = self.store.snapshot()["analytics_queue"][0]["queuedAt"]
        self.clock.advance(250)
        await client.send_event("b", {})

        status = await client.get_queue_status()
        self.assertEqual(status.length, 2)
        self.assertEqual(status.oldest_event, first_at)
        self.assertEqual(status.newest_event, first_at + 250)
        self.assertEqual(status.as_dict()["length"], 2)

    async def test_clear_event_queue(self) -> None:
        client = self.make_client()
        await client.send_event("a", {})
        self.assertTrue(await client.clear_event_queue())
        self.assertEqual((await client.get_queue_status()).length, 0)

    async def test_disabled_client_does_nothing(self) -> None:
        client = self.make_client(TelemetrySettings(enabled=False))
        self.assertFalse(await client.send_event("copy", {}, SendOptions(immediate=True)))
        self.assertEqual(self.transport.requests, [])
        self.assertEqual(self.store.snapshot(), {})

    async def test_storage_outage_does_not_raise(self) -> None:
        client = self.make_client()
        self.store.failures.update(get=100, set=100, remove=100)

        self.assertTrue(await client.send_event("copy", {"format": "url"}))
        self.assertTrue(await client.send_event("install", {}, SendOptions(immediate=True)))
        self.assertEqual((await client.get_queue_status()).length, 0)
        self.assertFalse(await client.clear_event_queue())

    async def test_send_events_batch_passthrough(self) -> None:
        client = self.make_client()
        self.assertTrue(await client.send_events_batch([EventData("a", {"x": 1})]))
        self.assertEqual(client.delivery.strategy, DeliveryStrategy.REQUEST_ONLY)

    async def test_sensitive_properties_never_reach_the_wire(self) -> None:
        client = self.make_client()
        await client.send_event("login", {"secret_value": "s", "ok": 1}, SendOptions(immediate=True))
        body = self.transport.requests[0][1].decode("utf-8")
        self.assertNotIn("secret_value", body)
        self.assertIn('"ok":1', body)


class SchedulerTimerTests(unittest.IsolatedAsyncioTestCase):
    async def test_timer_drains_queue_and_stops(self) -> None:
        quiet_logging()
        store = FlakyStore()
        transport = FakeTransport()
        settings = TelemetrySettings(queue=QueueSettings(process_interval_ms=10))
        client = TelemetryClient(settings, store=store, transport=transport, environment=ENV)

        async with client:
            self.assertTrue(client.scheduler.running)
            await client.send_event("tick", {})
            for _ in range(100):
                if not store.snapshot().get("analytics_queue"):
                    break
                await asyncio.sleep(0.01)

        self.assertEqual(store.snapshot()["analytics_queue"], [])
        self.assertEqual(len(transport.requests), 1)
        self.assertFalse(client.scheduler.running)

    async def test_tick_is_noop_while_draining(self) -> None:
        quiet_logging()
        gate = asyncio.Event()
        calls: list[int] = []

        async def slow_batch(batch: list[QueuedEvent]) -> bool:
            calls.append(len(batch))
            await gate.wait()
            return True

        store = FlakyStore()
        settings = TelemetrySettings(queue=QueueSettings(process_interval_ms=10))
        client = TelemetryClient(settings, store=store, transport=FakeTransport(), environment=ENV)
        client.queue.send_batch = slow_batch
        await client.send_event("slow", {})

        client.start()
        await asyncio.sleep(0.1)
        self.assertEqual(calls, [1])
        self.assertTrue((await client.get_queue_status()).processing)

        gate.set()
        await client.aclose()


if __name__ == "__main__":
    unittest.main()
