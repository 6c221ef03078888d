import asyncio
import json
import unittest

from fakes import FakeConnector, FakeWebSocket, RecordingSleep, post_event, wait_until

from chatsync.sync.connection import ConnectionSupervisor
from chatsync.sync.events import PostCreated
from chatsync.sync.models import ConnectionState


def make_supervisor(connector, sleep, **kwargs):
    kwargs.setdefault("heartbeat_interval", 3600)
    return ConnectionSupervisor("ws://chat.test/api/websocket", connect=connector, sleep=sleep, **kwargs)


class TestBackoff(unittest.TestCase):
    """Reconnect delays: min(base * 2**n, cap)"""

    def test_delays_double_up_to_cap(self):
        supervisor = ConnectionSupervisor("ws://x", base_delay=1.0, max_delay=30.0, max_attempts=10)
        delays = [supervisor.next_delay() for _ in range(8)]

        self.assertEqual(delays, [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0, 30.0])
        self.assertEqual(supervisor.status.reconnect_attempt, 8)

    def test_degraded_past_attempt_ceiling(self):
        supervisor = ConnectionSupervisor("ws://x", max_attempts=2)
        supervisor.next_delay()
        supervisor.next_delay()
        self.assertFalse(supervisor.status.degraded)
        supervisor.next_delay()
        self.assertTrue(supervisor.status.degraded)

    def test_huge_attempt_count_stays_at_cap(self):
        supervisor = ConnectionSupervisor("ws://x", max_delay=30.0)
        supervisor.status.reconnect_attempt = 5000
        self.assertEqual(supervisor.next_delay(), 30.0)


class TestConnectionSupervisor(unittest.TestCase):
    """Connect loop driven by scripted sockets"""

    def test_reconnects_with_backoff_and_resets_attempts(self):
        async def scenario():
            held = FakeWebSocket(hold=True)
            connector = FakeConnector([OSError("refused"), OSError("refused"), OSError("refused"), held])
            sleep = RecordingSleep()
            statuses = []
            supervisor = make_supervisor(connector, sleep)
            supervisor.attach(lambda event: None, lambda status, reconnected: statuses.append((status.state, status.reconnect_attempt, reconnected)))

            supervisor.start()
            await wait_until(lambda: supervisor.status.connected)

            self.assertEqual(sleep.delays, [1.0, 2.0, 4.0])
            self.assertEqual(supervisor.status.reconnect_attempt, 0)
            self.assertEqual(statuses[-1], (ConnectionState.CONNECTED, 0, False))
            self.assertIn((ConnectionState.DISCONNECTED, 3, False), statuses)
            self.assertEqual(connector.calls[0][1], {"ping_interval": None})

            await supervisor.stop()
            self.assertEqual(supervisor.status.state, ConnectionState.TERMINATED)
            self.assertTrue(held.closed)

        asyncio.run(scenario())

    def test_second_connect_is_reported_as_reconnect(self):
        async def scenario():
            first = FakeWebSocket()
            second = FakeWebSocket(hold=True)
            connector = FakeConnector([first, second])
            sleep = RecordingSleep()
            reconnects = []
            supervisor = make_supervisor(connector, sleep)
            supervisor.attach(lambda event: None, lambda status, reconnected: reconnects.append(reconnected) if status.connected else None)

            supervisor.start()
            await wait_until(lambda: len(connector.calls) == 2 and supervisor.status.connected)

            self.assertEqual(reconnects, [False, True])
            self.assertEqual(sleep.delays, [1.0])
            await supervisor.stop()

        asyncio.run(scenario())

    def test_sends_auth_frame_first(self):
        async def scenario():
            ws = FakeWebSocket(hold=True)
            supervisor = make_supervisor(FakeConnector([ws]), RecordingSleep(), token="secret")
            supervisor.start()
            await wait_until(lambda: supervisor.status.connected)

            frame = json.loads(ws.sent[0])
            self.assertEqual((frame["action"], frame["token"]), ("authenticate", "secret"))
            await supervisor.stop()

        asyncio.run(scenario())

    def test_decodes_frames_and_skips_garbage(self):
        async def scenario():
            ws = FakeWebSocket(frames=[
                "not json",
                json.dumps({"event": "mystery"}),
                json.dumps({"status": "OK", "seq_reply": 1}),
                json.dumps(post_event("s1", 100)),
            ], hold=True)
            events = []
            supervisor = make_supervisor(FakeConnector([ws]), RecordingSleep())
            supervisor.attach(events.append)
            supervisor.start()
            await wait_until(lambda: len(events) == 1)

            self.assertIsInstance(events[0], PostCreated)
            self.assertTrue(supervisor.status.connected)
            await supervisor.stop()

        asyncio.run(scenario())

    def test_failing_event_callback_does_not_drop_connection(self):
        async def scenario():
            ws = FakeWebSocket(frames=[json.dumps(post_event("s1", 100)), json.dumps(post_event("s2", 200))], hold=True)
            seen = []

            def on_event(event):
                seen.append(event.post.id)
                raise RuntimeError("listener bug")

            connector = FakeConnector([ws])
            supervisor = make_supervisor(connector, RecordingSleep())
            supervisor.attach(on_event)
            supervisor.start()
            await wait_until(lambda: len(seen) == 2)

            self.assertTrue(supervisor.status.connected)
            self.assertEqual(len(connector.calls), 1)
            await supervisor.stop()

        asyncio.run(scenario())

    def test_heartbeat_timeout_closes_and_reconnects(self):
        async def scenario():
            silent = FakeWebSocket(hold=True, answer_pings=False)
            healthy = FakeWebSocket(hold=True)
            connector = FakeConnector([silent, healthy])
            supervisor = make_supervisor(connector, RecordingSleep(), heartbeat_interval=0.01, heartbeat_timeout=0.01)
            supervisor.start()

            await wait_until(lambda: len(connector.calls) == 2 and supervisor.status.connected)

            self.assertTrue(silent.closed)
            self.assertGreaterEqual(silent.pings, 1)
            await supervisor.stop()

        asyncio.run(scenario())

    def test_typing_frames_are_throttled_per_channel(self):
        async def scenario():
            ws = FakeWebSocket(hold=True)
            supervisor = make_supervisor(FakeConnector([ws]), RecordingSleep(), typing_throttle=60.0)

            self.assertFalse(await supervisor.send_typing("C1"))

            supervisor.start()
            await wait_until(lambda: supervisor.status.connected)

            self.assertTrue(await supervisor.send_typing("C1"))
            self.assertFalse(await supervisor.send_typing("C1"))
            self.assertTrue(await supervisor.send_typing("C1", "root"))

            frames = [json.loads(f) for f in ws.sent]
            self.assertEqual([f["action"] for f in frames], ["user_typing", "user_typing"])
            self.assertEqual(frames[1]["data"], {"channel_id": "C1", "root_id": "root"})
            await supervisor.stop()

        asyncio.run(scenario())

    def test_typing_throttle_starts_fresh_on_reconnect(self):
        async def scenario():
            first = FakeWebSocket(hold=True)
            second = FakeWebSocket(hold=True)
            connector = FakeConnector([first, second])
            supervisor = make_supervisor(connector, RecordingSleep(), typing_throttle=60.0)

            supervisor.start()
            await wait_until(lambda: supervisor.status.connected)
            self.assertTrue(await supervisor.send_typing("C1"))
            self.assertFalse(await supervisor.send_typing("C1"))

            first.end()
            await wait_until(lambda: len(connector.calls) == 2 and supervisor.status.connected)

            self.assertTrue(await supervisor.send_typing("C1"))
            self.assertEqual([json.loads(f)["action"] for f in second.sent], ["user_typing"])
            await supervisor.stop()

        asyncio.run(scenario())


if __name__ == "__main__":
    unittest.main()
