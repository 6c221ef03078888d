import unittest

import fakes  # noqa: F401  (puts the project root on sys.path)

from chatsync.sync.models import Channel, Reaction
from chatsync.sync.presence import UnreadPresenceAggregator
from chatsync.sync.reactions import ReactionStore


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestUnreadPresenceAggregator(unittest.TestCase):
    """Unread counters, presence statuses and typing expiry"""

    def setUp(self):
        self.clock = FakeClock(100.0)
        self.aggregator = UnreadPresenceAggregator(typing_timeout=5.0, clock=self.clock)
        self.aggregator.set_channels([Channel("C1", "general"), Channel("C2", "random")])

    def test_snapshot_replaces_counters_wholesale(self):
        self.aggregator.apply_delta("C2", 4, 2)

        changed = self.aggregator.apply_snapshot([
            {"channel_id": "C2", "msg_count": 1, "mention_count": 0},
            {"channel_id": "C3", "msg_count": 7, "mention_count": 1},
        ])

        self.assertTrue(changed)
        self.assertEqual(self.aggregator.unread_map()["C2"], {"unread_count": 1, "mention_count": 0})
        self.assertEqual(self.aggregator.unread_map()["C3"], {"unread_count": 7, "mention_count": 1})

    def test_deltas_are_additive_and_skip_open_channel(self):
        self.aggregator.set_active("C1")

        self.assertFalse(self.aggregator.apply_delta("C1", 1))
        self.aggregator.apply_delta("C2", 1)
        self.aggregator.apply_delta("C2", 2, 1)

        self.assertEqual(self.aggregator.channels["C1"].unread_count, 0)
        self.assertEqual(self.aggregator.channels["C2"].unread_count, 3)
        self.assertEqual(self.aggregator.channels["C2"].mention_count, 1)

    def test_delta_for_unknown_channel_is_ignored(self):
        self.assertFalse(self.aggregator.apply_delta("C9", 1))
        self.assertNotIn("C9", self.aggregator.channels)

    def test_mark_read_is_optimistic_and_snapshot_can_reraise(self):
        self.aggregator.apply_delta("C2", 3)

        self.assertTrue(self.aggregator.mark_read("C2"))
        self.assertEqual(self.aggregator.channels["C2"].unread_count, 0)
        self.assertFalse(self.aggregator.mark_read("C2"))

        self.aggregator.apply_snapshot([{"channel_id": "C2", "msg_count": 3, "mention_count": 0}])
        self.assertEqual(self.aggregator.channels["C2"].unread_count, 3)

    def test_set_channels_keeps_counters(self):
        self.aggregator.apply_delta("C2", 2)
        self.aggregator.set_channels([Channel("C2", "renamed", last_post_at=50)])

        channel = self.aggregator.channels["C2"]
        self.assertEqual((channel.display_name, channel.unread_count, channel.last_post_at), ("renamed", 2, 50))

    def test_presence_accepts_known_statuses_only(self):
        self.assertTrue(self.aggregator.set_presence("u1", "online"))
        self.assertFalse(self.aggregator.set_presence("u1", "online"))
        self.assertFalse(self.aggregator.set_presence("u1", "invisible"))
        self.assertTrue(self.aggregator.merge_presence({"u1": "dnd", "u2": "away"}))
        self.assertEqual(self.aggregator.presence, {"u1": "dnd", "u2": "away"})

    def test_typing_expires_after_timeout(self):
        self.aggregator.observe_typing("u1", "C1")
        self.clock.now = 103.0
        self.aggregator.observe_typing("u2", "C1")

        self.assertEqual(self.aggregator.typing_users("C1"), ["u1", "u2"])

        self.clock.now = 106.0
        self.assertEqual(self.aggregator.typing_users("C1"), ["u2"])

        self.clock.now = 200.0
        self.assertTrue(self.aggregator.prune_typing())
        self.assertEqual(self.aggregator.typing_snapshot(), [])

    def test_typing_in_thread_is_kept_apart_from_channel(self):
        self.aggregator.observe_typing("u1", "C1", "root")

        self.assertEqual(self.aggregator.typing_users("C1"), [])
        self.assertEqual(self.aggregator.typing_users("C1", "root"), ["u1"])

    def test_reset_forgets_everything(self):
        self.aggregator.set_presence("u1", "online")
        self.aggregator.observe_typing("u1", "C1")
        self.aggregator.reset()

        self.assertEqual(self.aggregator.channels, {})
        self.assertEqual(self.aggregator.presence, {})
        self.assertEqual(self.aggregator.typing_snapshot(), [])


class TestReactionStore(unittest.TestCase):
    """Set semantics of reactions"""

    def test_add_and_remove_are_idempotent(self):
        store = ReactionStore()
        reaction = Reaction("p1", "u1", "tada")

        self.assertTrue(store.add(reaction))
        self.assertFalse(store.add(Reaction("p1", "u1", "tada")))
        self.assertTrue(store.remove(reaction))
        self.assertFalse(store.remove(reaction))
        self.assertEqual(store.snapshot(), {})

    def test_replace_and_retain(self):
        store = ReactionStore()
        store.add(Reaction("p1", "u1", "tada"))
        store.replace_for_post("p2", [Reaction("p2", "u1", "eyes"), Reaction("p9", "u1", "ignored")])

        self.assertEqual(store.for_post("p2"), [Reaction("p2", "u1", "eyes")])

        store.retain_posts({"p2"})
        self.assertEqual(list(store.snapshot()), ["p2"])


if __name__ == "__main__":
    unittest.main()
