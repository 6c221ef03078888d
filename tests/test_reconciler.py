import unittest

from fakes import make_post, sequential_ids, ticking_clock

from chatsync.sync.models import PendingSend, SendState
from chatsync.sync.optimistic import OptimisticSendTracker
from chatsync.sync.reconciler import Reconciler
from chatsync.sync.timeline import TimelineStore


def send(pending_id, body="hello", channel_id="C1", root_id="", submitted_at=100, sequence=0):
    return PendingSend(pending_id, channel_id, "me", body, root_id, submitted_at=submitted_at, sequence=sequence)


class TestReconciler(unittest.TestCase):
    """Echo matching between confirmed posts and outstanding sends"""

    def setUp(self):
        self.reconciler = Reconciler()

    def test_matches_on_full_signature(self):
        outstanding = [send("p1")]
        echo = make_post("s1", 200, author_id="me", body="hello")
        self.assertIs(self.reconciler.match(echo, outstanding), outstanding[0])

    def test_any_signature_difference_prevents_match(self):
        outstanding = [send("p1")]
        for echo in (
            make_post("s1", 200, author_id="other", body="hello"),
            make_post("s1", 200, author_id="me", body="hello!"),
            make_post("s1", 200, author_id="me", body="hello", channel_id="C2"),
            make_post("s1", 200, author_id="me", body="hello", root_id="r1"),
        ):
            self.assertIsNone(self.reconciler.match(echo, outstanding))

    def test_identical_sends_match_in_submission_order(self):
        first = send("p1", submitted_at=100, sequence=0)
        second = send("p2", submitted_at=100, sequence=1)
        echo = make_post("s1", 200, author_id="me", body="hello")

        self.assertIs(self.reconciler.match(echo, [second, first]), first)
        self.assertIs(self.reconciler.match(echo, [second]), second)

    def test_client_token_matches_exactly(self):
        first = send("p1", sequence=0)
        second = send("p2", sequence=1)
        echo = make_post("s2", 200, author_id="me", body="hello", pending_id="p2")

        self.assertIs(self.reconciler.match(echo, [first, second]), second)

    def test_unknown_client_token_is_never_matched_heuristically(self):
        echo = make_post("s1", 200, author_id="me", body="hello", pending_id="from-another-client")
        self.assertIsNone(self.reconciler.match(echo, [send("p1")]))

    def test_failed_sends_are_not_candidates(self):
        failed = send("p1")
        failed.state = SendState.FAILED
        echo = make_post("s1", 200, author_id="me", body="hello")
        self.assertIsNone(self.reconciler.match(echo, [failed]))

    def test_post_predating_send_beyond_skew_is_not_matched(self):
        outstanding = [send("p1", submitted_at=5000)]

        self.assertIsNone(self.reconciler.match(make_post("old1", 1000, author_id="me", body="hello"), outstanding))
        self.assertIs(self.reconciler.match(make_post("s1", 3500, author_id="me", body="hello"), outstanding), outstanding[0])
        self.assertIsNone(Reconciler(max_clock_skew_ms=0).match(make_post("s1", 4999, author_id="me", body="hello"), outstanding))

    def test_client_token_ignores_skew(self):
        outstanding = [send("p1", submitted_at=5000)]
        echo = make_post("s1", 1000, author_id="me", body="hello", pending_id="p1")
        self.assertIs(self.reconciler.match(echo, outstanding), outstanding[0])


class TestOptimisticSendTracker(unittest.TestCase):
    """submitted -> confirmed | failed transitions and their effect on the store"""

    def setUp(self):
        self.store = TimelineStore()
        self.store.load_page("C1", [make_post("a", 100)], has_more=False)
        self.tracker = OptimisticSendTracker(self.store, id_factory=sequential_ids(), clock=ticking_clock(1000))

    def test_submit_shows_pending_post_immediately(self):
        pending = self.tracker.submit("C1", "me", "hello")

        post = self.store.find_post(pending.pending_id)
        self.assertEqual(pending.pending_id, "p1")
        self.assertTrue(post.is_pending)
        self.assertEqual(post.created_at, 1000)
        self.assertEqual([p.key for p in self.store.channel_posts("C1")], ["a", "p1"])

    def test_confirm_replaces_pending_entry(self):
        self.tracker.submit("C1", "me", "hello")
        self.tracker.submit("C1", "me", "second")

        self.assertTrue(self.tracker.confirm("p1", make_post("s42", 1000, author_id="me", body="hello")))

        posts = self.store.channel_posts("C1")
        self.assertEqual([p.key for p in posts], ["a", "s42", "p2"])
        self.assertFalse(posts[1].is_pending)
        self.assertIsNone(self.tracker.get("p1"))
        self.assertFalse(self.tracker.confirm("p1", make_post("s42", 1000, author_id="me", body="hello")))

    def test_confirm_inserts_when_pending_entry_not_materialized(self):
        self.tracker.submit("C1", "me", "hello")
        self.store.load_page("C1", [], has_more=False)
        self.store.remove_pending("p1")

        self.tracker.confirm("p1", make_post("s42", 1000, author_id="me", body="hello"))
        self.assertEqual([p.key for p in self.store.channel_posts("C1")], ["s42"])

    def test_fail_keeps_entry_with_reason(self):
        self.tracker.submit("C1", "me", "hello")

        self.assertTrue(self.tracker.fail("p1", "server said no"))

        post = self.store.find_post("p1")
        self.assertTrue(post.is_pending)
        self.assertEqual(post.failure_reason, "server said no")
        self.assertEqual(self.tracker.outstanding(), [])
        self.assertEqual([s.pending_id for s in self.tracker.failed()], ["p1"])
        self.assertFalse(self.tracker.fail("p1", "again"))

    def test_retry_resubmits_under_new_pending_id(self):
        self.tracker.submit("C1", "me", "hello")
        self.tracker.fail("p1", "timeout")

        retried = self.tracker.retry("p1")

        self.assertEqual(retried.pending_id, "p2")
        self.assertEqual(retried.body, "hello")
        self.assertIsNone(self.store.find_post("p1"))
        self.assertTrue(self.store.find_post("p2").is_pending)
        self.assertIsNone(self.store.find_post("p2").failure_reason)

    def test_retry_only_applies_to_failed_sends(self):
        self.tracker.submit("C1", "me", "hello")
        self.assertIsNone(self.tracker.retry("p1"))
        self.assertIsNone(self.tracker.retry("unknown"))

    def test_outstanding_is_in_submission_order_and_filtered_by_channel(self):
        self.tracker.submit("C1", "me", "one")
        self.tracker.submit("C2", "me", "two")
        self.tracker.submit("C1", "me", "three")

        self.assertEqual([s.pending_id for s in self.tracker.outstanding("C1")], ["p1", "p3"])
        self.assertEqual(len(self.tracker.outstanding()), 3)

    def test_rematerialize_after_channel_reload(self):
        self.tracker.submit("C2", "me", "queued")
        self.assertIsNone(self.store.find_post("p1"))

        self.store.load_page("C2", [], has_more=False)
        self.assertEqual(self.tracker.rematerialize("C2"), 1)
        self.assertEqual([p.key for p in self.store.channel_posts("C2")], ["p1"])


if __name__ == "__main__":
    unittest.main()
