import unittest

import fakes  # noqa: F401  (puts the project root on sys.path)

from chatsync.sync.pagination import FIRST_PAGE, OLDER_PAGE, PaginationController


class TestPaginationController(unittest.TestCase):
    """Cursor, has_more and stale-response handling"""

    def setUp(self):
        self.pagination = PaginationController(page_size=30)

    def test_begin_requests_newest_page(self):
        request = self.pagination.begin("C1")

        self.assertEqual((request.channel_id, request.page, request.per_page, request.kind), ("C1", 0, 30, FIRST_PAGE))
        self.assertTrue(self.pagination.is_loading(FIRST_PAGE))

    def test_older_pages_advance_the_cursor(self):
        first = self.pagination.begin("C1")
        self.assertIsNone(self.pagination.request_older("C1"))

        self.pagination.complete(self.pagination.resolve("C1", request_id=first.request_id), has_more=True)
        older = self.pagination.request_older("C1")
        self.assertEqual((older.page, older.kind), (1, OLDER_PAGE))
        self.assertIsNone(self.pagination.request_older("C1"))

        self.pagination.complete(self.pagination.resolve("C1", page=1), has_more=True)
        self.assertEqual(self.pagination.request_older("C1").page, 2)

    def test_no_request_when_history_is_exhausted(self):
        request = self.pagination.begin("C1")
        self.pagination.complete(request.kind, has_more=False)
        self.assertIsNone(self.pagination.request_older("C1"))

    def test_requests_for_inactive_channel_are_refused(self):
        self.pagination.begin("C1")
        self.assertIsNone(self.pagination.request_older("C2"))

    def test_response_for_previous_channel_is_stale(self):
        old = self.pagination.begin("C1")
        self.pagination.begin("C2")

        self.assertIsNone(self.pagination.resolve("C1", page=0))
        self.assertIsNone(self.pagination.resolve("C2", request_id=old.request_id))

    def test_refresh_supersedes_older_request(self):
        first = self.pagination.begin("C1")
        self.pagination.complete(first.kind, has_more=True)
        older = self.pagination.request_older("C1")

        refresh = self.pagination.refresh()

        self.assertEqual((refresh.page, refresh.kind), (0, FIRST_PAGE))
        self.assertIsNone(self.pagination.resolve("C1", request_id=older.request_id))
        self.assertEqual(self.pagination.resolve("C1", request_id=refresh.request_id), FIRST_PAGE)

        self.pagination.complete(FIRST_PAGE, has_more=True)
        self.assertEqual(self.pagination.next_page, 1)

    def test_refresh_without_active_channel(self):
        self.assertIsNone(self.pagination.refresh())

    def test_failed_request_can_be_retried(self):
        first = self.pagination.begin("C1")
        self.pagination.complete(first.kind, has_more=True)
        older = self.pagination.request_older("C1")

        self.pagination.fail(older)

        self.assertFalse(self.pagination.is_loading())
        self.assertEqual(self.pagination.request_older("C1").page, 1)


if __name__ == "__main__":
    unittest.main()
