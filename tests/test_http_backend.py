import asyncio
import json
import unittest

import httpx

import fakes  # noqa: F401  (puts the project root on sys.path)

from chatsync.sync.errors import BackendError
from chatsync.sync.models import Reaction
from chatsync.transport.http_backend import HttpChatBackend


def post_json(post_id, created_at, **extra):
    data = {"id": post_id, "channel_id": "C1", "author_id": "u1", "body": f"message {post_id}", "created_at": created_at}
    data.update(extra)
    return data


class TestHttpChatBackend(unittest.TestCase):
    """REST calls against an httpx MockTransport"""

    def setUp(self):
        self.requests = []
        self.routes = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "not found"})
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(request)
        return route

    def run_backend(self, call):
        async def scenario():
            backend = HttpChatBackend("http://chat.test/api/", token="tok", transport=httpx.MockTransport(self.handler))
            try:
                return await call(backend)
            finally:
                await backend.aclose()

        return asyncio.run(scenario())

    def test_fetch_posts_sends_paging_params(self):
        self.routes[("GET", "/api/channels/C1/posts")] = httpx.Response(200, json={"posts": [
            post_json("a", 100), post_json("b", 200, root_id="a", updated_at=250),
        ]})

        posts = self.run_backend(lambda b: b.fetch_posts("C1", 2, 30))

        self.assertEqual([p.id for p in posts], ["a", "b"])
        self.assertEqual(posts[1].updated_at, 250)
        request = self.requests[0]
        self.assertEqual(dict(request.url.params), {"page": "2", "per_page": "30"})
        self.assertEqual(request.headers["Authorization"], "Bearer tok")

    def test_create_post_carries_client_token(self):
        def created(request):
            body = json.loads(request.content)
            return httpx.Response(201, json=post_json("s1", 500, body=body["body"], root_id=body["root_id"]))

        self.routes[("POST", "/api/channels/C1/posts")] = created

        post = self.run_backend(lambda b: b.create_post("C1", "hello", "root", client_token="p1"))

        self.assertEqual(json.loads(self.requests[0].content), {"body": "hello", "root_id": "root", "client_token": "p1"})
        self.assertEqual((post.id, post.body, post.root_id, post.pending_id), ("s1", "hello", "root", "p1"))
        self.assertFalse(post.is_pending)

    def test_http_error_becomes_backend_error_with_status(self):
        self.routes[("POST", "/api/channels/C1/posts")] = httpx.Response(500, json={"message": "db down"})

        with self.assertRaises(BackendError) as ctx:
            self.run_backend(lambda b: b.create_post("C1", "hello"))

        self.assertEqual(ctx.exception.status_code, 500)

    def test_network_error_becomes_backend_error(self):
        self.routes[("GET", "/api/posts/root/thread")] = httpx.ConnectError("connection refused")

        with self.assertRaises(BackendError) as ctx:
            self.run_backend(lambda b: b.fetch_thread("root"))

        self.assertIsNone(ctx.exception.status_code)
        self.assertIn("connection refused", str(ctx.exception))

    def test_malformed_posts_raise_backend_error(self):
        self.routes[("GET", "/api/channels/C1/posts")] = httpx.Response(200, json={"posts": [{"id": "a"}]})

        with self.assertRaises(BackendError):
            self.run_backend(lambda b: b.fetch_posts("C1", 0, 30))

    def test_invalid_json_raises_backend_error(self):
        self.routes[("GET", "/api/channels")] = httpx.Response(200, content=b"<html>", headers={"Content-Type": "text/html"})

        with self.assertRaises(BackendError):
            self.run_backend(lambda b: b.fetch_channels())

    def test_mark_read_accepts_empty_response(self):
        self.routes[("POST", "/api/channels/C1/read")] = httpx.Response(204)

        self.assertIsNone(self.run_backend(lambda b: b.mark_read("C1")))
        self.assertEqual(self.requests[0].method, "POST")

    def test_fetch_unreads_and_channels(self):
        self.routes[("POST", "/api/channels/unreads")] = httpx.Response(200, json={"unreads": [
            {"channel_id": "C1", "msg_count": 3, "mention_count": 1}, "junk",
        ]})
        self.routes[("GET", "/api/channels")] = httpx.Response(200, json={"channels": [
            {"id": "C1", "display_name": "general", "last_post_at": 900, "team_id": "t"},
        ]})

        async def call(backend):
            return await backend.fetch_unreads(["C1", "C2"]), await backend.fetch_channels()

        unreads, channels = self.run_backend(call)

        self.assertEqual(json.loads(self.requests[0].content), {"channel_ids": ["C1", "C2"]})
        self.assertEqual(unreads, [{"channel_id": "C1", "msg_count": 3, "mention_count": 1}])
        self.assertEqual([(c.id, c.display_name, c.last_post_at) for c in channels], [("C1", "general", 900)])

    def test_fetch_reactions_skips_malformed_entries(self):
        self.routes[("POST", "/api/posts/reactions")] = httpx.Response(200, json={"reactions": [
            {"post_id": "a", "user_id": "u1", "emoji_name": "tada"},
            {"post_id": "a"},
        ]})

        reactions = self.run_backend(lambda b: b.fetch_reactions(["a"]))

        self.assertEqual(reactions, [Reaction("a", "u1", "tada")])


if __name__ == "__main__":
    unittest.main()
