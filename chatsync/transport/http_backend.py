"""
HTTP Backend Module - httpx implementation of ChatBackend

Talks to a normalized JSON REST surface:

    GET  /channels                              -> {"channels": [...]}
    GET  /channels/{id}/posts?page=&per_page=   -> {"posts": [...]}
    POST /channels/{id}/posts                   -> post
    POST /channels/{id}/read
    POST /channels/unreads                      -> {"unreads": [...]}
    GET  /posts/{root_id}/thread                -> {"posts": [...]}
    POST /posts/reactions                       -> {"reactions": [...]}
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx
from pydantic import ValidationError

from ..sync.backend import ChatBackend
from ..sync.errors import BackendError, EventDecodeError
from ..sync.events import ChannelPayload, PostPayload, decode_posts
from ..sync.models import Channel, Post, Reaction

logger = logging.getLogger(__name__)


class HttpChatBackend(ChatBackend):
    """REST collaborator over httpx.AsyncClient"""

    def __init__(self,
                 base_url: str,
                 token: str = "",
                 timeout: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the backend

        Args:
            base_url: API root, e.g. ``http://localhost:8065/api``
            token: Bearer token (omitted when empty)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used to mock the server in tests)
        """
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise BackendError(f"{method} {path} returned HTTP {status}", status_code=status) from e
        except httpx.HTTPError as e:
            raise BackendError(f"{method} {path} failed: {str(e) or type(e).__name__}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"{method} {path} returned invalid JSON", status_code=response.status_code) from e

    def _posts(self, data: Any, path: str) -> List[Post]:
        items = data.get("posts", []) if isinstance(data, dict) else data
        try:
            return decode_posts(items or [])
        except EventDecodeError as e:
            raise BackendError(f"Malformed posts from {path}: {str(e)}") from e

    async def fetch_posts(self, channel_id: str, page: int, per_page: int) -> List[Post]:
        path = f"/channels/{channel_id}/posts"
        data = await self._request("GET", path, params={"page": page, "per_page": per_page})
        return self._posts(data, path)

    async def fetch_thread(self, root_id: str) -> List[Post]:
        path = f"/posts/{root_id}/thread"
        data = await self._request("GET", path)
        return self._posts(data, path)

    async def create_post(self, channel_id: str, body: str, root_id: str = "", client_token: str = "") -> Post:
        path = f"/channels/{channel_id}/posts"
        payload: Dict[str, Any] = {"body": body, "root_id": root_id or ""}
        if client_token:
            payload["client_token"] = client_token
        data = await self._request("POST", path, json=payload)
        try:
            post = PostPayload.model_validate(data).to_post()
        except ValidationError as e:
            raise BackendError(f"Malformed post from {path}: {e.error_count()} error(s)") from e
        if client_token and not post.pending_id:
            post.pending_id = client_token
        return post

    async def mark_read(self, channel_id: str) -> None:
        await self._request("POST", f"/channels/{channel_id}/read")

    async def fetch_unreads(self, channel_ids: Iterable[str]) -> List[Dict[str, Any]]:
        data = await self._request("POST", "/channels/unreads", json={"channel_ids": list(channel_ids)})
        entries = data.get("unreads", []) if isinstance(data, dict) else (data or [])
        return [e for e in entries if isinstance(e, dict)]

    async def fetch_channels(self) -> List[Channel]:
        data = await self._request("GET", "/channels")
        items = data.get("channels", []) if isinstance(data, dict) else (data or [])
        try:
            return [ChannelPayload.model_validate(item).to_channel() for item in items]
        except ValidationError as e:
            raise BackendError(f"Malformed channel list: {e.error_count()} error(s)") from e

    async def fetch_reactions(self, post_ids: Iterable[str]) -> Optional[List[Reaction]]:
        data = await self._request("POST", "/posts/reactions", json={"post_ids": list(post_ids)})
        items = data.get("reactions", []) if isinstance(data, dict) else (data or [])
        reactions = []
        for item in items:
            try:
                reactions.append(Reaction(item["post_id"], item["user_id"], item["emoji_name"]))
            except (KeyError, TypeError):
                logger.debug(f"Skipping malformed reaction {item!r}")
        return reactions

    async def aclose(self) -> None:
        await self._client.aclose()
