"""
Backend Module - Abstract REST collaborator consumed by the sync engine

A concrete backend normalizes one chat server's REST API into the records
below. Every method may raise BackendError; the engine turns those into
failed sends or abandoned fetches, never into crashes.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from .models import Channel, Post, Reaction


class ChatBackend(ABC):
    """Request/response side of a chat server"""

    @abstractmethod
    async def fetch_posts(self, channel_id: str, page: int, per_page: int) -> List[Post]:
        """
        Fetch one page of a channel's history, newest page first

        Args:
            channel_id: Channel ID
            page: Page index, 0 is the newest page
            per_page: Page size

        Returns:
            Posts in any order; a full page implies more history exists
        """

    @abstractmethod
    async def fetch_thread(self, root_id: str) -> List[Post]:
        """Fetch a thread: the root post and all of its replies"""

    @abstractmethod
    async def create_post(self, channel_id: str, body: str, root_id: str = "", client_token: str = "") -> Post:
        """
        Create a post

        Args:
            channel_id: Target channel
            body: Message text
            root_id: Thread root for replies
            client_token: Idempotency token; servers that support it echo it back as ``pending_id``

        Returns:
            The server-confirmed post
        """

    @abstractmethod
    async def mark_read(self, channel_id: str) -> None:
        """Tell the server the local user has read a channel"""

    @abstractmethod
    async def fetch_unreads(self, channel_ids: Iterable[str]) -> List[Dict[str, Any]]:
        """Fetch unread counters as mappings with ``channel_id``, ``msg_count`` and ``mention_count``"""

    @abstractmethod
    async def fetch_channels(self) -> List[Channel]:
        """Fetch the channels the local user belongs to"""

    async def fetch_reactions(self, post_ids: Iterable[str]) -> Optional[List[Reaction]]:
        """
        Fetch reactions for a set of posts

        Returns:
            All reactions on those posts, or None when the backend cannot list reactions
        """
        return None

    async def aclose(self) -> None:
        """Release network resources"""
