"""
Reconciler Module - Matches server-confirmed posts to outstanding optimistic sends
"""

import logging
from typing import Iterable, Optional, Tuple

from .models import PendingSend, Post, SendState

logger = logging.getLogger(__name__)


def signature(channel_id: str, author_id: str, root_id: str, body: str) -> Tuple[str, str, str, str]:
    return (channel_id, author_id, root_id or "", body)


class Reconciler:
    """
    Decides whether an incoming confirmed post is the echo of a local send

    Matching prefers the client token: a server post that carries a
    ``pending_id`` matches the outstanding send with that ID, and never
    anything else. Posts without a token fall back to comparing author,
    channel, root and body, taking the earliest-submitted candidate so that
    two identical pending messages are confirmed in submission order.
    A heuristic candidate is only accepted for a post created after the send
    was submitted, give or take ``max_clock_skew_ms``.
    """

    def __init__(self, max_clock_skew_ms: int = 2000):
        self.max_clock_skew_ms = max_clock_skew_ms

    def match(self, post: Post, outstanding: Iterable[PendingSend]) -> Optional[PendingSend]:
        """
        Find the pending send an incoming post confirms

        Args:
            post: Server-confirmed post
            outstanding: Sends still awaiting confirmation

        Returns:
            The matching send, or None if the post is a genuine new post
        """
        candidates = [s for s in outstanding if s.state == SendState.SUBMITTED]
        if not candidates:
            return None

        if post.pending_id:
            for send in candidates:
                if send.pending_id == post.pending_id:
                    return send
            return None

        wanted = signature(post.channel_id, post.author_id, post.root_id, post.body)
        matches = [
            s for s in candidates
            if signature(s.channel_id, s.author_id, s.root_id, s.body) == wanted
            and post.created_at >= s.submitted_at - self.max_clock_skew_ms
        ]
        if not matches:
            return None

        send = min(matches, key=lambda s: s.order_key)
        if len(matches) > 1:
            logger.debug(f"{len(matches)} identical pending sends for post {post.id}; matched earliest {send.pending_id}")
        return send
