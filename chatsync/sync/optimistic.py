"""
Optimistic Module - Tracks locally created posts from submission until confirm or failure
"""

import itertools
import logging
import uuid
from typing import Callable, Dict, List, Optional

from .models import PendingSend, Post, SendState, now_ms
from .timeline import TimelineStore

logger = logging.getLogger(__name__)


def _default_pending_id() -> str:
    return f"pending_{uuid.uuid4().hex}"


class OptimisticSendTracker:
    """
    State machine per pending send: submitted -> confirmed | failed

    Submitting inserts a provisional post into the timeline store right away.
    The tracker never times sends out on its own; it only reacts to explicit
    confirm and fail signals.
    """

    def __init__(self,
                 store: TimelineStore,
                 id_factory: Optional[Callable[[], str]] = None,
                 clock: Optional[Callable[[], int]] = None):
        """
        Initialize the tracker

        Args:
            store: Timeline store receiving provisional posts
            id_factory: Generates pending IDs (defaults to random UUID based IDs)
            clock: Returns the current time in epoch milliseconds
        """
        self.store = store
        self._id_factory = id_factory or _default_pending_id
        self._clock = clock or now_ms
        self._sequence = itertools.count()
        self._sends: Dict[str, PendingSend] = {}

    def get(self, pending_id: str) -> Optional[PendingSend]:
        return self._sends.get(pending_id)

    def outstanding(self, channel_id: Optional[str] = None) -> List[PendingSend]:
        """Sends still awaiting confirmation, in submission order"""
        sends = [
            s for s in self._sends.values()
            if s.state == SendState.SUBMITTED and (channel_id is None or s.channel_id == channel_id)
        ]
        return sorted(sends, key=lambda s: s.order_key)

    def failed(self) -> List[PendingSend]:
        return sorted(
            (s for s in self._sends.values() if s.state == SendState.FAILED),
            key=lambda s: s.order_key,
        )

    def submit(self, channel_id: str, author_id: str, body: str, root_id: str = "") -> PendingSend:
        """
        Register a new send and show it immediately as a pending post

        Args:
            channel_id: Target channel
            author_id: Local user ID
            body: Message text
            root_id: Thread root for replies

        Returns:
            The new pending send
        """
        pending_id = self._id_factory()
        while pending_id in self._sends:
            pending_id = self._id_factory()

        send = PendingSend(
            pending_id=pending_id,
            channel_id=channel_id,
            author_id=author_id,
            body=body,
            root_id=root_id,
            submitted_at=self._clock(),
            sequence=next(self._sequence),
        )
        self._sends[pending_id] = send
        shown = self.store.insert_pending(send.to_post())
        logger.debug(f"Submitted {pending_id} in {channel_id} (shown={shown})")
        return send

    def confirm(self, pending_id: str, server_post: Post) -> bool:
        """
        Replace a pending post with its confirmed server copy

        Args:
            pending_id: Pending ID of the send
            server_post: Server-confirmed post

        Returns:
            False if the pending ID is unknown (already confirmed, or never submitted here)
        """
        send = self._sends.pop(pending_id, None)
        if send is None:
            return False

        send.state = SendState.CONFIRMED
        server_post.is_pending = False
        server_post.failure_reason = None
        if not self.store.replace_pending(pending_id, server_post):
            # Pending entry is not materialized (channel or thread closed meanwhile)
            if server_post.is_reply:
                self.store.insert_thread_reply(server_post)
            else:
                self.store.insert_live(server_post.channel_id, server_post)
        logger.debug(f"Confirmed {pending_id} as {server_post.id}")
        return True

    def fail(self, pending_id: str, reason: str) -> bool:
        send = self._sends.get(pending_id)
        if send is None or send.state != SendState.SUBMITTED:
            return False
        send.state = SendState.FAILED
        send.failure_reason = reason or "Send failed"
        self.store.mark_failed(pending_id, send.failure_reason)
        logger.warning(f"Send {pending_id} failed: {send.failure_reason}")
        return True

    def retry(self, pending_id: str) -> Optional[PendingSend]:
        """
        Re-submit a failed send under a fresh pending ID

        Args:
            pending_id: Pending ID of the failed send

        Returns:
            The new pending send, or None if ``pending_id`` is not a failed send
        """
        send = self._sends.get(pending_id)
        if send is None or send.state != SendState.FAILED:
            return None
        del self._sends[pending_id]
        self.store.remove_pending(pending_id)
        return self.submit(send.channel_id, send.author_id, send.body, send.root_id)

    def rematerialize(self, channel_id: str) -> int:
        """Re-insert provisional posts for a channel (and its open thread) after a reload"""
        shown = 0
        for send in sorted(self._sends.values(), key=lambda s: s.order_key):
            if send.channel_id == channel_id and self.store.insert_pending(send.to_post()):
                shown += 1
        return shown

    def reset(self) -> None:
        self._sends.clear()
