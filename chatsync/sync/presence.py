"""
Presence Module - Unread counters, user presence and typing indicators

Unread counts come from two sources: bulk snapshots, which are authoritative
and replace counts wholesale, and incremental deltas, which are additive and
skip the channel currently open (the open channel is considered read).
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .models import Channel, TypingEntry

logger = logging.getLogger(__name__)

PRESENCE_STATUSES = ("online", "away", "offline", "dnd")


class UnreadPresenceAggregator:
    """Per-channel unread/mention counts plus per-user presence and typing state"""

    def __init__(self, typing_timeout: float = 5.0, clock: Optional[Callable[[], float]] = None):
        """
        Initialize the aggregator

        Args:
            typing_timeout: Seconds after which a typing entry expires
            clock: Returns the current time in seconds (monotonic)
        """
        self.typing_timeout = typing_timeout
        self._clock = clock or time.monotonic
        self.channels: Dict[str, Channel] = {}
        self.active_channel_id: Optional[str] = None
        self.presence: Dict[str, str] = {}
        self._typing: Dict[Tuple[str, str, str], TypingEntry] = {}

    # ─── Channels ─────────────────────────────────────────────────

    def add_channel(self, channel: Channel) -> bool:
        """Record a newly observed channel; returns False if it was already known"""
        if channel.id in self.channels:
            return False
        self.channels[channel.id] = channel
        return True

    def set_channels(self, channels: Iterable[Channel]) -> None:
        """Upsert channels from a listing, keeping locally known counters"""
        for channel in channels:
            existing = self.channels.get(channel.id)
            if existing is None:
                self.channels[channel.id] = channel
                continue
            existing.display_name = channel.display_name or existing.display_name
            existing.last_post_at = max(existing.last_post_at, channel.last_post_at)

    def update_channel(self, channel_id: str,
                       display_name: Optional[str] = None,
                       last_post_at: Optional[int] = None) -> bool:
        channel = self.channels.get(channel_id)
        if channel is None:
            return False
        changed = False
        if display_name is not None and display_name != channel.display_name:
            channel.display_name = display_name
            changed = True
        if last_post_at is not None and last_post_at > channel.last_post_at:
            channel.last_post_at = last_post_at
            changed = True
        return changed

    def note_post(self, channel_id: str, created_at: int) -> bool:
        return self.update_channel(channel_id, last_post_at=created_at)

    def set_active(self, channel_id: Optional[str]) -> None:
        self.active_channel_id = channel_id

    # ─── Unreads ──────────────────────────────────────────────────

    def apply_snapshot(self, entries: Iterable[Dict[str, Any]]) -> bool:
        """
        Replace unread counters from an authoritative bulk fetch

        Args:
            entries: Mappings with ``channel_id``, ``msg_count`` and ``mention_count``

        Returns:
            True if any counter changed
        """
        changed = False
        for entry in entries:
            channel_id = entry.get("channel_id")
            if not channel_id:
                continue
            channel = self.channels.get(channel_id)
            if channel is None:
                channel = Channel(channel_id)
                self.channels[channel_id] = channel
                changed = True
            unread = max(0, int(entry.get("msg_count") or 0))
            mentions = max(0, int(entry.get("mention_count") or 0))
            if (channel.unread_count, channel.mention_count) != (unread, mentions):
                channel.unread_count = unread
                channel.mention_count = mentions
                changed = True
        return changed

    def apply_delta(self, channel_id: str, msg_delta: int = 1, mention_delta: int = 0) -> bool:
        if channel_id == self.active_channel_id:
            return False
        channel = self.channels.get(channel_id)
        if channel is None:
            logger.debug(f"Unread delta for unknown channel {channel_id} ignored")
            return False
        channel.unread_count = max(0, channel.unread_count + msg_delta)
        channel.mention_count = max(0, channel.mention_count + mention_delta)
        return True

    def mark_read(self, channel_id: str) -> bool:
        channel = self.channels.get(channel_id)
        if channel is None:
            return False
        if channel.unread_count == 0 and channel.mention_count == 0:
            return False
        channel.unread_count = 0
        channel.mention_count = 0
        return True

    def unread_map(self) -> Dict[str, Dict[str, int]]:
        return {
            cid: {"unread_count": c.unread_count, "mention_count": c.mention_count}
            for cid, c in self.channels.items()
        }

    # ─── Presence ─────────────────────────────────────────────────

    def set_presence(self, user_id: str, status: str) -> bool:
        if status not in PRESENCE_STATUSES:
            logger.debug(f"Ignoring unknown presence status {status!r} for {user_id}")
            return False
        if self.presence.get(user_id) == status:
            return False
        self.presence[user_id] = status
        return True

    def merge_presence(self, statuses: Dict[str, str]) -> bool:
        changed = False
        for user_id, status in statuses.items():
            changed = self.set_presence(user_id, status) or changed
        return changed

    # ─── Typing ───────────────────────────────────────────────────

    def observe_typing(self, user_id: str, channel_id: str, root_id: str = "") -> None:
        key = (user_id, channel_id, root_id or "")
        self._typing[key] = TypingEntry(user_id, channel_id, root_id, self._clock())

    def clear_typing(self, user_id: str, channel_id: str) -> bool:
        stale = [k for k in self._typing if k[0] == user_id and k[1] == channel_id]
        for key in stale:
            del self._typing[key]
        return bool(stale)

    def prune_typing(self) -> bool:
        now = self._clock()
        stale = [k for k, e in self._typing.items() if e.is_stale(now, self.typing_timeout)]
        for key in stale:
            del self._typing[key]
        return bool(stale)

    def typing_users(self, channel_id: str, root_id: Optional[str] = None) -> List[str]:
        """
        Users currently typing in a channel

        Args:
            channel_id: Channel ID
            root_id: Restrict to a thread; None means the channel's top level

        Returns:
            User IDs ordered by when they started typing
        """
        self.prune_typing()
        wanted_root = root_id or ""
        entries = [
            e for e in self._typing.values()
            if e.channel_id == channel_id and e.root_id == wanted_root
        ]
        return [e.user_id for e in sorted(entries, key=lambda e: e.timestamp)]

    def typing_snapshot(self) -> List[Dict[str, Any]]:
        self.prune_typing()
        return [e.to_dict() for e in sorted(self._typing.values(), key=lambda e: e.timestamp)]

    def reset(self) -> None:
        self.channels.clear()
        self.presence.clear()
        self._typing.clear()
        self.active_channel_id = None
