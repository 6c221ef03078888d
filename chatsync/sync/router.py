"""
Router Module - Applies decoded push events to the stores

Each event type in the closed set maps to exactly one handler. Handlers
return the names of the state topics they changed so the engine can notify
subscribers with partial snapshots.
"""

import logging
from typing import Callable, Dict, Set, Type

from ..utils.performance import TimingProfiler
from .events import (
    EVENT_TYPES,
    ChannelAdded,
    ChannelMetadataChanged,
    PostCreated,
    PostDeleted,
    PostEdited,
    PresenceChanged,
    ReactionAdded,
    ReactionRemoved,
    TypingObserved,
    UnreadDelta,
)
from .optimistic import OptimisticSendTracker
from .presence import UnreadPresenceAggregator
from .reactions import ReactionStore
from .reconciler import Reconciler
from .timeline import TimelineStore

logger = logging.getLogger(__name__)

TOPIC_TIMELINE = "timeline"
TOPIC_THREAD = "thread"
TOPIC_UNREADS = "unreads"
TOPIC_CHANNELS = "channels"
TOPIC_CONNECTION = "connection"
TOPIC_PRESENCE = "presence"
TOPIC_TYPING = "typing"
TOPIC_REACTIONS = "reactions"

ALL_TOPICS = (
    TOPIC_TIMELINE,
    TOPIC_THREAD,
    TOPIC_UNREADS,
    TOPIC_CHANNELS,
    TOPIC_CONNECTION,
    TOPIC_PRESENCE,
    TOPIC_TYPING,
    TOPIC_REACTIONS,
)


class EventRouter:
    """
    Routes push events to the timeline, reaction, unread and presence stores

    Every ``post_created`` first goes through the reconciler so the local
    user's echo confirms the optimistic entry instead of duplicating it.
    Replies are materialized only in an open thread for their root; replies
    to closed threads are dropped and fetched fresh when the thread opens.
    """

    def __init__(self,
                 store: TimelineStore,
                 tracker: OptimisticSendTracker,
                 reconciler: Reconciler,
                 reactions: ReactionStore,
                 aggregator: UnreadPresenceAggregator,
                 local_user_id: str = ""):
        """
        Initialize the router

        Args:
            store: Timeline store
            tracker: Optimistic send tracker
            reconciler: Echo matcher
            reactions: Reaction store
            aggregator: Unread/presence aggregator
            local_user_id: Local user; own typing events are ignored
        """
        self.store = store
        self.tracker = tracker
        self.reconciler = reconciler
        self.reactions = reactions
        self.aggregator = aggregator
        self.local_user_id = local_user_id
        self._handlers: Dict[Type, Callable[..., Set[str]]] = {
            PostCreated: self._post_created,
            PostEdited: self._post_edited,
            PostDeleted: self._post_deleted,
            ReactionAdded: self._reaction_added,
            ReactionRemoved: self._reaction_removed,
            TypingObserved: self._typing,
            PresenceChanged: self._presence,
            UnreadDelta: self._unread_delta,
            ChannelMetadataChanged: self._channel_updated,
            ChannelAdded: self._channel_added,
        }
        missing = [t.__name__ for t in EVENT_TYPES if t not in self._handlers]
        if missing:
            raise TypeError(f"EventRouter has no handler for: {', '.join(missing)}")

    @TimingProfiler.profile
    def apply(self, event) -> Set[str]:
        """
        Apply one event

        Args:
            event: A decoded event (see events.EVENT_TYPES)

        Returns:
            Names of the state topics that changed
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning(f"No handler for event type {type(event).__name__}")
            return set()
        return handler(event)

    # ─── Posts ────────────────────────────────────────────────────

    def _post_created(self, event: PostCreated) -> Set[str]:
        post = event.post.to_post()
        changed: Set[str] = set()

        if post.author_id != self.local_user_id and self.aggregator.clear_typing(post.author_id, post.channel_id):
            changed.add(TOPIC_TYPING)
        if self.aggregator.note_post(post.channel_id, post.created_at):
            changed.add(TOPIC_CHANNELS)

        # A post already held cannot be the echo of a send still outstanding
        send = None
        if self.store.find_post(post.id) is None:
            send = self.reconciler.match(post, self.tracker.outstanding(post.channel_id))
        if send is not None:
            self.tracker.confirm(send.pending_id, post)
            changed.add(TOPIC_THREAD if post.is_reply else TOPIC_TIMELINE)
            return changed

        if not post.is_reply:
            if self.store.insert_live(post.channel_id, post):
                changed.add(TOPIC_TIMELINE)
        elif self.store.insert_thread_reply(post):
            changed.add(TOPIC_THREAD)
        else:
            logger.debug(f"Dropped reply {post.id} to closed thread {post.root_id}")
        return changed

    def _post_edited(self, event: PostEdited) -> Set[str]:
        post = event.post.to_post()
        if not self.store.update_post(post):
            return set()
        return {TOPIC_TIMELINE, TOPIC_THREAD}

    def _post_deleted(self, event: PostDeleted) -> Set[str]:
        changed: Set[str] = set()
        if self.store.remove_post(event.post_id):
            changed.update((TOPIC_TIMELINE, TOPIC_THREAD))
        if self.reactions.drop_post(event.post_id):
            changed.add(TOPIC_REACTIONS)
        return changed

    # ─── Reactions ────────────────────────────────────────────────

    def _reaction_added(self, event: ReactionAdded) -> Set[str]:
        if self.store.find_post(event.post_id) is None:
            return set()
        return {TOPIC_REACTIONS} if self.reactions.add(event.to_reaction()) else set()

    def _reaction_removed(self, event: ReactionRemoved) -> Set[str]:
        return {TOPIC_REACTIONS} if self.reactions.remove(event.to_reaction()) else set()

    # ─── Presence, typing, unreads, channels ──────────────────────

    def _typing(self, event: TypingObserved) -> Set[str]:
        if event.user_id == self.local_user_id:
            return set()
        self.aggregator.observe_typing(event.user_id, event.channel_id, event.root_id)
        return {TOPIC_TYPING}

    def _presence(self, event: PresenceChanged) -> Set[str]:
        return {TOPIC_PRESENCE} if self.aggregator.set_presence(event.user_id, event.status) else set()

    def _unread_delta(self, event: UnreadDelta) -> Set[str]:
        if self.aggregator.apply_delta(event.channel_id, event.msg_delta, event.mention_delta):
            return {TOPIC_UNREADS}
        return set()

    def _channel_updated(self, event: ChannelMetadataChanged) -> Set[str]:
        if self.aggregator.update_channel(event.channel_id, event.display_name, event.last_post_at):
            return {TOPIC_CHANNELS}
        return set()

    def _channel_added(self, event: ChannelAdded) -> Set[str]:
        if self.aggregator.add_channel(event.channel.to_channel()):
            return {TOPIC_CHANNELS, TOPIC_UNREADS}
        return set()
