# Sync Module for chatsync
#
# Keeps a channel timeline consistent while three sources feed it:
# - Paginated history pages from the REST backend
# - Optimistic local sends awaiting confirmation
# - Push events from a connection that can drop at any time

from .errors import ChatSyncError, BackendError, EventDecodeError

from .models import (
    Post,
    Channel,
    Reaction,
    PendingSend,
    SendState,
    ConnectionState,
    ConnectionStatus,
    TypingEntry
)

from .events import (
    PostCreated,
    PostEdited,
    PostDeleted,
    ReactionAdded,
    ReactionRemoved,
    TypingObserved,
    PresenceChanged,
    UnreadDelta,
    ChannelMetadataChanged,
    ChannelAdded,
    ServerEvent,
    EVENT_TYPES,
    decode_event,
    decode_posts
)

from .timeline import TimelineStore
from .reactions import ReactionStore
from .reconciler import Reconciler
from .optimistic import OptimisticSendTracker
from .router import EventRouter, ALL_TOPICS
from .pagination import PaginationController, PageRequest
from .presence import UnreadPresenceAggregator
from .connection import ConnectionSupervisor
from .backend import ChatBackend
from .engine import ChatSyncEngine

__all__ = [
    # Errors
    'ChatSyncError',
    'BackendError',
    'EventDecodeError',

    # Records
    'Post',
    'Channel',
    'Reaction',
    'PendingSend',
    'SendState',
    'ConnectionState',
    'ConnectionStatus',
    'TypingEntry',

    # Events
    'PostCreated',
    'PostEdited',
    'PostDeleted',
    'ReactionAdded',
    'ReactionRemoved',
    'TypingObserved',
    'PresenceChanged',
    'UnreadDelta',
    'ChannelMetadataChanged',
    'ChannelAdded',
    'ServerEvent',
    'EVENT_TYPES',
    'decode_event',
    'decode_posts',

    # Components
    'TimelineStore',
    'ReactionStore',
    'Reconciler',
    'OptimisticSendTracker',
    'EventRouter',
    'ALL_TOPICS',
    'PaginationController',
    'PageRequest',
    'UnreadPresenceAggregator',
    'ConnectionSupervisor',
    'ChatBackend',
    'ChatSyncEngine'
]
