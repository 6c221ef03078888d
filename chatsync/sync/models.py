"""
Models Module - Core records shared by the chat synchronization engine
"""

import time
from enum import Enum
from typing import Dict, Any, Optional, NamedTuple, Tuple


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


class Post:
    """
    A chat message, either server-confirmed or locally pending

    A confirmed post is identified by its server-assigned ``id``. Before
    confirmation a post only has a locally generated ``pending_id``. Top-level
    posts have an empty ``root_id``; thread replies carry the root post's id.
    """

    def __init__(self,
                 channel_id: str,
                 author_id: str,
                 body: str,
                 created_at: int,
                 post_id: str = "",
                 pending_id: Optional[str] = None,
                 updated_at: Optional[int] = None,
                 root_id: str = "",
                 is_pending: bool = False,
                 failure_reason: Optional[str] = None):
        """
        Initialize a post

        Args:
            channel_id: Owning channel ID
            author_id: User ID of the author
            body: Message text
            created_at: Creation time in epoch milliseconds
            post_id: Server-assigned ID (empty while pending)
            pending_id: Locally generated ID for optimistic posts, or the
                client token echoed back by the server
            updated_at: Last edit time in epoch milliseconds (defaults to created_at)
            root_id: Thread root ID, empty for top-level posts
            is_pending: Whether the post awaits server confirmation
            failure_reason: Set when a pending send failed
        """
        self.id = post_id
        self.pending_id = pending_id
        self.channel_id = channel_id
        self.author_id = author_id
        self.body = body
        self.created_at = created_at
        self.updated_at = created_at if updated_at is None else updated_at
        self.root_id = root_id or ""
        self.is_pending = is_pending
        self.failure_reason = failure_reason

    @property
    def key(self) -> str:
        """Identity used inside the store: server ID once assigned, pending ID before"""
        if self.id:
            return self.id
        return self.pending_id or ""

    @property
    def sort_key(self) -> Tuple[int, str]:
        return (self.created_at, self.key)

    @property
    def is_reply(self) -> bool:
        return bool(self.root_id)

    def merge_from(self, other: 'Post') -> bool:
        """
        Merge an incoming copy of this post using last-write-wins on ``updated_at``

        Args:
            other: Incoming copy with the same ID

        Returns:
            True if any field changed
        """
        if other.updated_at < self.updated_at:
            return False

        changed = False
        if other.body != self.body:
            self.body = other.body
            changed = True
        if other.updated_at != self.updated_at:
            self.updated_at = other.updated_at
            changed = True
        if self.is_pending and not other.is_pending:
            self.is_pending = False
            self.failure_reason = None
            changed = True
        return changed

    def copy(self) -> 'Post':
        return Post.from_dict(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation"""
        return {
            "id": self.id,
            "pending_id": self.pending_id,
            "channel_id": self.channel_id,
            "author_id": self.author_id,
            "body": self.body,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "root_id": self.root_id,
            "is_pending": self.is_pending,
            "failure_reason": self.failure_reason,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'Post':
        """Create from dictionary representation"""
        return Post(
            channel_id=data["channel_id"],
            author_id=data["author_id"],
            body=data.get("body", ""),
            created_at=int(data["created_at"]),
            post_id=data.get("id") or "",
            pending_id=data.get("pending_id"),
            updated_at=data.get("updated_at"),
            root_id=data.get("root_id") or "",
            is_pending=bool(data.get("is_pending", False)),
            failure_reason=data.get("failure_reason"),
        )

    def __repr__(self) -> str:
        state = " pending" if self.is_pending else ""
        return f"<Post {self.key} channel={self.channel_id} t={self.created_at}{state}>"


class Channel:
    """A chat channel with its unread counters"""

    def __init__(self,
                 channel_id: str,
                 display_name: str = "",
                 last_post_at: int = 0,
                 unread_count: int = 0,
                 mention_count: int = 0):
        self.id = channel_id
        self.display_name = display_name
        self.last_post_at = last_post_at
        self.unread_count = unread_count
        self.mention_count = mention_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "last_post_at": self.last_post_at,
            "unread_count": self.unread_count,
            "mention_count": self.mention_count,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'Channel':
        return Channel(
            channel_id=data["id"],
            display_name=data.get("display_name", ""),
            last_post_at=int(data.get("last_post_at") or 0),
            unread_count=int(data.get("unread_count") or 0),
            mention_count=int(data.get("mention_count") or 0),
        )


class Reaction(NamedTuple):
    """An emoji reaction; identity is the whole triple"""

    post_id: str
    user_id: str
    emoji_name: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "post_id": self.post_id,
            "user_id": self.user_id,
            "emoji_name": self.emoji_name,
        }


class SendState(str, Enum):
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class PendingSend:
    """Correlation record for a locally created post awaiting server confirmation"""

    def __init__(self,
                 pending_id: str,
                 channel_id: str,
                 author_id: str,
                 body: str,
                 root_id: str = "",
                 submitted_at: Optional[int] = None,
                 sequence: int = 0):
        """
        Initialize a pending send

        Args:
            pending_id: Locally generated ID
            channel_id: Target channel ID
            author_id: Local user ID
            body: Message text
            root_id: Thread root ID, empty for top-level posts
            submitted_at: Submission time in epoch milliseconds
            sequence: Monotonic submission counter, breaks ties between equal timestamps
        """
        self.pending_id = pending_id
        self.channel_id = channel_id
        self.author_id = author_id
        self.body = body
        self.root_id = root_id or ""
        self.submitted_at = now_ms() if submitted_at is None else submitted_at
        self.sequence = sequence
        self.state = SendState.SUBMITTED
        self.failure_reason: Optional[str] = None

    @property
    def order_key(self) -> Tuple[int, int]:
        return (self.submitted_at, self.sequence)

    def to_post(self) -> Post:
        """Build the provisional post shown while this send is outstanding"""
        return Post(
            channel_id=self.channel_id,
            author_id=self.author_id,
            body=self.body,
            created_at=self.submitted_at,
            pending_id=self.pending_id,
            root_id=self.root_id,
            is_pending=True,
            failure_reason=self.failure_reason,
        )


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    TERMINATED = "terminated"


class ConnectionStatus:
    """Push-stream status as surfaced to the UI"""

    def __init__(self,
                 state: ConnectionState = ConnectionState.DISCONNECTED,
                 reconnect_attempt: int = 0,
                 degraded: bool = False):
        self.state = state
        self.reconnect_attempt = reconnect_attempt
        self.degraded = degraded

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def copy(self) -> 'ConnectionStatus':
        return ConnectionStatus(self.state, self.reconnect_attempt, self.degraded)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "reconnect_attempt": self.reconnect_attempt,
            "state": self.state.value,
            "degraded": self.degraded,
        }


class TypingEntry:
    """A user observed typing in a channel (or thread), expires after a timeout"""

    def __init__(self, user_id: str, channel_id: str, root_id: str, timestamp: float):
        self.user_id = user_id
        self.channel_id = channel_id
        self.root_id = root_id or ""
        self.timestamp = timestamp

    def is_stale(self, now: float, timeout: float) -> bool:
        return now - self.timestamp > timeout

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "channel_id": self.channel_id,
            "root_id": self.root_id,
            "timestamp": self.timestamp,
        }
