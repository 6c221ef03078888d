"""
Events Module - The closed set of push events the engine understands

Push frames are decoded once, at the transport boundary, into one of the
event models below. Everything past this module works with typed events.
"""

import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import EventDecodeError
from .models import Channel, Post, Reaction


class PostPayload(BaseModel):
    """Server representation of a confirmed post"""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    channel_id: str
    author_id: str
    body: str = ""
    created_at: int
    updated_at: Optional[int] = None
    root_id: Optional[str] = ""
    pending_id: Optional[str] = Field(None, description="Client token echoed back by the server")

    def to_post(self) -> Post:
        return Post(
            channel_id=self.channel_id,
            author_id=self.author_id,
            body=self.body,
            created_at=self.created_at,
            post_id=self.id,
            pending_id=self.pending_id or None,
            updated_at=self.updated_at,
            root_id=self.root_id or "",
        )


class ChannelPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    display_name: str = ""
    last_post_at: int = 0

    def to_channel(self) -> Channel:
        return Channel(self.id, self.display_name, self.last_post_at)


class _Event(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PostCreated(_Event):
    event: Literal["post_created"] = "post_created"
    post: PostPayload


class PostEdited(_Event):
    event: Literal["post_edited"] = "post_edited"
    post: PostPayload


class PostDeleted(_Event):
    event: Literal["post_deleted"] = "post_deleted"
    post_id: str
    channel_id: str = ""


class ReactionAdded(_Event):
    event: Literal["reaction_added"] = "reaction_added"
    post_id: str
    user_id: str
    emoji_name: str

    def to_reaction(self) -> Reaction:
        return Reaction(self.post_id, self.user_id, self.emoji_name)


class ReactionRemoved(_Event):
    event: Literal["reaction_removed"] = "reaction_removed"
    post_id: str
    user_id: str
    emoji_name: str

    def to_reaction(self) -> Reaction:
        return Reaction(self.post_id, self.user_id, self.emoji_name)


class TypingObserved(_Event):
    event: Literal["typing"] = "typing"
    user_id: str
    channel_id: str
    root_id: str = ""


class PresenceChanged(_Event):
    event: Literal["presence_changed"] = "presence_changed"
    user_id: str
    status: Literal["online", "away", "offline", "dnd"]


class UnreadDelta(_Event):
    event: Literal["unread_delta"] = "unread_delta"
    channel_id: str
    msg_delta: int = 1
    mention_delta: int = 0


class ChannelMetadataChanged(_Event):
    event: Literal["channel_updated"] = "channel_updated"
    channel_id: str
    display_name: Optional[str] = None
    last_post_at: Optional[int] = None


class ChannelAdded(_Event):
    event: Literal["channel_added"] = "channel_added"
    channel: ChannelPayload


ServerEvent = Annotated[
    Union[
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
    ],
    Field(discriminator="event"),
]

EVENT_TYPES = (
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
)

_event_adapter: TypeAdapter = TypeAdapter(ServerEvent)
_post_list_adapter: TypeAdapter = TypeAdapter(List[PostPayload])


def decode_event(payload: Union[str, bytes, Dict[str, Any]]) -> ServerEvent:
    """
    Decode a push frame into a typed event

    Args:
        payload: Raw JSON text/bytes or an already parsed mapping

    Returns:
        One of the event models in EVENT_TYPES

    Raises:
        EventDecodeError: If the frame is not valid JSON or not a known event
    """
    data = payload
    if isinstance(payload, (str, bytes)):
        try:
            data = json.loads(payload)
        except ValueError as e:
            raise EventDecodeError(f"Frame is not valid JSON: {e}", payload) from e

    if not isinstance(data, dict):
        raise EventDecodeError("Frame is not a JSON object", payload)

    try:
        return _event_adapter.validate_python(data)
    except ValidationError as e:
        raise EventDecodeError(f"Unrecognized event {data.get('event')!r}: {e.error_count()} error(s)", payload) from e


def decode_posts(items: Any) -> List[Post]:
    """
    Decode a list of server post dictionaries

    Raises:
        EventDecodeError: If any entry is malformed
    """
    try:
        return [p.to_post() for p in _post_list_adapter.validate_python(items)]
    except ValidationError as e:
        raise EventDecodeError(f"Malformed post list: {e.error_count()} error(s)", items) from e
