"""
Chat Panel Module - Textual side panel rendering the sync engine's snapshots

The formatting helpers are plain functions over snapshot dictionaries so the
rendering rules can be exercised without a running app.
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from textual.app import ComposeResult
from textual.containers import Horizontal, ScrollableContainer, Vertical
from textual.widgets import Input, Label, Static

from ..sync.engine import ChatSyncEngine

logger = logging.getLogger(__name__)

PRESENCE_ICONS = {
    "online": "●",
    "away": "◐",
    "dnd": "⊘",
    "offline": "○",
}


def format_timestamp(ms: int) -> str:
    """Render epoch milliseconds as local HH:MM"""
    return time.strftime("%H:%M", time.localtime(ms / 1000))


def format_reactions(reactions: Iterable[Dict[str, str]]) -> str:
    counts: Dict[str, int] = {}
    for reaction in reactions:
        counts[reaction["emoji_name"]] = counts.get(reaction["emoji_name"], 0) + 1
    return " ".join(
        f":{name}:" if count == 1 else f":{name}: {count}"
        for name, count in sorted(counts.items())
    )


def format_post(post: Dict[str, Any],
                reactions: Optional[Iterable[Dict[str, str]]] = None,
                names: Optional[Dict[str, str]] = None) -> str:
    """
    Render one post as a single line

    Args:
        post: Post dictionary from a timeline or thread snapshot
        reactions: Reaction dictionaries for this post
        names: Optional user ID to display name mapping

    Returns:
        The rendered line
    """
    author = (names or {}).get(post["author_id"], post["author_id"])
    line = f"[{format_timestamp(post['created_at'])}] {author}: {post['body']}"
    if post.get("updated_at", post["created_at"]) > post["created_at"]:
        line += " (edited)"
    if post.get("failure_reason"):
        line += f"  ✗ failed: {post['failure_reason']}"
    elif post.get("is_pending"):
        line += "  … sending"
    rendered = format_reactions(reactions or ())
    if rendered:
        line += f"  {rendered}"
    return line


def format_posts(posts: List[Dict[str, Any]],
                 reactions: Optional[Dict[str, List[Dict[str, str]]]] = None,
                 names: Optional[Dict[str, str]] = None) -> str:
    reactions = reactions or {}
    return "\n".join(
        format_post(post, reactions.get(post["id"]) if post["id"] else None, names)
        for post in posts
    )


def format_channel(channel: Dict[str, Any], active: bool = False) -> str:
    """Render a channel list entry with its unread badge"""
    name = channel.get("display_name") or channel["id"]
    line = f"{'>' if active else ' '} # {name}"
    if channel.get("mention_count"):
        line += f" @{channel['mention_count']}"
    if channel.get("unread_count"):
        line += f" ({channel['unread_count']})"
    return line


def format_connection(status: Dict[str, Any]) -> str:
    state = status.get("state")
    if status.get("connected"):
        return "● Connected"
    if state == "terminated":
        return "○ Signed out"
    attempt = status.get("reconnect_attempt", 0)
    if status.get("degraded"):
        return f"⚠ Connection lost, still retrying (attempt {attempt})"
    if state == "connecting":
        return "◌ Connecting..." if not attempt else f"◌ Reconnecting (attempt {attempt})..."
    if attempt:
        return f"○ Disconnected, retry {attempt} scheduled"
    return "○ Disconnected"


def format_typing(user_ids: List[str], names: Optional[Dict[str, str]] = None) -> str:
    names = names or {}
    shown = [names.get(u, u) for u in user_ids]
    if not shown:
        return ""
    if len(shown) == 1:
        return f"{shown[0]} is typing..."
    if len(shown) <= 3:
        return f"{', '.join(shown[:-1])} and {shown[-1]} are typing..."
    return "Several people are typing..."


def format_presence(presence: Dict[str, str], names: Optional[Dict[str, str]] = None) -> str:
    """Render known users with a status icon, online users first"""
    names = names or {}
    order = list(PRESENCE_ICONS)
    users = sorted(presence.items(), key=lambda item: (order.index(item[1]) if item[1] in order else len(order), item[0]))
    return " ".join(f"{PRESENCE_ICONS.get(status, '?')} {names.get(user_id, user_id)}" for user_id, status in users)


def typing_in(entries: List[Dict[str, Any]], channel_id: Optional[str], root_id: str = "") -> List[str]:
    """User IDs typing in a channel (top level) or in one of its threads"""
    return [
        e["user_id"] for e in entries
        if e["channel_id"] == channel_id and e["root_id"] == (root_id or "")
    ]


class ChatPanel(Vertical):
    """Channel list, timeline, thread pane and composer bound to a ChatSyncEngine"""

    DEFAULT_CSS = """
    ChatPanel {
        height: 100%;
    }

    #chat-status {
        height: 1;
        padding: 0 1;
        background: $boost;
    }

    #chat-channels {
        width: 28;
        border-right: solid $primary-darken-2;
    }

    #chat-thread-container {
        width: 40%;
        border-left: solid $primary-darken-2;
        display: none;
    }

    #chat-thread-container.open {
        display: block;
    }

    #chat-typing {
        height: 1;
        color: $text-muted;
        padding: 0 1;
    }
    """

    def __init__(self, engine: ChatSyncEngine, names: Optional[Dict[str, str]] = None, **kwargs):
        """
        Initialize the chat panel

        Args:
            engine: Engine whose snapshots are rendered
            names: Optional user ID to display name mapping
        """
        super().__init__(**kwargs)
        self.engine = engine
        self.names = names or {}
        self._state: Dict[str, Any] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None

    def compose(self) -> ComposeResult:
        """Create the panel layout"""
        yield Static("", id="chat-status", markup=False)
        with Horizontal():
            yield Static("", id="chat-channels", markup=False)
            with Vertical():
                with ScrollableContainer(id="chat-timeline-container"):
                    yield Static("", id="chat-timeline", markup=False)
                yield Static("", id="chat-typing", markup=False)
                yield Input(placeholder="Message, or /join /thread /close /older /retry /read", id="chat-input")
            with Vertical(id="chat-thread-container"):
                yield Label("Thread", classes="subtitle")
                with ScrollableContainer():
                    yield Static("", id="chat-thread", markup=False)

    def on_mount(self) -> None:
        self._unsubscribe = self.engine.subscribe(self.apply_state)
        self.apply_state(self.engine.snapshot())

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def apply_state(self, parts: Dict[str, Any]) -> None:
        """Merge a full or partial snapshot and refresh the affected widgets"""
        self._state.update(parts)
        try:
            if {"connection", "presence"} & parts.keys():
                self._render_status()
            if {"channels", "unreads"} & parts.keys():
                self._render_channels()
            if {"timeline", "reactions"} & parts.keys():
                self._render_timeline()
            if {"thread", "reactions"} & parts.keys():
                self._render_thread()
            if {"typing", "timeline", "thread"} & parts.keys():
                self._render_typing()
        except Exception as e:
            logger.error(f"Error rendering chat state: {str(e)}", exc_info=True)

    def _render_status(self) -> None:
        text = format_connection(self._state.get("connection") or {})
        people = format_presence(self._state.get("presence") or {}, self.names)
        if people:
            text += f"  │  {people}"
        self.query_one("#chat-status", Static).update(text)

    def _render_channels(self) -> None:
        active = self.engine.active_channel_id
        channels = self._state.get("channels", [])
        text = "\n".join(format_channel(c, c["id"] == active) for c in channels)
        self.query_one("#chat-channels", Static).update(text or "No channels")

    def _render_timeline(self) -> None:
        timeline = self._state.get("timeline") or {}
        text = format_posts(timeline.get("posts", []), self._state.get("reactions"), self.names)
        if timeline.get("has_more"):
            text = "(more history: /older)\n" + text
        if timeline.get("loading"):
            text = "Loading...\n" + text
        self.query_one("#chat-timeline", Static).update(text)
        self.query_one("#chat-timeline-container", ScrollableContainer).scroll_end(animate=False)

    def _render_thread(self) -> None:
        thread = self._state.get("thread") or {}
        container = self.query_one("#chat-thread-container")
        if not thread.get("root_id"):
            container.remove_class("open")
            return
        container.add_class("open")
        lines = []
        if thread.get("root"):
            lines.append(format_post(thread["root"], (self._state.get("reactions") or {}).get(thread["root_id"]), self.names))
            lines.append("─" * 20)
        lines.append(format_posts(thread.get("replies", []), self._state.get("reactions"), self.names))
        if not thread.get("loaded"):
            lines.append("Loading...")
        self.query_one("#chat-thread", Static).update("\n".join(lines))

    def _render_typing(self) -> None:
        entries = self._state.get("typing", [])
        users = typing_in(entries, self.engine.active_channel_id, self.engine.active_thread_id or "")
        self.query_one("#chat-typing", Static).update(format_typing(users, self.names))

    def on_input_changed(self, event: Input.Changed) -> None:
        channel_id = self.engine.active_channel_id
        if channel_id and event.value and not event.value.startswith("/"):
            self.engine.send_typing(channel_id, self.engine.active_thread_id or "")

    def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        event.input.value = ""
        if not text:
            return
        if text.startswith("/"):
            self.run_command(text)
            return
        channel_id = self.engine.active_channel_id
        if channel_id is None:
            self.app.notify("Join a channel first: /join <channel>", severity="warning")
            return
        self.engine.send_message(channel_id, text, self.engine.active_thread_id or "")

    def run_command(self, text: str) -> None:
        """Handle a slash command typed in the composer"""
        command, _, argument = text[1:].partition(" ")
        argument = argument.strip()
        if command == "join" and argument:
            self.engine.open_channel(argument)
        elif command == "thread" and argument:
            self.engine.open_thread(argument)
        elif command == "close":
            self.engine.close_thread()
        elif command == "older":
            if not self.engine.load_older_posts():
                self.app.notify("No older messages to load")
        elif command == "retry" and argument:
            if self.engine.retry_send(argument) is None:
                self.app.notify(f"No failed message {argument}", severity="warning")
        elif command == "read" and self.engine.active_channel_id:
            self.engine.mark_read(self.engine.active_channel_id)
        else:
            self.app.notify(f"Unknown command: {text}", severity="error")
