"""
App Module - Runnable Textual chat client wiring settings, backend, supervisor and engine
"""

import argparse
import logging
from typing import List, Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import Footer, Header

from ..config import SyncSettings
from ..sync.connection import ConnectionSupervisor
from ..sync.engine import ChatSyncEngine
from ..transport.http_backend import HttpChatBackend
from ..utils.logging_setup import configure_logging
from .chat_panel import ChatPanel

logger = logging.getLogger(__name__)


def build_engine(settings: SyncSettings) -> ChatSyncEngine:
    """Create an engine talking to the configured REST API and push stream"""
    backend = HttpChatBackend(settings.api_url, settings.token, timeout=settings.request_timeout)
    supervisor = ConnectionSupervisor(
        settings.ws_url,
        token=settings.token,
        base_delay=settings.reconnect_base_delay,
        max_delay=settings.reconnect_max_delay,
        max_attempts=settings.max_reconnect_attempts,
        heartbeat_interval=settings.heartbeat_interval,
        heartbeat_timeout=settings.heartbeat_timeout,
        typing_throttle=settings.typing_throttle,
    )
    return ChatSyncEngine(backend, settings, supervisor=supervisor)


class ChatSyncApp(App):
    """Terminal chat client"""

    TITLE = "chatsync"

    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit"),
        Binding("ctrl+o", "load_older", "Older messages"),
        Binding("ctrl+r", "refresh_unreads", "Refresh unreads"),
        Binding("escape", "close_thread", "Close thread"),
    ]

    def __init__(self, engine: ChatSyncEngine, initial_channel: Optional[str] = None):
        super().__init__()
        self.engine = engine
        self.initial_channel = initial_channel

    def compose(self) -> ComposeResult:
        yield Header()
        yield ChatPanel(self.engine, id="chat-panel")
        yield Footer()

    async def on_mount(self) -> None:
        await self.engine.start()
        if self.initial_channel:
            self.engine.open_channel(self.initial_channel)

    async def on_unmount(self) -> None:
        await self.engine.aclose()

    def action_load_older(self) -> None:
        if not self.engine.load_older_posts():
            self.notify("No older messages to load")

    def action_refresh_unreads(self) -> None:
        self.engine.refresh_unreads()

    def action_close_thread(self) -> None:
        self.engine.close_thread()


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments

    Settings not given on the command line come from CHATSYNC_* environment variables.
    """
    parser = argparse.ArgumentParser(description="Terminal chat client with real-time sync")
    parser.add_argument("channel", nargs="?", help="Channel to open on start")
    parser.add_argument("--api-url", help="REST API base URL")
    parser.add_argument("--ws-url", help="Push-stream websocket URL")
    parser.add_argument("--user-id", help="Local user ID")
    parser.add_argument("--log-file", default="chatsync.log", help="Log file (empty to disable)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_arguments(argv)
    settings = SyncSettings.from_env(
        api_url=args.api_url,
        ws_url=args.ws_url,
        user_id=args.user_id,
        log_level="DEBUG" if args.verbose else None,
    )
    # Console output would corrupt the TUI, so log to the file only
    configure_logging(settings.log_level, log_file=args.log_file or None, console=False)
    logger.info(f"Starting chatsync against {settings.api_url}")
    ChatSyncApp(build_engine(settings), args.channel).run()
