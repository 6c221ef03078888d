# UI Module for chatsync

from .chat_panel import (
    ChatPanel,
    format_post,
    format_posts,
    format_channel,
    format_connection,
    format_typing,
    format_presence
)
from .app import ChatSyncApp, build_engine, main

__all__ = [
    'ChatPanel',
    'format_post',
    'format_posts',
    'format_channel',
    'format_connection',
    'format_typing',
    'format_presence',
    'ChatSyncApp',
    'build_engine',
    'main'
]
