# Transport Module for chatsync

from .http_backend import HttpChatBackend

__all__ = [
    'HttpChatBackend'
]
