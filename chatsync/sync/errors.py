"""
Errors Module - Exception types raised by the chat synchronization engine's collaborators
"""

from typing import Any, Optional


class ChatSyncError(Exception):
    """Base class for all chatsync errors"""


class BackendError(ChatSyncError):
    """Raised by a ChatBackend when a REST call fails (HTTP error, network error, timeout)"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class EventDecodeError(ChatSyncError):
    """Raised when a push frame cannot be decoded into a known event"""

    def __init__(self, message: str, payload: Any = None):
        self.payload = payload
        super().__init__(message)
