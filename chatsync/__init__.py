# chatsync - real-time chat synchronization engine with a Textual client

from .config import SyncSettings
from .sync import ChatSyncEngine, ConnectionSupervisor, ChatBackend

__version__ = "0.3.0"

__all__ = [
    'SyncSettings',
    'ChatSyncEngine',
    'ConnectionSupervisor',
    'ChatBackend',
    '__version__'
]
