# Utils Module for chatsync

from .logging_setup import configure_logging
from .performance import TimingProfiler, Throttle

__all__ = [
    'configure_logging',
    'TimingProfiler',
    'Throttle'
]
