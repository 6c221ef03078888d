"""
Performance Module - Timing and rate-limiting helpers for the sync engine
"""

import time
import logging
import functools
from typing import Any, Callable, Dict, Hashable, List, Optional, TypeVar

F = TypeVar('F', bound=Callable[..., Any])

logger = logging.getLogger(__name__)


class TimingProfiler:
    """Records execution times of decorated functions"""

    _timing_data: Dict[str, List[float]] = {}

    @staticmethod
    def profile(func: F) -> F:
        """
        Decorator to profile function execution time

        Args:
            func: Function to profile

        Returns:
            Wrapped function
        """
        func_key = f"{func.__module__}.{func.__qualname__}"
        TimingProfiler._timing_data.setdefault(func_key, [])

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                execution_time = time.perf_counter() - start_time
                TimingProfiler._timing_data.setdefault(func_key, []).append(execution_time)
                logger.debug(f"Function {func_key} executed in {execution_time:.4f} seconds")

        return wrapper  # type: ignore

    @staticmethod
    def async_profile(func):
        """Decorator to profile async function execution time"""
        func_key = f"{func.__module__}.{func.__qualname__}"
        TimingProfiler._timing_data.setdefault(func_key, [])

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                execution_time = time.perf_counter() - start_time
                TimingProfiler._timing_data.setdefault(func_key, []).append(execution_time)
                logger.debug(f"Async function {func_key} executed in {execution_time:.4f} seconds")

        return wrapper

    @staticmethod
    def get_stats(func_key: Optional[str] = None) -> Dict[str, Dict[str, float]]:
        """
        Get timing statistics for profiled functions

        Args:
            func_key: Optional function key; if None, stats for all functions

        Returns:
            Dictionary of count/avg/min/max/total per function key
        """
        stats = {}
        keys = [func_key] if func_key else list(TimingProfiler._timing_data)
        for key in keys:
            times = TimingProfiler._timing_data.get(key)
            if times:
                stats[key] = {
                    'count': len(times),
                    'avg': sum(times) / len(times),
                    'min': min(times),
                    'max': max(times),
                    'total': sum(times)
                }
        return stats

    @staticmethod
    def reset(func_key: Optional[str] = None) -> None:
        if func_key:
            if func_key in TimingProfiler._timing_data:
                TimingProfiler._timing_data[func_key] = []
        else:
            for key in TimingProfiler._timing_data:
                TimingProfiler._timing_data[key] = []


class Throttle:
    """Allows at most one action per key every ``wait_time`` seconds"""

    def __init__(self, wait_time: float, clock: Optional[Callable[[], float]] = None):
        self.wait_time = wait_time
        self._clock = clock or time.monotonic
        self._last_call: Dict[Hashable, float] = {}

    def allow(self, key: Hashable = None) -> bool:
        """
        Check whether an action for ``key`` may run now, recording it if so

        Args:
            key: Rate-limit bucket

        Returns:
            True if enough time has passed since the last allowed action
        """
        now = self._clock()
        last = self._last_call.get(key)
        if last is not None and now - last < self.wait_time:
            return False
        self._last_call[key] = now
        return True

    def reset(self) -> None:
        self._last_call.clear()
