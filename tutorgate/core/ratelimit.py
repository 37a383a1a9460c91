"""
Sliding-window rate limiter.

- In-memory, keyed by user_id (or any caller-chosen key).
- Exact trailing window: a request is counted for `window_seconds` after it
  was admitted, with no fixed bucket boundaries.
- Striped locks so concurrent requests for one key serialize while most
  other keys proceed independently. Idle keys are dropped on eviction.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

LOCK_STRIPES = 64


@dataclass
class RateLimitConfig:
    max_requests: int = 10
    window_seconds: float = 60.0


class SlidingWindowLimiter:
    def __init__(self, config: RateLimitConfig, time_fn: Callable[[], float] = time.monotonic):
        if config.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.config = config
        self.time_fn = time_fn
        self.windows: Dict[str, Deque[float]] = {}
        # Keys share a fixed set of locks
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % LOCK_STRIPES]

    def _evict(self, key: str, now: float) -> Deque[float]:
        """Drop expired entries; a key with nothing left in its window is forgotten."""
        window = self.windows.get(key)
        if window is None:
            return deque()
        while window and now - window[0] >= self.config.window_seconds:
            window.popleft()
        if not window:
            del self.windows[key]
        return window

    def allow(self, key: str) -> bool:
        """Admit and record one request for `key` if the window has room."""
        with self._lock_for(key):
            now = self.time_fn()
            window = self._evict(key, now)
            if len(window) >= self.config.max_requests:
                return False
            window.append(now)
            self.windows[key] = window
            return True

    def remaining(self, key: str) -> int:
        with self._lock_for(key):
            return self.config.max_requests - len(self._evict(key, self.time_fn()))

    def retry_after(self, key: str) -> Optional[int]:
        """Seconds until the oldest admitted request leaves the window."""
        with self._lock_for(key):
            now = self.time_fn()
            window = self._evict(key, now)
            if len(window) < self.config.max_requests:
                return None
            wait = self.config.window_seconds - (now - window[0])
            return max(1, int(wait + 0.999))

    def reset(self, key: str) -> None:
        with self._lock_for(key):
            self.windows.pop(key, None)
