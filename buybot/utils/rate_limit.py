"""Rolling-window throttling for noisy events."""

from __future__ import annotations

import time
from collections import defaultdict, deque
from typing import Deque, Dict, Hashable


class RateLimiter:
    """Track per-key events within a rolling window."""

    def __init__(self, limit: int, window_seconds: float = 60.0) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._events: Dict[Hashable, Deque[float]] = defaultdict(deque)

    def allow(self, key: Hashable) -> bool:
        """Record an event and return whether it stays under limit."""
        now = time.time()
        window_start = now - self.window_seconds
        events = self._events[key]

        while events and events[0] <= window_start:
            events.popleft()

        if len(events) >= self.limit:
            return False

        events.append(now)
        return True

    def reset(self, key: Hashable) -> None:
        self._events.pop(key, None)
