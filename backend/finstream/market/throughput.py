"""Sliding-window update rate estimate."""

from __future__ import annotations

import time
from collections import deque

from .config import THROUGHPUT_WINDOW


class ThroughputMonitor:
    """Counts ingest events over the last ``window`` seconds.

    updates/sec = events still inside the window / window. This is an
    estimate whose error is bounded by the window width, not an exact
    per-second counter.
    """

    def __init__(self, window: float = THROUGHPUT_WINDOW) -> None:
        self._window = window
        self._events: deque[float] = deque()

    def record(self, now: float | None = None) -> float:
        """Register one successful ingest. Returns the updated rate."""
        ts = time.time() if now is None else now
        self._events.append(ts)
        self._trim(ts)
        return len(self._events) / self._window

    def rate(self, now: float | None = None) -> float:
        """Current updates/sec, after discarding events that left the window."""
        self._trim(time.time() if now is None else now)
        return len(self._events) / self._window

    def reset(self) -> None:
        self._events.clear()

    @property
    def window(self) -> float:
        return self._window

    def _trim(self, now: float) -> None:
        cutoff = now - self._window
        while self._events and self._events[0] <= cutoff:
            self._events.popleft()

    def __len__(self) -> int:
        return len(self._events)
