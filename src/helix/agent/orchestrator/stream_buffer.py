"""
Debounced stream buffer.

Model deltas arrive far faster than it is worth writing them to storage or
pushing them to clients. A StreamBuffer collects them and says when enough
time has passed to flush. Every chunk also lands in an accumulator, which
serves as a fallback when the provider's final payload comes back empty.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

Clock = Callable[[], float]


class StreamBuffer:
    """Time-debounced accumulator for one stream (content or reasoning).

    Usage:
        buffer = StreamBuffer(interval=0.2)
        buffer.start()
        buffer.enqueue(chunk)
        if buffer.should_flush():
            text = buffer.drain()

    Attributes:
        interval: Minimum seconds between flushes
        accumulated: Every chunk ever enqueued, in order
        last_flush_time: Clock reading at the last flush or start
    """

    def __init__(self, interval: float, clock: Optional[Clock] = None):
        self.interval = interval
        self._clock = clock or time.monotonic
        self._buffer: list[str] = []
        self._accumulated: list[str] = []
        self.last_flush_time: Optional[float] = None

    @property
    def pending(self) -> str:
        return "".join(self._buffer)

    @property
    def accumulated(self) -> str:
        return "".join(self._accumulated)

    def now(self) -> float:
        return self._clock()

    def start(self, now: Optional[float] = None) -> None:
        """Begin a new streaming message; the first flush waits a full interval."""
        self._buffer.clear()
        self._accumulated.clear()
        self.last_flush_time = self.now() if now is None else now

    def enqueue(self, chunk: Optional[str]) -> None:
        if not chunk:
            return
        self._buffer.append(chunk)
        self._accumulated.append(chunk)

    def should_flush(self, now: Optional[float] = None) -> bool:
        if not self._buffer:
            return False
        if self.last_flush_time is None:
            return True
        now = self.now() if now is None else now
        return now - self.last_flush_time >= self.interval

    def drain(self, now: Optional[float] = None) -> str:
        """Empty the buffer and return exactly what it held."""
        text = "".join(self._buffer)
        self._buffer.clear()
        self.last_flush_time = self.now() if now is None else now
        return text
