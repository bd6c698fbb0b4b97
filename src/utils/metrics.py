"""
Timing helpers for webhook processing latency (processing_time_ms on audit rows
and response bodies).
"""
import time
from typing import Optional


class Timer:
    """Monotonic stopwatch started when a webhook request arrives."""

    def __init__(self):
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def start(self) -> "Timer":
        self._start = time.monotonic()
        self._end = None
        return self

    def stop(self) -> int:
        """Stop timer and return elapsed milliseconds."""
        self._end = time.monotonic()
        return self.elapsed_ms

    @property
    def elapsed_ms(self) -> int:
        """Elapsed milliseconds; keeps running until stop() is called."""
        if self._start is None:
            return 0
        end = self._end or time.monotonic()
        return int((end - self._start) * 1000)
