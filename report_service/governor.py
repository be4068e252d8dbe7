"""
Process-wide count of in-flight report runs.

The health probe reads it to report back-pressure; it never rejects
requests by itself.
"""

import threading
from contextlib import contextmanager
from typing import Iterator


class ConcurrencyGovernor:
    """Lock-guarded signed counter of active pipeline runs."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def decrement(self) -> int:
        with self._lock:
            self._value -= 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def is_overloaded(self, max_workers: int) -> bool:
        return self.value > max_workers

    @contextmanager
    def track(self) -> Iterator[int]:
        """Count the enclosed block as one active run, on every exit path."""
        current = self.increment()
        try:
            yield current
        finally:
            self.decrement()
