"""
clock.py
────────
Monotonic time and sleeping behind one small object, so the confirmation
timeout and the retry backoff can be driven by a fake clock in tests.
"""

from __future__ import annotations
import threading
import time


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class FakeClock:
    """
    Clock whose time only moves when told to. ``sleep`` advances instantly
    and is recorded, so tests can assert on backoff delays.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._lock = threading.Lock()
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        with self._lock:
            return self._now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self._now += seconds

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += seconds


SYSTEM_CLOCK = SystemClock()
