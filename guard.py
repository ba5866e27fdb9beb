"""
guard.py
────────
Per-server mutual exclusion. At most one backup or restore may be in flight
for a server; a second request is rejected, not queued.

A holder may register an ``expired`` callable when it acquires. Once that
returns True the hold is reclaimed on the next check, so a restore whose
confirmation was never answered does not lock the server forever.
"""

from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from typing import Callable

from errors import Busy

logger = logging.getLogger(__name__)


class ConcurrencyGuard:
    def __init__(self):
        self._held: dict[str, Callable[[], bool] | None] = {}
        self._lock = threading.Lock()

    def _reap(self, target_id: str) -> None:
        expired = self._held.get(target_id)
        if expired is not None and expired():
            logger.info("Reclaiming abandoned hold on server %s", target_id)
            del self._held[target_id]

    def try_acquire(self, target_id: str, expired: Callable[[], bool] | None = None) -> bool:
        with self._lock:
            self._reap(target_id)
            if target_id in self._held:
                logger.info("Server %s is busy", target_id)
                return False
            self._held[target_id] = expired
            return True

    def release(self, target_id: str, expired: Callable[[], bool] | None = None) -> None:
        """
        Release the hold on ``target_id``. When ``expired`` is given, only the
        hold registered with that same callable is released, so a stale holder
        cannot free a server someone else has since acquired.
        """
        with self._lock:
            if target_id not in self._held:
                return
            if expired is None or self._held[target_id] == expired:
                del self._held[target_id]

    def is_held(self, target_id: str) -> bool:
        with self._lock:
            self._reap(target_id)
            return target_id in self._held

    @contextmanager
    def hold(self, target_id: str):
        """Acquire for the duration of a ``with`` block, raising Busy if taken."""
        if not self.try_acquire(target_id):
            raise Busy("A backup or restore is already in progress for this server.")
        try:
            yield
        finally:
            self.release(target_id)
