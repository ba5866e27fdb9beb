"""
idmap.py
────────
Run-scoped table mapping snapshot-local keys to ids assigned by the remote
during one restore. Each (kind, key) may be written once.
"""

from __future__ import annotations
import threading
from enum import Enum


class EntityKind(Enum):
    ROLE = "role"
    CHANNEL = "channel"


class DuplicateIdentifier(ValueError):
    pass


class IdentifierMap:
    def __init__(self):
        self._ids: dict[tuple[EntityKind, str], str] = {}
        self._lock = threading.Lock()

    def put(self, kind: EntityKind, key: str, remote_id: str) -> None:
        with self._lock:
            if (kind, key) in self._ids:
                raise DuplicateIdentifier(
                    f"{kind.value} {key!r} already mapped to {self._ids[kind, key]}"
                )
            self._ids[kind, key] = remote_id

    def get(self, kind: EntityKind, key: str) -> str | None:
        with self._lock:
            return self._ids.get((kind, key))

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)
