"""
errors.py
─────────
Error taxonomy shared by the backup engine, the remote adapters and the CLI.

Two families:
  • command errors  – abort a whole backup/restore before anything is mutated
                      (PermissionDenied, NotFound, CaptureIncomplete, Busy)
  • remote errors   – raised by an adapter for a single call; the restore
                      executor turns them into per-operation outcomes

Every class carries a stable ``kind`` string used in reports.
"""

from __future__ import annotations


class BackupError(Exception):
    kind = "BackupError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


# ── command errors ────────────────────────────────────────────────────────────


class PermissionDenied(BackupError):
    kind = "PermissionDenied"


class NotFound(BackupError):
    kind = "NotFound"


class CaptureIncomplete(BackupError):
    kind = "CaptureIncomplete"


class Busy(BackupError):
    kind = "Busy"


class SnapshotCorrupt(BackupError):
    """Stored document failed to parse or its checksum does not match."""

    kind = "SnapshotCorrupt"


class ConfigError(BackupError):
    kind = "ConfigError"


class DeliveryFailed(BackupError):
    """Private notification could not be delivered. Never fatal."""

    kind = "DeliveryFailed"


# ── remote errors ─────────────────────────────────────────────────────────────


class RemoteError(BackupError):
    kind = "RemoteError"


class RateLimited(RemoteError):
    """Transient: the remote asked us to come back after ``retry_after`` seconds."""

    kind = "RateLimited"

    def __init__(self, retry_after: float = 1.0, message: str = ""):
        super().__init__(message or f"rate limited, retry after {retry_after:.2f}s")
        self.retry_after = float(retry_after)


class RateLimitExhausted(RemoteError):
    kind = "RateLimitExhausted"


class RemoteRejected(RemoteError):
    """Validation, permission or conflict error on a single remote call."""

    kind = "RemoteRejected"

    def __init__(self, message: str = "", status: int | None = None):
        super().__init__(message)
        self.status = status


class RemoteUnavailable(RemoteError):
    """Transport failure (connection reset, timeout, DNS …)."""

    kind = "RemoteUnavailable"
