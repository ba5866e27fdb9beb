"""
service.py
──────────
The two user-facing flows, wired together:

  backup   caller must be an administrator
           guard → capture → store → release → DM the snapshot id
  restore  caller must be the server owner
           lookup → guard → confirmation gate → plan → execute → release

Pre-execution problems raise a BackupError (PermissionDenied, NotFound,
Busy, CaptureIncomplete). Everything after confirmation is reported through
the RestoreReport instead.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass

from adapters.base import RemoteAccessor
from clock import SYSTEM_CLOCK
from config import EngineConfig
from errors import Busy, DeliveryFailed, PermissionDenied
from executor import RestoreExecutor, RestoreReport
from gate import ConfirmationGate, GateClosed, GateState
from guard import ConcurrencyGuard
from models import SnapshotRecord
from permissions import ADMINISTRATOR, has_permission
from planner import RestoreMode, RestorePlanner
from snapshot import SnapshotBuilder
from store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    ok: bool
    message: str
    snapshot_id: str | None = None
    report: RestoreReport | None = None


class BackupService:
    def __init__(
        self,
        accessor: RemoteAccessor,
        store: SnapshotStore,
        guard: ConcurrencyGuard | None = None,
        config: EngineConfig | None = None,
        clock=SYSTEM_CLOCK,
    ):
        self.accessor = accessor
        self.store = store
        self.guard = guard or ConcurrencyGuard()
        self.config = config or EngineConfig()
        self.clock = clock
        self.builder = SnapshotBuilder(accessor, embed_assets=self.config.embed_assets)
        self.planner = RestorePlanner(accessor)
        self.executor = RestoreExecutor(
            accessor,
            concurrency=self.config.concurrency,
            max_attempts=self.config.max_attempts,
            backoff_base=self.config.backoff_base,
            backoff_cap=self.config.backoff_cap,
            clock=clock,
        )

    # ── authorization ─────────────────────────────────────────────────────

    def _require_admin(self, caller_id: str, target_id: str):
        target = self.accessor.get_target(target_id)
        if caller_id == target.owner_id:
            return
        if has_permission(self.accessor.member_permissions(target_id, caller_id), ADMINISTRATOR):
            return
        raise PermissionDenied("❌ Admins only!")

    def _require_owner(self, caller_id: str, target_id: str):
        if self.accessor.get_target(target_id).owner_id != caller_id:
            raise PermissionDenied("❌ Only the server owner can restore backups.")

    # ── backup ────────────────────────────────────────────────────────────

    def backup(self, caller_id: str, target_id: str) -> CommandResult:
        self._require_admin(caller_id, target_id)

        with self.guard.hold(target_id):
            snapshot = self.builder.capture(target_id)
            snapshot_id = self.store.put(snapshot)
        logger.info("Backup %s of %s created by %s", snapshot_id, target_id, caller_id)

        try:
            self.accessor.send_direct_message(
                caller_id,
                f"📦 Backup ID: `{snapshot_id}`\nUse `restore {snapshot_id}` to restore this backup.",
            )
        except DeliveryFailed as e:
            logger.warning("Backup id delivery failed: %s", e.message)
            return CommandResult(
                True,
                f"⚠️ Backup created, but I could not DM you the backup ID. Backup ID: `{snapshot_id}`",
                snapshot_id=snapshot_id,
            )
        return CommandResult(True, "✅ Backup created. Check your DMs!", snapshot_id=snapshot_id)

    # ── restore ───────────────────────────────────────────────────────────

    def request_restore(
        self,
        caller_id: str,
        target_id: str,
        snapshot_id: str,
        mode: RestoreMode | None = None,
    ) -> PendingRestore:
        self._require_owner(caller_id, target_id)
        snapshot = self.store.get(snapshot_id)

        gate = ConfirmationGate(caller_id, timeout=self.config.confirm_timeout, clock=self.clock)
        pending = PendingRestore(self, target_id, snapshot, mode or self.config.default_mode, gate)
        if not self.guard.try_acquire(target_id, expired=pending.abandoned):
            raise Busy("A backup or restore is already in progress for this server.")
        gate.open()
        return pending

    def list_backups(self) -> list[str]:
        return self.store.list_ids()


class PendingRestore:
    """
    A restore waiting for its initiator's answer. Holds the server's guard
    until finish() is called, or until the request is cancelled or times out
    without anyone calling finish().
    """

    def __init__(
        self,
        service: BackupService,
        target_id: str,
        snapshot: SnapshotRecord,
        mode: RestoreMode,
        gate: ConfirmationGate,
    ):
        self.service = service
        self.target_id = target_id
        self.snapshot = snapshot
        self.mode = mode
        self.gate = gate
        self._finished = False

    @property
    def prompt(self) -> str:
        if self.mode is RestoreMode.DESTRUCTIVE:
            effect = "This will delete the current roles, channels and emojis and recreate them."
        else:
            effect = "Roles with matching names are reused; everything else is added."
        return (
            f"⚠️ Are you sure you want to restore backup `{self.snapshot.id}`?\n"
            f"{self.snapshot.summary()}\n{effect}"
        )

    def abandoned(self) -> bool:
        """True once the request can no longer lead to a restore."""
        return self.gate.state in (GateState.CANCELLED, GateState.TIMED_OUT)

    def confirm(self, user_id: str) -> bool:
        return self.gate.confirm(user_id)

    def cancel(self, user_id: str) -> bool:
        return self.gate.cancel(user_id)

    def finish(self) -> CommandResult:
        if self._finished:
            raise GateClosed("restore request already finished")
        state = self.gate.state
        if state is GateState.AWAITING:
            raise RuntimeError("restore is still awaiting confirmation")

        self._finished = True
        try:
            if state is GateState.CANCELLED:
                return CommandResult(False, "❌ Restore cancelled.")
            if state is not GateState.CONFIRMED:
                return CommandResult(False, "⌛ Restore not confirmed in time; nothing was changed.")

            plan = self.service.planner.plan(self.snapshot, self.target_id, self.mode)
            report = self.service.executor.execute(plan, self.target_id)
            icon = "✅" if report.failed == 0 else "⚠️"
            return CommandResult(
                report.failed == 0,
                f"{icon} {report.summary()}",
                snapshot_id=self.snapshot.id,
                report=report,
            )
        finally:
            self.service.guard.release(self.target_id, expired=self.abandoned)
