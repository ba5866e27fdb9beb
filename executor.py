"""
executor.py
───────────
The restore engine.

Takes a RestorePlan and a RemoteAccessor, then drives the stages in order:
  • stages run strictly one after another (each is a full barrier)
  • operations inside a stage run on a small thread pool unless the stage
    is sequential
  • every operation ends as Success / Skipped / Failed; one failure never
    stops the run
  • rate-limited calls are retried with exponential backoff

execute() never raises: failures are recorded in the RestoreReport.
"""

from __future__ import annotations
import base64
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum

from adapters.base import RemoteAccessor, RemoteOverwrite
from clock import SYSTEM_CLOCK
from errors import RateLimited, RateLimitExhausted, RemoteError
from idmap import EntityKind, IdentifierMap
from models import ChannelKind, EmojiRecord, PrincipalKind
from planner import Operation, OpKind, RestoreMode, RestorePlan, Stage, StageKind

logger = logging.getLogger(__name__)

# ── ANSI colours ──────────────────────────────────────────────────────────────
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
CYAN = "\033[96m"
BOLD = "\033[1m"
DIM = "\033[2m"
RESET = "\033[0m"


def _head(msg):
    print(f"\n{BOLD}{msg}{RESET}")


# ── outcomes ──────────────────────────────────────────────────────────────────


class OutcomeStatus(Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    status: OutcomeStatus
    remote_id: str | None = None
    reason: str | None = None
    error_kind: str | None = None

    @classmethod
    def success(cls, remote_id: str | None, reason: str | None = None) -> Outcome:
        return cls(OutcomeStatus.SUCCESS, remote_id=remote_id, reason=reason)

    @classmethod
    def skipped(cls, reason: str, remote_id: str | None = None) -> Outcome:
        return cls(OutcomeStatus.SKIPPED, remote_id=remote_id, reason=reason)

    @classmethod
    def failed(cls, error_kind: str, reason: str | None = None) -> Outcome:
        return cls(OutcomeStatus.FAILED, reason=reason, error_kind=error_kind)


@dataclass(frozen=True)
class LogEntry:
    stage: StageKind
    operation: Operation
    outcome: Outcome
    attempts: int = 1


# ── Restore report ────────────────────────────────────────────────────────────


@dataclass
class RestoreReport:
    snapshot_id: str
    target_id: str
    mode: RestoreMode
    entries: list[LogEntry] = field(default_factory=list)

    def _count(self, status: OutcomeStatus, stage: StageKind | None = None) -> int:
        return sum(
            1
            for e in self.entries
            if e.outcome.status is status and (stage is None or e.stage is stage)
        )

    @property
    def succeeded(self) -> int:
        return self._count(OutcomeStatus.SUCCESS)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    def counts(self, stage: StageKind | None = None) -> dict[OutcomeStatus, int]:
        return {status: self._count(status, stage) for status in OutcomeStatus}

    def for_stage(self, stage: StageKind) -> list[LogEntry]:
        return [e for e in self.entries if e.stage is stage]

    def failures(self) -> list[LogEntry]:
        return [e for e in self.entries if e.outcome.status is OutcomeStatus.FAILED]

    def summary(self) -> str:
        return (
            f"Restore of {self.snapshot_id} finished: "
            f"{self.succeeded} succeeded, {self.skipped} skipped, {self.failed} failed."
        )

    def print(self):
        _head("═══════════════════ Restore Report ═══════════════════")

        print(f"\n  Snapshot : {BOLD}{self.snapshot_id}{RESET}")
        print(f"  Server   : {self.target_id}  ({self.mode.value})\n")

        stages = []
        for e in self.entries:
            if e.stage not in stages:
                stages.append(e.stage)
        for stage in stages:
            c = self.counts(stage)
            print(
                f"  {stage.value:<18}"
                f"  {GREEN}{c[OutcomeStatus.SUCCESS]} ok{RESET}"
                + (f"   {YELLOW}{c[OutcomeStatus.SKIPPED]} skipped{RESET}" if c[OutcomeStatus.SKIPPED] else "")
                + (f"   {RED}{c[OutcomeStatus.FAILED]} failed{RESET}" if c[OutcomeStatus.FAILED] else "")
            )
            for e in self.for_stage(stage):
                if e.outcome.status is OutcomeStatus.FAILED:
                    print(f"             {DIM}↳ {e.operation.label}: {e.outcome.error_kind}{RESET}")

        print(f"\n  {CYAN}{self.summary()}{RESET}\n")


# ── Executor ──────────────────────────────────────────────────────────────────


class RestoreExecutor:
    def __init__(
        self,
        accessor: RemoteAccessor,
        concurrency: int = 4,
        max_attempts: int = 5,
        backoff_base: float = 0.5,
        backoff_cap: float = 30.0,
        clock=SYSTEM_CLOCK,
    ):
        if concurrency < 1 or max_attempts < 1:
            raise ValueError("concurrency and max_attempts must be at least 1")
        self.accessor = accessor
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.clock = clock
        self._handlers = {
            OpKind.DELETE_ROLE: self._delete_role,
            OpKind.DELETE_CHANNEL: self._delete_channel,
            OpKind.DELETE_EMOJI: self._delete_emoji,
            OpKind.CREATE_ROLE: self._create_role,
            OpKind.REUSE_ROLE: self._reuse_role,
            OpKind.CREATE_CATEGORY: self._create_category,
            OpKind.CREATE_CHANNEL: self._create_channel,
            OpKind.APPLY_OVERWRITE: self._apply_overwrite,
            OpKind.CREATE_EMOJI: self._create_emoji,
            OpKind.ASSIGN_MEMBER_ROLES: self._assign_member_roles,
            OpKind.APPLY_SETTINGS: self._apply_settings,
        }

    def execute(self, plan: RestorePlan, target_id: str | None = None) -> RestoreReport:
        target_id = target_id or plan.target_id
        report = RestoreReport(snapshot_id=plan.snapshot.id, target_id=target_id, mode=plan.mode)
        ids = IdentifierMap()
        for (kind, key), remote_id in plan.seed.items():
            ids.put(kind, key, remote_id)

        for number, stage in enumerate(plan.stages, 1):
            logger.info(
                "[%d/%d] %s – %d operations", number, len(plan.stages), stage.kind.value, len(stage.operations)
            )
            report.entries.extend(self._run_stage(stage, ids, target_id))

        logger.info("%s (%d identifiers mapped)", report.summary(), len(ids))
        return report

    def _run_stage(self, stage: Stage, ids: IdentifierMap, target_id: str) -> list[LogEntry]:
        if not stage.operations:
            return []
        if stage.sequential or self.concurrency == 1 or len(stage.operations) == 1:
            return [self._run(stage, op, ids, target_id) for op in stage.operations]
        workers = min(self.concurrency, len(stage.operations))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="restore") as pool:
            return list(pool.map(lambda op: self._run(stage, op, ids, target_id), stage.operations))

    def _backoff(self, attempt: int, retry_after: float) -> float:
        return min(self.backoff_cap, max(retry_after, self.backoff_base * 2 ** (attempt - 1)))

    def _run(self, stage: Stage, op: Operation, ids: IdentifierMap, target_id: str) -> LogEntry:
        if op.skip_reason:
            return LogEntry(stage.kind, op, Outcome.skipped(op.skip_reason))

        handler = self._handlers[op.kind]
        for attempt in range(1, self.max_attempts + 1):
            try:
                outcome = handler(op, ids, target_id)
            except RateLimited as e:
                if attempt == self.max_attempts:
                    logger.warning("%s: rate limit retries exhausted", op.label)
                    outcome = Outcome.failed(RateLimitExhausted.kind, e.message)
                    return LogEntry(stage.kind, op, outcome, attempt)
                delay = self._backoff(attempt, e.retry_after)
                logger.info("%s: rate limited, retry %d in %.1fs", op.label, attempt, delay)
                self.clock.sleep(delay)
                continue
            except RemoteError as e:
                logger.warning("%s failed: %s", op.label, e.message)
                return LogEntry(stage.kind, op, Outcome.failed(e.kind, e.message), attempt)
            except Exception as e:
                logger.exception("%s failed unexpectedly", op.label)
                return LogEntry(stage.kind, op, Outcome.failed("Unexpected", str(e)), attempt)
            return LogEntry(stage.kind, op, outcome, attempt)

    # ── stage 0 ───────────────────────────────────────────────────────────

    def _delete_role(self, op: Operation, ids: IdentifierMap, target_id: str) -> Outcome:
        self.accessor.delete_role(target_id, op.remote_id)
        return Outcome.success(op.remote_id)

    def _delete_channel(self, op: Operation, ids: IdentifierMap, target_id: str) -> Outcome:
        self.accessor.delete_channel(target_id, op.remote_id)
        return Outcome.success(op.remote_id)

    def _delete_emoji(self, op: Operation, ids: IdentifierMap, target_id: str) -> Outcome:
        self.accessor.delete_emoji(target_id, op.remote_id)
        return Outcome.success(op.remote_id)

    # ── roles ─────────────────────────────────────────────────────────────

    def _create_role(self, op: Operation, ids: IdentifierMap, target_id: str) -> Outcome:
        role_id = self.accessor.create_role(target_id, op.record)
        ids.put(EntityKind.ROLE, op.key, role_id)
        return Outcome.success(role_id)

    def _reuse_role(self, op: Operation, ids: IdentifierMap, target_id: str) -> Outcome:
        ids.put(EntityKind.ROLE, op.key, op.remote_id)
        return Outcome.skipped("reused existing role", remote_id=op.remote_id)

    # ── channels ──────────────────────────────────────────────────────────

    def _create_category(self, op: Operation, ids: IdentifierMap, target_id: str) -> Outcome:
        ch = op.record
        channel_id = self.accessor.create_channel(
            target_id, ch.name, ChannelKind.CATEGORY, nsfw=ch.nsfw, position=ch.position
        )
        ids.put(EntityKind.CHANNEL, op.key, channel_id)
        return Outcome.success(channel_id)

    def _create_channel(self, op: Operation, ids: IdentifierMap, target_id: str) -> Outcome:
        ch = op.record
        parent_id = None
        note = None
        if ch.parent_local_id:
            parent_id = ids.get(EntityKind.CHANNEL, ch.parent_local_id)
            if parent_id is None:
                note = "parent category missing, created at top level"
        channel_id = self.accessor.create_channel(
            target_id,
            ch.name,
            ch.kind,
            parent_id=parent_id,
            topic=ch.topic,
            nsfw=ch.nsfw,
            position=ch.position,
        )
        ids.put(EntityKind.CHANNEL, op.key, channel_id)
        return Outcome.success(channel_id, note)

    def _apply_overwrite(self, op: Operation, ids: IdentifierMap, target_id: str) -> Outcome:
        channel_id = ids.get(EntityKind.CHANNEL, op.channel_key)
        if channel_id is None:
            return Outcome.skipped("channel was not created")

        ow = op.record
        if ow.principal_kind is PrincipalKind.ROLE:
            principal = ids.get(EntityKind.ROLE, ow.principal_ref)
            if principal is None:
                return Outcome.skipped(f"role {ow.principal_ref} was not created")
        else:
            principal = ow.principal_ref
        self.accessor.set_overwrite(
            target_id,
            channel_id,
            RemoteOverwrite(id=principal, kind=ow.principal_kind, allow=ow.allow_bits, deny=ow.deny_bits),
        )
        return Outcome.success(principal)

    # ── emojis ────────────────────────────────────────────────────────────

    def _emoji_image(self, emoji: EmojiRecord) -> bytes:
        try:
            return self.accessor.fetch_asset(emoji.source_ref)
        except RemoteError:
            if emoji.inline_data:
                logger.info("Emoji :%s: source expired, using embedded copy", emoji.name)
                return base64.b64decode(emoji.inline_data)
            raise

    def _create_emoji(self, op: Operation, ids: IdentifierMap, target_id: str) -> Outcome:
        emoji = op.record
        emoji_id = self.accessor.create_emoji(target_id, emoji.name, self._emoji_image(emoji))
        return Outcome.success(emoji_id)

    # ── members ───────────────────────────────────────────────────────────

    def _assign_member_roles(self, op: Operation, ids: IdentifierMap, target_id: str) -> Outcome:
        m = op.record
        role_ids = []
        missing = []
        for name in m.role_names:
            role_id = ids.get(EntityKind.ROLE, name)
            if role_id is None:
                missing.append(name)
            else:
                role_ids.append(role_id)
        if not role_ids:
            return Outcome.skipped("none of the member's roles exist")
        for role_id in role_ids:
            self.accessor.add_member_role(target_id, m.member_id, role_id)
        note = f"unresolved roles: {', '.join(missing)}" if missing else None
        return Outcome.success(m.member_id, note)

    # ── settings ──────────────────────────────────────────────────────────

    def _apply_settings(self, op: Operation, ids: IdentifierMap, target_id: str) -> Outcome:
        snapshot = op.record
        s = snapshot.settings
        changes: dict = {
            "name": snapshot.target_name,
            "verification_level": s.verification_level,
            "explicit_content_filter": s.explicit_content_filter,
            "default_notifications": s.default_notifications,
            "afk_timeout": s.afk_timeout,
        }
        if snapshot.description is not None:
            changes["description"] = snapshot.description

        unresolved = []
        for key, local_id in s.channel_refs().items():
            if local_id is None:
                continue
            channel_id = ids.get(EntityKind.CHANNEL, local_id)
            if channel_id is None:
                unresolved.append(key)
            else:
                changes[key] = channel_id

        icon = self._icon(snapshot)
        if icon is not None:
            changes["icon"] = icon

        self.accessor.edit_target(target_id, changes)
        note = f"unresolved channels: {', '.join(unresolved)}" if unresolved else None
        return Outcome.success(target_id, note)

    def _icon(self, snapshot) -> bytes | None:
        if snapshot.icon_ref:
            try:
                return self.accessor.fetch_asset(snapshot.icon_ref)
            except RemoteError as e:
                logger.warning("Could not download server icon: %s", e.message)
        if snapshot.icon_data:
            return base64.b64decode(snapshot.icon_data)
        return None
