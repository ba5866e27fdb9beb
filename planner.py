"""
planner.py
──────────
Turns a SnapshotRecord into an ordered, staged RestorePlan.

Stage order is fixed:

  0. ClearExisting       (destructive mode only)
  1. CreateRoles         lowest position first, so creation order rebuilds the hierarchy
  2. CreateCategories
  3. CreateChannels      parents already exist after stage 2
  4. ApplyOverwrites     one operation per (channel, principal)
  5. CreateEmojis
  6. AssignMemberRoles   members who left the server are skipped
  7. ApplySettings       may point at channels created in stage 2/3

Operations inside one stage never depend on each other; stages that create
hierarchy-ordered entities are flagged ``sequential`` so the remote sees
them in position order.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from adapters.base import RemoteAccessor
from errors import CaptureIncomplete, RemoteError
from idmap import EntityKind
from models import EVERYONE, SnapshotRecord

logger = logging.getLogger(__name__)


class RestoreMode(Enum):
    MERGE = "merge"  # reuse live roles with the same name, keep everything else
    DESTRUCTIVE = "destructive"  # wipe roles, channels and emojis first


class StageKind(Enum):
    CLEAR_EXISTING = "ClearExisting"
    CREATE_ROLES = "CreateRoles"
    CREATE_CATEGORIES = "CreateCategories"
    CREATE_CHANNELS = "CreateChannels"
    APPLY_OVERWRITES = "ApplyOverwrites"
    CREATE_EMOJIS = "CreateEmojis"
    ASSIGN_MEMBER_ROLES = "AssignMemberRoles"
    APPLY_SETTINGS = "ApplySettings"


class OpKind(Enum):
    DELETE_ROLE = "delete_role"
    DELETE_CHANNEL = "delete_channel"
    DELETE_EMOJI = "delete_emoji"
    CREATE_ROLE = "create_role"
    REUSE_ROLE = "reuse_role"
    CREATE_CATEGORY = "create_category"
    CREATE_CHANNEL = "create_channel"
    APPLY_OVERWRITE = "apply_overwrite"
    CREATE_EMOJI = "create_emoji"
    ASSIGN_MEMBER_ROLES = "assign_member_roles"
    APPLY_SETTINGS = "apply_settings"


@dataclass(frozen=True)
class Operation:
    kind: OpKind
    key: str  # snapshot-local key (role name, channel localId, member id …)
    label: str
    record: Any = None  # the snapshot record this operation replays
    remote_id: str | None = None  # live id for deletions / reuse
    skip_reason: str | None = None  # decided at plan time, executor records Skipped
    channel_key: str | None = None  # owning channel's localId, overwrite operations only


@dataclass
class Stage:
    kind: StageKind
    operations: list[Operation] = field(default_factory=list)
    sequential: bool = False


@dataclass
class RestorePlan:
    snapshot: SnapshotRecord
    target_id: str
    mode: RestoreMode
    stages: list[Stage] = field(default_factory=list)
    # Identifiers known before execution starts (the live "everyone" role)
    seed: dict[tuple[EntityKind, str], str] = field(default_factory=dict)

    def stage(self, kind: StageKind) -> Stage | None:
        return next((s for s in self.stages if s.kind is kind), None)

    @property
    def operation_count(self) -> int:
        return sum(len(s.operations) for s in self.stages)


class RestorePlanner:
    def __init__(self, accessor: RemoteAccessor):
        self.accessor = accessor

    def plan(self, snapshot: SnapshotRecord, target_id: str, mode: RestoreMode) -> RestorePlan:
        try:
            live_roles = self.accessor.list_roles(target_id)
            live_channels = self.accessor.list_channels(target_id)
            live_emojis = self.accessor.list_emojis(target_id)
            live_members = {m.id for m in self.accessor.list_members(target_id)}
        except RemoteError as e:
            raise CaptureIncomplete(f"could not read live state of {target_id}: {e.message}") from e

        plan = RestorePlan(snapshot=snapshot, target_id=target_id, mode=mode)
        everyone = next((r for r in live_roles if r.is_default), None)
        if everyone is not None:
            plan.seed[EntityKind.ROLE, EVERYONE] = everyone.id

        # Roles / emojis an operator could actually remove or reuse
        own_roles = [r for r in live_roles if not r.is_default and not r.managed]
        own_emojis = [e for e in live_emojis if not e.managed]

        # ── 0. clear ──────────────────────────────────────────────────────
        if mode is RestoreMode.DESTRUCTIVE:
            clear = Stage(StageKind.CLEAR_EXISTING)
            for r in own_roles:
                clear.operations.append(
                    Operation(OpKind.DELETE_ROLE, r.id, f"role @{r.name}", remote_id=r.id)
                )
            for c in live_channels:
                clear.operations.append(
                    Operation(OpKind.DELETE_CHANNEL, c.id, f"[{c.kind.value}] #{c.name}", remote_id=c.id)
                )
            for e in own_emojis:
                clear.operations.append(
                    Operation(OpKind.DELETE_EMOJI, e.id, f"emoji :{e.name}:", remote_id=e.id)
                )
            plan.stages.append(clear)

        # ── 1. roles ──────────────────────────────────────────────────────
        roles = Stage(StageKind.CREATE_ROLES, sequential=True)
        existing_roles = {}
        if mode is RestoreMode.MERGE:
            for r in sorted(own_roles, key=lambda r: r.position):
                existing_roles.setdefault(r.name, r.id)
        for role in sorted(snapshot.roles, key=lambda r: r.position):
            if role.name in existing_roles:
                roles.operations.append(
                    Operation(
                        OpKind.REUSE_ROLE,
                        role.name,
                        f"role @{role.name}",
                        record=role,
                        remote_id=existing_roles[role.name],
                    )
                )
            else:
                roles.operations.append(
                    Operation(OpKind.CREATE_ROLE, role.name, f"role @{role.name}", record=role)
                )
        plan.stages.append(roles)

        # ── 2./3. categories, then channels ───────────────────────────────
        categories = Stage(StageKind.CREATE_CATEGORIES, sequential=True)
        channels = Stage(StageKind.CREATE_CHANNELS, sequential=True)
        for ch in sorted(snapshot.channels, key=lambda c: c.position):
            if ch.is_category:
                categories.operations.append(
                    Operation(OpKind.CREATE_CATEGORY, ch.local_id, f"category {ch.name}", record=ch)
                )
            else:
                channels.operations.append(
                    Operation(OpKind.CREATE_CHANNEL, ch.local_id, f"[{ch.kind.value}] #{ch.name}", record=ch)
                )
        plan.stages += [categories, channels]

        # ── 4. overwrites ─────────────────────────────────────────────────
        overwrites = Stage(StageKind.APPLY_OVERWRITES)
        for ch in snapshot.channels:
            for ow in ch.overwrites:
                overwrites.operations.append(
                    Operation(
                        OpKind.APPLY_OVERWRITE,
                        f"{ch.local_id}/{ow.principal_kind.value}:{ow.principal_ref}",
                        f"overwrite for {ow.principal_ref} on #{ch.name}",
                        record=ow,
                        channel_key=ch.local_id,
                    )
                )
        plan.stages.append(overwrites)

        # ── 5. emojis ─────────────────────────────────────────────────────
        emojis = Stage(StageKind.CREATE_EMOJIS)
        live_emoji_names = {e.name for e in own_emojis} if mode is RestoreMode.MERGE else set()
        for emoji in snapshot.emojis:
            emojis.operations.append(
                Operation(
                    OpKind.CREATE_EMOJI,
                    emoji.name,
                    f"emoji :{emoji.name}:",
                    record=emoji,
                    skip_reason="emoji already present" if emoji.name in live_emoji_names else None,
                )
            )
        plan.stages.append(emojis)

        # ── 6. member roles ───────────────────────────────────────────────
        assign = Stage(StageKind.ASSIGN_MEMBER_ROLES)
        for m in snapshot.member_roles:
            assign.operations.append(
                Operation(
                    OpKind.ASSIGN_MEMBER_ROLES,
                    m.member_id,
                    f"roles of member {m.member_id}",
                    record=m,
                    skip_reason=None if m.member_id in live_members else "member is no longer in the server",
                )
            )
        plan.stages.append(assign)

        # ── 7. settings ───────────────────────────────────────────────────
        plan.stages.append(
            Stage(
                StageKind.APPLY_SETTINGS,
                [Operation(OpKind.APPLY_SETTINGS, "settings", "server settings", record=snapshot)],
            )
        )

        logger.info(
            "Planned %s restore of %s onto %s: %d operations in %d stages",
            mode.value, snapshot.id, target_id, plan.operation_count, len(plan.stages),
        )
        return plan
