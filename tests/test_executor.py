from __future__ import annotations

import executor as executor_module
from adapters.memory import MemoryAccessor
from errors import RateLimited, RemoteRejected
from executor import OutcomeStatus, RestoreExecutor
from idmap import IdentifierMap
from models import (
    ChannelKind,
    ChannelRecord,
    EmojiRecord,
    MemberRoleRecord,
    PermissionOverwriteRecord,
    PrincipalKind,
    RoleRecord,
    SnapshotRecord,
)
from planner import RestoreMode, RestorePlanner, StageKind
from snapshot import SnapshotBuilder

SNAPSHOT_ID = "cd" * 16


def _snapshot(**kw) -> SnapshotRecord:
    defaults = dict(id=SNAPSHOT_ID, target_name="Restored", created_at="2026-01-01T00:00:00+00:00")
    defaults.update(kw)
    return SnapshotRecord(**defaults)


def _two_roles_one_category() -> SnapshotRecord:
    return _snapshot(
        roles=(RoleRecord("Mods", position=1), RoleRecord("Admins", position=2)),
        channels=(
            ChannelRecord("cat", "Info", ChannelKind.CATEGORY, position=0),
            ChannelRecord("rules", "rules", ChannelKind.TEXT, parent_local_id="cat", position=1),
        ),
    )


def _restore(remote, snap, mode=RestoreMode.DESTRUCTIVE, **kw):
    plan = RestorePlanner(remote).plan(snap, remote.target.id, mode)
    return RestoreExecutor(remote, **kw).execute(plan)


def test_destructive_restore_onto_server_with_one_role(clock):
    remote = MemoryAccessor()
    remote.add_role("Old")

    report = _restore(remote, _two_roles_one_category(), clock=clock)

    clear = report.counts(StageKind.CLEAR_EXISTING)
    assert clear[OutcomeStatus.SUCCESS] == 1
    assert report.counts(StageKind.CREATE_ROLES)[OutcomeStatus.SUCCESS] == 2
    channels = report.for_stage(StageKind.CREATE_CATEGORIES) + report.for_stage(StageKind.CREATE_CHANNELS)
    assert [e.outcome.status for e in channels] == [OutcomeStatus.SUCCESS] * 2
    assert report.failed == 0

    assert remote.role_by_name("Old") is None
    rules = remote.channel_by_name("rules")
    assert rules.parent_id == remote.channel_by_name("Info").id


def test_category_is_attempted_before_its_children():
    remote = MemoryAccessor()
    _restore(remote, _two_roles_one_category(), concurrency=8)

    creates = [key for method, key in remote.calls if method == "create_channel"]
    assert creates == ["Info", "rules"]


def test_roles_created_lowest_position_first():
    remote = MemoryAccessor()
    _restore(remote, _two_roles_one_category())

    assert remote.role_by_name("Mods").position < remote.role_by_name("Admins").position


def test_rate_limited_operation_is_retried_with_backoff(clock):
    remote = MemoryAccessor()
    remote.fail("create_role", RateLimited(0.25), times=2, key="Mods")

    report = _restore(remote, _two_roles_one_category(), clock=clock, backoff_base=0.5)

    entry = next(e for e in report.for_stage(StageKind.CREATE_ROLES) if e.operation.key == "Mods")
    assert entry.outcome.status is OutcomeStatus.SUCCESS
    assert entry.attempts == 3
    assert clock.sleeps == [0.5, 1.0]


def test_backoff_honours_longer_retry_after(clock):
    remote = MemoryAccessor()
    remote.fail("create_role", RateLimited(4.0), times=1, key="Mods")

    _restore(remote, _two_roles_one_category(), clock=clock, backoff_base=0.5)

    assert clock.sleeps == [4.0]


def test_rate_limit_exhaustion_is_recorded_and_run_continues(clock):
    remote = MemoryAccessor()
    remote.fail("create_role", RateLimited(0.1), times=10, key="Mods")

    report = _restore(remote, _two_roles_one_category(), clock=clock, max_attempts=3)

    mods = next(e for e in report.entries if e.operation.key == "Mods")
    assert mods.outcome.status is OutcomeStatus.FAILED
    assert mods.outcome.error_kind == "RateLimitExhausted"
    assert mods.attempts == 3
    assert len(clock.sleeps) == 2
    assert remote.role_by_name("Admins") is not None
    assert remote.channel_by_name("rules") is not None


def test_rejected_operation_is_not_retried(clock):
    remote = MemoryAccessor()
    remote.add_member("300")
    remote.fail("create_role", RemoteRejected("name too long", status=400), key="Mods")
    snap = _snapshot(
        roles=(RoleRecord("Mods", position=1),),
        member_roles=(MemberRoleRecord("300", ("Mods",)),),
    )

    report = _restore(remote, snap, clock=clock)

    mods = report.for_stage(StageKind.CREATE_ROLES)[0]
    assert mods.outcome.error_kind == "RemoteRejected"
    assert mods.attempts == 1
    assert clock.sleeps == []
    member = report.for_stage(StageKind.ASSIGN_MEMBER_ROLES)[0]
    assert member.outcome.status is OutcomeStatus.SKIPPED


def test_unexpected_errors_are_recorded_not_raised():
    class Exploding(MemoryAccessor):
        def create_emoji(self, target_id, name, image):
            raise KeyError("boom")

    remote = Exploding()
    remote.assets["memory://e.png"] = b"png"
    snap = _snapshot(emojis=(EmojiRecord("wave", "memory://e.png"),))

    report = _restore(remote, snap)

    entry = report.for_stage(StageKind.CREATE_EMOJIS)[0]
    assert entry.outcome.error_kind == "Unexpected"
    assert report.for_stage(StageKind.APPLY_SETTINGS)[0].outcome.status is OutcomeStatus.SUCCESS


def test_emoji_falls_back_to_inline_bytes():
    remote = MemoryAccessor()
    snap = _snapshot(emojis=(EmojiRecord("wave", "https://expired.example/e.png", inline_data="cG5n"),))

    report = _restore(remote, snap)

    assert report.failed == 0
    emoji = next(iter(remote.emojis.values()))
    assert remote.assets[emoji.url] == b"png"


def test_overwrites_resolve_roles_through_new_ids():
    remote = MemoryAccessor(target_id="55")
    snap = _snapshot(
        roles=(RoleRecord("Mods", position=1),),
        channels=(
            ChannelRecord(
                "c",
                "staff",
                ChannelKind.TEXT,
                overwrites=(
                    PermissionOverwriteRecord("@everyone", PrincipalKind.ROLE, deny_bits=1024),
                    PermissionOverwriteRecord("Mods", PrincipalKind.ROLE, allow_bits=1024),
                    PermissionOverwriteRecord("Ghost", PrincipalKind.ROLE, allow_bits=1024),
                    PermissionOverwriteRecord("777", PrincipalKind.MEMBER, allow_bits=2048),
                ),
            ),
        ),
    )

    report = _restore(remote, snap)

    outcomes = {e.operation.record.principal_ref: e.outcome for e in report.for_stage(StageKind.APPLY_OVERWRITES)}
    assert outcomes["Ghost"].status is OutcomeStatus.SKIPPED
    assert outcomes["Mods"].status is OutcomeStatus.SUCCESS
    assert report.counts(StageKind.APPLY_OVERWRITES)[OutcomeStatus.SKIPPED] == 1
    staff = remote.channel_by_name("staff")
    assert {o.id for o in staff.overwrites} == {"55", remote.role_by_name("Mods").id, "777"}


def test_rejected_overwrite_does_not_stop_the_others_on_that_channel():
    remote = MemoryAccessor(target_id="55")
    snap = _snapshot(
        roles=(RoleRecord("Mods", position=1),),
        channels=(
            ChannelRecord(
                "c",
                "staff",
                ChannelKind.TEXT,
                overwrites=(
                    PermissionOverwriteRecord("777", PrincipalKind.MEMBER, allow_bits=2048),
                    PermissionOverwriteRecord("@everyone", PrincipalKind.ROLE, deny_bits=1024),
                    PermissionOverwriteRecord("Mods", PrincipalKind.ROLE, allow_bits=1024),
                ),
            ),
        ),
    )
    remote.fail("set_overwrite", RemoteRejected("Unknown Member", status=404))

    report = _restore(remote, snap, concurrency=1)

    entries = report.for_stage(StageKind.APPLY_OVERWRITES)
    assert [e.outcome.status for e in entries] == [
        OutcomeStatus.FAILED,
        OutcomeStatus.SUCCESS,
        OutcomeStatus.SUCCESS,
    ]
    assert report.failed == 1
    staff = remote.channel_by_name("staff")
    assert {o.id for o in staff.overwrites} == {"55", remote.role_by_name("Mods").id}


def test_identifier_map_written_once_per_key(monkeypatch, remote):
    writes = []

    class RecordingMap(IdentifierMap):
        def put(self, kind, key, remote_id):
            writes.append((kind, key))
            super().put(kind, key, remote_id)

    monkeypatch.setattr(executor_module, "IdentifierMap", RecordingMap)
    snap = SnapshotBuilder(remote).capture("1")
    _restore(remote, snap, concurrency=4)

    assert writes
    assert len(writes) == len(set(writes))


def _canonical(snap: SnapshotRecord):
    names = {c.local_id: c.name for c in snap.channels}
    return {
        "name": snap.target_name,
        "roles": [(r.name, r.color, r.hoisted, r.mentionable, r.permission_bits) for r in snap.roles],
        "channels": [
            (
                c.name,
                c.kind,
                names.get(c.parent_local_id),
                c.topic,
                c.nsfw,
                sorted((o.principal_ref, o.principal_kind.value, o.allow_bits, o.deny_bits) for o in c.overwrites),
            )
            for c in snap.channels
        ],
        "emojis": sorted(e.name for e in snap.emojis),
        "members": sorted((m.member_id, tuple(sorted(m.role_names))) for m in snap.member_roles),
        "system_channel": names.get(snap.settings.system_channel_ref),
    }


def test_round_trip_onto_empty_server(remote):
    original = SnapshotBuilder(remote).capture("1")

    target = MemoryAccessor(target_id="2", name="Empty", owner_id="100")
    target.assets.update(remote.assets)
    for member_id in ("200", "300"):
        target.add_member(member_id)

    report = _restore(target, original)
    restored = SnapshotBuilder(target).capture("2")

    assert report.failed == 0
    assert _canonical(restored) == _canonical(original)
