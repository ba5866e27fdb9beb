from __future__ import annotations

import base64

import pytest

from errors import CaptureIncomplete, RemoteUnavailable
from models import EVERYONE, ChannelKind, PrincipalKind
from permissions import ADMINISTRATOR
from snapshot import SnapshotBuilder


def test_capture_filters_default_and_managed_roles(remote):
    snap = SnapshotBuilder(remote).capture("1")

    assert [r.name for r in snap.roles] == ["Admin", "Member"]
    assert snap.roles[0].permission_bits == ADMINISTRATOR
    assert snap.roles[0].color == 0xFF0000
    assert snap.roles[0].position < snap.roles[1].position


def test_capture_channels_keep_parent_and_categories_first(remote):
    snap = SnapshotBuilder(remote).capture("1")

    assert [c.kind for c in snap.channels] == [ChannelKind.CATEGORY, ChannelKind.TEXT, ChannelKind.VOICE]
    category, general, lounge = snap.channels
    assert general.parent_local_id == category.local_id
    assert general.topic == "Say hi"
    assert lounge.parent_local_id is None


def test_capture_overwrites_use_role_names(remote):
    snap = SnapshotBuilder(remote).capture("1")
    general = next(c for c in snap.channels if c.name == "general")

    principals = {(o.principal_kind, o.principal_ref) for o in general.overwrites}
    # the managed bot role overwrite is dropped
    assert principals == {
        (PrincipalKind.ROLE, EVERYONE),
        (PrincipalKind.ROLE, "Member"),
        (PrincipalKind.MEMBER, "300"),
    }


def test_capture_member_roles_and_emojis(remote):
    snap = SnapshotBuilder(remote).capture("1")

    assert {m.member_id: m.role_names for m in snap.member_roles} == {
        "200": ("Admin",),
        "300": ("Member",),
    }
    assert [e.name for e in snap.emojis] == ["party"]
    assert snap.emojis[0].inline_data is None


def test_capture_settings_reference_captured_channels(remote):
    snap = SnapshotBuilder(remote).capture("1")
    general = next(c for c in snap.channels if c.name == "general")

    assert snap.settings.system_channel_ref == general.local_id
    assert snap.settings.afk_channel_ref is None
    assert snap.target_name == "Test Server"


def test_capture_ids_are_random_hex(remote):
    builder = SnapshotBuilder(remote)
    a, b = builder.capture("1"), builder.capture("1")

    assert a.id != b.id
    assert len(a.id) == 32 and int(a.id, 16) >= 0
    assert a.id != remote.target.id


def test_capture_embeds_assets_when_asked(remote):
    snap = SnapshotBuilder(remote, embed_assets=True).capture("1")

    assert base64.b64decode(snap.emojis[0].inline_data) == b"\x89PNG party"


@pytest.mark.parametrize("method", ["list_roles", "list_members"])
def test_capture_incomplete_when_enumeration_fails(remote, method):
    remote.fail(method, RemoteUnavailable("timed out"))

    with pytest.raises(CaptureIncomplete):
        SnapshotBuilder(remote).capture("1")
