from __future__ import annotations

import pytest

from models import ChannelKind, ChannelRecord, SnapshotRecord
from permissions import ADMINISTRATOR, MANAGE_ROLES, UINT64_MAX, format_bits, has_permission, parse_bits


def _doc(**overrides) -> dict:
    doc = {
        "formatVersion": 1,
        "id": "ab" * 16,
        "targetName": "Server",
        "createdAt": "2026-01-01T00:00:00+00:00",
        "roles": [{"name": "Admin", "permissionBits": "8", "position": 1}],
        "channels": [
            {"localId": "k", "name": "Info", "kind": "category"},
            {"localId": "t", "name": "rules", "kind": "text", "parentLocalId": "k"},
        ],
    }
    doc.update(overrides)
    return doc


def test_from_dict_reads_minimal_document():
    snap = SnapshotRecord.from_dict(_doc())

    assert snap.roles[0].permission_bits == ADMINISTRATOR
    assert snap.channels[1].parent_local_id == "k"
    assert snap.settings.afk_timeout == 300
    assert snap.categories == (snap.channels[0],)


def test_parent_must_be_a_category_in_the_snapshot():
    doc = _doc(channels=[{"localId": "t", "name": "rules", "kind": "text", "parentLocalId": "gone"}])

    with pytest.raises(ValueError):
        SnapshotRecord.from_dict(doc)


def test_categories_cannot_be_nested():
    snap = SnapshotRecord(
        id="ab" * 16,
        target_name="S",
        created_at="2026-01-01T00:00:00+00:00",
        channels=(
            ChannelRecord("a", "A", ChannelKind.CATEGORY),
            ChannelRecord("b", "B", ChannelKind.CATEGORY, parent_local_id="a"),
        ),
    )
    with pytest.raises(ValueError):
        snap.validate()


def test_unknown_format_version_is_rejected():
    with pytest.raises(ValueError):
        SnapshotRecord.from_dict(_doc(formatVersion=99))


@pytest.mark.parametrize("value", ["-1", "1.5", "0x10", str(UINT64_MAX + 1), True])
def test_parse_bits_rejects_bad_values(value):
    with pytest.raises(ValueError):
        parse_bits(value)


def test_bits_survive_the_full_64_bit_range():
    assert parse_bits(format_bits(UINT64_MAX)) == UINT64_MAX
    assert format_bits(1 << 63) == "9223372036854775808"


def test_administrator_implies_everything():
    assert has_permission(ADMINISTRATOR, MANAGE_ROLES)
    assert has_permission(MANAGE_ROLES, MANAGE_ROLES)
    assert not has_permission(0, MANAGE_ROLES)
