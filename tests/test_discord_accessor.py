from __future__ import annotations

import json

import pytest
import requests

from adapters.discord import MEMBER_PAGE_SIZE, DiscordAccessor
from errors import DeliveryFailed, RateLimited, RemoteRejected, RemoteUnavailable
from models import ChannelKind, PrincipalKind, RoleRecord


class StubResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode()
        self.text = self.content.decode()

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._payload


class StubSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _accessor(*responses):
    sleeps = []
    session = StubSession(*responses)
    return DiscordAccessor("tok", session=session, sleep=sleeps.append), session, sleeps


def test_list_roles_parses_permission_strings():
    acc, session, _ = _accessor(
        StubResponse(200, [
            {"id": "1", "name": "@everyone", "permissions": "1024", "position": 0},
            {"id": "9", "name": "Admin", "permissions": str(1 << 40), "position": 3, "managed": False},
        ])
    )

    roles = acc.list_roles("1")

    assert roles[0].is_default and not roles[1].is_default
    assert roles[1].permissions == 1 << 40
    method, url, kwargs = session.requests[0]
    assert (method, url) == ("GET", "https://discord.com/api/v10/guilds/1/roles")
    assert kwargs["headers"]["Authorization"] == "Bot tok"


def test_reads_wait_out_rate_limits():
    acc, session, sleeps = _accessor(
        StubResponse(429, {"retry_after": 2.0}),
        StubResponse(200, []),
    )

    assert acc.list_emojis("1") == []
    assert sleeps == [pytest.approx(2.1)]
    assert len(session.requests) == 2


def test_writes_surface_rate_limits_to_the_caller():
    acc, _, sleeps = _accessor(StubResponse(429, {"retry_after": 3.5}))

    with pytest.raises(RateLimited) as exc:
        acc.create_role("1", RoleRecord("Mods"))
    assert exc.value.retry_after == 3.5
    assert sleeps == []


def test_create_role_sends_decimal_permissions():
    acc, session, _ = _accessor(StubResponse(200, {"id": "77"}))

    assert acc.create_role("1", RoleRecord("Mods", color=5, permission_bits=1 << 63)) == "77"
    payload = session.requests[0][2]["json"]
    assert payload["permissions"] == str(1 << 63)
    assert payload["color"] == 5


def test_rejections_and_transport_errors():
    acc, _, _ = _accessor(
        StubResponse(403, {"message": "Missing Permissions"}),
        requests.ConnectionError("reset"),
        StubResponse(502, {}),
    )

    with pytest.raises(RemoteRejected) as exc:
        acc.delete_role("1", "9")
    assert exc.value.status == 403
    with pytest.raises(RemoteUnavailable):
        acc.delete_role("1", "9")
    with pytest.raises(RemoteUnavailable):
        acc.delete_role("1", "9")


def test_list_members_pages_through_everything():
    first = [{"user": {"id": str(i)}, "roles": ["5"]} for i in range(1, MEMBER_PAGE_SIZE + 1)]
    second = [{"user": {"id": "5000", "bot": True}, "roles": []}]
    acc, session, _ = _accessor(StubResponse(200, first), StubResponse(200, second))

    members = acc.list_members("1")

    assert len(members) == MEMBER_PAGE_SIZE + 1
    assert members[-1].bot
    assert session.requests[1][2]["params"]["after"] == str(MEMBER_PAGE_SIZE)


def test_list_channels_skips_unrepresentable_types():
    acc, _, _ = _accessor(
        StubResponse(200, [
            {"id": "10", "type": 4, "name": "Info", "position": 0},
            {"id": "11", "type": 0, "name": "rules", "parent_id": "10", "position": 1,
             "permission_overwrites": [{"id": "1", "type": 0, "allow": "0", "deny": "1024"}]},
            {"id": "12", "type": 11, "name": "a thread"},
        ])
    )

    channels = acc.list_channels("1")

    assert [c.kind for c in channels] == [ChannelKind.CATEGORY, ChannelKind.TEXT]
    assert channels[1].overwrites[0].kind is PrincipalKind.ROLE
    assert channels[1].overwrites[0].deny == 1024


def test_create_emoji_uploads_data_uri():
    acc, session, _ = _accessor(StubResponse(200, {"id": "3"}))

    acc.create_emoji("1", "wave", b"GIF89a...")

    image = session.requests[0][2]["json"]["image"]
    assert image.startswith("data:image/gif;base64,")


def test_edit_target_maps_field_names():
    acc, session, _ = _accessor(StubResponse(204))

    acc.edit_target("1", {"name": "New", "default_notifications": 1, "system_channel_id": "11"})

    method, url, kwargs = session.requests[0]
    assert method == "PATCH"
    assert kwargs["json"] == {"name": "New", "default_message_notifications": 1, "system_channel_id": "11"}


def test_direct_message_failure_becomes_delivery_failed():
    acc, _, _ = _accessor(StubResponse(403, {"message": "Cannot send messages to this user"}))

    with pytest.raises(DeliveryFailed):
        acc.send_direct_message("100", "hello")


def test_second_role_is_moved_above_the_first():
    acc, session, _ = _accessor(
        StubResponse(200, {"id": "21", "position": 1}),
        StubResponse(200, {"id": "22", "position": 1}),
        StubResponse(200, [
            {"id": "1", "name": "@everyone", "permissions": "0", "position": 0},
            {"id": "21", "name": "Mods", "permissions": "0", "position": 2},
            {"id": "22", "name": "Admins", "permissions": "0", "position": 1},
        ]),
        StubResponse(200, []),
    )

    assert acc.create_role("1", RoleRecord("Mods", position=1)) == "21"
    assert acc.create_role("1", RoleRecord("Admins", position=2)) == "22"

    method, url, kwargs = session.requests[-1]
    assert (method, url) == ("PATCH", "https://discord.com/api/v10/guilds/1/roles")
    assert kwargs["json"] == [{"id": "22", "position": 2}]


def test_failed_reposition_still_returns_the_new_role():
    acc, session, _ = _accessor(
        StubResponse(200, {"id": "21"}),
        StubResponse(200, {"id": "22"}),
        StubResponse(200, [{"id": "21", "name": "Mods", "position": 2}]),
        StubResponse(403, {"message": "Missing Permissions"}),
    )
    acc.create_role("1", RoleRecord("Mods"))

    assert acc.create_role("1", RoleRecord("Admins")) == "22"
    assert session.requests[-1][0] == "PATCH"
