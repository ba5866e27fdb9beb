from __future__ import annotations

import pytest

from adapters.base import RemoteOverwrite
from adapters.memory import MemoryAccessor
from clock import FakeClock
from models import ChannelKind, PrincipalKind
from permissions import ADMINISTRATOR, SEND_MESSAGES, VIEW_CHANNEL
from store import SnapshotStore

OWNER = "100"
ADMIN = "200"
MEMBER = "300"
BOT = "400"


@pytest.fixture
def remote() -> MemoryAccessor:
    """A small, realistic server: two own roles, one bot role, a category with a child."""
    r = MemoryAccessor(target_id="1", name="Test Server", owner_id=OWNER)
    admin_role = r.add_role("Admin", permissions=ADMINISTRATOR, color=0xFF0000)
    member_role = r.add_role("Member", permissions=VIEW_CHANNEL | SEND_MESSAGES)
    bot_role = r.add_role("BotRole", managed=True)

    category = r.add_channel("Text Channels", ChannelKind.CATEGORY)
    general = r.add_channel(
        "general",
        ChannelKind.TEXT,
        parent_id=category,
        topic="Say hi",
        overwrites=[
            RemoteOverwrite(id="1", kind=PrincipalKind.ROLE, deny=VIEW_CHANNEL),
            RemoteOverwrite(id=member_role, kind=PrincipalKind.ROLE, allow=VIEW_CHANNEL),
            RemoteOverwrite(id=MEMBER, kind=PrincipalKind.MEMBER, allow=SEND_MESSAGES),
            RemoteOverwrite(id=bot_role, kind=PrincipalKind.ROLE, allow=VIEW_CHANNEL),
        ],
    )
    r.add_channel("Lounge", ChannelKind.VOICE)
    r.target.system_channel_id = general
    r.add_emoji("party", image=b"\x89PNG party")
    r.add_emoji("twitch_sub", managed=True)

    r.add_member(OWNER)
    r.add_member(ADMIN, [admin_role])
    r.add_member(MEMBER, [member_role])
    r.add_member(BOT, [bot_role], bot=True)
    return r


@pytest.fixture
def store(tmp_path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "backups")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
