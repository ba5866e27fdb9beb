"""
adapters/memory.py
──────────────────
In-memory RemoteAccessor.

Holds a single server in plain dicts, hands out fresh ids on creation and
records every call it receives. Used by the test-suite.

New roles are placed above every existing role. That satisfies the
creation-order contract of RemoteAccessor.create_role directly, without
Discord's insert-at-position-1 behaviour.

Failures can be injected per method (and optionally per key) to exercise
the executor's retry and best-effort paths:

    remote.fail("create_role", RateLimited(0.5), times=2, key="Mods")
"""

from __future__ import annotations
import itertools
import threading
from dataclasses import replace

from adapters.base import (
    RemoteAccessor,
    RemoteChannel,
    RemoteEmoji,
    RemoteMember,
    RemoteOverwrite,
    RemoteRole,
    RemoteTarget,
)
from errors import DeliveryFailed, RemoteError, RemoteRejected
from models import ChannelKind, RoleRecord


class MemoryAccessor(RemoteAccessor):
    platform_name = "In-memory"

    def __init__(self, target_id: str = "1", name: str = "Test Server", owner_id: str = "100"):
        self.target = RemoteTarget(id=target_id, name=name, owner_id=owner_id)
        self.roles: dict[str, RemoteRole] = {
            target_id: RemoteRole(id=target_id, name="@everyone", is_default=True)
        }
        self.channels: dict[str, RemoteChannel] = {}
        self.emojis: dict[str, RemoteEmoji] = {}
        self.members: dict[str, RemoteMember] = {}
        self.assets: dict[str, bytes] = {}
        self.dm_enabled = True
        self.sent_messages: list[tuple[str, str]] = []
        self.calls: list[tuple[str, str]] = []  # (method, key) in call order

        self._ids = itertools.count(1000)
        self._lock = threading.RLock()
        # method → list of [key | None, error, remaining]
        self._failures: dict[str, list[list]] = {}

    # ── seeding helpers ───────────────────────────────────────────────────

    def _new_id(self) -> str:
        return str(next(self._ids))

    def add_role(
        self,
        name: str,
        permissions: int = 0,
        position: int | None = None,
        managed: bool = False,
        color: int = 0,
    ) -> str:
        with self._lock:
            role_id = self._new_id()
            if position is None:
                position = max(r.position for r in self.roles.values()) + 1
            self.roles[role_id] = RemoteRole(
                id=role_id,
                name=name,
                color=color,
                permissions=permissions,
                position=position,
                managed=managed,
            )
            return role_id

    def add_channel(
        self,
        name: str,
        kind: ChannelKind = ChannelKind.TEXT,
        parent_id: str | None = None,
        position: int | None = None,
        topic: str | None = None,
        overwrites: list[RemoteOverwrite] | None = None,
    ) -> str:
        with self._lock:
            channel_id = self._new_id()
            if position is None:
                position = len(self.channels)
            self.channels[channel_id] = RemoteChannel(
                id=channel_id,
                name=name,
                kind=kind,
                position=position,
                parent_id=parent_id,
                topic=topic,
                overwrites=list(overwrites or []),
            )
            return channel_id

    def add_emoji(self, name: str, image: bytes = b"img", managed: bool = False) -> str:
        with self._lock:
            emoji_id = self._new_id()
            url = f"memory://emojis/{emoji_id}.png"
            self.assets[url] = image
            self.emojis[emoji_id] = RemoteEmoji(id=emoji_id, name=name, url=url, managed=managed)
            return emoji_id

    def add_member(self, member_id: str, role_ids: list[str] | None = None, bot: bool = False):
        with self._lock:
            self.members[member_id] = RemoteMember(
                id=member_id, role_ids=list(role_ids or []), bot=bot
            )

    def role_by_name(self, name: str) -> RemoteRole | None:
        return next((r for r in self.roles.values() if r.name == name), None)

    def channel_by_name(self, name: str) -> RemoteChannel | None:
        return next((c for c in self.channels.values() if c.name == name), None)

    # ── failure injection ─────────────────────────────────────────────────

    def fail(self, method: str, error: RemoteError, times: int = 1, key: str | None = None):
        """Make the next ``times`` calls of ``method`` (for ``key``) raise ``error``."""
        with self._lock:
            self._failures.setdefault(method, []).append([key, error, times])

    def _enter(self, method: str, key: str = ""):
        with self._lock:
            self.calls.append((method, key))
            for rule in self._failures.get(method, []):
                rule_key, error, remaining = rule
                if remaining > 0 and rule_key in (None, key):
                    rule[2] -= 1
                    raise error

    def _check_target(self, target_id: str):
        if target_id != self.target.id:
            raise RemoteRejected(f"unknown server {target_id}", status=404)

    # ── reads ─────────────────────────────────────────────────────────────

    def get_target(self, target_id: str) -> RemoteTarget:
        self._enter("get_target", target_id)
        self._check_target(target_id)
        return replace(self.target)

    def list_roles(self, target_id: str) -> list[RemoteRole]:
        self._enter("list_roles", target_id)
        self._check_target(target_id)
        with self._lock:
            return [replace(r) for r in self.roles.values()]

    def list_channels(self, target_id: str) -> list[RemoteChannel]:
        self._enter("list_channels", target_id)
        self._check_target(target_id)
        with self._lock:
            return [
                replace(c, overwrites=[replace(o) for o in c.overwrites])
                for c in self.channels.values()
            ]

    def list_emojis(self, target_id: str) -> list[RemoteEmoji]:
        self._enter("list_emojis", target_id)
        self._check_target(target_id)
        with self._lock:
            return [replace(e) for e in self.emojis.values()]

    def list_members(self, target_id: str) -> list[RemoteMember]:
        self._enter("list_members", target_id)
        self._check_target(target_id)
        with self._lock:
            return [replace(m, role_ids=list(m.role_ids)) for m in self.members.values()]

    def fetch_asset(self, ref: str) -> bytes:
        self._enter("fetch_asset", ref)
        try:
            return self.assets[ref]
        except KeyError:
            raise RemoteRejected(f"asset {ref} not found", status=404) from None

    # ── writes ────────────────────────────────────────────────────────────

    def create_role(self, target_id: str, role: RoleRecord) -> str:
        self._enter("create_role", role.name)
        self._check_target(target_id)
        with self._lock:
            role_id = self._new_id()
            self.roles[role_id] = RemoteRole(
                id=role_id,
                name=role.name,
                color=role.color,
                hoist=role.hoisted,
                mentionable=role.mentionable,
                permissions=role.permission_bits,
                position=max(r.position for r in self.roles.values()) + 1,
            )
            return role_id

    def delete_role(self, target_id: str, role_id: str) -> None:
        self._enter("delete_role", role_id)
        self._check_target(target_id)
        with self._lock:
            role = self.roles.get(role_id)
            if role is None:
                raise RemoteRejected(f"unknown role {role_id}", status=404)
            if role.is_default or role.managed:
                raise RemoteRejected(f"role {role.name} cannot be deleted", status=400)
            del self.roles[role_id]
            for member in self.members.values():
                if role_id in member.role_ids:
                    member.role_ids.remove(role_id)

    def create_channel(
        self,
        target_id: str,
        name: str,
        kind: ChannelKind,
        parent_id: str | None = None,
        topic: str | None = None,
        nsfw: bool = False,
        position: int | None = None,
    ) -> str:
        self._enter("create_channel", name)
        self._check_target(target_id)
        with self._lock:
            if parent_id is not None:
                parent = self.channels.get(parent_id)
                if parent is None or parent.kind is not ChannelKind.CATEGORY:
                    raise RemoteRejected(f"invalid parent {parent_id}", status=400)
            channel_id = self._new_id()
            self.channels[channel_id] = RemoteChannel(
                id=channel_id,
                name=name,
                kind=kind,
                position=len(self.channels) if position is None else position,
                parent_id=parent_id,
                topic=topic,
                nsfw=nsfw,
            )
            return channel_id

    def delete_channel(self, target_id: str, channel_id: str) -> None:
        self._enter("delete_channel", channel_id)
        self._check_target(target_id)
        with self._lock:
            if self.channels.pop(channel_id, None) is None:
                raise RemoteRejected(f"unknown channel {channel_id}", status=404)
            for channel in self.channels.values():
                if channel.parent_id == channel_id:
                    channel.parent_id = None

    def set_overwrite(self, target_id: str, channel_id: str, overwrite: RemoteOverwrite) -> None:
        self._enter("set_overwrite", f"{channel_id}:{overwrite.id}")
        self._check_target(target_id)
        with self._lock:
            channel = self.channels.get(channel_id)
            if channel is None:
                raise RemoteRejected(f"unknown channel {channel_id}", status=404)
            channel.overwrites = [o for o in channel.overwrites if o.id != overwrite.id]
            channel.overwrites.append(replace(overwrite))

    def create_emoji(self, target_id: str, name: str, image: bytes) -> str:
        self._enter("create_emoji", name)
        self._check_target(target_id)
        with self._lock:
            emoji_id = self._new_id()
            url = f"memory://emojis/{emoji_id}.png"
            self.assets[url] = image
            self.emojis[emoji_id] = RemoteEmoji(id=emoji_id, name=name, url=url)
            return emoji_id

    def delete_emoji(self, target_id: str, emoji_id: str) -> None:
        self._enter("delete_emoji", emoji_id)
        self._check_target(target_id)
        with self._lock:
            if self.emojis.pop(emoji_id, None) is None:
                raise RemoteRejected(f"unknown emoji {emoji_id}", status=404)

    def add_member_role(self, target_id: str, member_id: str, role_id: str) -> None:
        self._enter("add_member_role", f"{member_id}:{role_id}")
        self._check_target(target_id)
        with self._lock:
            member = self.members.get(member_id)
            if member is None:
                raise RemoteRejected(f"unknown member {member_id}", status=404)
            if role_id not in self.roles:
                raise RemoteRejected(f"unknown role {role_id}", status=404)
            if role_id not in member.role_ids:
                member.role_ids.append(role_id)

    def edit_target(self, target_id: str, changes: dict) -> None:
        self._enter("edit_target", target_id)
        self._check_target(target_id)
        with self._lock:
            for key, value in changes.items():
                if key == "icon":
                    url = f"memory://icons/{self._new_id()}.png"
                    self.assets[url] = value
                    self.target.icon_url = url
                elif hasattr(self.target, key) and key not in ("id", "owner_id"):
                    setattr(self.target, key, value)
                else:
                    raise RemoteRejected(f"unknown server field {key!r}", status=400)

    def send_direct_message(self, user_id: str, text: str) -> None:
        self._enter("send_direct_message", user_id)
        if not self.dm_enabled:
            raise DeliveryFailed(f"user {user_id} does not accept direct messages")
        self.sent_messages.append((user_id, text))
