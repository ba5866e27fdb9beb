"""
models.py
─────────
Platform-neutral snapshot records.

A live server is captured into a SnapshotRecord by the SnapshotBuilder,
persisted by the SnapshotStore and later replayed by the planner/executor.
Records are frozen: once built they are never mutated in place.

Serialised form is a camelCase JSON document; permission bitfields are
written as decimal strings (see permissions.py).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum

from permissions import format_bits, parse_bits

FORMAT_VERSION = 1

EVERYONE = "@everyone"  # principal name of the implicit default role


class ChannelKind(Enum):
    CATEGORY = "category"
    TEXT = "text"
    VOICE = "voice"
    ANNOUNCE = "announce"
    FORUM = "forum"
    STAGE = "stage"


class PrincipalKind(Enum):
    ROLE = "role"
    MEMBER = "member"


@dataclass(frozen=True)
class RoleRecord:
    name: str
    color: int = 0
    hoisted: bool = False
    mentionable: bool = False
    permission_bits: int = 0
    position: int = 0  # only meaningful relative to other roles in the snapshot

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "color": self.color,
            "hoisted": self.hoisted,
            "mentionable": self.mentionable,
            "permissionBits": format_bits(self.permission_bits),
            "position": self.position,
        }

    @classmethod
    def from_dict(cls, d: dict) -> RoleRecord:
        return cls(
            name=d["name"],
            color=int(d.get("color", 0)),
            hoisted=bool(d.get("hoisted", False)),
            mentionable=bool(d.get("mentionable", False)),
            permission_bits=parse_bits(d.get("permissionBits", "0")),
            position=int(d.get("position", 0)),
        )


@dataclass(frozen=True)
class PermissionOverwriteRecord:
    principal_ref: str  # role name (or "@everyone") / member id
    principal_kind: PrincipalKind
    allow_bits: int = 0
    deny_bits: int = 0

    def to_dict(self) -> dict:
        return {
            "principalRef": self.principal_ref,
            "principalKind": self.principal_kind.value,
            "allowBits": format_bits(self.allow_bits),
            "denyBits": format_bits(self.deny_bits),
        }

    @classmethod
    def from_dict(cls, d: dict) -> PermissionOverwriteRecord:
        return cls(
            principal_ref=str(d["principalRef"]),
            principal_kind=PrincipalKind(d["principalKind"]),
            allow_bits=parse_bits(d.get("allowBits", "0")),
            deny_bits=parse_bits(d.get("denyBits", "0")),
        )


@dataclass(frozen=True)
class ChannelRecord:
    local_id: str
    name: str
    kind: ChannelKind
    parent_local_id: str | None = None  # a CATEGORY record in the same snapshot
    topic: str | None = None
    nsfw: bool = False
    position: int = 0
    overwrites: tuple[PermissionOverwriteRecord, ...] = ()

    @property
    def is_category(self) -> bool:
        return self.kind is ChannelKind.CATEGORY

    def to_dict(self) -> dict:
        return {
            "localId": self.local_id,
            "name": self.name,
            "kind": self.kind.value,
            "parentLocalId": self.parent_local_id,
            "topic": self.topic,
            "nsfw": self.nsfw,
            "position": self.position,
            "overwrites": [o.to_dict() for o in self.overwrites],
        }

    @classmethod
    def from_dict(cls, d: dict) -> ChannelRecord:
        return cls(
            local_id=str(d["localId"]),
            name=d["name"],
            kind=ChannelKind(d["kind"]),
            parent_local_id=d.get("parentLocalId"),
            topic=d.get("topic"),
            nsfw=bool(d.get("nsfw", False)),
            position=int(d.get("position", 0)),
            overwrites=tuple(
                PermissionOverwriteRecord.from_dict(o) for o in d.get("overwrites", [])
            ),
        )


@dataclass(frozen=True)
class EmojiRecord:
    name: str
    source_ref: str  # fetchable URL of the image
    inline_data: str | None = None  # base64 image bytes, used if source_ref expired

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "sourceRef": self.source_ref,
            "inlineData": self.inline_data,
        }

    @classmethod
    def from_dict(cls, d: dict) -> EmojiRecord:
        return cls(
            name=d["name"],
            source_ref=d.get("sourceRef", ""),
            inline_data=d.get("inlineData"),
        )


@dataclass(frozen=True)
class MemberRoleRecord:
    member_id: str  # stable across the target's lifetime, never remapped
    role_names: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"memberId": self.member_id, "roleNames": list(self.role_names)}

    @classmethod
    def from_dict(cls, d: dict) -> MemberRoleRecord:
        return cls(
            member_id=str(d["memberId"]),
            role_names=tuple(d.get("roleNames", [])),
        )


@dataclass(frozen=True)
class SettingsRecord:
    verification_level: int = 0
    explicit_content_filter: int = 0
    default_notifications: int = 0
    # Channel references are ChannelRecord.local_id values
    system_channel_ref: str | None = None
    rules_channel_ref: str | None = None
    public_updates_channel_ref: str | None = None
    afk_channel_ref: str | None = None
    afk_timeout: int = 300

    def channel_refs(self) -> dict[str, str | None]:
        return {
            "system_channel_id": self.system_channel_ref,
            "rules_channel_id": self.rules_channel_ref,
            "public_updates_channel_id": self.public_updates_channel_ref,
            "afk_channel_id": self.afk_channel_ref,
        }

    def to_dict(self) -> dict:
        return {
            "verificationLevel": self.verification_level,
            "explicitContentFilter": self.explicit_content_filter,
            "defaultNotifications": self.default_notifications,
            "systemChannelRef": self.system_channel_ref,
            "rulesChannelRef": self.rules_channel_ref,
            "publicUpdatesChannelRef": self.public_updates_channel_ref,
            "afkChannelRef": self.afk_channel_ref,
            "afkTimeout": self.afk_timeout,
        }

    @classmethod
    def from_dict(cls, d: dict) -> SettingsRecord:
        return cls(
            verification_level=int(d.get("verificationLevel", 0)),
            explicit_content_filter=int(d.get("explicitContentFilter", 0)),
            default_notifications=int(d.get("defaultNotifications", 0)),
            system_channel_ref=d.get("systemChannelRef"),
            rules_channel_ref=d.get("rulesChannelRef"),
            public_updates_channel_ref=d.get("publicUpdatesChannelRef"),
            afk_channel_ref=d.get("afkChannelRef"),
            afk_timeout=int(d.get("afkTimeout", 300)),
        )


@dataclass(frozen=True)
class SnapshotRecord:
    """
    A complete, platform-neutral description of a server's configuration.
    Its ``id`` is opaque and independent of the source server's own ids.
    """

    id: str
    target_name: str
    created_at: str  # ISO-8601, UTC
    description: str | None = None
    icon_ref: str | None = None
    icon_data: str | None = None  # base64, only when assets were embedded
    settings: SettingsRecord = field(default_factory=SettingsRecord)
    roles: tuple[RoleRecord, ...] = ()
    channels: tuple[ChannelRecord, ...] = ()
    emojis: tuple[EmojiRecord, ...] = ()
    member_roles: tuple[MemberRoleRecord, ...] = ()

    @property
    def categories(self) -> tuple[ChannelRecord, ...]:
        return tuple(c for c in self.channels if c.is_category)

    def validate(self) -> None:
        """Raise ValueError if channel parents or role names are inconsistent."""
        categories = {c.local_id for c in self.channels if c.is_category}
        seen: set[str] = set()
        for ch in self.channels:
            if ch.local_id in seen:
                raise ValueError(f"duplicate channel localId {ch.local_id!r}")
            seen.add(ch.local_id)
            if ch.parent_local_id is None:
                continue
            if ch.is_category:
                raise ValueError(f"category {ch.name!r} cannot have a parent")
            if ch.parent_local_id not in categories:
                raise ValueError(
                    f"channel {ch.name!r} references unknown category "
                    f"{ch.parent_local_id!r}"
                )
        names = [r.name for r in self.roles]
        if len(names) != len(set(names)):
            raise ValueError("role names must be unique within a snapshot")

    def summary(self) -> str:
        return (
            f"'{self.target_name}' — "
            f"{len(self.roles)} roles, "
            f"{len(self.categories)} categories, "
            f"{len(self.channels) - len(self.categories)} channels, "
            f"{len(self.emojis)} emojis, "
            f"{len(self.member_roles)} members"
        )

    def to_dict(self) -> dict:
        return {
            "formatVersion": FORMAT_VERSION,
            "id": self.id,
            "targetName": self.target_name,
            "createdAt": self.created_at,
            "description": self.description,
            "iconRef": self.icon_ref,
            "iconData": self.icon_data,
            "settings": self.settings.to_dict(),
            "roles": [r.to_dict() for r in self.roles],
            "channels": [c.to_dict() for c in self.channels],
            "emojis": [e.to_dict() for e in self.emojis],
            "memberRoles": [m.to_dict() for m in self.member_roles],
        }

    @classmethod
    def from_dict(cls, d: dict) -> SnapshotRecord:
        version = d.get("formatVersion", FORMAT_VERSION)
        if version != FORMAT_VERSION:
            raise ValueError(f"unsupported snapshot format version {version!r}")
        record = cls(
            id=str(d["id"]),
            target_name=d["targetName"],
            created_at=d["createdAt"],
            description=d.get("description"),
            icon_ref=d.get("iconRef"),
            icon_data=d.get("iconData"),
            settings=SettingsRecord.from_dict(d.get("settings", {})),
            roles=tuple(RoleRecord.from_dict(r) for r in d.get("roles", [])),
            channels=tuple(ChannelRecord.from_dict(c) for c in d.get("channels", [])),
            emojis=tuple(EmojiRecord.from_dict(e) for e in d.get("emojis", [])),
            member_roles=tuple(
                MemberRoleRecord.from_dict(m) for m in d.get("memberRoles", [])
            ),
        )
        record.validate()
        return record
