"""
adapters/base.py
────────────────
Abstract interface every remote accessor must implement, plus the plain
value types accessors return when reading a live server.

The SnapshotBuilder only reads through this interface and the
RestoreExecutor only writes through it, so any backend (the Discord REST
API, an in-memory fake for tests) can be swapped in.

Failure signalling (see errors.py):
  • RateLimited       – transient, the caller may retry after ``retry_after``
  • RemoteRejected    – validation / permission / conflict, do not retry
  • RemoteUnavailable – transport failure
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from errors import DeliveryFailed
from models import ChannelKind, PrincipalKind, RoleRecord


# ── live value types ──────────────────────────────────────────────────────────


@dataclass
class RemoteTarget:
    id: str
    name: str
    owner_id: str
    description: str | None = None
    icon_url: str | None = None
    verification_level: int = 0
    explicit_content_filter: int = 0
    default_notifications: int = 0
    system_channel_id: str | None = None
    rules_channel_id: str | None = None
    public_updates_channel_id: str | None = None
    afk_channel_id: str | None = None
    afk_timeout: int = 300


@dataclass
class RemoteRole:
    id: str
    name: str
    color: int = 0
    hoist: bool = False
    mentionable: bool = False
    permissions: int = 0
    position: int = 0
    managed: bool = False  # owned by an integration / bot
    is_default: bool = False  # the implicit "everyone" role


@dataclass
class RemoteOverwrite:
    id: str  # role or member id
    kind: PrincipalKind
    allow: int = 0
    deny: int = 0


@dataclass
class RemoteChannel:
    id: str
    name: str
    kind: ChannelKind
    position: int = 0
    parent_id: str | None = None
    topic: str | None = None
    nsfw: bool = False
    overwrites: list[RemoteOverwrite] = field(default_factory=list)


@dataclass
class RemoteEmoji:
    id: str
    name: str
    url: str
    managed: bool = False


@dataclass
class RemoteMember:
    id: str
    role_ids: list[str] = field(default_factory=list)
    bot: bool = False


# ── accessor interface ────────────────────────────────────────────────────────


class RemoteAccessor(ABC):
    """
    Read/write capability over one remote backend.
    Accessors are called from worker threads during restore and must be
    safe to use concurrently.
    """

    # Human-readable name shown in the CLI
    platform_name: str = "Unknown Platform"

    # ── reads ─────────────────────────────────────────────────────────────

    @abstractmethod
    def get_target(self, target_id: str) -> RemoteTarget:
        """Fetch server-level metadata and settings."""

    @abstractmethod
    def list_roles(self, target_id: str) -> list[RemoteRole]:
        """Return every role, including managed roles and "everyone"."""

    @abstractmethod
    def list_channels(self, target_id: str) -> list[RemoteChannel]:
        """
        Return every channel the accessor can represent.
        Channel types with no ChannelKind equivalent are left out.
        """

    @abstractmethod
    def list_emojis(self, target_id: str) -> list[RemoteEmoji]:
        """Return every custom emoji."""

    @abstractmethod
    def list_members(self, target_id: str) -> list[RemoteMember]:
        """
        Return the complete member list. Implementations must page through
        the whole collection, never a partial cache.
        """

    @abstractmethod
    def fetch_asset(self, ref: str) -> bytes:
        """Download the bytes behind an asset reference (icon / emoji URL)."""

    # ── writes ────────────────────────────────────────────────────────────

    @abstractmethod
    def create_role(self, target_id: str, role: RoleRecord) -> str:
        """
        Create a role and return its new id. Each role created through the same
        accessor must land directly above the one created before it, so
        creating roles lowest position first rebuilds the hierarchy.
        """

    @abstractmethod
    def delete_role(self, target_id: str, role_id: str) -> None:
        """Delete a role."""

    @abstractmethod
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
        """Create a channel (or category) and return its new id."""

    @abstractmethod
    def delete_channel(self, target_id: str, channel_id: str) -> None:
        """Delete a channel or category."""

    @abstractmethod
    def set_overwrite(
        self,
        target_id: str,
        channel_id: str,
        overwrite: RemoteOverwrite,
    ) -> None:
        """Create or replace one permission overwrite on a channel."""

    @abstractmethod
    def create_emoji(self, target_id: str, name: str, image: bytes) -> str:
        """Upload a custom emoji and return its new id."""

    @abstractmethod
    def delete_emoji(self, target_id: str, emoji_id: str) -> None:
        """Delete a custom emoji."""

    @abstractmethod
    def add_member_role(self, target_id: str, member_id: str, role_id: str) -> None:
        """Grant a role to a member. Granting an already-held role is a no-op."""

    @abstractmethod
    def edit_target(self, target_id: str, changes: dict) -> None:
        """
        Apply server-level changes. Keys: name, description, icon (bytes),
        verification_level, explicit_content_filter, default_notifications,
        system_channel_id, rules_channel_id, public_updates_channel_id,
        afk_channel_id, afk_timeout.
        """

    # ── optional hooks ────────────────────────────────────────────────────

    def send_direct_message(self, user_id: str, text: str) -> None:
        """
        Deliver a private message to a user.
        Default: the backend has no private channel.
        """
        raise DeliveryFailed(f"{self.platform_name} cannot send direct messages")

    def member_permissions(self, target_id: str, member_id: str) -> int:
        """
        Effective server-level permission bits of a member: the OR of the
        "everyone" role and every role the member holds.
        """
        roles = self.list_roles(target_id)
        member = next(
            (m for m in self.list_members(target_id) if m.id == member_id), None
        )
        if member is None:
            return 0
        held = set(member.role_ids)
        bits = 0
        for role in roles:
            if role.is_default or role.id in held:
                bits |= role.permissions
        return bits
