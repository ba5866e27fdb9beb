"""
snapshot.py
───────────
Reads a live server through a RemoteAccessor and converts it into an
immutable SnapshotRecord.

What is captured:
  • server name, description, icon and scalar settings
  • roles             (managed roles and "everyone" are left out)
  • categories and channels with their permission overwrites
  • custom emojis     (managed emojis are left out)
  • member → role assignments

Any enumeration failure aborts the capture with CaptureIncomplete; a
partially filled snapshot is never returned.
"""

from __future__ import annotations
import base64
import logging
import uuid
from datetime import datetime, timezone

from adapters.base import RemoteAccessor, RemoteChannel, RemoteRole
from errors import CaptureIncomplete, RemoteError
from models import (
    EVERYONE,
    ChannelKind,
    ChannelRecord,
    EmojiRecord,
    MemberRoleRecord,
    PermissionOverwriteRecord,
    PrincipalKind,
    RoleRecord,
    SettingsRecord,
    SnapshotRecord,
)

logger = logging.getLogger(__name__)


def new_snapshot_id() -> str:
    return uuid.uuid4().hex


class SnapshotBuilder:
    def __init__(self, accessor: RemoteAccessor, embed_assets: bool = False):
        self.accessor = accessor
        self.embed_assets = embed_assets

    def capture(self, target_id: str) -> SnapshotRecord:
        logger.info("Capturing server %s", target_id)

        # Everything is fetched up front so a failure leaves nothing half-built
        try:
            target = self.accessor.get_target(target_id)
            raw_roles = self.accessor.list_roles(target_id)
            raw_members = self.accessor.list_members(target_id)
            raw_emojis = self.accessor.list_emojis(target_id)
            raw_channels = self.accessor.list_channels(target_id)
        except RemoteError as e:
            raise CaptureIncomplete(f"could not enumerate server {target_id}: {e.message}") from e

        # ── roles ─────────────────────────────────────────────────────────
        roles: list[RoleRecord] = []
        role_names: dict[str, str] = {}  # remote role id → captured name
        for r in sorted(raw_roles, key=lambda r: r.position):
            if r.is_default:
                role_names[r.id] = EVERYONE
                continue
            if r.managed:
                continue
            if r.name in role_names.values():
                logger.warning("Duplicate role name %r (id %s) – only the lowest is kept", r.name, r.id)
                continue
            role_names[r.id] = r.name
            roles.append(_role_record(r))

        # ── channels ──────────────────────────────────────────────────────
        category_ids = {c.id for c in raw_channels if c.kind is ChannelKind.CATEGORY}
        channels = [
            self._channel_record(c, category_ids, role_names)
            for c in sorted(raw_channels, key=lambda c: (c.kind is not ChannelKind.CATEGORY, c.position))
        ]
        captured_channels = {c.local_id for c in channels}

        # ── emojis ────────────────────────────────────────────────────────
        emojis = [
            EmojiRecord(
                name=e.name,
                source_ref=e.url,
                inline_data=self._inline(e.url) if self.embed_assets else None,
            )
            for e in raw_emojis
            if not e.managed
        ]

        # ── members ───────────────────────────────────────────────────────
        member_roles = []
        for m in raw_members:
            names = tuple(
                role_names[rid]
                for rid in m.role_ids
                if rid in role_names and role_names[rid] != EVERYONE
            )
            if names:
                member_roles.append(MemberRoleRecord(member_id=m.id, role_names=names))

        # ── settings ──────────────────────────────────────────────────────
        def ref(channel_id):
            return channel_id if channel_id in captured_channels else None

        settings = SettingsRecord(
            verification_level=target.verification_level,
            explicit_content_filter=target.explicit_content_filter,
            default_notifications=target.default_notifications,
            system_channel_ref=ref(target.system_channel_id),
            rules_channel_ref=ref(target.rules_channel_id),
            public_updates_channel_ref=ref(target.public_updates_channel_id),
            afk_channel_ref=ref(target.afk_channel_id),
            afk_timeout=target.afk_timeout,
        )

        snapshot = SnapshotRecord(
            id=new_snapshot_id(),
            target_name=target.name,
            created_at=datetime.now(timezone.utc).isoformat(),
            description=target.description,
            icon_ref=target.icon_url,
            icon_data=self._inline(target.icon_url) if self.embed_assets and target.icon_url else None,
            settings=settings,
            roles=tuple(roles),
            channels=tuple(channels),
            emojis=tuple(emojis),
            member_roles=tuple(member_roles),
        )
        snapshot.validate()
        logger.info("Captured %s", snapshot.summary())
        return snapshot

    def _channel_record(
        self,
        c: RemoteChannel,
        category_ids: set[str],
        role_names: dict[str, str],
    ) -> ChannelRecord:
        parent = c.parent_id if c.parent_id in category_ids and c.kind is not ChannelKind.CATEGORY else None
        overwrites = []
        for o in c.overwrites:
            if o.kind is PrincipalKind.MEMBER:
                principal = o.id
            elif o.id in role_names:
                principal = role_names[o.id]
            else:
                # Overwrite for a managed role – cannot be recreated
                logger.debug("Dropping overwrite for uncaptured role %s on #%s", o.id, c.name)
                continue
            overwrites.append(
                PermissionOverwriteRecord(
                    principal_ref=principal,
                    principal_kind=o.kind,
                    allow_bits=o.allow,
                    deny_bits=o.deny,
                )
            )
        return ChannelRecord(
            local_id=c.id,
            name=c.name,
            kind=c.kind,
            parent_local_id=parent,
            topic=c.topic,
            nsfw=c.nsfw,
            position=c.position,
            overwrites=tuple(overwrites),
        )

    def _inline(self, ref: str) -> str | None:
        try:
            return base64.b64encode(self.accessor.fetch_asset(ref)).decode("ascii")
        except RemoteError as e:
            logger.warning("Could not embed asset %s: %s", ref, e.message)
            return None


def _role_record(r: RemoteRole) -> RoleRecord:
    return RoleRecord(
        name=r.name,
        color=r.color,
        hoisted=r.hoist,
        mentionable=r.mentionable,
        permission_bits=r.permissions,
        position=r.position,
    )
