"""
adapters/discord.py
───────────────────
RemoteAccessor for a Discord server via the Discord REST API (v10).

Requires a bot token. The bot needs, at minimum:
  • View Channels                 (backup)
  • Server Members Intent         (backup of member roles)
  • Administrator                 (restore)

Reads retry a 429 locally, honouring ``retry_after``. Writes raise
RateLimited straight away so the restore executor owns the backoff policy.
"""

from __future__ import annotations
import base64
import logging
import time

import requests

from adapters.base import (
    RemoteAccessor,
    RemoteChannel,
    RemoteEmoji,
    RemoteMember,
    RemoteOverwrite,
    RemoteRole,
    RemoteTarget,
)
from errors import (
    DeliveryFailed,
    RateLimited,
    RemoteError,
    RemoteRejected,
    RemoteUnavailable,
)
from models import ChannelKind, PrincipalKind, RoleRecord
from permissions import format_bits, parse_bits

logger = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api/v10"
DISCORD_CDN = "https://cdn.discordapp.com"

MEMBER_PAGE_SIZE = 1000

# Discord channel type constants
_D_TEXT = 0
_D_VOICE = 2
_D_CATEGORY = 4
_D_ANNOUNCE = 5
_D_STAGE = 13
_D_FORUM = 15

_KIND_BY_TYPE = {
    _D_TEXT: ChannelKind.TEXT,
    _D_VOICE: ChannelKind.VOICE,
    _D_CATEGORY: ChannelKind.CATEGORY,
    _D_ANNOUNCE: ChannelKind.ANNOUNCE,
    _D_STAGE: ChannelKind.STAGE,
    _D_FORUM: ChannelKind.FORUM,
}
_TYPE_BY_KIND = {kind: dtype for dtype, kind in _KIND_BY_TYPE.items()}

# Overwrite principal types
_OW_ROLE = 0
_OW_MEMBER = 1

# edit_target key → Discord guild field
_GUILD_FIELDS = {
    "name": "name",
    "description": "description",
    "verification_level": "verification_level",
    "explicit_content_filter": "explicit_content_filter",
    "default_notifications": "default_message_notifications",
    "system_channel_id": "system_channel_id",
    "rules_channel_id": "rules_channel_id",
    "public_updates_channel_id": "public_updates_channel_id",
    "afk_channel_id": "afk_channel_id",
    "afk_timeout": "afk_timeout",
}


def _image_mime(image: bytes) -> str:
    if image.startswith(b"\x89PNG"):
        return "image/png"
    if image.startswith(b"GIF8"):
        return "image/gif"
    if image.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if image[:4] == b"RIFF" and image[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"


def _data_uri(image: bytes) -> str:
    encoded = base64.b64encode(image).decode("ascii")
    return f"data:{_image_mime(image)};base64,{encoded}"


class DiscordAccessor(RemoteAccessor):
    platform_name = "Discord"

    def __init__(
        self,
        token: str,
        session: requests.Session | None = None,
        api: str = DISCORD_API,
        timeout: float = 10,
        read_retries: int = 6,
        sleep=time.sleep,
    ):
        self.token = token
        self.session = session or requests.Session()
        self.api = api.rstrip("/")
        self.timeout = timeout
        self.read_retries = read_retries
        self._sleep = sleep
        # target id → id of the last role this accessor created there
        self._last_created_role: dict[str, str] = {}

    # ── internal HTTP helpers ─────────────────────────────────────────────

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bot {self.token}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        endpoint: str,
        payload: dict | list | None = None,
        params: dict | None = None,
        attempts: int = 1,
    ):
        url = f"{self.api}{endpoint}"
        for attempt in range(1, attempts + 1):
            try:
                r = self.session.request(
                    method,
                    url,
                    json=payload,
                    params=params,
                    headers=self._headers(),
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                raise RemoteUnavailable(f"{method} {endpoint}: {e}") from e

            if r.status_code == 429:
                try:
                    wait = float(r.json().get("retry_after", 1.0))
                except ValueError:
                    wait = 1.0
                if attempt == attempts:
                    raise RateLimited(wait, f"{method} {endpoint} rate limited")
                logger.warning(
                    "Discord rate-limit on %s %s – waiting %.1fs", method, endpoint, wait
                )
                self._sleep(wait + 0.1)
                continue
            if r.status_code >= 500:
                raise RemoteUnavailable(f"Discord {r.status_code} on {endpoint}")
            if not r.ok:
                raise RemoteRejected(
                    f"Discord {r.status_code} on {endpoint}: {r.text[:200]}",
                    status=r.status_code,
                )
            if r.status_code == 204 or not r.content:
                return None
            return r.json()
        raise RateLimited(1.0, f"too many retries for {endpoint}")

    def _get(self, endpoint: str, params: dict | None = None):
        return self._request("GET", endpoint, params=params, attempts=self.read_retries)

    # ── reads ─────────────────────────────────────────────────────────────

    def get_target(self, target_id: str) -> RemoteTarget:
        g = self._get(f"/guilds/{target_id}")
        icon_url = None
        icon_hash = g.get("icon")
        if icon_hash:
            ext = "gif" if icon_hash.startswith("a_") else "png"
            icon_url = f"{DISCORD_CDN}/icons/{target_id}/{icon_hash}.{ext}"
        return RemoteTarget(
            id=str(g["id"]),
            name=g["name"],
            owner_id=str(g["owner_id"]),
            description=g.get("description") or None,
            icon_url=icon_url,
            verification_level=g.get("verification_level", 0),
            explicit_content_filter=g.get("explicit_content_filter", 0),
            default_notifications=g.get("default_message_notifications", 0),
            system_channel_id=g.get("system_channel_id"),
            rules_channel_id=g.get("rules_channel_id"),
            public_updates_channel_id=g.get("public_updates_channel_id"),
            afk_channel_id=g.get("afk_channel_id"),
            afk_timeout=g.get("afk_timeout", 300),
        )

    def list_roles(self, target_id: str) -> list[RemoteRole]:
        raw = self._get(f"/guilds/{target_id}/roles") or []
        return [
            RemoteRole(
                id=str(r["id"]),
                name=r["name"],
                color=r.get("color", 0),
                hoist=r.get("hoist", False),
                mentionable=r.get("mentionable", False),
                permissions=parse_bits(r.get("permissions", "0")),
                position=r.get("position", 0),
                managed=r.get("managed", False),
                is_default=str(r["id"]) == str(target_id),
            )
            for r in raw
        ]

    def list_channels(self, target_id: str) -> list[RemoteChannel]:
        raw = self._get(f"/guilds/{target_id}/channels") or []
        channels = []
        for ch in raw:
            kind = _KIND_BY_TYPE.get(ch["type"])
            if kind is None:
                continue  # threads, directories, … – not representable
            overwrites = [
                RemoteOverwrite(
                    id=str(o["id"]),
                    kind=PrincipalKind.ROLE if o["type"] == _OW_ROLE else PrincipalKind.MEMBER,
                    allow=parse_bits(o.get("allow", "0")),
                    deny=parse_bits(o.get("deny", "0")),
                )
                for o in ch.get("permission_overwrites", [])
            ]
            channels.append(
                RemoteChannel(
                    id=str(ch["id"]),
                    name=ch["name"],
                    kind=kind,
                    position=ch.get("position", 0),
                    parent_id=ch.get("parent_id"),
                    topic=ch.get("topic") or None,
                    nsfw=ch.get("nsfw", False),
                    overwrites=overwrites,
                )
            )
        return channels

    def list_emojis(self, target_id: str) -> list[RemoteEmoji]:
        raw = self._get(f"/guilds/{target_id}/emojis") or []
        return [
            RemoteEmoji(
                id=str(e["id"]),
                name=e["name"],
                url=f"{DISCORD_CDN}/emojis/{e['id']}.{'gif' if e.get('animated') else 'png'}",
                managed=e.get("managed", False),
            )
            for e in raw
        ]

    def list_members(self, target_id: str) -> list[RemoteMember]:
        members: list[RemoteMember] = []
        after = "0"
        while True:
            page = self._get(
                f"/guilds/{target_id}/members",
                params={"limit": MEMBER_PAGE_SIZE, "after": after},
            ) or []
            for m in page:
                user = m.get("user", {})
                members.append(
                    RemoteMember(
                        id=str(user["id"]),
                        role_ids=[str(r) for r in m.get("roles", [])],
                        bot=user.get("bot", False),
                    )
                )
            if len(page) < MEMBER_PAGE_SIZE:
                return members
            after = members[-1].id

    def fetch_asset(self, ref: str) -> bytes:
        try:
            r = self.session.request("GET", ref, timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteUnavailable(f"GET {ref}: {e}") from e
        if r.status_code == 429:
            raise RateLimited(1.0, f"asset {ref} rate limited")
        if not r.ok:
            raise RemoteRejected(f"could not download {ref}: {r.status_code}", status=r.status_code)
        return r.content

    def member_permissions(self, target_id: str, member_id: str) -> int:
        try:
            member = self._get(f"/guilds/{target_id}/members/{member_id}")
        except RemoteRejected as e:
            if e.status == 404:
                return 0
            raise
        held = {str(r) for r in member.get("roles", [])}
        bits = 0
        for role in self.list_roles(target_id):
            if role.is_default or role.id in held:
                bits |= role.permissions
        return bits

    # ── writes ────────────────────────────────────────────────────────────

    def create_role(self, target_id: str, role: RoleRecord) -> str:
        result = self._request(
            "POST",
            f"/guilds/{target_id}/roles",
            {
                "name": role.name,
                "color": role.color,
                "hoist": role.hoisted,
                "mentionable": role.mentionable,
                "permissions": format_bits(role.permission_bits),
            },
        )
        role_id = str(result["id"])
        below = self._last_created_role.get(target_id)
        self._last_created_role[target_id] = role_id
        if below is not None:
            self._place_above(target_id, role_id, below)
        return role_id

    def _place_above(self, target_id: str, role_id: str, below_id: str) -> None:
        # Discord inserts every new role at position 1; move it over the
        # previously created one so creation order is hierarchy order.
        try:
            positions = {r.id: r.position for r in self.list_roles(target_id)}
            if below_id not in positions:
                return
            self._request(
                "PATCH",
                f"/guilds/{target_id}/roles",
                [{"id": role_id, "position": positions[below_id]}],
                attempts=self.read_retries,
            )
        except RemoteError as e:
            logger.warning("Could not move role %s above %s: %s", role_id, below_id, e.message)

    def delete_role(self, target_id: str, role_id: str) -> None:
        self._request("DELETE", f"/guilds/{target_id}/roles/{role_id}")

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
        payload: dict = {"name": name, "type": _TYPE_BY_KIND[kind], "nsfw": nsfw}
        if parent_id:
            payload["parent_id"] = parent_id
        if topic and kind is not ChannelKind.CATEGORY:
            payload["topic"] = topic
        if position is not None:
            payload["position"] = position
        result = self._request("POST", f"/guilds/{target_id}/channels", payload)
        return str(result["id"])

    def delete_channel(self, target_id: str, channel_id: str) -> None:
        self._request("DELETE", f"/channels/{channel_id}")

    def set_overwrite(self, target_id: str, channel_id: str, overwrite: RemoteOverwrite) -> None:
        self._request(
            "PUT",
            f"/channels/{channel_id}/permissions/{overwrite.id}",
            {
                "type": _OW_ROLE if overwrite.kind is PrincipalKind.ROLE else _OW_MEMBER,
                "allow": format_bits(overwrite.allow),
                "deny": format_bits(overwrite.deny),
            },
        )

    def create_emoji(self, target_id: str, name: str, image: bytes) -> str:
        result = self._request(
            "POST",
            f"/guilds/{target_id}/emojis",
            {"name": name, "image": _data_uri(image), "roles": []},
        )
        return str(result["id"])

    def delete_emoji(self, target_id: str, emoji_id: str) -> None:
        self._request("DELETE", f"/guilds/{target_id}/emojis/{emoji_id}")

    def add_member_role(self, target_id: str, member_id: str, role_id: str) -> None:
        self._request("PUT", f"/guilds/{target_id}/members/{member_id}/roles/{role_id}")

    def edit_target(self, target_id: str, changes: dict) -> None:
        payload: dict = {}
        for key, value in changes.items():
            if key == "icon":
                payload["icon"] = _data_uri(value)
            elif key in _GUILD_FIELDS:
                payload[_GUILD_FIELDS[key]] = value
            else:
                raise RemoteRejected(f"unknown server field {key!r}", status=400)
        if payload:
            self._request("PATCH", f"/guilds/{target_id}", payload)

    def send_direct_message(self, user_id: str, text: str) -> None:
        try:
            dm = self._request("POST", "/users/@me/channels", {"recipient_id": user_id})
            self._request("POST", f"/channels/{dm['id']}/messages", {"content": text})
        except RemoteError as e:
            raise DeliveryFailed(f"could not DM user {user_id}: {e.message}") from e
