"""
permissions.py
──────────────
Discord permission bit constants and helpers for the 64-bit bitfield.

Bitfields are kept as plain Python ints in memory and serialised as decimal
strings, since JSON consumers with float-only numbers lose precision above
2**53.
"""

from __future__ import annotations

UINT64_MAX = (1 << 64) - 1

# ── Discord permission bits ───────────────────────────────────────────────────
CREATE_INSTANT_INVITE = 1 << 0
KICK_MEMBERS = 1 << 1
BAN_MEMBERS = 1 << 2
ADMINISTRATOR = 1 << 3
MANAGE_CHANNELS = 1 << 4
MANAGE_GUILD = 1 << 5
ADD_REACTIONS = 1 << 6
VIEW_CHANNEL = 1 << 10
SEND_MESSAGES = 1 << 11
MANAGE_MESSAGES = 1 << 13
EMBED_LINKS = 1 << 14
ATTACH_FILES = 1 << 15
READ_MESSAGE_HISTORY = 1 << 16
CONNECT = 1 << 20
SPEAK = 1 << 21
MUTE_MEMBERS = 1 << 22
DEAFEN_MEMBERS = 1 << 23
MOVE_MEMBERS = 1 << 24
CHANGE_NICKNAME = 1 << 26
MANAGE_NICKNAMES = 1 << 27
MANAGE_ROLES = 1 << 28
MANAGE_WEBHOOKS = 1 << 29
MANAGE_GUILD_EXPRESSIONS = 1 << 30


def parse_bits(value: str | int) -> int:
    """Parse a permission bitfield from its decimal-string (or int) form."""
    if isinstance(value, bool):
        raise ValueError(f"not a permission bitfield: {value!r}")
    if isinstance(value, int):
        bits = value
    else:
        text = str(value).strip()
        if not text.isdigit():
            raise ValueError(f"not a decimal permission bitfield: {value!r}")
        bits = int(text)
    if not 0 <= bits <= UINT64_MAX:
        raise ValueError(f"permission bitfield out of 64-bit range: {value!r}")
    return bits


def format_bits(bits: int) -> str:
    return str(parse_bits(bits))


def has_permission(bits: int, flag: int) -> bool:
    """True if ``flag`` is granted; ADMINISTRATOR grants everything."""
    if bits & ADMINISTRATOR:
        return True
    return bits & flag == flag
