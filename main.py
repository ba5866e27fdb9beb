"""
main.py
───────
CLI entry point for the Discord server backup tool.

    python main.py backup
    python main.py restore <id> [--merge | --destructive]
    python main.py list

Credentials come from config.json (see config.py) or are prompted for.
"""

from __future__ import annotations
import argparse
import getpass
import logging
import sys

from adapters.discord import DiscordAccessor
from config import EngineConfig, load_config
from errors import BackupError
from gate import GateState
from planner import RestoreMode
from service import BackupService, CommandResult
from store import SnapshotStore

# ── ANSI ──────────────────────────────────────────────────────────────────────
BOLD = "\033[1m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
RESET = "\033[0m"


def banner():
    print(f"""
{BOLD}╔══════════════════════════════════════════════════╗
║   Discord Server Backup & Restore  v1.0          ║
╚══════════════════════════════════════════════════╝{RESET}

{YELLOW}What is backed up:{RESET}
  ✔ Server name, description, icon & settings
  ✔ Roles (colours, permissions, hierarchy)
  ✔ Categories & channels (with permission overwrites)
  ✔ Custom emojis
  ✔ Member → role assignments

{YELLOW}What is NOT backed up:{RESET}
  ✘ Message history
  ✘ Audit log, bans, integrations
""")


def prompt(label: str, secret: bool = False) -> str:
    while True:
        val = (
            getpass.getpass(f"  {label}: ") if secret else input(f"  {label}: ")
        ).strip()
        if val:
            return val
        print("  (required)")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Back up and restore a Discord server.")
    parser.add_argument("--config", help="path to config.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("backup", help="snapshot the server (administrators only)")
    sub.add_parser("list", help="list stored backups")

    restore = sub.add_parser("restore", help="restore a snapshot (server owner only)")
    restore.add_argument("id", help="backup ID")
    mode = restore.add_mutually_exclusive_group()
    mode.add_argument("--merge", dest="mode", action="store_const", const=RestoreMode.MERGE,
                      help="reuse roles with matching names, keep existing channels")
    mode.add_argument("--destructive", dest="mode", action="store_const", const=RestoreMode.DESTRUCTIVE,
                      help="delete existing roles, channels and emojis first")
    return parser.parse_args(argv)


def ask_confirmation(pending, user_id: str) -> None:
    print(f"\n{pending.prompt}\n")
    try:
        answer = input(
            f"  Type {GREEN}confirm{RESET} or {RED}cancel{RESET} "
            f"(within {pending.gate.remaining():.0f}s): "
        ).strip().lower()
    except (EOFError, KeyboardInterrupt):
        answer = "cancel"
    if answer == "confirm":
        pending.confirm(user_id)
    else:
        pending.cancel(user_id)


def report(result: CommandResult) -> int:
    if result.report is not None:
        result.report.print()
    colour = GREEN if result.ok else YELLOW
    print(f"  {colour}{result.message}{RESET}\n")
    return 0 if result.ok else 1


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    banner()

    try:
        config = load_config(args.config)
        engine = EngineConfig.from_dict(config.get("backup", {}))
    except BackupError as e:
        print(f"  {RED}✘{RESET}  {e.message}")
        return 1

    store = SnapshotStore(engine.directory)
    if args.command == "list":
        ids = store.list_ids()
        if not ids:
            print("  —  No backups found.")
        for snapshot_id in ids:
            print(f"  • {snapshot_id}")
        return 0

    # ── Discord credentials ───────────────────────────────────────────────
    discord_cfg = config.get("discord", {})
    token = discord_cfg.get("token", "")
    guild_id = str(discord_cfg.get("guild_id", ""))
    user_id = str(discord_cfg.get("user_id", ""))

    if not token or not guild_id or not user_id:
        print(f"{BOLD}Discord credentials:{RESET}")
        print("  Create a bot at https://discord.com/developers/applications")
        print("  Invite it with Administrator and enable the Server Members Intent.\n")
    if not token:
        token = prompt("Discord Bot Token", secret=True)
    if not guild_id:
        guild_id = prompt("Discord Server (Guild) ID")
    if not user_id:
        user_id = prompt("Your Discord User ID")

    service = BackupService(DiscordAccessor(token), store, config=engine)

    try:
        if args.command == "backup":
            print(f"\n📥  Backing up server {guild_id} …\n")
            return report(service.backup(user_id, guild_id))

        pending = service.request_restore(user_id, guild_id, args.id, args.mode)
        ask_confirmation(pending, user_id)
        if pending.gate.state is GateState.CONFIRMED:
            print(f"\n🔁  Restoring backup {BOLD}{args.id}{RESET} …")
        return report(pending.finish())
    except BackupError as e:
        print(f"  {RED}✘{RESET}  {e.message}\n")
        return 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\n  Cancelled.")
        sys.exit(0)
