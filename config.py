"""
config.py
─────────
Loads config.json and validates the engine settings.

    {
      "discord": {"token": "…", "guild_id": "…", "user_id": "…"},
      "backup":  {"directory": "./backups", "concurrency": 4, …}
    }

Every key is optional; missing Discord credentials are prompted for by main.py.
"""

from __future__ import annotations
import json
import os
from dataclasses import dataclass

from errors import ConfigError
from planner import RestoreMode

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "config.json")


def load_config(path: str | None = None) -> dict:
    path = path or DEFAULT_CONFIG_PATH
    if not os.path.exists(path):
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"could not read {path}: {e}") from e


@dataclass(frozen=True)
class EngineConfig:
    directory: str = "./backups"
    concurrency: int = 4
    max_attempts: int = 5
    backoff_base: float = 0.5
    backoff_cap: float = 30.0
    confirm_timeout: float = 15.0
    embed_assets: bool = False
    default_mode: RestoreMode = RestoreMode.DESTRUCTIVE

    @classmethod
    def from_dict(cls, cfg: dict) -> EngineConfig:
        try:
            mode = RestoreMode(cfg.get("default_mode", RestoreMode.DESTRUCTIVE.value))
        except ValueError:
            raise ConfigError(f"unknown restore mode {cfg.get('default_mode')!r}") from None
        embed_assets = cfg.get("embed_assets", cls.embed_assets)
        if not isinstance(embed_assets, bool):
            raise ConfigError(f"backup.embed_assets must be true or false, not {embed_assets!r}")
        try:
            config = cls(
                directory=str(cfg.get("directory", cls.directory)),
                concurrency=int(cfg.get("concurrency", cls.concurrency)),
                max_attempts=int(cfg.get("max_attempts", cls.max_attempts)),
                backoff_base=float(cfg.get("backoff_base", cls.backoff_base)),
                backoff_cap=float(cfg.get("backoff_cap", cls.backoff_cap)),
                confirm_timeout=float(cfg.get("confirm_timeout", cls.confirm_timeout)),
                embed_assets=embed_assets,
                default_mode=mode,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid backup settings: {e}") from e

        if config.concurrency < 1:
            raise ConfigError("backup.concurrency must be at least 1")
        if config.max_attempts < 1:
            raise ConfigError("backup.max_attempts must be at least 1")
        if config.backoff_base < 0 or config.backoff_cap <= 0:
            raise ConfigError("backup.backoff_base/backoff_cap must be positive")
        if config.confirm_timeout <= 0:
            raise ConfigError("backup.confirm_timeout must be positive")
        return config
