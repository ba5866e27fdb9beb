from __future__ import annotations

import json

import pytest

from config import EngineConfig, load_config
from errors import ConfigError
from planner import RestoreMode


def test_defaults():
    cfg = EngineConfig.from_dict({})

    assert cfg.concurrency == 4
    assert cfg.confirm_timeout == 15.0
    assert cfg.default_mode is RestoreMode.DESTRUCTIVE


def test_values_are_read_from_the_backup_section(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"backup": {"concurrency": 8, "default_mode": "merge", "directory": "/tmp/b"}}))

    cfg = EngineConfig.from_dict(load_config(str(path))["backup"])

    assert cfg.concurrency == 8
    assert cfg.default_mode is RestoreMode.MERGE
    assert cfg.directory == "/tmp/b"


def test_missing_file_is_empty_config(tmp_path):
    assert load_config(str(tmp_path / "nope.json")) == {}


def test_unreadable_file_raises(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    with pytest.raises(ConfigError):
        load_config(str(path))


@pytest.mark.parametrize(
    "section",
    [
        {"concurrency": 0},
        {"max_attempts": 0},
        {"confirm_timeout": -1},
        {"default_mode": "yolo"},
        {"concurrency": "many"},
        {"embed_assets": "false"},
        {"embed_assets": 1},
    ],
)
def test_invalid_settings_raise(section):
    with pytest.raises(ConfigError):
        EngineConfig.from_dict(section)


def test_embed_assets_accepts_json_booleans():
    assert EngineConfig.from_dict({"embed_assets": True}).embed_assets is True
    assert EngineConfig.from_dict({"embed_assets": False}).embed_assets is False
