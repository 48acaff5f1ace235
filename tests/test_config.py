"""
tests/test_config.py — YAML Config Loader Tests
================================================
"""

from __future__ import annotations

import pytest

from lootledger.config import DEFAULT_DISCORD_API_BASE, load_config


def _write(tmp_path, body: str):
    path = tmp_path / "config.yaml"
    path.write_text(body, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_minimal_config_uses_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, 'site_name: "Dev"\nguild_id: "123"\napi_port: 8000\n'))

        assert cfg.site_name == "Dev"
        assert cfg.guild_id == 123
        assert cfg.api_port == 8000
        assert cfg.discord_api_base == DEFAULT_DISCORD_API_BASE
        assert cfg.discord_timeout_seconds == 10.0
        assert cfg.role_sync_on_update is True

    def test_discord_section(self, tmp_path):
        cfg = load_config(_write(tmp_path, (
            "site_name: Dev\nguild_id: 1\napi_port: 1\n"
            "discord:\n  api_base: https://example.test/api/\n  timeout_seconds: 2.5\n"
            "role_sync_on_update: false\n"
        )))

        assert cfg.discord_api_base == "https://example.test/api"
        assert cfg.discord_timeout_seconds == 2.5
        assert cfg.role_sync_on_update is False

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_missing_required_key(self, tmp_path):
        with pytest.raises(KeyError):
            load_config(_write(tmp_path, "site_name: Dev\napi_port: 1\n"))
