"""
lootledger.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for non-secret settings (which guild to track, how to
reach Discord, API port).  Secrets such as ``DISCORD_TOKEN`` and
``DATABASE_URL`` stay in the environment (``.env``).

Usage::

    from lootledger.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.site_name)         # "Lootledger Dev"
    print(cfg.guild_id)          # 1468816181854081229
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

DEFAULT_DISCORD_API_BASE = "https://discord.com/api/v10"
DEFAULT_DISCORD_TIMEOUT_SECONDS = 10.0


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LootledgerConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    site_name: str

    # Discord
    guild_id: int  # Primary guild snowflake

    # API
    api_port: int

    # Discord REST
    discord_api_base: str = DEFAULT_DISCORD_API_BASE
    discord_timeout_seconds: float = DEFAULT_DISCORD_TIMEOUT_SECONDS

    # Reconcile member roles whenever Discord reports a role change
    role_sync_on_update: bool = True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> LootledgerConfig:
    """Read *path* and return a :class:`LootledgerConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    discord_raw: dict = raw.get("discord") or {}

    return LootledgerConfig(
        site_name=raw["site_name"],
        guild_id=int(raw["guild_id"]),
        api_port=int(raw["api_port"]),
        discord_api_base=str(
            discord_raw.get("api_base", DEFAULT_DISCORD_API_BASE)
        ).rstrip("/"),
        discord_timeout_seconds=float(
            discord_raw.get("timeout_seconds", DEFAULT_DISCORD_TIMEOUT_SECONDS)
        ),
        role_sync_on_update=bool(raw.get("role_sync_on_update", True)),
    )
