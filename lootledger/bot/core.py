"""
lootledger.bot.core — Bot Instance & Cog Loader
================================================

Defines :class:`LootledgerBot`, a ``commands.Bot`` subclass that carries the
shared config, DB engine and Discord REST client so every Cog can reach
them via ``self.bot.*``.  On startup it registers the primary guild and
pulls its role catalog from Discord.
"""

from __future__ import annotations

import logging

import discord
import httpx
from discord.ext import commands
from sqlalchemy import Engine

from lootledger.config import LootledgerConfig
from lootledger.database.engine import run_db
from lootledger.services.discord_client import DiscordAPIError, DiscordClient
from lootledger.services.member_service import ensure_guild
from lootledger.services.role_service import refresh_roles_from_discord

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "lootledger.bot.cogs.role_sync",
]


class LootledgerBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`LootledgerConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine`.
    discord_client:
        REST client used for role catalog refreshes.
    """

    def __init__(
        self, cfg: LootledgerConfig, engine: Engine, discord_client: DiscordClient
    ) -> None:
        intents = discord.Intents.default()
        intents.members = True        # Privileged: role changes arrive via on_member_update
        intents.presences = False

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            description=cfg.site_name,
        )

        self.cfg = cfg
        self.engine = engine
        self.discord_client = discord_client

        # Local ids of guilds we have registered, keyed by Discord snowflake.
        self.guild_ids: dict[int, int] = {}

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all Cog extensions.  A broken Cog is logged, not fatal."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        guild = self.get_guild(self.cfg.guild_id)
        if guild is None:
            logger.warning("Primary guild %d not visible to the bot", self.cfg.guild_id)
            return

        guild_id = await self.local_guild_id(guild)
        try:
            catalog = await run_db(
                refresh_roles_from_discord, self.engine, guild_id, self.discord_client
            )
            logger.info("Role catalog ready for %s: %d roles", guild.name, len(catalog))
        except (DiscordAPIError, httpx.HTTPError) as exc:
            logger.warning("Initial role refresh for %s failed: %s", guild.name, exc)

    async def close(self) -> None:
        logger.info("Bot shutting down…")
        self.discord_client.close()
        await super().close()

    # -----------------------------------------------------------------------
    # Helpers for cogs
    # -----------------------------------------------------------------------
    async def local_guild_id(self, guild: discord.Guild) -> int:
        """Local id for *guild*, registering it on first sight."""
        cached = self.guild_ids.get(guild.id)
        if cached is not None:
            return cached
        guild_id = await run_db(ensure_guild, self.engine, guild.id, guild.name)
        self.guild_ids[guild.id] = guild_id
        return guild_id
