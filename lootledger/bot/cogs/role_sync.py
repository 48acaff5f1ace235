"""
lootledger.bot.cogs.role_sync — Gateway Role Events → Reconciliation
=====================================================================

- ``on_member_update``: when a member's roles change in Discord, reconcile
  the matching site member (members who never logged in are ignored).
- ``on_member_remove``: the member left, so every role is detached.
- ``on_guild_role_create/update/delete``: refresh the guild's role catalog.

Requires the GUILD_MEMBERS privileged intent.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
import httpx
from discord.ext import commands

from lootledger.database.engine import run_db
from lootledger.services.discord_client import DiscordAPIError
from lootledger.services.member_service import find_member_id
from lootledger.services.reconciliation_service import (
    DetachAll,
    RoleTarget,
    TargetSet,
    reconcile_member_roles,
)
from lootledger.services.role_service import make_role_refresher, refresh_roles_from_discord

if TYPE_CHECKING:
    from lootledger.bot.core import LootledgerBot

logger = logging.getLogger(__name__)


def member_role_target(member: discord.Member) -> TargetSet:
    """Discord role ids held by *member*, without ``@everyone``."""
    return TargetSet(frozenset(r.id for r in member.roles if not r.is_default()))


class RoleSync(commands.Cog, name="RoleSync"):
    """Keeps site members' roles in step with Discord."""

    def __init__(self, bot: LootledgerBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        if not self.bot.cfg.role_sync_on_update or after.bot:
            return
        if {r.id for r in before.roles} == {r.id for r in after.roles}:
            return
        await self._reconcile(after.guild, after.id, member_role_target(after))

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member) -> None:
        if member.bot:
            return
        await self._reconcile(member.guild, member.id, DetachAll())

    @commands.Cog.listener()
    async def on_guild_role_create(self, role: discord.Role) -> None:
        await self._refresh_catalog(role.guild)

    @commands.Cog.listener()
    async def on_guild_role_update(self, before: discord.Role, after: discord.Role) -> None:
        await self._refresh_catalog(after.guild)

    @commands.Cog.listener()
    async def on_guild_role_delete(self, role: discord.Role) -> None:
        await self._refresh_catalog(role.guild)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    async def _reconcile(self, guild: discord.Guild, user_discord_id: int, target: RoleTarget) -> None:
        try:
            guild_id = await self.bot.local_guild_id(guild)
            member_id = await run_db(find_member_id, self.bot.engine, guild_id, user_discord_id)
            if member_id is None:
                logger.debug("User %d has no member in guild %s; skipping", user_discord_id, guild.name)
                return
            await run_db(
                reconcile_member_roles,
                self.bot.engine,
                member_id,
                guild_id,
                target,
                make_role_refresher(self.bot.engine, self.bot.discord_client),
            )
        except Exception:
            logger.exception(
                "Error reconciling roles for user %d in guild %s", user_discord_id, guild.name,
                extra={"user_id": user_discord_id, "guild_id": guild.id},
            )

    async def _refresh_catalog(self, guild: discord.Guild) -> None:
        try:
            guild_id = await self.bot.local_guild_id(guild)
            await run_db(
                refresh_roles_from_discord, self.bot.engine, guild_id, self.bot.discord_client
            )
        except (DiscordAPIError, httpx.HTTPError) as exc:
            logger.warning("Role refresh for guild %s failed: %s", guild.name, exc)


async def setup(bot: LootledgerBot) -> None:
    await bot.add_cog(RoleSync(bot))
