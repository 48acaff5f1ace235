"""
lootledger.api.routes.guilds — Read-only guild data
====================================================

Roster, item list and role catalog for one guild.  These endpoints are
public, so officer and personal notes are never included.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import Engine

from lootledger.api.deps import get_engine
from lootledger.database.engine import get_session, run_db
from lootledger.database.models import Guild
from lootledger.services.role_service import list_guild_roles
from lootledger.services.roster_service import build_item_list, build_roster

router = APIRouter(prefix="/guilds", tags=["guilds"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class GuildOut(BaseModel):
    id: int
    discord_id: str
    name: str
    slug: str


def _load_guild(engine: Engine, guild_id: int) -> GuildOut | None:
    with get_session(engine) as session:
        guild = session.get(Guild, guild_id)
        if guild is None:
            return None
        return GuildOut(
            id=guild.id, discord_id=str(guild.discord_id), name=guild.name, slug=guild.slug
        )


async def _require_guild(engine: Engine, guild_id: int) -> GuildOut:
    guild = await run_db(_load_guild, engine, guild_id)
    if guild is None:
        raise HTTPException(404, "Guild not found")
    return guild


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.get("/{guild_id}/roster")
async def get_roster(guild_id: int, engine: Engine = Depends(get_engine)):
    """Characters with their loot, wishlists and prios."""
    guild = await _require_guild(engine, guild_id)
    characters = await run_db(build_roster, engine, guild_id)
    return {"guild": guild.model_dump(), "characters": characters}


@router.get("/{guild_id}/items")
async def get_items(guild_id: int, engine: Engine = Depends(get_engine)):
    """Items with the characters wishlisting, prio'd for, or holding them."""
    guild = await _require_guild(engine, guild_id)
    items = await run_db(build_item_list, engine, guild_id)
    return {"guild": guild.model_dump(), "items": items}


@router.get("/{guild_id}/roles")
async def get_roles(guild_id: int, engine: Engine = Depends(get_engine)):
    """The guild's role catalog as last synced from Discord."""
    guild = await _require_guild(engine, guild_id)
    roles = await run_db(list_guild_roles, engine, guild_id)
    return {"guild": guild.model_dump(), "roles": roles}
