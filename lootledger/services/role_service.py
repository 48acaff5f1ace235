"""
lootledger.services.role_service — Guild Role Catalog
======================================================

A guild's roles are mirrored from Discord into the ``roles`` table, keyed
by ``(guild_id, discord_id)``.  Callers never hold on to ORM rows between
steps; they work from a :class:`RoleCatalog`, an immutable snapshot of the
catalog taken at one point in time.  Refreshing from Discord writes the
upserts and hands back a *new* snapshot.

Refreshes are plain upserts (last writer wins), so two workers refreshing
the same guild at once both succeed and leave the same rows behind.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Engine, select, text

from lootledger.database.engine import get_session
from lootledger.database.models import Guild, Role
from lootledger.services.discord_client import DiscordClient

logger = logging.getLogger(__name__)

RoleRefresher = Callable[[int], "RoleCatalog"]

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """``"Raid Leader ⚔"`` → ``"raid-leader"``."""
    return _SLUG_RE.sub("-", name.lower()).strip("-") or "role"


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RoleCatalog:
    """Point-in-time view of a guild's roles: Discord id → local role id."""
    guild_id: int
    guild_discord_id: int
    guild_name: str
    role_ids: dict[int, int] = field(default_factory=dict)

    def __contains__(self, discord_id: int) -> bool:
        return discord_id in self.role_ids

    def __len__(self) -> int:
        return len(self.role_ids)

    def resolve(self, discord_ids: Iterable[int]) -> tuple[dict[int, int], set[int]]:
        """Split *discord_ids* into ``({discord_id: role_id}, unresolved)``."""
        resolved: dict[int, int] = {}
        unresolved: set[int] = set()
        for discord_id in discord_ids:
            role_id = self.role_ids.get(discord_id)
            if role_id is None:
                unresolved.add(discord_id)
            else:
                resolved[discord_id] = role_id
        return resolved, unresolved


def load_role_catalog(engine: Engine, guild_id: int) -> RoleCatalog:
    """Snapshot the locally known roles of *guild_id*.

    Raises
    ------
    LookupError
        If the guild does not exist.
    """
    with get_session(engine) as session:
        guild = session.get(Guild, guild_id)
        if guild is None:
            raise LookupError(f"Guild {guild_id} not found")
        rows = session.execute(
            select(Role.discord_id, Role.id).where(Role.guild_id == guild_id)
        ).all()
        return RoleCatalog(
            guild_id=guild.id,
            guild_discord_id=guild.discord_id,
            guild_name=guild.name,
            role_ids={row.discord_id: row.id for row in rows},
        )


# ---------------------------------------------------------------------------
# Upsert
# ---------------------------------------------------------------------------
def upsert_roles(engine: Engine, guild_id: int, discord_roles: list[dict[str, Any]]) -> int:
    """Insert or update the Discord role objects in *discord_roles*.

    Roles are matched on ``(guild_id, discord_id)``.  Roles missing from
    *discord_roles* are left alone: existing member associations keep
    pointing at them until the next reconcile detaches them.

    Returns the number of roles written.
    """
    written = 0
    with get_session(engine) as session:
        for raw in discord_roles:
            discord_id = raw.get("id")
            if discord_id is None:
                logger.warning("Skipping Discord role without id in guild %d: %r", guild_id, raw)
                continue
            name = str(raw.get("name") or "unknown")
            session.execute(
                text("""
                    INSERT INTO roles
                        (guild_id, discord_id, name, slug, color, position,
                         discord_permissions)
                    VALUES (:gid, :did, :name, :slug, :color, :position, :perms)
                    ON CONFLICT (guild_id, discord_id)
                    DO UPDATE SET name = :name,
                                  slug = :slug,
                                  color = :color,
                                  position = :position,
                                  discord_permissions = :perms,
                                  updated_at = CURRENT_TIMESTAMP
                """),
                {
                    "gid": guild_id,
                    "did": int(discord_id),
                    "name": name,
                    "slug": slugify(name),
                    "color": int(raw.get("color") or 0),
                    "position": int(raw.get("position") or 0),
                    "perms": str(raw["permissions"]) if raw.get("permissions") is not None else None,
                },
            )
            written += 1
    return written


# ---------------------------------------------------------------------------
# Refresh collaborator
# ---------------------------------------------------------------------------
def refresh_roles_from_discord(
    engine: Engine, guild_id: int, client: DiscordClient
) -> RoleCatalog:
    """Re-fetch every role of the guild from Discord, upsert, re-snapshot.

    Errors from Discord (``DiscordAPIError``, ``httpx.HTTPError``) propagate;
    the reconciler decides whether they are fatal.
    """
    catalog = load_role_catalog(engine, guild_id)
    discord_roles = client.fetch_guild_roles(catalog.guild_discord_id)
    written = upsert_roles(engine, guild_id, discord_roles)
    logger.info(
        "Refreshed %d roles from Discord for guild %d/%s",
        written, catalog.guild_id, catalog.guild_name,
    )
    return load_role_catalog(engine, guild_id)


def make_role_refresher(engine: Engine, client: DiscordClient) -> RoleRefresher:
    """Bind *engine* and *client* into the ``refresh(guild_id)`` callable
    the reconciler expects."""

    def refresh(guild_id: int) -> RoleCatalog:
        return refresh_roles_from_discord(engine, guild_id, client)

    return refresh


# ---------------------------------------------------------------------------
# Read helpers
# ---------------------------------------------------------------------------
def list_guild_roles(engine: Engine, guild_id: int) -> list[dict[str, Any]]:
    """Return the guild's roles ordered by Discord position (highest first)."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(Role)
            .where(Role.guild_id == guild_id)
            .order_by(Role.position.desc(), Role.name)
        ).all()
        return [
            {
                "id": r.id,
                "discord_id": str(r.discord_id),
                "name": r.name,
                "slug": r.slug,
                "color": r.color,
                "position": r.position,
            }
            for r in rows
        ]
