"""
lootledger.services.roster_service — Roster & Item List Read Models
====================================================================

Builds the JSON rows behind the two loot tables:

- **Roster** — one row per active character with their member, the
  member's roles, and the character's received loot, wishlist, prios and
  recipes.
- **Item list** — one row per item that any character of the guild has on
  a list, with the characters wishlisting it, prio'd for it, and who
  already received it.

Prios are grouped by raid group, then by their order within the group.
Officer notes are only included when the caller asks for them.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import selectinload

from lootledger.database.engine import get_session
from lootledger.database.models import (
    Character,
    CharacterItem,
    GuildItem,
    Item,
    ItemListType,
    Member,
    RaidGroup,
)

logger = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _prio_key(entry: dict[str, Any]) -> tuple:
    # Entries without a raid group sort after grouped ones.
    return (entry["raid_group_id"] is None, entry["raid_group_id"] or 0, entry["order"])


# ---------------------------------------------------------------------------
# Roster
# ---------------------------------------------------------------------------
def build_roster(
    engine: Engine, guild_id: int, include_officer_notes: bool = False
) -> list[dict[str, Any]]:
    """Return roster rows for every active character of *guild_id*."""
    with get_session(engine) as session:
        characters = session.scalars(
            select(Character)
            .where(Character.guild_id == guild_id, Character.inactive_at.is_(None))
            .options(
                selectinload(Character.member).selectinload(Member.roles),
                selectinload(Character.raid_group),
            )
            .order_by(Character.name)
        ).all()
        if not characters:
            return []

        entries = session.execute(
            select(CharacterItem, Item, Member.username)
            .join(Item, Item.item_id == CharacterItem.item_id)
            .outerjoin(Member, Member.id == CharacterItem.added_by)
            .where(CharacterItem.character_id.in_([c.id for c in characters]))
            .order_by(CharacterItem.order, CharacterItem.id)
        ).all()

        lists: dict[int, dict[str, list[dict[str, Any]]]] = defaultdict(
            lambda: {t.value: [] for t in ItemListType}
        )
        for ci, item, added_by_username in entries:
            lists[ci.character_id].setdefault(ci.type, []).append({
                "item_id": item.item_id,
                "name": item.name,
                "quality": item.quality,
                "added_by_username": added_by_username,
                "pivot": {
                    "type": ci.type,
                    "order": ci.order,
                    "is_offspec": ci.is_offspec,
                    "is_received": ci.is_received,
                    "received_at": _iso(ci.received_at),
                    "created_at": _iso(ci.created_at),
                    "raid_group_id": ci.raid_group_id,
                    "note": ci.note,
                },
            })

        rows: list[dict[str, Any]] = []
        for c in characters:
            char_lists = lists[c.id]
            received = sorted(
                char_lists[ItemListType.RECEIVED],
                key=lambda e: e["pivot"]["received_at"] or e["pivot"]["created_at"] or "",
                reverse=True,
            )
            prios = sorted(
                char_lists[ItemListType.PRIO], key=lambda e: _prio_key(e["pivot"])
            )
            row = {
                "id": c.id,
                "name": c.name,
                "slug": c.slug,
                "level": c.level,
                "race": c.race,
                "class": c.class_,
                "spec": c.spec,
                "rank": c.rank,
                "profession_1": c.profession_1,
                "profession_2": c.profession_2,
                "is_alt": c.is_alt,
                "public_note": c.public_note,
                "raid_group_id": c.raid_group_id,
                "raid_group_name": c.raid_group.name if c.raid_group else None,
                "raid_group_color": c.raid_group.color if c.raid_group else None,
                "member": _member_summary(c.member),
                "received": received,
                "wishlist": char_lists[ItemListType.WISHLIST],
                "prios": prios,
                "recipes": sorted(char_lists[ItemListType.RECIPE], key=lambda e: e["name"]),
            }
            if include_officer_notes:
                row["officer_note"] = c.officer_note
            rows.append(row)

    logger.debug("Built roster for guild %d: %d characters", guild_id, len(rows))
    return rows


def _member_summary(member: Member | None) -> dict[str, Any] | None:
    if member is None:
        return None
    return {
        "id": member.id,
        "username": member.username,
        "roles": [{"name": r.name, "color": r.color} for r in member.roles],
    }


# ---------------------------------------------------------------------------
# Item list
# ---------------------------------------------------------------------------
def build_item_list(
    engine: Engine, guild_id: int, include_officer_notes: bool = False
) -> list[dict[str, Any]]:
    """Return one row per item referenced by the guild's characters."""
    with get_session(engine) as session:
        raid_groups = {
            rg.id: rg for rg in session.scalars(
                select(RaidGroup).where(RaidGroup.guild_id == guild_id)
            ).all()
        }
        rows = session.execute(
            select(CharacterItem, Character, Item, Member.username)
            .join(Character, Character.id == CharacterItem.character_id)
            .join(Item, Item.item_id == CharacterItem.item_id)
            .outerjoin(Member, Member.id == Character.member_id)
            .where(Character.guild_id == guild_id, Character.inactive_at.is_(None))
            .order_by(Item.name, CharacterItem.order, Character.name)
        ).all()
        guild_items = {
            gi.item_id: gi for gi in session.scalars(
                select(GuildItem).where(GuildItem.guild_id == guild_id)
            ).all()
        }

        items: dict[int, dict[str, Any]] = {}
        for ci, character, item, username in rows:
            row = items.get(item.item_id)
            if row is None:
                row = _item_row(item, guild_items.get(item.item_id), include_officer_notes)
                items[item.item_id] = row

            raid_group = raid_groups.get(ci.raid_group_id or character.raid_group_id or -1)
            entry = {
                "id": character.id,
                "name": character.name,
                "slug": character.slug,
                "class": character.class_,
                "spec": character.spec,
                "level": character.level,
                "race": character.race,
                "is_alt": character.is_alt,
                "username": username,
                "raid_group_id": raid_group.id if raid_group else None,
                "raid_group_name": raid_group.name if raid_group else None,
                "raid_group_color": raid_group.color if raid_group else None,
                "pivot": {
                    "type": ci.type,
                    "order": ci.order,
                    "is_offspec": ci.is_offspec,
                    "is_received": ci.is_received,
                    "received_at": _iso(ci.received_at),
                    "created_at": _iso(ci.created_at),
                    "raid_group_id": ci.raid_group_id,
                    "note": ci.note,
                },
            }
            if ci.type == ItemListType.WISHLIST:
                row["wishlist_characters"].append(entry)
            elif ci.type == ItemListType.PRIO:
                row["priod_characters"].append(entry)
            else:
                row["received_and_recipe_characters"].append(entry)

    result = list(items.values())
    for row in result:
        row["priod_characters"].sort(key=lambda e: _prio_key(e["pivot"]))
        row["received_and_recipe_characters"].sort(
            key=lambda e: e["pivot"]["received_at"] or e["pivot"]["created_at"] or "",
            reverse=True,
        )
    return result


def _item_row(
    item: Item, guild_item: GuildItem | None, include_officer_notes: bool
) -> dict[str, Any]:
    row: dict[str, Any] = {
        "item_id": item.item_id,
        "name": item.name,
        "quality": item.quality,
        "source_name": item.source_name,
        "guild_note": guild_item.note if guild_item else None,
        "guild_priority": guild_item.priority if guild_item else None,
        "guild_tier": guild_item.tier if guild_item else None,
        "wishlist_characters": [],
        "priod_characters": [],
        "received_and_recipe_characters": [],
    }
    if include_officer_notes:
        row["guild_officer_note"] = guild_item.officer_note if guild_item else None
    return row
