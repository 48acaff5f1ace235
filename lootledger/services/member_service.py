"""
lootledger.services.member_service — Members, Guilds & Users
=============================================================

Creates the rows a Discord login or gateway event needs (guild, user,
member), keeps a member's roles in step with Discord, and handles the small
member mutations: notes and the quit/banned lifecycle stamps.

Officer and personal notes are private: :func:`serialize_member` leaves
them out unless explicitly asked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError

from lootledger.database.engine import get_session
from lootledger.database.models import Guild, Member, User
from lootledger.services.discord_client import DiscordClient, DiscordNotFound
from lootledger.services.reconciliation_service import (
    DetachAll,
    ReconcileResult,
    reconcile_member_roles,
    role_target_from_discord,
)
from lootledger.services.role_service import RoleRefresher, make_role_refresher, slugify

logger = logging.getLogger(__name__)

_UNSET: Any = object()


@dataclass
class MemberSync:
    """Outcome of :func:`create_member` / :func:`sync_member_from_discord`."""
    member_id: int
    created: bool = False
    roles: ReconcileResult | None = None


# ---------------------------------------------------------------------------
# Guilds & users
# ---------------------------------------------------------------------------
def ensure_guild(engine: Engine, discord_id: int, name: str) -> int:
    """Return the local id of the guild, creating or renaming it as needed."""
    with get_session(engine) as session:
        guild = session.scalars(
            select(Guild).where(Guild.discord_id == discord_id)
        ).one_or_none()
        if guild is None:
            guild = Guild(discord_id=discord_id, name=name, slug=slugify(name))
            session.add(guild)
            session.flush()
            logger.info("Registered guild %s (%d) → id %d", name, discord_id, guild.id)
        elif guild.name != name:
            guild.name = name
            guild.slug = slugify(name)
        return guild.id


def ensure_user(engine: Engine, discord_id: int, username: str) -> int:
    """Return the local id of the user with this Discord id, creating it if new."""
    with get_session(engine) as session:
        user = session.scalars(
            select(User).where(User.discord_id == discord_id)
        ).one_or_none()
        if user is None:
            user = User(discord_id=discord_id, username=username)
            session.add(user)
            session.flush()
        elif user.username != username:
            user.username = username
        return user.id


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------
def create_member(
    engine: Engine,
    user_id: int,
    guild_id: int,
    discord_member: dict[str, Any] | None = None,
    refresh: RoleRefresher | None = None,
) -> MemberSync:
    """Get or create the member for (*user_id*, *guild_id*).

    When *discord_member* (a Discord guild member object) is given, the
    member's roles are reconciled against its ``roles`` field.

    Raises
    ------
    LookupError
        If the user does not exist.
    """
    member_id, created = _get_or_create_member(engine, user_id, guild_id)
    sync = MemberSync(member_id=member_id, created=created)

    if discord_member is not None:
        sync.roles = reconcile_member_roles(
            engine,
            member_id,
            guild_id,
            role_target_from_discord(discord_member.get("roles")),
            refresh,
        )
    return sync


def sync_member_from_discord(
    engine: Engine, member_id: int, client: DiscordClient
) -> MemberSync:
    """Look the member up on Discord and reconcile their roles.

    A 404 from Discord means the user is no longer in the guild, so every
    role is detached.  Other Discord errors propagate.
    """
    with get_session(engine) as session:
        member = session.get(Member, member_id)
        if member is None:
            raise LookupError(f"Member {member_id} not found")
        guild_id = member.guild_id
        guild_discord_id = member.guild.discord_id
        user_discord_id = member.user.discord_id

    try:
        payload = client.fetch_guild_member(guild_discord_id, user_discord_id)
    except DiscordNotFound:
        logger.info(
            "Member %d is no longer in Discord guild %d; detaching roles",
            member_id, guild_discord_id,
        )
        target = DetachAll()
    else:
        target = role_target_from_discord(payload.get("roles"))

    result = reconcile_member_roles(
        engine, member_id, guild_id, target, make_role_refresher(engine, client)
    )
    return MemberSync(member_id=member_id, roles=result)


def find_member_id(engine: Engine, guild_id: int, user_discord_id: int) -> int | None:
    """Local member id for a Discord user in a guild, or ``None``."""
    with get_session(engine) as session:
        return session.scalars(
            select(Member.id)
            .join(User, User.id == Member.user_id)
            .where(Member.guild_id == guild_id, User.discord_id == user_discord_id)
        ).one_or_none()


def update_member_notes(
    engine: Engine,
    member_id: int,
    *,
    public_note: str | None = _UNSET,
    officer_note: str | None = _UNSET,
    personal_note: str | None = _UNSET,
) -> dict[str, Any]:
    """Set any of the three notes; omitted arguments are left unchanged.

    Returns the member serialized with private fields included.
    """
    with get_session(engine) as session:
        member = session.get(Member, member_id)
        if member is None:
            raise LookupError(f"Member {member_id} not found")
        if public_note is not _UNSET:
            member.public_note = public_note
        if officer_note is not _UNSET:
            member.officer_note = officer_note
        if personal_note is not _UNSET:
            member.personal_note = personal_note
        session.flush()
        return serialize_member(member, include_private=True)


def mark_member_quit(engine: Engine, member_id: int, has_quit: bool = True) -> None:
    """Stamp (or clear) ``quit_at``."""
    _set_timestamp(engine, member_id, "quit_at", has_quit)


def mark_member_banned(engine: Engine, member_id: int, banned: bool = True) -> None:
    """Stamp (or clear) ``banned_at``."""
    _set_timestamp(engine, member_id, "banned_at", banned)


def serialize_member(member: Member, include_private: bool = False) -> dict[str, Any]:
    """Plain-dict view of a member and its roles."""
    data: dict[str, Any] = {
        "id": member.id,
        "user_id": member.user_id,
        "guild_id": member.guild_id,
        "username": member.username,
        "public_note": member.public_note,
        "banned_at": member.banned_at.isoformat() if member.banned_at else None,
        "quit_at": member.quit_at.isoformat() if member.quit_at else None,
        "roles": [
            {"id": r.id, "discord_id": str(r.discord_id), "name": r.name, "color": r.color}
            for r in member.roles
        ],
    }
    if include_private:
        data["officer_note"] = member.officer_note
        data["personal_note"] = member.personal_note
    return data


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------
def _get_or_create_member(engine: Engine, user_id: int, guild_id: int) -> tuple[int, bool]:
    with get_session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise LookupError(f"User {user_id} not found")

        member_id = _member_id(session, user_id, guild_id)
        if member_id is not None:
            return member_id, False

        member = Member(user_id=user_id, guild_id=guild_id, username=user.username)
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(member)
                session.flush()
        except IntegrityError:
            # Another worker created it between our SELECT and INSERT.
            member_id = _member_id(session, user_id, guild_id)
            if member_id is None:
                raise
            return member_id, False

        logger.info(
            "Created member %d for user %d in guild %d", member.id, user_id, guild_id,
        )
        return member.id, True


def _member_id(session, user_id: int, guild_id: int) -> int | None:
    return session.scalars(
        select(Member.id).where(Member.user_id == user_id, Member.guild_id == guild_id)
    ).one_or_none()


def _set_timestamp(engine: Engine, member_id: int, column: str, on: bool) -> None:
    with get_session(engine) as session:
        member = session.get(Member, member_id)
        if member is None:
            raise LookupError(f"Member {member_id} not found")
        setattr(member, column, datetime.now(UTC) if on else None)
