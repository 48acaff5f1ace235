"""
lootledger.services.reconciliation_service — Member Role Reconciliation
========================================================================

Brings a member's ``member_roles`` rows into agreement with the set of role
ids Discord reports for them.

How it works:
    1. Read the member's current roles, keyed by Discord role id.
    2. ``to_detach = current - target`` and ``to_attach = target - current``.
    3. Detach phase (own transaction): delete the stale associations.
    4. Attach phase: resolve ``to_attach`` against a :class:`RoleCatalog`
       snapshot.  If anything is unknown, refresh the catalog from Discord
       **once** and try again.  Ids that still do not resolve are skipped
       and logged.  Everything that resolved is inserted in one batch
       (own transaction).

The two phases commit independently and are each idempotent: deleting a
missing association is a no-op and inserting skips associations that
already exist, so a failed phase can simply be re-run.  Both phases lock
the member row, which serializes concurrent reconciles of one member on
PostgreSQL.

Unresolved roles are not remembered anywhere.  They stay in ``to_attach``
and get another chance on the next sync.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

import httpx
from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import Session

from lootledger.database.engine import get_session
from lootledger.database.models import Member, MemberRole, Role
from lootledger.services.discord_client import DiscordAPIError
from lootledger.services.role_service import RoleRefresher, load_role_catalog

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Target state
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class NoChange:
    """Leave the member's roles untouched."""


@dataclass(frozen=True)
class TargetSet:
    """The complete, authoritative set of Discord role ids.

    An empty set detaches everything.
    """
    role_ids: frozenset[int] = frozenset()


@dataclass(frozen=True)
class DetachAll:
    """Discord has no role data for the member (e.g. they left the guild)."""


RoleTarget = NoChange | TargetSet | DetachAll


def role_target_from_discord(roles: Iterable[int | str] | None) -> RoleTarget:
    """Translate a raw Discord ``roles`` field into a :data:`RoleTarget`.

    ``None`` means Discord gave us no role data at all → :class:`DetachAll`.
    Snowflakes arrive as strings and are coerced to ``int``.
    """
    if roles is None:
        return DetachAll()
    return TargetSet(frozenset(int(r) for r in roles))


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------
@dataclass
class ReconcileResult:
    """What one reconcile call did.  All role ids are Discord ids."""
    member_id: int
    success: bool = True
    detached: set[int] = field(default_factory=set)
    attached: set[int] = field(default_factory=set)
    unresolved: set[int] = field(default_factory=set)
    refreshed: bool = False
    refresh_failed: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.detached or self.attached)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def reconcile_member_roles(
    engine: Engine,
    member_id: int,
    guild_id: int,
    target: RoleTarget,
    refresh: RoleRefresher | None = None,
) -> ReconcileResult:
    """Make the member's roles match *target*.

    Parameters
    ----------
    engine:
        SQLAlchemy engine.
    member_id, guild_id:
        Local ids.  The member must belong to the guild.
    target:
        :class:`TargetSet`, :class:`DetachAll` or :class:`NoChange`.
    refresh:
        ``refresh(guild_id) -> RoleCatalog``, called at most once when some
        target roles are unknown locally.  ``None`` disables the refresh.

    Returns
    -------
    ReconcileResult
        ``success`` is ``True`` whenever the call completes, even if some
        roles could not be resolved.

    Raises
    ------
    LookupError
        If the member does not exist.
    ValueError
        If the member belongs to a different guild.
    """
    result = ReconcileResult(member_id=member_id)

    if isinstance(target, NoChange):
        return result

    # --- Phase 1: detach ---------------------------------------------------
    with get_session(engine) as session:
        _lock_member(session, member_id, guild_id)
        current = _current_roles(session, member_id)

        if isinstance(target, DetachAll):
            to_detach = set(current)
            to_attach: set[int] = set()
        else:
            to_detach = set(current) - target.role_ids
            to_attach = set(target.role_ids) - set(current)

        if to_detach:
            session.execute(
                delete(MemberRole).where(
                    MemberRole.member_id == member_id,
                    MemberRole.role_id.in_([current[d] for d in to_detach]),
                )
            )
            result.detached = to_detach

    if not to_attach:
        _log_result(result)
        return result

    # --- Resolve (with at most one refresh) --------------------------------
    catalog = load_role_catalog(engine, guild_id)
    resolved, unresolved = catalog.resolve(to_attach)

    if unresolved and refresh is not None:
        try:
            catalog = refresh(guild_id)
            result.refreshed = True
        except (DiscordAPIError, httpx.HTTPError) as exc:
            result.refresh_failed = True
            logger.warning(
                "Role refresh for guild %d/%s failed (%s); %d role(s) left unresolved",
                catalog.guild_id, catalog.guild_name, exc, len(unresolved),
            )
        else:
            retried, unresolved = catalog.resolve(unresolved)
            resolved.update(retried)

    if result.refresh_failed:
        reason = "role refresh failed"
    elif result.refreshed:
        reason = "not found after refreshing roles"
    else:
        reason = "role refresh disabled"
    for discord_id in sorted(unresolved):
        logger.error(
            "Could not resolve Discord role %d for guild %d/%s (%s); not attaching it",
            discord_id, catalog.guild_id, catalog.guild_name, reason,
            extra={
                "guild_id": catalog.guild_id,
                "discord_role_id": discord_id,
                "member_id": member_id,
            },
        )
    result.unresolved = unresolved

    # --- Phase 2: attach ---------------------------------------------------
    if resolved:
        with get_session(engine) as session:
            _lock_member(session, member_id, guild_id)
            existing = set(session.scalars(
                select(MemberRole.role_id).where(
                    MemberRole.member_id == member_id,
                    MemberRole.role_id.in_(list(resolved.values())),
                )
            ).all())
            session.add_all([
                MemberRole(member_id=member_id, role_id=role_id)
                for role_id in resolved.values()
                if role_id not in existing
            ])
            result.attached = set(resolved)

    _log_result(result)
    return result


def get_member_role_ids(engine: Engine, member_id: int) -> set[int]:
    """Return the Discord ids of the member's current roles."""
    with get_session(engine) as session:
        return set(_current_roles(session, member_id))


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------
def _lock_member(session: Session, member_id: int, guild_id: int) -> Member:
    member = session.scalars(
        select(Member).where(Member.id == member_id).with_for_update()
    ).one_or_none()
    if member is None:
        raise LookupError(f"Member {member_id} not found")
    if member.guild_id != guild_id:
        raise ValueError(
            f"Member {member_id} belongs to guild {member.guild_id}, not {guild_id}"
        )
    return member


def _current_roles(session: Session, member_id: int) -> dict[int, int]:
    """Discord role id → local role id for the member's associations."""
    rows = session.execute(
        select(Role.discord_id, Role.id)
        .join(MemberRole, MemberRole.role_id == Role.id)
        .where(MemberRole.member_id == member_id)
    ).all()
    return {row.discord_id: row.id for row in rows}


def _log_result(result: ReconcileResult) -> None:
    if result.changed:
        logger.info(
            "Reconciled roles for member %d: +%d -%d (unresolved %d)",
            result.member_id, len(result.attached), len(result.detached),
            len(result.unresolved),
        )
    else:
        logger.debug("Roles already in sync for member %d", result.member_id)
