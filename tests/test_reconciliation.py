"""
tests/test_reconciliation.py — Member Role Reconciliation Tests
================================================================
Covers ``reconcile_member_roles``: set differences, detach-all targets,
the single refresh for unknown roles, and anomaly logging.

All tests use the in-memory SQLite engine from conftest; the Discord
refresh is a plain callable that upserts roles locally.
"""

from __future__ import annotations

import logging

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import add_guild, add_member, add_role, add_user
from lootledger.database.models import MemberRole
from lootledger.services.discord_client import DiscordAPIError
from lootledger.services.reconciliation_service import (
    DetachAll,
    NoChange,
    TargetSet,
    get_member_role_ids,
    reconcile_member_roles,
    role_target_from_discord,
)
from lootledger.services.role_service import load_role_catalog, upsert_roles

LOGGER = "lootledger.services.reconciliation_service"

ROLE_A = 9001
ROLE_B = 9002
ROLE_C = 9003


class FakeRefresh:
    """Records calls; optionally makes *new_roles* known before snapshotting."""

    def __init__(self, engine, new_roles: list[int] | None = None, error: Exception | None = None):
        self.engine = engine
        self.new_roles = new_roles or []
        self.error = error
        self.calls: list[int] = []

    def __call__(self, guild_id: int):
        self.calls.append(guild_id)
        if self.error is not None:
            raise self.error
        upsert_roles(
            self.engine, guild_id,
            [{"id": str(r), "name": f"role-{r}"} for r in self.new_roles],
        )
        return load_role_catalog(self.engine, guild_id)


def _anomalies(caplog) -> list[logging.LogRecord]:
    return [r for r in caplog.records if r.name == LOGGER and r.levelno == logging.ERROR]


@pytest.fixture
def roles(db_engine, guild_id) -> dict[int, int]:
    """Discord id → local id for roles A and C (B is unknown locally)."""
    return {
        ROLE_A: add_role(db_engine, guild_id, ROLE_A, "Raider"),
        ROLE_C: add_role(db_engine, guild_id, ROLE_C, "Officer"),
    }


def _member(db_engine, guild_id, user_id, roles, holding: list[int]) -> int:
    return add_member(db_engine, guild_id, user_id, role_ids=[roles[d] for d in holding])


# ---------------------------------------------------------------------------
# Target translation
# ---------------------------------------------------------------------------
class TestRoleTargetFromDiscord:
    def test_none_means_detach_all(self):
        assert role_target_from_discord(None) == DetachAll()

    def test_empty_list_is_empty_target_set(self):
        assert role_target_from_discord([]) == TargetSet(frozenset())

    def test_string_snowflakes_are_coerced(self):
        target = role_target_from_discord(["9001", "9002", "9001"])
        assert target == TargetSet(frozenset({ROLE_A, ROLE_B}))


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------
class TestReconcileMemberRoles:
    def test_attaches_and_detaches_difference(self, db_engine, guild_id, user_id, roles):
        member_id = _member(db_engine, guild_id, user_id, roles, [ROLE_C])

        result = reconcile_member_roles(
            db_engine, member_id, guild_id, TargetSet(frozenset({ROLE_A}))
        )

        assert result.success is True
        assert result.attached == {ROLE_A}
        assert result.detached == {ROLE_C}
        assert get_member_role_ids(db_engine, member_id) == {ROLE_A}

    def test_second_call_is_a_no_op(self, db_engine, guild_id, user_id, roles):
        member_id = _member(db_engine, guild_id, user_id, roles, [ROLE_C])
        target = TargetSet(frozenset({ROLE_A}))
        refresh = FakeRefresh(db_engine)

        reconcile_member_roles(db_engine, member_id, guild_id, target, refresh)
        second = reconcile_member_roles(db_engine, member_id, guild_id, target, refresh)

        assert second.attached == set()
        assert second.detached == set()
        assert second.changed is False
        assert refresh.calls == []
        assert get_member_role_ids(db_engine, member_id) == {ROLE_A}

    def test_empty_target_detaches_everything(self, db_engine, guild_id, user_id, roles):
        member_id = _member(db_engine, guild_id, user_id, roles, [ROLE_A, ROLE_C])

        result = reconcile_member_roles(db_engine, member_id, guild_id, TargetSet(frozenset()))

        assert result.detached == {ROLE_A, ROLE_C}
        assert result.attached == set()
        assert get_member_role_ids(db_engine, member_id) == set()

    def test_detach_all_matches_empty_target(self, db_engine, guild_id, user_id, roles):
        member_id = _member(db_engine, guild_id, user_id, roles, [ROLE_A, ROLE_C])
        refresh = FakeRefresh(db_engine)

        result = reconcile_member_roles(db_engine, member_id, guild_id, DetachAll(), refresh)

        assert result.success is True
        assert result.detached == {ROLE_A, ROLE_C}
        assert result.attached == set()
        assert refresh.calls == []
        assert get_member_role_ids(db_engine, member_id) == set()

    def test_no_change_touches_nothing(self, db_engine, guild_id, user_id, roles):
        member_id = _member(db_engine, guild_id, user_id, roles, [ROLE_A])

        result = reconcile_member_roles(db_engine, member_id, guild_id, NoChange())

        assert result.changed is False
        assert get_member_role_ids(db_engine, member_id) == {ROLE_A}

    def test_unknown_role_resolved_after_refresh(self, db_engine, guild_id, user_id, roles, caplog):
        member_id = _member(db_engine, guild_id, user_id, roles, [ROLE_A])
        refresh = FakeRefresh(db_engine, new_roles=[ROLE_B])

        with caplog.at_level(logging.INFO, logger=LOGGER):
            result = reconcile_member_roles(
                db_engine, member_id, guild_id,
                TargetSet(frozenset({ROLE_A, ROLE_B})), refresh,
            )

        assert result.refreshed is True
        assert result.attached == {ROLE_B}
        assert result.unresolved == set()
        assert _anomalies(caplog) == []
        assert get_member_role_ids(db_engine, member_id) == {ROLE_A, ROLE_B}

    def test_role_still_unknown_after_refresh_is_skipped(
        self, db_engine, guild_id, user_id, roles, caplog
    ):
        member_id = _member(db_engine, guild_id, user_id, roles, [ROLE_A])
        refresh = FakeRefresh(db_engine)

        with caplog.at_level(logging.INFO, logger=LOGGER):
            result = reconcile_member_roles(
                db_engine, member_id, guild_id,
                TargetSet(frozenset({ROLE_A, ROLE_B})), refresh,
            )

        assert result.success is True
        assert result.unresolved == {ROLE_B}
        assert get_member_role_ids(db_engine, member_id) == {ROLE_A}

        anomalies = _anomalies(caplog)
        assert len(anomalies) == 1
        assert anomalies[0].discord_role_id == ROLE_B
        assert anomalies[0].guild_id == guild_id

    def test_refresh_called_once_for_many_unknown_roles(self, db_engine, guild_id, user_id, roles):
        member_id = _member(db_engine, guild_id, user_id, roles, [])
        unknown = {7001, 7002, 7003, 7004}
        refresh = FakeRefresh(db_engine, new_roles=[7001, 7002])

        result = reconcile_member_roles(
            db_engine, member_id, guild_id, TargetSet(frozenset(unknown | {ROLE_A})), refresh,
        )

        assert refresh.calls == [guild_id]
        assert result.attached == {ROLE_A, 7001, 7002}
        assert result.unresolved == {7003, 7004}

    @pytest.mark.parametrize("error", [
        DiscordAPIError(503, "Service Unavailable"),
        httpx.ReadTimeout("timed out"),
    ])
    def test_refresh_failure_is_not_fatal(self, db_engine, guild_id, user_id, roles, error, caplog):
        member_id = _member(db_engine, guild_id, user_id, roles, [ROLE_C])
        refresh = FakeRefresh(db_engine, error=error)

        with caplog.at_level(logging.INFO, logger=LOGGER):
            result = reconcile_member_roles(
                db_engine, member_id, guild_id,
                TargetSet(frozenset({ROLE_A, ROLE_B})), refresh,
            )

        assert result.success is True
        assert result.refresh_failed is True
        assert result.refreshed is False
        assert result.detached == {ROLE_C}
        assert result.attached == {ROLE_A}
        assert result.unresolved == {ROLE_B}
        assert len(_anomalies(caplog)) == 1
        assert get_member_role_ids(db_engine, member_id) == {ROLE_A}

    def test_unexpected_refresh_error_propagates(self, db_engine, guild_id, user_id, roles):
        member_id = _member(db_engine, guild_id, user_id, roles, [])
        refresh = FakeRefresh(db_engine, error=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            reconcile_member_roles(
                db_engine, member_id, guild_id, TargetSet(frozenset({ROLE_B})), refresh,
            )

    def test_without_refresh_unknown_roles_are_skipped(self, db_engine, guild_id, user_id, roles):
        member_id = _member(db_engine, guild_id, user_id, roles, [])

        result = reconcile_member_roles(
            db_engine, member_id, guild_id, TargetSet(frozenset({ROLE_A, ROLE_B}))
        )

        assert result.refreshed is False
        assert result.unresolved == {ROLE_B}
        assert get_member_role_ids(db_engine, member_id) == {ROLE_A}

    def test_attach_skips_association_added_concurrently(self, db_engine, guild_id, user_id, roles):
        """Another worker attaches the role while our refresh is in flight."""
        member_id = _member(db_engine, guild_id, user_id, roles, [])
        inner = FakeRefresh(db_engine, new_roles=[ROLE_B])

        def racing_refresh(gid: int):
            catalog = inner(gid)
            with Session(db_engine) as s:
                s.add(MemberRole(member_id=member_id, role_id=roles[ROLE_A]))
                s.commit()
            return catalog

        result = reconcile_member_roles(
            db_engine, member_id, guild_id,
            TargetSet(frozenset({ROLE_A, ROLE_B})), racing_refresh,
        )

        assert result.attached == {ROLE_A, ROLE_B}
        with Session(db_engine) as s:
            rows = s.scalars(
                select(MemberRole).where(MemberRole.member_id == member_id)
            ).all()
        assert len(rows) == 2

    def test_roles_of_other_guilds_never_resolve(self, db_engine, guild_id, user_id, roles):
        other_guild = add_guild(db_engine, discord_id=999, name="Other")
        add_role(db_engine, other_guild, ROLE_B, "Elsewhere")
        member_id = _member(db_engine, guild_id, user_id, roles, [])

        result = reconcile_member_roles(
            db_engine, member_id, guild_id, TargetSet(frozenset({ROLE_B}))
        )

        assert result.unresolved == {ROLE_B}
        assert get_member_role_ids(db_engine, member_id) == set()

    def test_missing_member_raises(self, db_engine, guild_id):
        with pytest.raises(LookupError):
            reconcile_member_roles(db_engine, 12345, guild_id, DetachAll())

    def test_member_of_other_guild_raises(self, db_engine, guild_id, roles):
        other_guild = add_guild(db_engine, discord_id=999, name="Other")
        member_id = add_member(db_engine, other_guild, add_user(db_engine, 777, "Jaina"))

        with pytest.raises(ValueError):
            reconcile_member_roles(db_engine, member_id, guild_id, DetachAll())
