"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from lootledger.database.models import Base, Guild, Member, MemberRole, Role, User

GUILD_DISCORD_ID = 111222333
USER_DISCORD_ID = 444555666


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Lootledger tables.

    Uses StaticPool so every thread shares the same in-memory database
    (``run_db`` hops onto a worker thread).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------
def add_guild(engine: Engine, discord_id: int = GUILD_DISCORD_ID, name: str = "Nightfall") -> int:
    with Session(engine) as s:
        guild = Guild(discord_id=discord_id, name=name, slug=name.lower())
        s.add(guild)
        s.commit()
        return guild.id


def add_role(engine: Engine, guild_id: int, discord_id: int, name: str | None = None,
             position: int = 0, color: int = 0) -> int:
    name = name or f"role-{discord_id}"
    with Session(engine) as s:
        role = Role(
            guild_id=guild_id, discord_id=discord_id, name=name, slug=name.lower(),
            position=position, color=color,
        )
        s.add(role)
        s.commit()
        return role.id


def add_user(engine: Engine, discord_id: int = USER_DISCORD_ID, username: str = "Thrall") -> int:
    with Session(engine) as s:
        user = User(discord_id=discord_id, username=username)
        s.add(user)
        s.commit()
        return user.id


def add_member(engine: Engine, guild_id: int, user_id: int, username: str = "Thrall",
               role_ids: list[int] | None = None) -> int:
    with Session(engine) as s:
        member = Member(user_id=user_id, guild_id=guild_id, username=username)
        s.add(member)
        s.flush()
        for role_id in role_ids or []:
            s.add(MemberRole(member_id=member.id, role_id=role_id))
        s.commit()
        return member.id


@pytest.fixture
def guild_id(db_engine) -> int:
    return add_guild(db_engine)


@pytest.fixture
def user_id(db_engine) -> int:
    return add_user(db_engine)
