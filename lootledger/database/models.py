"""
lootledger.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- guilds           — Discord servers tracked by the site
- roles            — Per-guild catalog of Discord roles
- users            — Site accounts (one per Discord user)
- members          — A user's membership in one guild
- member_roles     — Member ↔ Role association, owned by the reconciler
- raid_groups      — Per-guild raid teams (used to group prios)
- characters       — In-game characters belonging to members
- items            — Item catalog (WoW item ids)
- guild_items      — Per-guild item notes, priority and tier
- character_items  — Wishlist, prio, received and recipe entries

Local ids are plain autoincrement integers.  Anything issued by Discord is
stored separately as ``discord_id`` (a BigInteger snowflake).
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Lootledger ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ItemListType(enum.StrEnum):
    """Which list a character ↔ item entry belongs to."""
    WISHLIST = "wishlist"
    PRIO = "prio"
    RECEIVED = "received"
    RECIPE = "recipe"


# ---------------------------------------------------------------------------
# Guilds
# ---------------------------------------------------------------------------
class Guild(Base):
    __tablename__ = "guilds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    discord_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    roles: Mapped[list[Role]] = relationship(
        back_populates="guild", cascade="all, delete-orphan", order_by="Role.position"
    )
    members: Mapped[list[Member]] = relationship(
        back_populates="guild", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Guild id={self.id} discord_id={self.discord_id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Roles — synced from Discord, keyed by (guild, discord_id)
# ---------------------------------------------------------------------------
class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("guilds.id", ondelete="CASCADE"), nullable=False
    )
    discord_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[int] = mapped_column(Integer, default=0)  # decimal RGB, 0 = none
    position: Mapped[int] = mapped_column(Integer, default=0)
    discord_permissions: Mapped[str | None] = mapped_column(String(32), default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    guild: Mapped[Guild] = relationship(back_populates="roles")

    __table_args__ = (
        UniqueConstraint("guild_id", "discord_id", name="uq_roles_guild_discord"),
    )

    def __repr__(self) -> str:
        return f"<Role id={self.id} discord_id={self.discord_id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Users — site accounts, one per Discord user
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    discord_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    members: Mapped[list[Member]] = relationship(back_populates="user")

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.username!r}>"


# ---------------------------------------------------------------------------
# Members — a user's membership in one guild
# ---------------------------------------------------------------------------
class Member(Base):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    guild_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("guilds.id", ondelete="CASCADE"), nullable=False
    )
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    public_note: Mapped[str | None] = mapped_column(Text, default=None)
    officer_note: Mapped[str | None] = mapped_column(Text, default=None)
    personal_note: Mapped[str | None] = mapped_column(Text, default=None)
    banned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    quit_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped[User] = relationship(back_populates="members")
    guild: Mapped[Guild] = relationship(back_populates="members")
    # Writes go through MemberRole rows; this side is read-only.
    roles: Mapped[list[Role]] = relationship(
        secondary="member_roles", viewonly=True, order_by="Role.position"
    )
    characters: Mapped[list[Character]] = relationship(
        back_populates="member", order_by="Character.name"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "guild_id", name="uq_members_user_guild"),
    )

    def __repr__(self) -> str:
        return f"<Member id={self.id} guild={self.guild_id} name={self.username!r}>"


class MemberRole(Base):
    __tablename__ = "member_roles"

    member_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("members.id", ondelete="CASCADE"), primary_key=True
    )
    role_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<MemberRole member={self.member_id} role={self.role_id}>"


# ---------------------------------------------------------------------------
# Raid groups
# ---------------------------------------------------------------------------
class RaidGroup(Base):
    __tablename__ = "raid_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("guilds.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[int | None] = mapped_column(Integer, default=None)
    disabled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    def __repr__(self) -> str:
        return f"<RaidGroup id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------
class Character(Base):
    __tablename__ = "characters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("guilds.id", ondelete="CASCADE"), nullable=False
    )
    member_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    raid_group_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("raid_groups.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    slug: Mapped[str] = mapped_column(String(50), nullable=False)
    level: Mapped[int | None] = mapped_column(Integer, default=None)
    race: Mapped[str | None] = mapped_column(String(30), default=None)
    class_: Mapped[str | None] = mapped_column("class", String(30), default=None)
    spec: Mapped[str | None] = mapped_column(String(30), default=None)
    rank: Mapped[int | None] = mapped_column(Integer, default=None)
    profession_1: Mapped[str | None] = mapped_column(String(30), default=None)
    profession_2: Mapped[str | None] = mapped_column(String(30), default=None)
    is_alt: Mapped[bool] = mapped_column(Boolean, default=False)
    public_note: Mapped[str | None] = mapped_column(Text, default=None)
    officer_note: Mapped[str | None] = mapped_column(Text, default=None)
    inactive_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    member: Mapped[Member | None] = relationship(back_populates="characters")
    raid_group: Mapped[RaidGroup | None] = relationship()

    __table_args__ = (
        UniqueConstraint("guild_id", "name", name="uq_characters_guild_name"),
    )

    def __repr__(self) -> str:
        return f"<Character id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------
class Item(Base):
    __tablename__ = "items"

    item_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    quality: Mapped[int | None] = mapped_column(Integer, default=None)
    source_name: Mapped[str | None] = mapped_column(String(100), default=None)

    def __repr__(self) -> str:
        return f"<Item item_id={self.item_id} name={self.name!r}>"


class GuildItem(Base):
    """Guild-specific notes on an item (loot council guidance)."""
    __tablename__ = "guild_items"

    guild_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("guilds.id", ondelete="CASCADE"), primary_key=True
    )
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("items.item_id", ondelete="CASCADE"), primary_key=True
    )
    note: Mapped[str | None] = mapped_column(Text, default=None)
    officer_note: Mapped[str | None] = mapped_column(Text, default=None)
    priority: Mapped[str | None] = mapped_column(Text, default=None)
    tier: Mapped[int | None] = mapped_column(Integer, default=None)


class CharacterItem(Base):
    __tablename__ = "character_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    character_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("characters.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("items.item_id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # ItemListType value
    order: Mapped[int] = mapped_column(Integer, default=0)
    is_offspec: Mapped[bool] = mapped_column(Boolean, default=False)
    is_received: Mapped[bool] = mapped_column(Boolean, default=False)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    raid_group_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("raid_groups.id", ondelete="SET NULL"), nullable=True
    )
    note: Mapped[str | None] = mapped_column(Text, default=None)
    added_by: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    character: Mapped[Character] = relationship()
    item: Mapped[Item] = relationship()
    added_by_member: Mapped[Member | None] = relationship(foreign_keys=[added_by])

    __table_args__ = (
        Index("ix_character_items_char_type", "character_id", "type"),
        Index("ix_character_items_item_type", "item_id", "type"),
    )

    def __repr__(self) -> str:
        return (
            f"<CharacterItem char={self.character_id} item={self.item_id} "
            f"type={self.type}>"
        )
