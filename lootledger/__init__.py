"""
Lootledger — Guild Loot Tracking Backed by Discord Roles
=========================================================
Tracks a raiding guild's members, characters, wishlists, priorities and
received loot, and keeps each member's roles in step with the roles they
hold in the guild's Discord server.

Package layout::

    lootledger/
    ├── config.py          # YAML → typed Python config
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Guilds, roles, members, characters, items
    ├── services/
    │   ├── discord_client.py         # Thin Discord REST client (httpx)
    │   ├── role_service.py           # Role catalog snapshots + refresh
    │   ├── reconciliation_service.py # Member ↔ Discord role reconciliation
    │   ├── member_service.py         # Member creation, notes, lifecycle
    │   └── roster_service.py         # Roster + item list read models
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   └── cogs/
    │       └── role_sync.py  # Gateway role events → reconciliation
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # Read-only guild endpoints
"""

__version__ = "0.1.0"
