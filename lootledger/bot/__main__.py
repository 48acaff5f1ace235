"""
lootledger.bot.__main__ — Entry point for ``python -m lootledger.bot``
======================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml.
3. Create the SQLAlchemy engine and ensure tables exist.
4. Build the Discord REST client.
5. Create the LootledgerBot and run it (blocking).
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from lootledger.bot.core import LootledgerBot
from lootledger.config import load_config
from lootledger.database.engine import create_db_engine, init_db
from lootledger.services.discord_client import DiscordClient

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("lootledger")


def main() -> None:
    """Bootstrap and run the Lootledger bot."""

    # 1. Environment variables (secrets).
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Configuration.
    cfg = load_config()
    logger.info("Config loaded — Site: %s", cfg.site_name)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Discord REST client (role catalog refreshes).
    client = DiscordClient(
        token, api_base=cfg.discord_api_base, timeout=cfg.discord_timeout_seconds
    )

    # 5. Bot.
    bot = LootledgerBot(cfg=cfg, engine=engine, discord_client=client)
    logger.info("Starting Lootledger bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
