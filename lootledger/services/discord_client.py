"""
lootledger.services.discord_client — Minimal Discord REST Client
=================================================================

Only the two calls the role sync needs: list a guild's roles and look up a
single guild member.  Requests are synchronous (services run on a worker
thread via ``run_db``) and always carry an explicit timeout.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from lootledger.config import DEFAULT_DISCORD_API_BASE, DEFAULT_DISCORD_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class DiscordAPIError(Exception):
    """Discord answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Discord API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class DiscordNotFound(DiscordAPIError):
    """404 — unknown guild, role or member."""


class DiscordClient:
    """Bot-token authenticated Discord REST client.

    Parameters
    ----------
    token:
        Bot token (``DISCORD_TOKEN``).
    api_base:
        Versioned API root, e.g. ``https://discord.com/api/v10``.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional ``httpx`` transport; tests pass an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        token: str,
        api_base: str = DEFAULT_DISCORD_API_BASE,
        timeout: float = DEFAULT_DISCORD_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=api_base.rstrip("/"),
            headers={
                "Authorization": f"Bot {token}",
                "User-Agent": "DiscordBot (lootledger, 0.1.0)",
            },
            timeout=timeout,
            transport=transport or httpx.HTTPTransport(retries=1),
        )

    def __enter__(self) -> DiscordClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------
    def fetch_guild_roles(self, guild_discord_id: int) -> list[dict[str, Any]]:
        """Return the raw role objects of a guild."""
        return self._get(f"/guilds/{guild_discord_id}/roles")

    def fetch_guild_member(
        self, guild_discord_id: int, user_discord_id: int
    ) -> dict[str, Any]:
        """Return the raw guild member object (``roles`` is a list of ids)."""
        return self._get(f"/guilds/{guild_discord_id}/members/{user_discord_id}")

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------
    def _get(self, path: str) -> Any:
        resp = self._client.get(path)
        if resp.status_code == 404:
            raise DiscordNotFound(404, _error_message(resp))
        if resp.status_code >= 400:
            logger.warning("Discord GET %s failed with %d", path, resp.status_code)
            raise DiscordAPIError(resp.status_code, _error_message(resp))
        return resp.json()


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text
    if isinstance(data, dict) and "message" in data:
        return str(data["message"])
    return resp.text
