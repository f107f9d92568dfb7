"""
hamsterhub.services.entitlements — Discord Role-Membership Oracle
==================================================================

Answers "does member X hold role Y in the HamsterHub guild" by reading
the guild member through the Discord REST API with the bot token.

Checkout calls :meth:`DiscordRoleOracle.has_role` once per role-gated
item.  It runs on the ``run_db`` worker thread, so the client is sync.
"""

from __future__ import annotations

import logging

import httpx

from hamsterhub.constants import DISCORD_API

logger = logging.getLogger(__name__)


class DiscordRoleOracle:
    """Role lookups against one guild using a bot token."""

    def __init__(
        self,
        bot_token: str,
        guild_id: int,
        *,
        timeout: float = 10,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.guild_id = guild_id
        self._client = httpx.Client(
            base_url=DISCORD_API,
            headers={"Authorization": f"Bot {bot_token}"},
            timeout=timeout,
            transport=transport or httpx.HTTPTransport(retries=1),
        )

    def member_role_ids(self, user_id: int) -> set[int]:
        """Role ids held by *user_id*; empty if they are not in the guild.

        Raises :class:`httpx.HTTPStatusError` for any other non-200 reply.
        """
        resp = self._client.get(f"/guilds/{self.guild_id}/members/{user_id}")
        if resp.status_code == 404:
            logger.info("User %s is not a member of guild %s", user_id, self.guild_id)
            return set()
        resp.raise_for_status()
        return {int(r) for r in resp.json().get("roles", [])}

    def has_role(self, user_id: int, role_id: int) -> bool:
        return role_id in self.member_role_ids(user_id)

    __call__ = has_role

    def close(self) -> None:
        self._client.close()
