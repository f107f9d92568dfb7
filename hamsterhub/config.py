"""
hamsterhub.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for community identity and shop settings
(Discord guild, admin role, starting balance).  Secrets such as
``JWT_SECRET`` and ``DISCORD_BOT_TOKEN`` stay in the environment.

Usage::

    from hamsterhub.config import load_config

    cfg = load_config()                # reads ./config.yaml by default
    print(cfg.community_name)          # "HamsterHub"
    print(cfg.primary_starting_balance)  # 1000
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from hamsterhub.constants import DEFAULT_PRIMARY_STARTING_BALANCE


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class HubConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    guild_id: int  # Guild whose member roles gate shop items

    # Dashboard
    dashboard_port: int

    # Admin access — role checked at login, ids always allowed
    admin_role_id: int
    admin_user_ids: frozenset[int] = field(default_factory=frozenset)

    # Shop
    primary_starting_balance: int = DEFAULT_PRIMARY_STARTING_BALANCE

    def is_admin_id(self, user_id: int) -> bool:
        return user_id in self.admin_user_ids


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> HubConfig:
    """Read *path* and return a :class:`HubConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If ``primary_starting_balance`` is negative.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh)

    starting_balance = int(
        raw.get("primary_starting_balance", DEFAULT_PRIMARY_STARTING_BALANCE)
    )
    if starting_balance < 0:
        raise ValueError("primary_starting_balance must be >= 0")

    return HubConfig(
        community_name=raw["community_name"],
        guild_id=int(raw["guild_id"]),
        dashboard_port=int(raw["dashboard_port"]),
        admin_role_id=int(raw["admin_role_id"]),
        admin_user_ids=frozenset(int(u) for u in raw.get("admin_user_ids") or ()),
        primary_starting_balance=starting_balance,
    )
