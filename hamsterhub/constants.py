"""
hamsterhub.constants — Shared Constants
========================================

Single source of truth for currency display names, analytics limits and
the Discord API base URL.
"""

from __future__ import annotations

DISCORD_API = "https://discord.com/api/v10"

# ---------------------------------------------------------------------------
# Currencies
# ---------------------------------------------------------------------------
CURRENCY_DISPLAY_NAMES: dict[str, str] = {
    "primary": "HamsterCoin",
    "secondary": "StardustCoin",
}

# New HamsterCoin accounts start funded; StardustCoin is earned only.
DEFAULT_PRIMARY_STARTING_BALANCE = 1000

# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------
TOP_N = 10
DAILY_SALES_DAYS = 30

# Named aliases accepted for the ``timeRange`` filter, in days
TIME_RANGE_ALIASES: dict[str, int] = {
    "week": 7,
    "month": 30,
    "year": 365,
}
