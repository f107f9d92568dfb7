"""
HamsterHub — Shop Ledger & Analytics for a Discord Community
=============================================================
Backend for the HamsterHub community shop: members spend HamsterCoin or
StardustCoin on catalog items (some gated behind Discord roles), and
admins read sales analytics rolled up from the purchase history.

Package layout::

    hamsterhub/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Currency names, analytics limits, Discord API
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # All ORM models (accounts, catalog, purchases)
    ├── engine/
    │   └── analytics.py   # Pure analytics rollups over sale records
    ├── services/
    │   ├── ledger_service.py     # Balances, atomic debit, checkout
    │   ├── purchase_service.py   # Catalog reads, history, downloads
    │   ├── analytics_service.py  # Filtered fetch → analytics report
    │   ├── admin_service.py      # Audit-logged balance adjustments
    │   └── entitlements.py       # Discord role-membership oracle
    └── api/
        ├── main.py        # FastAPI app
        ├── auth.py        # Discord OAuth2 → JWT
        ├── rate_limit.py  # Per-user mutation throttle
        └── routes/        # Shop + currency REST endpoints
"""

__version__ = "0.1.0"
