"""
hamsterhub.database.models — SQLAlchemy 2.0 Data Models
========================================================

Every table the shop touches, declared once and shared by the API,
the services and Alembic.

Tables:
- hamstercoin_accounts  — Primary-currency balance per Discord member
- stardustcoin_accounts — Secondary-currency balance per Discord member
- shop_items            — Catalog of purchasable items
- purchases             — One header row per completed checkout
- purchase_history      — One row per purchased line item (content snapshot)
- admin_log             — Append-only audit trail of balance adjustments
- oauth_states          — One-time Discord OAuth ``state`` tokens
- rate_limit_events     — Sliding-window mutation counters
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all HamsterHub ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Currency(enum.StrEnum):
    """The two independent currency families."""
    PRIMARY = "primary"      # HamsterCoin
    SECONDARY = "secondary"  # StardustCoin


class ContentType(enum.StrEnum):
    """Kind of deliverable attached to a shop item."""
    NONE = "none"
    TEXT = "text"
    LINK = "link"
    FILE = "file"
    YOUTUBE = "youtube"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


# ---------------------------------------------------------------------------
# Accounts — one row per member per currency family
# ---------------------------------------------------------------------------
class _AccountColumns:
    """Columns shared by both currency account tables."""

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} user={self.user_id} balance={self.balance}>"
        )


class HamsterCoinAccount(_AccountColumns, Base):
    __tablename__ = "hamstercoin_accounts"

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_hamstercoin_balance_nonneg"),
        Index("ix_hamstercoin_balance_desc", "balance"),
    )


class StardustCoinAccount(_AccountColumns, Base):
    __tablename__ = "stardustcoin_accounts"

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_stardustcoin_balance_nonneg"),
        Index("ix_stardustcoin_balance_desc", "balance"),
    )


AccountModel = type[HamsterCoinAccount] | type[StardustCoinAccount]

ACCOUNT_MODELS: dict[Currency, AccountModel] = {
    Currency.PRIMARY: HamsterCoinAccount,
    Currency.SECONDARY: StardustCoinAccount,
}


# ---------------------------------------------------------------------------
# ShopItem — catalog entry
# ---------------------------------------------------------------------------
class ShopItem(Base):
    __tablename__ = "shop_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    image: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="general")

    # Deliverable content
    content_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContentType.NONE.value
    )
    text_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    link_url: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    youtube_url: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    file_url: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    file_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    has_file: Mapped[bool] = mapped_column(Boolean, default=False)

    in_stock: Mapped[bool] = mapped_column(Boolean, default=True)
    allow_multiple_purchases: Mapped[bool] = mapped_column(Boolean, default=False)

    # Role gate — checked against the buyer's Discord roles per item
    requires_role: Mapped[bool] = mapped_column(Boolean, default=False)
    required_role_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    required_role_name: Mapped[str | None] = mapped_column(String(100), default=None)

    # Sales counters, bumped by checkout
    purchase_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_revenue: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_shop_items_price_nonneg"),
        Index("ix_shop_items_in_stock", "in_stock"),
        Index("ix_shop_items_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<ShopItem id={self.id} name={self.name!r} price={self.price}>"


# ---------------------------------------------------------------------------
# Purchase — one header per completed checkout
# ---------------------------------------------------------------------------
class Purchase(Base):
    __tablename__ = "purchases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    items: Mapped[list] = mapped_column(JSONB, nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")
    purchase_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    entries: Mapped[list[PurchaseHistory]] = relationship(back_populates="purchase")

    __table_args__ = (
        Index("ix_purchases_user_date", "user_id", "purchase_date"),
    )

    def __repr__(self) -> str:
        return f"<Purchase id={self.id} user={self.user_id} total={self.total_amount}>"


# ---------------------------------------------------------------------------
# PurchaseHistory — one row per purchased line item
# ---------------------------------------------------------------------------
class PurchaseHistory(Base):
    """Immutable record of a purchased item.

    The content columns are copied from the :class:`ShopItem` at checkout
    time so later catalog edits never change what a buyer received.  Only
    ``download_count`` and ``last_download_date`` change afterwards.
    """
    __tablename__ = "purchase_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    purchase_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("purchases.id", ondelete="SET NULL"), nullable=True
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    item_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("shop_items.id", ondelete="SET NULL"), nullable=True
    )
    item_name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Currency.PRIMARY.value
    )
    purchase_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Content snapshot
    content_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContentType.NONE.value
    )
    text_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    link_url: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    youtube_url: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    file_url: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    file_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    has_file: Mapped[bool] = mapped_column(Boolean, default=False)

    # Set to item_id only for single-purchase items; NULLs never collide
    single_purchase_item_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_download_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    purchase: Mapped[Purchase | None] = relationship(back_populates="entries")
    item: Mapped[ShopItem | None] = relationship()

    __table_args__ = (
        Index("ix_purchase_history_user_date", "user_id", "purchase_date"),
        Index("ix_purchase_history_item", "item_id"),
        Index("ix_purchase_history_date", "purchase_date"),
        UniqueConstraint(
            "user_id", "single_purchase_item_id", name="uq_purchase_history_single_purchase"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<PurchaseHistory id={self.id} user={self.user_id} "
            f"item={self.item_id} price={self.price}>"
        )


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"


# ---------------------------------------------------------------------------
# OAuthState — durable one-time OAuth state tokens
# ---------------------------------------------------------------------------
class OAuthState(Base):
    __tablename__ = "oauth_states"

    state: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_oauth_states_created_at", "created_at"),
    )


# ---------------------------------------------------------------------------
# RateLimitEvent — sliding-window mutation log
# ---------------------------------------------------------------------------
class RateLimitEvent(Base):
    __tablename__ = "rate_limit_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_rate_limit_subject_ts", "subject_id", timestamp.desc()),
        Index("ix_rate_limit_ts", "timestamp"),
    )
