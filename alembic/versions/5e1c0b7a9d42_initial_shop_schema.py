"""Initial shop schema: currency accounts, catalog, purchases, audit

Revision ID: 5e1c0b7a9d42
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5e1c0b7a9d42"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_ACCOUNT_TABLES = (
    ("hamstercoin_accounts", "hamstercoin"),
    ("stardustcoin_accounts", "stardustcoin"),
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    ]


def _content_columns() -> list[sa.Column]:
    return [
        sa.Column("content_type", sa.String(20), nullable=False, server_default="none"),
        sa.Column("text_content", sa.Text(), nullable=False, server_default=""),
        sa.Column("link_url", sa.String(500), nullable=False, server_default=""),
        sa.Column("youtube_url", sa.String(500), nullable=False, server_default=""),
        sa.Column("file_url", sa.String(500), nullable=False, server_default=""),
        sa.Column("file_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("has_file", sa.Boolean(), server_default=sa.false()),
    ]


def upgrade() -> None:
    """Create every table the shop and analytics read or write."""
    for table, prefix in _ACCOUNT_TABLES:
        op.create_table(
            table,
            sa.Column("user_id", sa.BigInteger(), primary_key=True),
            sa.Column("username", sa.String(100), nullable=False, server_default=""),
            sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_earned", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_spent", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.CheckConstraint("balance >= 0", name=f"ck_{prefix}_balance_nonneg"),
        )
        op.create_index(f"ix_{prefix}_balance_desc", table, ["balance"])

    op.create_table(
        "shop_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("image", sa.String(500), nullable=False, server_default=""),
        sa.Column("category", sa.String(100), nullable=False, server_default="general"),
        *_content_columns(),
        sa.Column("in_stock", sa.Boolean(), server_default=sa.true()),
        sa.Column("allow_multiple_purchases", sa.Boolean(), server_default=sa.false()),
        sa.Column("requires_role", sa.Boolean(), server_default=sa.false()),
        sa.Column("required_role_id", sa.BigInteger(), nullable=True),
        sa.Column("required_role_name", sa.String(100), nullable=True),
        sa.Column("purchase_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_revenue", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name="ck_shop_items_price_nonneg"),
    )
    op.create_index("ix_shop_items_in_stock", "shop_items", ["in_stock"])
    op.create_index("ix_shop_items_category", "shop_items", ["category"])

    op.create_table(
        "purchases",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("items", postgresql.JSONB(), nullable=False),
        sa.Column("total_amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="completed"),
        sa.Column(
            "purchase_date", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index("ix_purchases_user_date", "purchases", ["user_id", "purchase_date"])

    op.create_table(
        "purchase_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "purchase_id",
            sa.Integer(),
            sa.ForeignKey("purchases.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column(
            "item_id",
            sa.Integer(),
            sa.ForeignKey("shop_items.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("item_name", sa.String(200), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(20), nullable=False, server_default="primary"),
        sa.Column(
            "purchase_date", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        *_content_columns(),
        sa.Column("download_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_download_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("single_purchase_item_id", sa.Integer(), nullable=True),
        sa.UniqueConstraint(
            "user_id", "single_purchase_item_id", name="uq_purchase_history_single_purchase"
        ),
    )
    op.create_index(
        "ix_purchase_history_user_date", "purchase_history", ["user_id", "purchase_date"]
    )
    op.create_index("ix_purchase_history_item", "purchase_history", ["item_id"])
    op.create_index("ix_purchase_history_date", "purchase_history", ["purchase_date"])

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.BigInteger(), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"]
    )

    op.create_table(
        "oauth_states",
        sa.Column("state", sa.String(128), primary_key=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_oauth_states_created_at", "oauth_states", ["created_at"])

    op.create_table(
        "rate_limit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("subject_id", sa.String(64), nullable=False),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_rate_limit_subject_ts", "rate_limit_events", ["subject_id", "timestamp"]
    )
    op.create_index("ix_rate_limit_ts", "rate_limit_events", ["timestamp"])


def downgrade() -> None:
    """Drop the shop schema."""
    op.drop_index("ix_rate_limit_ts", table_name="rate_limit_events")
    op.drop_index("ix_rate_limit_subject_ts", table_name="rate_limit_events")
    op.drop_table("rate_limit_events")

    op.drop_index("ix_oauth_states_created_at", table_name="oauth_states")
    op.drop_table("oauth_states")

    op.drop_index("ix_admin_log_target", table_name="admin_log")
    op.drop_index("ix_admin_log_actor_time", table_name="admin_log")
    op.drop_table("admin_log")

    op.drop_index("ix_purchase_history_date", table_name="purchase_history")
    op.drop_index("ix_purchase_history_item", table_name="purchase_history")
    op.drop_index("ix_purchase_history_user_date", table_name="purchase_history")
    op.drop_table("purchase_history")

    op.drop_index("ix_purchases_user_date", table_name="purchases")
    op.drop_table("purchases")

    op.drop_index("ix_shop_items_category", table_name="shop_items")
    op.drop_index("ix_shop_items_in_stock", table_name="shop_items")
    op.drop_table("shop_items")

    for table, prefix in reversed(_ACCOUNT_TABLES):
        op.drop_index(f"ix_{prefix}_balance_desc", table_name=table)
        op.drop_table(table)
