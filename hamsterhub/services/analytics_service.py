"""
hamsterhub.services.analytics_service — Filtered Purchase Fetch
================================================================

Builds one composite query over ``purchase_history`` (outer-joined to
``shop_items`` for category and content type), then hands the rows to
the pure rollups in :mod:`hamsterhub.engine.analytics`.  Read-only.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from hamsterhub.database.models import PurchaseHistory, ShopItem
from hamsterhub.engine.analytics import ALL, AnalyticsFilters, SaleRecord, build_report

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# Content type comes from the live catalog item; entries whose item was
# deleted fall back to their own snapshot.
_resolved_content_type = func.coalesce(ShopItem.content_type, PurchaseHistory.content_type)


def build_query(filters: AnalyticsFilters, now: datetime) -> Select:
    """Translate *filters* into a single SELECT, newest purchases first."""
    stmt = (
        select(
            PurchaseHistory,
            ShopItem.category,
            _resolved_content_type.label("resolved_content_type"),
        )
        .outerjoin(ShopItem, PurchaseHistory.item_id == ShopItem.id)
        .order_by(PurchaseHistory.purchase_date.desc(), PurchaseHistory.id.desc())
    )

    since = filters.since(now)
    if since is not None:
        stmt = stmt.where(PurchaseHistory.purchase_date >= since)
    if filters.currency != ALL:
        stmt = stmt.where(PurchaseHistory.currency == filters.currency)
    if filters.category:
        stmt = stmt.where(ShopItem.category == filters.category)
    if filters.content_type:
        stmt = stmt.where(_resolved_content_type == filters.content_type)
    if filters.min_price is not None:
        stmt = stmt.where(PurchaseHistory.price >= filters.min_price)
    if filters.max_price is not None:
        stmt = stmt.where(PurchaseHistory.price <= filters.max_price)
    return stmt


def fetch_sale_records(
    session: Session, filters: AnalyticsFilters, now: datetime
) -> list[SaleRecord]:
    rows = session.execute(build_query(filters, now)).all()
    return [
        SaleRecord(
            entry_id=entry.id,
            user_id=entry.user_id,
            username=entry.username,
            item_id=entry.item_id,
            item_name=entry.item_name,
            price=entry.price,
            currency=entry.currency,
            purchase_date=entry.purchase_date,
            content_type=content_type or "none",
            category=category,
        )
        for entry, category, content_type in rows
    ]


def generate_analytics(
    engine: Engine,
    filters: AnalyticsFilters,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Return the shop analytics report for *filters*."""
    now = now or datetime.now(UTC)
    with Session(engine) as session:
        records = fetch_sale_records(session, filters, now)

    logger.debug("Analytics over %d purchase(s) for %s", len(records), filters)
    return build_report(records, filters, generated_at=now)
