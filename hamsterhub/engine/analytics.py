"""
hamsterhub.engine.analytics — Shop Analytics Rollups
=====================================================

Pure aggregation over purchase-history records.
No DB I/O inside the engine: :mod:`hamsterhub.services.analytics_service`
fetches the filtered rows and hands them over as :class:`SaleRecord`.

Report sections:
  overview → topSellingItems → topSpenders → currencyBreakdown
  → dailySales → contentTypeStats → userPurchases
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from hamsterhub.constants import DAILY_SALES_DAYS, TIME_RANGE_ALIASES, TOP_N
from hamsterhub.database.models import ContentType, Currency

__all__ = [
    "AnalyticsFilters",
    "SaleRecord",
    "build_report",
    "parse_time_range",
]

ALL = "all"


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------
def parse_time_range(value: str | None) -> int | None:
    """Turn a ``timeRange`` value into a day count (``None`` = no limit).

    Accepts ``all``, the aliases ``week``/``month``/``year``, or a
    positive integer number of days.
    """
    value = (value or ALL).strip().lower()
    if value == ALL:
        return None
    if value in TIME_RANGE_ALIASES:
        return TIME_RANGE_ALIASES[value]
    try:
        days = int(value)
    except ValueError:
        raise ValueError(f"Invalid timeRange: {value!r}") from None
    if days <= 0:
        raise ValueError(f"timeRange must be a positive number of days, got {days}")
    return days


@dataclass(frozen=True, slots=True)
class AnalyticsFilters:
    """Optional report filters; the defaults select every purchase."""

    time_range: str = ALL
    currency: str = ALL
    category: str | None = None
    content_type: str | None = None
    min_price: int | None = None
    max_price: int | None = None

    def __post_init__(self) -> None:
        parse_time_range(self.time_range)
        if self.currency != ALL and self.currency not in {c.value for c in Currency}:
            raise ValueError(f"Invalid currency: {self.currency!r}")
        if self.content_type is not None and self.content_type not in {
            c.value for c in ContentType
        }:
            raise ValueError(f"Invalid contentType: {self.content_type!r}")
        for name in ("min_price", "max_price"):
            bound = getattr(self, name)
            if bound is not None and bound < 0:
                raise ValueError(f"{name} must be >= 0")
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            raise ValueError("min_price cannot exceed max_price")

    @property
    def days(self) -> int | None:
        return parse_time_range(self.time_range)

    def since(self, now: datetime) -> datetime | None:
        """Lower bound on ``purchase_date``, or ``None`` for all time."""
        days = self.days
        return None if days is None else now - timedelta(days=days)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timeRange": self.time_range,
            "currency": self.currency,
            "category": self.category,
            "contentType": self.content_type,
            "minPrice": self.min_price,
            "maxPrice": self.max_price,
        }


# ---------------------------------------------------------------------------
# Input record
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SaleRecord:
    """One purchase-history entry joined with its catalog item."""

    entry_id: int
    user_id: int
    username: str
    item_id: int | None
    item_name: str
    price: int
    currency: str
    purchase_date: datetime
    content_type: str = ContentType.NONE.value
    category: str | None = None


def _day_key(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC)
    return moment.date().isoformat()


def _item_key(record: SaleRecord) -> int | str:
    # Entries whose catalog item was deleted keep their name as identity.
    return record.item_id if record.item_id is not None else f"deleted:{record.item_name}"


def _average(total: int, count: int) -> float:
    return round(total / count, 2) if count else 0


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------
def overview(records: Sequence[SaleRecord]) -> dict[str, Any]:
    total_revenue = sum(r.price for r in records)
    total_purchases = len(records)
    return {
        "totalRevenue": total_revenue,
        "totalPurchases": total_purchases,
        "uniqueBuyers": len({r.user_id for r in records}),
        "uniqueItems": len({_item_key(r) for r in records}),
        "averageOrderValue": _average(total_revenue, total_purchases),
    }


def top_selling_items(records: Sequence[SaleRecord], limit: int = TOP_N) -> list[dict]:
    """Items ranked by revenue (ties keep first-seen order)."""
    groups: dict[int | str, dict[str, Any]] = {}
    for r in records:
        group = groups.setdefault(_item_key(r), {
            "itemId": r.item_id,
            "itemName": r.item_name,
            "sales": 0,
            "revenue": 0,
            "buyers": {},
        })
        group["sales"] += 1
        group["revenue"] += r.price
        group["buyers"].setdefault(r.user_id, r.username)

    ranked = sorted(groups.values(), key=lambda g: g["revenue"], reverse=True)
    return [
        {
            "itemId": g["itemId"],
            "itemName": g["itemName"],
            "sales": g["sales"],
            "revenue": g["revenue"],
            "uniqueBuyers": len(g["buyers"]),
            "buyers": list(g["buyers"].values()),
        }
        for g in ranked[:limit]
    ]


def top_spenders(records: Sequence[SaleRecord], limit: int = TOP_N) -> list[dict]:
    """Members ranked by total spending."""
    groups: dict[int, dict[str, Any]] = {}
    for r in records:
        group = groups.setdefault(r.user_id, {
            "userId": str(r.user_id),
            "username": r.username,
            "spending": 0,
            "purchases": 0,
            "items": {},
        })
        group["spending"] += r.price
        group["purchases"] += 1
        group["items"].setdefault(r.item_name, None)

    ranked = sorted(groups.values(), key=lambda g: g["spending"], reverse=True)
    return [
        {
            "userId": g["userId"],
            "username": g["username"],
            "spending": g["spending"],
            "purchases": g["purchases"],
            "uniqueItems": len(g["items"]),
            "items": list(g["items"]),
        }
        for g in ranked[:limit]
    ]


def currency_breakdown(records: Sequence[SaleRecord]) -> dict[str, dict[str, int]]:
    breakdown = {c.value: {"count": 0, "revenue": 0} for c in Currency}
    for r in records:
        bucket = breakdown.setdefault(r.currency, {"count": 0, "revenue": 0})
        bucket["count"] += 1
        bucket["revenue"] += r.price
    return breakdown


def daily_sales(records: Sequence[SaleRecord], days: int = DAILY_SALES_DAYS) -> list[dict]:
    """Per-calendar-day totals, newest first, at most *days* entries."""
    per_day: dict[str, dict[str, int]] = {}
    for r in records:
        bucket = per_day.setdefault(_day_key(r.purchase_date), {"count": 0, "revenue": 0})
        bucket["count"] += 1
        bucket["revenue"] += r.price

    ordered = sorted(per_day.items(), key=lambda kv: kv[0], reverse=True)
    return [{"date": date, **totals} for date, totals in ordered[:days]]


def content_type_stats(records: Sequence[SaleRecord]) -> dict[str, dict[str, int]]:
    stats = {c.value: {"count": 0, "revenue": 0} for c in ContentType}
    for r in records:
        bucket = stats.get(r.content_type)
        if bucket is None:
            continue
        bucket["count"] += 1
        bucket["revenue"] += r.price
    return stats


def user_purchases(records: Sequence[SaleRecord]) -> list[dict]:
    """Per-member purchase detail, biggest spenders first."""
    groups: dict[int, dict[str, Any]] = {}
    for r in records:
        group = groups.setdefault(r.user_id, {
            "userId": str(r.user_id),
            "username": r.username,
            "totalPurchases": 0,
            "totalSpent": 0,
            "purchases": [],
        })
        group["totalPurchases"] += 1
        group["totalSpent"] += r.price
        group["purchases"].append({
            "itemId": r.item_id,
            "itemName": r.item_name,
            "price": r.price,
            "purchaseDate": r.purchase_date.isoformat(),
            "currency": r.currency,
        })
    return sorted(groups.values(), key=lambda g: g["totalSpent"], reverse=True)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def build_report(
    records: Sequence[SaleRecord],
    filters: AnalyticsFilters,
    *,
    generated_at: datetime,
) -> dict[str, Any]:
    """Assemble the full analytics report for an already-filtered record set.

    Deterministic for a given input: the same records, filters and
    *generated_at* always produce an identical report.
    """
    return {
        "overview": overview(records),
        "topSellingItems": top_selling_items(records),
        "topSpenders": top_spenders(records),
        "currencyBreakdown": currency_breakdown(records),
        "dailySales": daily_sales(records),
        "contentTypeStats": content_type_stats(records),
        "userPurchases": user_purchases(records),
        "filters": filters.to_dict(),
        "generatedAt": generated_at.isoformat(),
    }
