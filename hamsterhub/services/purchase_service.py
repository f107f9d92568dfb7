"""
hamsterhub.services.purchase_service — Catalog Reads & Purchase History
========================================================================

Read side of the shop: catalog listings, the per-item ownership check,
checkout headers, the member's content library, and download
bookkeeping (the only mutation allowed on a history entry).
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from hamsterhub.database.models import Purchase, PurchaseHistory, ShopItem
from hamsterhub.services.errors import ItemNotFound, NotPurchaseOwner, PurchaseNotFound
from hamsterhub.services.ledger_service import owned_item_ids

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _item_dict(item: ShopItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "price": item.price,
        "image": item.image,
        "category": item.category,
        "contentType": item.content_type,
        "hasFile": item.has_file,
        "inStock": item.in_stock,
        "allowMultiplePurchases": item.allow_multiple_purchases,
        "requiresRole": item.requires_role,
        "requiredRoleId": str(item.required_role_id) if item.required_role_id else None,
        "requiredRoleName": item.required_role_name,
    }


def _entry_dict(entry: PurchaseHistory) -> dict[str, Any]:
    return {
        "id": entry.id,
        "purchaseId": entry.purchase_id,
        "itemId": entry.item_id,
        "itemName": entry.item_name,
        "price": entry.price,
        "currency": entry.currency,
        "purchaseDate": _iso(entry.purchase_date),
        "contentType": entry.content_type,
        "textContent": entry.text_content,
        "linkUrl": entry.link_url,
        "youtubeUrl": entry.youtube_url,
        "fileUrl": entry.file_url,
        "fileName": entry.file_name,
        "hasFile": entry.has_file,
        "downloadCount": entry.download_count,
        "lastDownloadDate": _iso(entry.last_download_date),
    }


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
def list_items(engine: Engine, *, include_out_of_stock: bool = False) -> list[dict]:
    with Session(engine) as session:
        stmt = select(ShopItem).order_by(ShopItem.category, ShopItem.name)
        if not include_out_of_stock:
            stmt = stmt.where(ShopItem.in_stock.is_(True))
        return [_item_dict(item) for item in session.scalars(stmt)]


def check_item(engine: Engine, item_id: int, user_id: int) -> dict[str, Any]:
    """Item detail plus whether *user_id* already owns it."""
    with Session(engine) as session:
        item = session.get(ShopItem, item_id)
        if item is None:
            raise ItemNotFound(item_id)
        owned = bool(owned_item_ids(session, user_id, {item.id}))
        return {
            **_item_dict(item),
            "alreadyPurchased": owned,
            "canPurchase": item.in_stock and (item.allow_multiple_purchases or not owned),
        }


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------
def list_purchases(engine: Engine, user_id: int | None = None) -> list[dict]:
    """Checkout headers, newest first; ``None`` lists every member's."""
    with Session(engine) as session:
        stmt = select(Purchase).order_by(Purchase.purchase_date.desc(), Purchase.id.desc())
        if user_id is not None:
            stmt = stmt.where(Purchase.user_id == user_id)
        return [
            {
                "id": p.id,
                "userId": str(p.user_id),
                "username": p.username,
                "items": p.items,
                "totalAmount": p.total_amount,
                "currency": p.currency,
                "purchaseDate": _iso(p.purchase_date),
                "status": p.status,
            }
            for p in session.scalars(stmt)
        ]


def list_library(engine: Engine, user_id: int) -> list[dict]:
    """The member's purchased items with their content snapshots."""
    with Session(engine) as session:
        entries = session.scalars(
            select(PurchaseHistory)
            .where(PurchaseHistory.user_id == user_id)
            .order_by(PurchaseHistory.purchase_date.desc(), PurchaseHistory.id.desc())
        )
        return [_entry_dict(entry) for entry in entries]


def record_download(
    engine: Engine,
    *,
    entry_id: int,
    user_id: int,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Count a download of a purchased item and return its snapshot.

    Only the buyer may download; the snapshot is served as recorded at
    checkout, regardless of later catalog edits.
    """
    with Session(engine, expire_on_commit=False) as session:
        entry = session.get(PurchaseHistory, entry_id)
        if entry is None:
            raise PurchaseNotFound(entry_id)
        if entry.user_id != user_id:
            raise NotPurchaseOwner()

        entry.download_count += 1
        entry.last_download_date = now or datetime.now(UTC)
        session.commit()

    logger.info(
        "User %s downloaded %r (download #%d)",
        user_id, entry.item_name, entry.download_count,
    )
    return _entry_dict(entry)
