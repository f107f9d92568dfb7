"""
hamsterhub.api.routes.shop — Shop endpoints (checkout, history, analytics)
===========================================================================
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Engine

from hamsterhub.api.deps import (
    get_config,
    get_current_admin,
    get_current_user,
    get_engine,
    get_role_checker,
    is_admin_payload,
)
from hamsterhub.api.errors import shop_http_error
from hamsterhub.api.rate_limit import rate_limited_user
from hamsterhub.config import HubConfig
from hamsterhub.database.engine import run_db
from hamsterhub.database.models import Currency
from hamsterhub.engine.analytics import AnalyticsFilters
from hamsterhub.services import analytics_service, ledger_service, purchase_service
from hamsterhub.services.errors import ShopError
from hamsterhub.services.ledger_service import CartLine, RoleChecker

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/shop", tags=["shop"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class CartItem(BaseModel):
    id: int
    name: str = ""
    price: int = Field(default=0, ge=0)
    image: str = ""


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[CartItem] = Field(default_factory=list)
    total_amount: int = Field(alias="totalAmount", ge=0)
    currency: Currency = Currency.PRIMARY


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
@router.get("/items")
def list_items(engine: Engine = Depends(get_engine)):
    return {"items": purchase_service.list_items(engine)}


@router.get("/items/{item_id}")
def check_item(
    item_id: int,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    try:
        item = purchase_service.check_item(engine, item_id, int(user["sub"]))
    except ShopError as exc:
        raise shop_http_error(exc)
    return {"success": True, "item": item}


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
@router.post("/checkout")
async def checkout(
    body: CheckoutRequest,
    user: Annotated[dict, Depends(rate_limited_user)],
    engine: Annotated[Engine, Depends(get_engine)],
    cfg: Annotated[HubConfig, Depends(get_config)],
    role_checker: Annotated[RoleChecker, Depends(get_role_checker)],
):
    """Charge the cart total in one currency and record every line item."""
    user_id = int(user["sub"])
    try:
        result = await run_db(
            ledger_service.checkout,
            engine,
            user_id=user_id,
            username=user.get("username") or "Unknown User",
            cart_items=[
                CartLine(item_id=i.id, name=i.name, price=i.price, image=i.image)
                for i in body.items
            ],
            total_amount=body.total_amount,
            currency=body.currency,
            role_checker=role_checker,
            starting_balance=cfg.primary_starting_balance,
        )
    except ShopError as exc:
        logger.info("Checkout rejected for %s: %s", user_id, exc.message)
        raise shop_http_error(exc)
    except Exception:
        logger.exception("Error processing checkout for %s", user_id)
        raise HTTPException(500, "Failed to process checkout")
    return result.to_dict()


# ---------------------------------------------------------------------------
# History & library
# ---------------------------------------------------------------------------
@router.get("/purchase-history")
def purchase_history(
    user: dict = Depends(get_current_user),
    cfg: HubConfig = Depends(get_config),
    engine: Engine = Depends(get_engine),
    target_user_id: int | None = Query(None, alias="userId"),
):
    """Admins may list anyone's (or everyone's) checkouts; members their own."""
    admin = is_admin_payload(user, cfg)
    owner = target_user_id if admin else int(user["sub"])
    return {
        "purchases": purchase_service.list_purchases(engine, owner),
        "isAdmin": admin,
    }


@router.get("/purchases")
def my_purchases(
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    return {"purchases": purchase_service.list_library(engine, int(user["sub"]))}


@router.post("/purchases/{entry_id}/download")
def download_purchase(
    entry_id: int,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    try:
        entry = purchase_service.record_download(
            engine, entry_id=entry_id, user_id=int(user["sub"])
        )
    except ShopError as exc:
        raise shop_http_error(exc)
    return {"success": True, "purchase": entry}


# ---------------------------------------------------------------------------
# Analytics (admin)
# ---------------------------------------------------------------------------
@router.get("/analytics")
async def analytics(
    admin: Annotated[dict, Depends(get_current_admin)],
    engine: Annotated[Engine, Depends(get_engine)],
    time_range: str = Query("all", alias="timeRange"),
    currency: str = Query("all"),
    category: str | None = Query(None),
    content_type: str | None = Query(None, alias="contentType"),
    min_price: int | None = Query(None, alias="minPrice"),
    max_price: int | None = Query(None, alias="maxPrice"),
):
    try:
        filters = AnalyticsFilters(
            time_range=time_range,
            currency=currency,
            category=category or None,
            content_type=content_type or None,
            min_price=min_price,
            max_price=max_price,
        )
    except ValueError as exc:
        raise HTTPException(400, {"error": "validation_error", "message": str(exc)})

    try:
        report = await run_db(analytics_service.generate_analytics, engine, filters)
    except Exception:
        logger.exception("Error generating analytics for admin %s", admin["sub"])
        raise HTTPException(500, "Failed to generate analytics")
    return {"success": True, "analytics": report}
