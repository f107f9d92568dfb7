"""
hamsterhub.api.routes.currency — Balances & admin adjustments
==============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Engine

from hamsterhub.api.deps import get_config, get_current_user, get_engine
from hamsterhub.api.errors import shop_http_error
from hamsterhub.api.rate_limit import rate_limited_admin
from hamsterhub.config import HubConfig
from hamsterhub.database.models import Currency
from hamsterhub.services import admin_service, ledger_service
from hamsterhub.services.errors import ShopError

router = APIRouter(tags=["currency"])


class BalanceAdjustment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(alias="userId")
    username: str | None = None
    currency: Currency = Currency.PRIMARY
    amount: int
    reason: str = ""


@router.get("/currency/balance")
def balance(
    user: dict = Depends(get_current_user),
    cfg: HubConfig = Depends(get_config),
    engine: Engine = Depends(get_engine),
):
    """Both currency balances for the caller; missing accounts are opened."""
    balances = ledger_service.get_balances(
        engine,
        int(user["sub"]),
        user.get("username") or "Unknown User",
        starting_balance=cfg.primary_starting_balance,
    )
    return {"success": True, "balance": balances}


@router.post("/admin/currency/adjust")
def adjust_balance(
    body: BalanceAdjustment,
    admin: dict = Depends(rate_limited_admin),
    cfg: HubConfig = Depends(get_config),
    engine: Engine = Depends(get_engine),
):
    if body.amount == 0:
        raise HTTPException(400, {"error": "validation_error", "message": "Amount must be non-zero"})
    try:
        result = admin_service.adjust_balance(
            engine,
            user_id=body.user_id,
            username=body.username,
            currency=body.currency,
            amount=body.amount,
            reason=body.reason,
            actor_id=int(admin["sub"]),
            starting_balance=cfg.primary_starting_balance,
        )
    except ShopError as exc:
        raise shop_http_error(exc)
    return {"success": True, **result}
