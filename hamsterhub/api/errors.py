"""
hamsterhub.api.errors — ShopError → HTTP mapping
=================================================
"""

from __future__ import annotations

from fastapi import HTTPException, status

from hamsterhub.services.errors import (
    AlreadyPurchased,
    CartValidationError,
    EmptyCart,
    InsufficientFunds,
    ItemNotFound,
    NotPurchaseOwner,
    OutOfStock,
    PurchaseNotFound,
    RoleRequired,
    ShopError,
)

_STATUS_BY_ERROR: dict[type[ShopError], int] = {
    EmptyCart: status.HTTP_400_BAD_REQUEST,
    CartValidationError: status.HTTP_400_BAD_REQUEST,
    OutOfStock: status.HTTP_400_BAD_REQUEST,
    AlreadyPurchased: status.HTTP_400_BAD_REQUEST,
    InsufficientFunds: status.HTTP_400_BAD_REQUEST,
    RoleRequired: status.HTTP_403_FORBIDDEN,
    NotPurchaseOwner: status.HTTP_403_FORBIDDEN,
    ItemNotFound: status.HTTP_404_NOT_FOUND,
    PurchaseNotFound: status.HTTP_404_NOT_FOUND,
}


def shop_http_error(exc: ShopError) -> HTTPException:
    """Wrap a business error so the client gets its structured detail."""
    code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=code, detail=exc.detail())
