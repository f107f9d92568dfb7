"""
hamsterhub.services.errors — Shop Business Errors
==================================================

Raised by the service layer before any mutation happens.  Each error
carries an ``error`` code and a ``detail()`` payload the routes hand to
the client unchanged, so the UI can show the specific reason.
"""

from __future__ import annotations

from typing import Any


class ShopError(Exception):
    """Base class for rejected shop operations."""

    error = "shop_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def detail(self) -> dict[str, Any]:
        return {"error": self.error, "message": self.message}


class EmptyCart(ShopError):
    error = "empty_cart"

    def __init__(self) -> None:
        super().__init__("No items in cart")


class CartValidationError(ShopError):
    error = "validation_error"


class ItemNotFound(ShopError):
    error = "item_not_found"

    def __init__(self, item_id: int) -> None:
        super().__init__(f"Item {item_id} not found")
        self.item_id = item_id

    def detail(self) -> dict[str, Any]:
        return {**super().detail(), "itemId": self.item_id}


class OutOfStock(ShopError):
    error = "out_of_stock"

    def __init__(self, item_name: str) -> None:
        super().__init__(f"'{item_name}' is out of stock")
        self.item_name = item_name

    def detail(self) -> dict[str, Any]:
        return {**super().detail(), "itemName": self.item_name}


class AlreadyPurchased(ShopError):
    error = "already_purchased"

    def __init__(self, item_name: str) -> None:
        super().__init__(f"'{item_name}' can only be purchased once")
        self.item_name = item_name

    def detail(self) -> dict[str, Any]:
        return {**super().detail(), "itemName": self.item_name}


class RoleRequired(ShopError):
    error = "role_required"

    def __init__(
        self, item_name: str, required_role_id: int | None, required_role: str | None
    ) -> None:
        role_label = required_role or str(required_role_id)
        super().__init__(f"You need the '{role_label}' role to purchase '{item_name}'")
        self.item_name = item_name
        self.required_role_id = required_role_id
        self.required_role = required_role

    def detail(self) -> dict[str, Any]:
        return {
            **super().detail(),
            "itemName": self.item_name,
            "requiredRole": self.required_role,
            "requiredRoleId": (
                str(self.required_role_id) if self.required_role_id is not None else None
            ),
        }


class InsufficientFunds(ShopError):
    error = "insufficient_funds"

    def __init__(self, currency: str, current_balance: int, required_amount: int) -> None:
        super().__init__(f"Insufficient {currency} balance")
        self.currency = currency
        self.current_balance = current_balance
        self.required_amount = required_amount

    def detail(self) -> dict[str, Any]:
        return {
            **super().detail(),
            "currency": self.currency,
            "currentBalance": self.current_balance,
            "requiredAmount": self.required_amount,
        }


class PurchaseNotFound(ShopError):
    error = "purchase_not_found"

    def __init__(self, entry_id: int) -> None:
        super().__init__(f"Purchase {entry_id} not found")
        self.entry_id = entry_id


class NotPurchaseOwner(ShopError):
    error = "not_purchase_owner"

    def __init__(self) -> None:
        super().__init__("This purchase belongs to another user")
