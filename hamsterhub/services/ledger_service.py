"""
hamsterhub.services.ledger_service — Dual-Currency Ledger & Checkout
=====================================================================

Shared service module for everything that moves coins.

Both currencies go through the same functions; a :class:`Currency`
selects the account table via ``ACCOUNT_MODELS``.  Debits are a single
conditional ``UPDATE … WHERE balance >= :amount`` so two concurrent
checkouts can never overdraw an account.

Checkout pipeline (one transaction, rolled back on any rejection):
  1. Resolve every cart item in the catalog
  2. Reject out-of-stock / already-owned items and mismatched totals
  3. Ask the role oracle about every role-gated item
  4. Load or lazily open the buyer's account
  5. Atomic conditional debit
  6. Write the purchase header + one history entry per line item
  7. Bump the catalog sales counters
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hamsterhub.constants import CURRENCY_DISPLAY_NAMES, DEFAULT_PRIMARY_STARTING_BALANCE
from hamsterhub.database.models import (
    ACCOUNT_MODELS,
    Currency,
    Purchase,
    PurchaseHistory,
    ShopItem,
)
from hamsterhub.services.errors import (
    AlreadyPurchased,
    CartValidationError,
    EmptyCart,
    InsufficientFunds,
    ItemNotFound,
    OutOfStock,
    RoleRequired,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from hamsterhub.database.models import HamsterCoinAccount, StardustCoinAccount

logger = logging.getLogger(__name__)

RoleChecker = Callable[[int, int], bool]
"""``(user_id, role_id) -> bool`` — answers "does this member hold this role"."""

_INSERTS_BY_DIALECT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


# ---------------------------------------------------------------------------
# Data carriers
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CartLine:
    """One line of a checkout request, as sent by the shop page."""

    item_id: int
    name: str = ""
    price: int = 0
    image: str = ""


@dataclass
class CheckoutResult:
    """Outcome of a successful checkout."""

    new_balance: int
    currency: Currency
    purchase_id: int
    purchases: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "message": "Purchase completed successfully",
            "newBalance": self.new_balance,
            "currency": self.currency.value,
            "purchaseId": self.purchase_id,
            "purchases": self.purchases,
        }


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------
def _opening_balance(currency: Currency, starting_balance: int) -> int:
    return starting_balance if currency is Currency.PRIMARY else 0


def _open_account(
    session: Session, currency: Currency, user_id: int, username: str, opening: int
) -> bool:
    """Insert the account row unless one already exists.

    A concurrent insert for the same member is ignored (``ON CONFLICT DO
    NOTHING`` on the primary key).  Returns True when this call created
    the row.
    """
    dialect = session.get_bind().dialect.name
    insert_for = _INSERTS_BY_DIALECT.get(dialect)
    if insert_for is None:
        raise RuntimeError(f"Unsupported database dialect for accounts: {dialect}")

    model = ACCOUNT_MODELS[currency]
    stmt = (
        insert_for(model)
        .values(
            user_id=user_id,
            username=username,
            balance=opening,
            total_earned=opening,
            total_spent=0,
        )
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    return session.execute(stmt).rowcount == 1


def get_or_create_account(
    session: Session,
    currency: Currency,
    user_id: int,
    username: str | None,
    *,
    starting_balance: int = DEFAULT_PRIMARY_STARTING_BALANCE,
) -> HamsterCoinAccount | StardustCoinAccount:
    """Fetch or insert the account row for *user_id* in *currency*.

    New primary accounts open with *starting_balance* (counted as earned);
    secondary accounts open empty.  A stored username is only replaced
    when *username* is given.
    """
    model = ACCOUNT_MODELS[currency]
    account = session.get(model, user_id)
    if account is None:
        opening = _opening_balance(currency, starting_balance)
        if _open_account(session, currency, user_id, username or "Unknown", opening):
            logger.debug(
                "Opened %s account for %s (%s) with %d",
                CURRENCY_DISPLAY_NAMES[currency], username, user_id, opening,
            )
        account = session.get(model, user_id)
    if username and account.username != username:
        account.username = username
    return account


def current_balance(session: Session, currency: Currency, user_id: int) -> int:
    model = ACCOUNT_MODELS[currency]
    return session.scalar(select(model.balance).where(model.user_id == user_id)) or 0


def debit(session: Session, currency: Currency, user_id: int, amount: int) -> int:
    """Atomically take *amount* from the account and return the new balance.

    The balance check and the decrement are one statement, so the row can
    never go negative even under concurrent checkouts.  Raises
    :class:`InsufficientFunds` (without touching the row) when the balance
    is too low.
    """
    if amount < 0:
        raise ValueError("Debit amount must be >= 0")

    model = ACCOUNT_MODELS[currency]
    result = session.execute(
        update(model)
        .where(model.user_id == user_id, model.balance >= amount)
        .values(
            balance=model.balance - amount,
            total_spent=model.total_spent + amount,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientFunds(
            CURRENCY_DISPLAY_NAMES[currency],
            current_balance(session, currency, user_id),
            amount,
        )
    return _reload_account(session, currency, user_id).balance


def credit(session: Session, currency: Currency, user_id: int, amount: int) -> int:
    """Add *amount* to the account and return the new balance."""
    if amount < 0:
        raise ValueError("Credit amount must be >= 0")

    model = ACCOUNT_MODELS[currency]
    session.execute(
        update(model)
        .where(model.user_id == user_id)
        .values(
            balance=model.balance + amount,
            total_earned=model.total_earned + amount,
        )
        .execution_options(synchronize_session=False)
    )
    account = _reload_account(session, currency, user_id)
    if account is None:
        raise ValueError(f"No {currency.value} account for user {user_id}")
    return account.balance


def _reload_account(session: Session, currency: Currency, user_id: int):
    """Re-read the row so the identity map reflects the UPDATE."""
    return session.get(ACCOUNT_MODELS[currency], user_id, populate_existing=True)


def get_balances(
    engine: Engine,
    user_id: int,
    username: str,
    *,
    starting_balance: int = DEFAULT_PRIMARY_STARTING_BALANCE,
) -> dict[str, dict[str, int]]:
    """Return both balances for a member, opening missing accounts."""
    with Session(engine) as session:
        balances: dict[str, dict[str, int]] = {}
        for currency in Currency:
            account = get_or_create_account(
                session, currency, user_id, username,
                starting_balance=starting_balance,
            )
            balances[currency.value] = {
                "balance": account.balance,
                "totalEarned": account.total_earned,
                "totalSpent": account.total_spent,
            }
        session.commit()
        return balances


# ---------------------------------------------------------------------------
# Checkout validation helpers
# ---------------------------------------------------------------------------
def _resolve_items(session: Session, cart: Sequence[CartLine]) -> list[ShopItem]:
    """Return the catalog row for every cart line, in cart order."""
    ids = {line.item_id for line in cart}
    found = {
        item.id: item
        for item in session.scalars(select(ShopItem).where(ShopItem.id.in_(ids)))
    }
    items = []
    for line in cart:
        item = found.get(line.item_id)
        if item is None:
            logger.warning("Checkout references unknown item %s", line.item_id)
            raise ItemNotFound(line.item_id)
        items.append(item)
    return items


def owned_item_ids(session: Session, user_id: int, item_ids: set[int]) -> set[int]:
    """Ids from *item_ids* the member already has in their purchase history."""
    if not item_ids:
        return set()
    rows = session.scalars(
        select(PurchaseHistory.item_id).where(
            PurchaseHistory.user_id == user_id,
            PurchaseHistory.item_id.in_(item_ids),
        )
    ).all()
    return set(rows)


def _check_purchasable(session: Session, user_id: int, items: Sequence[ShopItem]) -> None:
    for item in items:
        if not item.in_stock:
            raise OutOfStock(item.name)

    single_use = [item for item in items if not item.allow_multiple_purchases]
    seen: set[int] = set()
    for item in single_use:
        if item.id in seen:
            raise AlreadyPurchased(item.name)
        seen.add(item.id)

    owned = owned_item_ids(session, user_id, seen)
    for item in single_use:
        if item.id in owned:
            raise AlreadyPurchased(item.name)


def _check_roles(user_id: int, items: Sequence[ShopItem], role_checker: RoleChecker) -> None:
    """Consult the role oracle once per role-gated item."""
    for item in items:
        if not item.requires_role:
            continue
        if item.required_role_id is None or not role_checker(user_id, item.required_role_id):
            logger.info(
                "User %s lacks role %s for item %r",
                user_id, item.required_role_id, item.name,
            )
            raise RoleRequired(item.name, item.required_role_id, item.required_role_name)


def _snapshot(item: ShopItem) -> dict[str, Any]:
    """Copy the deliverable content as it exists right now."""
    return {
        "content_type": item.content_type or "none",
        "text_content": item.text_content or "",
        "link_url": item.link_url or "",
        "youtube_url": item.youtube_url or "",
        "file_url": item.file_url or "",
        "file_name": item.file_name or "",
        "has_file": bool(item.has_file),
    }


def _purchase_descriptor(line: CartLine, entry: PurchaseHistory) -> dict[str, Any]:
    return {
        "purchaseId": entry.id,
        "itemId": entry.item_id,
        "itemName": entry.item_name,
        "image": line.image,
        "contentType": entry.content_type,
        "textContent": entry.text_content,
        "linkUrl": entry.link_url,
        "youtubeUrl": entry.youtube_url,
        "fileUrl": entry.file_url,
        "hasFile": entry.has_file,
        "fileName": entry.file_name,
    }


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
def checkout(
    engine: Engine,
    *,
    user_id: int,
    username: str,
    cart_items: Sequence[CartLine],
    total_amount: int,
    currency: Currency | str,
    role_checker: RoleChecker,
    starting_balance: int = DEFAULT_PRIMARY_STARTING_BALANCE,
    now: datetime | None = None,
) -> CheckoutResult:
    """Charge *total_amount* for *cart_items* and record the purchase.

    Every validation happens before the debit; any :class:`ShopError`
    leaves balances and history untouched.  The debit and all record
    writes commit together.
    """
    currency = Currency(currency)
    if not cart_items:
        raise EmptyCart()
    if total_amount < 0:
        raise CartValidationError("Total amount must be zero or more")

    now = now or datetime.now(UTC)

    with Session(engine, expire_on_commit=False) as session:
        items = _resolve_items(session, cart_items)
        _check_purchasable(session, user_id, items)

        catalog_total = sum(item.price for item in items)
        if catalog_total != total_amount:
            raise CartValidationError(
                f"Cart total {total_amount} does not match item prices ({catalog_total})"
            )

        _check_roles(user_id, items, role_checker)

        get_or_create_account(
            session, currency, user_id, username,
            starting_balance=starting_balance,
        )
        new_balance = debit(session, currency, user_id, total_amount)

        purchase = Purchase(
            user_id=user_id,
            username=username,
            items=[
                {"itemId": item.id, "name": item.name, "price": item.price, "quantity": 1}
                for item in items
            ],
            total_amount=total_amount,
            currency=currency.value,
            status="completed",
            purchase_date=now,
        )
        session.add(purchase)
        session.flush()

        entries: list[PurchaseHistory] = []
        for item in items:
            entry = PurchaseHistory(
                purchase_id=purchase.id,
                user_id=user_id,
                username=username,
                item_id=item.id,
                item_name=item.name,
                price=item.price,
                currency=currency.value,
                purchase_date=now,
                single_purchase_item_id=(
                    None if item.allow_multiple_purchases else item.id
                ),
                **_snapshot(item),
            )
            session.add(entry)
            entries.append(entry)

        try:
            session.flush()
        except IntegrityError:
            # A concurrent checkout committed the same single-purchase item
            names = ", ".join(i.name for i in items if not i.allow_multiple_purchases)
            session.rollback()
            raise AlreadyPurchased(names) from None

        for item in items:
            session.execute(
                update(ShopItem)
                .where(ShopItem.id == item.id)
                .values(
                    purchase_count=ShopItem.purchase_count + 1,
                    total_revenue=ShopItem.total_revenue + item.price,
                )
                .execution_options(synchronize_session=False)
            )
        session.commit()

        result = CheckoutResult(
            new_balance=new_balance,
            currency=currency,
            purchase_id=purchase.id,
            purchases=[
                _purchase_descriptor(line, entry)
                for line, entry in zip(cart_items, entries, strict=True)
            ],
        )

    logger.info(
        "Checkout %s: %s (%s) spent %d %s on %d item(s)",
        result.purchase_id, username, user_id, total_amount,
        CURRENCY_DISPLAY_NAMES[currency], len(entries),
    )
    return result
