"""
tests/test_ledger_service.py — Dual-Currency Ledger & Checkout
===============================================================
Service-level tests for ledger_service.checkout(): the happy path,
every rejection (with no side effects), lazy account creation, the
content snapshot and the catalog sales counters.

Uses an in-memory SQLite database via the shared conftest fixtures.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from conftest import RoleBook, add_item
from hamsterhub.database.models import (
    Currency,
    HamsterCoinAccount,
    Purchase,
    PurchaseHistory,
    ShopItem,
    StardustCoinAccount,
)
from hamsterhub.services import ledger_service
from hamsterhub.services.errors import (
    AlreadyPurchased,
    CartValidationError,
    EmptyCart,
    InsufficientFunds,
    ItemNotFound,
    OutOfStock,
    RoleRequired,
)
from hamsterhub.services.ledger_service import CartLine

USER_ID = 1001
ROLE_R1 = 777


@pytest.fixture
def engine(db_engine):
    """Re-use the shared conftest db_engine (SQLite, StaticPool)."""
    return db_engine


def _fund(engine, user_id: int = USER_ID, balance: int = 1000, currency=Currency.PRIMARY):
    model = HamsterCoinAccount if currency is Currency.PRIMARY else StardustCoinAccount
    with Session(engine) as session:
        session.add(model(user_id=user_id, username="Hammy", balance=balance, total_earned=balance))
        session.commit()


def _balance(engine, user_id: int = USER_ID, model=HamsterCoinAccount) -> int | None:
    with Session(engine) as session:
        account = session.get(model, user_id)
        return None if account is None else account.balance


def _count(engine, model) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(model))


def _checkout(engine, item_ids, total, *, currency=Currency.PRIMARY, roles=None, **kwargs):
    return ledger_service.checkout(
        engine,
        user_id=kwargs.pop("user_id", USER_ID),
        username=kwargs.pop("username", "Hammy"),
        cart_items=[CartLine(item_id=i) for i in item_ids],
        total_amount=total,
        currency=currency,
        role_checker=roles if roles is not None else RoleBook(),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------
class TestCheckoutSuccess:
    def test_single_item_debits_and_records(self, engine):
        _fund(engine, balance=1000)
        item_id = add_item(engine, name="Wheel", price=300)

        result = _checkout(engine, [item_id], 300)

        assert result.new_balance == 700
        assert _balance(engine) == 700
        with Session(engine) as session:
            entries = session.scalars(select(PurchaseHistory)).all()
            assert len(entries) == 1
            assert entries[0].price == 300
            assert entries[0].item_id == item_id
            assert entries[0].purchase_id == result.purchase_id

    def test_result_payload_shape(self, engine):
        _fund(engine)
        item_id = add_item(engine, name="Guide", price=50, content_type="text", text_content="secret tips")

        payload = _checkout(engine, [item_id], 50).to_dict()

        assert payload["success"] is True
        assert payload["newBalance"] == 950
        assert payload["currency"] == "primary"
        assert len(payload["purchases"]) == 1
        line = payload["purchases"][0]
        assert line["itemId"] == item_id
        assert line["itemName"] == "Guide"
        assert line["contentType"] == "text"
        assert line["textContent"] == "secret tips"

    def test_multi_item_header_lists_every_line(self, engine):
        _fund(engine)
        a = add_item(engine, name="Hay", price=100)
        b = add_item(engine, name="Tube", price=250)

        result = _checkout(engine, [a, b], 350)

        assert result.new_balance == 650
        with Session(engine) as session:
            header = session.get(Purchase, result.purchase_id)
            assert header.total_amount == 350
            assert header.currency == "primary"
            assert header.status == "completed"
            assert [line["itemId"] for line in header.items] == [a, b]
            assert sum(line["price"] for line in header.items) == header.total_amount
            assert len(header.entries) == 2

    def test_exact_balance_reaches_zero(self, engine):
        _fund(engine, balance=300)
        item_id = add_item(engine, price=300)

        assert _checkout(engine, [item_id], 300).new_balance == 0

    def test_free_item_is_recorded(self, engine):
        _fund(engine, balance=10)
        item_id = add_item(engine, name="Sticker", price=0)

        result = _checkout(engine, [item_id], 0)

        assert result.new_balance == 10
        assert _count(engine, PurchaseHistory) == 1

    def test_secondary_currency_leaves_primary_untouched(self, engine):
        _fund(engine, balance=1000, currency=Currency.PRIMARY)
        _fund(engine, balance=80, currency=Currency.SECONDARY)
        item_id = add_item(engine, price=50)

        result = _checkout(engine, [item_id], 50, currency=Currency.SECONDARY)

        assert result.new_balance == 30
        assert _balance(engine, model=StardustCoinAccount) == 30
        assert _balance(engine, model=HamsterCoinAccount) == 1000
        with Session(engine) as session:
            entry = session.scalars(select(PurchaseHistory)).one()
            assert entry.currency == "secondary"

    def test_accepts_currency_string(self, engine):
        _fund(engine)
        item_id = add_item(engine, price=10)

        assert _checkout(engine, [item_id], 10, currency="primary").currency is Currency.PRIMARY

    def test_sales_counters_bumped(self, engine):
        _fund(engine)
        item_id = add_item(engine, price=40, allow_multiple_purchases=True)

        _checkout(engine, [item_id], 40)
        _checkout(engine, [item_id, item_id], 80)

        with Session(engine) as session:
            item = session.get(ShopItem, item_id)
            assert item.purchase_count == 3
            assert item.total_revenue == 120

    def test_purchase_date_uses_given_clock(self, engine):
        _fund(engine)
        item_id = add_item(engine, price=10)
        when = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

        _checkout(engine, [item_id], 10, now=when)

        with Session(engine) as session:
            entry = session.scalars(select(PurchaseHistory)).one()
            assert entry.purchase_date.replace(tzinfo=None) == when.replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Lazy account creation
# ---------------------------------------------------------------------------
class TestLazyAccounts:
    def test_first_checkout_opens_primary_with_starting_balance(self, engine):
        item_id = add_item(engine, price=300)

        result = _checkout(engine, [item_id], 300, starting_balance=1000)

        assert result.new_balance == 700
        with Session(engine) as session:
            account = session.get(HamsterCoinAccount, USER_ID)
            assert account.total_earned == 1000
            assert account.total_spent == 300

    def test_secondary_account_opens_empty(self, engine):
        item_id = add_item(engine, price=5)

        with pytest.raises(InsufficientFunds) as exc_info:
            _checkout(engine, [item_id], 5, currency=Currency.SECONDARY)

        assert exc_info.value.current_balance == 0
        # Rejected checkout rolls back the account it opened
        assert _balance(engine, model=StardustCoinAccount) is None

    def test_username_refreshed(self, engine):
        _fund(engine)
        item_id = add_item(engine, price=1)

        _checkout(engine, [item_id], 1, username="Hammy the Great")

        with Session(engine) as session:
            assert session.get(HamsterCoinAccount, USER_ID).username == "Hammy the Great"


# ---------------------------------------------------------------------------
# Rejections — never any side effect
# ---------------------------------------------------------------------------
class TestCheckoutRejections:
    def _assert_untouched(self, engine, balance: int) -> None:
        assert _balance(engine) == balance
        assert _count(engine, Purchase) == 0
        assert _count(engine, PurchaseHistory) == 0

    def test_insufficient_funds(self, engine):
        _fund(engine, balance=100)
        item_id = add_item(engine, price=300)

        with pytest.raises(InsufficientFunds) as exc_info:
            _checkout(engine, [item_id], 300)

        detail = exc_info.value.detail()
        assert detail["currentBalance"] == 100
        assert detail["requiredAmount"] == 300
        assert detail["currency"] == "HamsterCoin"
        self._assert_untouched(engine, 100)

    def test_role_required_even_with_funds(self, engine):
        _fund(engine, balance=5000)
        item_id = add_item(
            engine, name="VIP Cage", price=300,
            requires_role=True, required_role_id=ROLE_R1, required_role_name="R1",
        )
        roles = RoleBook()

        with pytest.raises(RoleRequired) as exc_info:
            _checkout(engine, [item_id], 300, roles=roles)

        assert roles.calls == [(USER_ID, ROLE_R1)]
        detail = exc_info.value.detail()
        assert detail["requiredRole"] == "R1"
        assert detail["requiredRoleId"] == str(ROLE_R1)
        assert detail["itemName"] == "VIP Cage"
        self._assert_untouched(engine, 5000)

    def test_role_granted_allows_purchase(self, engine):
        _fund(engine)
        item_id = add_item(engine, price=300, requires_role=True, required_role_id=ROLE_R1)
        roles = RoleBook()
        roles.grant(USER_ID, ROLE_R1)

        assert _checkout(engine, [item_id], 300, roles=roles).new_balance == 700

    def test_role_checked_per_item(self, engine):
        _fund(engine)
        gated = add_item(engine, name="Gated", price=10, requires_role=True, required_role_id=ROLE_R1)
        other = add_item(engine, name="Other", price=10, requires_role=True, required_role_id=888)
        roles = RoleBook()
        roles.grant(USER_ID, ROLE_R1)

        with pytest.raises(RoleRequired) as exc_info:
            _checkout(engine, [gated, other], 20, roles=roles)

        assert exc_info.value.item_name == "Other"
        assert roles.calls == [(USER_ID, ROLE_R1), (USER_ID, 888)]
        self._assert_untouched(engine, 1000)

    def test_ungated_items_skip_oracle(self, engine):
        _fund(engine)
        item_id = add_item(engine, price=10)
        roles = RoleBook()

        _checkout(engine, [item_id], 10, roles=roles)

        assert roles.calls == []

    def test_empty_cart(self, engine):
        _fund(engine)
        with pytest.raises(EmptyCart):
            _checkout(engine, [], 0)
        self._assert_untouched(engine, 1000)

    def test_unknown_item_aborts_before_debit(self, engine):
        _fund(engine)
        real = add_item(engine, price=100)

        with pytest.raises(ItemNotFound) as exc_info:
            _checkout(engine, [real, 9999], 100)

        assert exc_info.value.detail()["itemId"] == 9999
        self._assert_untouched(engine, 1000)

    def test_total_must_match_catalog_prices(self, engine):
        _fund(engine)
        item_id = add_item(engine, price=300)

        with pytest.raises(CartValidationError):
            _checkout(engine, [item_id], 1)
        self._assert_untouched(engine, 1000)

    def test_client_prices_are_ignored(self, engine):
        _fund(engine)
        item_id = add_item(engine, price=300)

        result = ledger_service.checkout(
            engine,
            user_id=USER_ID,
            username="Hammy",
            cart_items=[CartLine(item_id=item_id, name="Wheel", price=1)],
            total_amount=300,
            currency=Currency.PRIMARY,
            role_checker=RoleBook(),
        )

        assert result.new_balance == 700

    def test_out_of_stock(self, engine):
        _fund(engine)
        item_id = add_item(engine, name="Rare Acorn", price=10, in_stock=False)

        with pytest.raises(OutOfStock):
            _checkout(engine, [item_id], 10)
        self._assert_untouched(engine, 1000)

    def test_single_purchase_item_bought_twice(self, engine):
        _fund(engine)
        item_id = add_item(engine, name="Badge", price=10)

        _checkout(engine, [item_id], 10)
        with pytest.raises(AlreadyPurchased):
            _checkout(engine, [item_id], 10)

        assert _balance(engine) == 990
        assert _count(engine, PurchaseHistory) == 1

    def test_single_purchase_item_twice_in_one_cart(self, engine):
        _fund(engine)
        item_id = add_item(engine, name="Badge", price=10)

        with pytest.raises(AlreadyPurchased):
            _checkout(engine, [item_id, item_id], 20)
        self._assert_untouched(engine, 1000)

    def test_insufficient_funds_opens_no_primary_account(self, engine):
        item_id = add_item(engine, price=5000)

        with pytest.raises(InsufficientFunds):
            _checkout(engine, [item_id], 5000)

        assert _balance(engine) is None


# ---------------------------------------------------------------------------
# Snapshot immutability
# ---------------------------------------------------------------------------
class TestContentSnapshot:
    def test_catalog_edit_does_not_change_history(self, engine):
        _fund(engine)
        item_id = add_item(
            engine, name="Cheat Sheet", price=10,
            content_type="link", link_url="https://example.test/v1",
        )
        _checkout(engine, [item_id], 10)

        with Session(engine) as session:
            item = session.get(ShopItem, item_id)
            item.link_url = "https://example.test/v2"
            item.price = 999
            session.commit()

        with Session(engine) as session:
            entry = session.scalars(select(PurchaseHistory)).one()
            assert entry.link_url == "https://example.test/v1"
            assert entry.price == 10
            assert entry.content_type == "link"


# ---------------------------------------------------------------------------
# Primitive ledger operations
# ---------------------------------------------------------------------------
class TestLedgerPrimitives:
    def test_debit_is_conditional(self, engine):
        _fund(engine, balance=50)
        with Session(engine) as session:
            with pytest.raises(InsufficientFunds):
                ledger_service.debit(session, Currency.PRIMARY, USER_ID, 51)
            assert ledger_service.debit(session, Currency.PRIMARY, USER_ID, 50) == 0
            session.commit()
        assert _balance(engine) == 0

    def test_debit_missing_account_is_insufficient(self, engine):
        with Session(engine) as session:
            with pytest.raises(InsufficientFunds) as exc_info:
                ledger_service.debit(session, Currency.PRIMARY, USER_ID, 1)
        assert exc_info.value.current_balance == 0

    def test_credit_adds_to_earned(self, engine):
        _fund(engine, balance=10)
        with Session(engine) as session:
            assert ledger_service.credit(session, Currency.PRIMARY, USER_ID, 15) == 25
            session.commit()
        with Session(engine) as session:
            assert session.get(HamsterCoinAccount, USER_ID).total_earned == 25

    def test_negative_amounts_rejected(self, engine):
        _fund(engine)
        with Session(engine) as session:
            with pytest.raises(ValueError):
                ledger_service.debit(session, Currency.PRIMARY, USER_ID, -1)
            with pytest.raises(ValueError):
                ledger_service.credit(session, Currency.PRIMARY, USER_ID, -1)

    def test_get_balances_opens_both_accounts(self, engine):
        balances = ledger_service.get_balances(engine, USER_ID, "Hammy", starting_balance=1000)

        assert balances["primary"] == {"balance": 1000, "totalEarned": 1000, "totalSpent": 0}
        assert balances["secondary"] == {"balance": 0, "totalEarned": 0, "totalSpent": 0}
        assert _balance(engine) == 1000


# ---------------------------------------------------------------------------
# Concurrent writers
# ---------------------------------------------------------------------------
class TestConcurrentWriters:
    def test_sales_counters_keep_concurrent_increments(self, engine):
        _fund(engine)
        item_id = add_item(
            engine, price=40, allow_multiple_purchases=True,
            requires_role=True, required_role_id=ROLE_R1,
        )

        def bump_then_allow(user_id: int, role_id: int) -> bool:
            # Another checkout commits between item resolution and the write
            with Session(engine) as other:
                other.execute(
                    update(ShopItem)
                    .where(ShopItem.id == item_id)
                    .values(
                        purchase_count=ShopItem.purchase_count + 5,
                        total_revenue=ShopItem.total_revenue + 200,
                    )
                )
                other.commit()
            return True

        _checkout(engine, [item_id], 40, roles=bump_then_allow)

        with Session(engine) as session:
            item = session.get(ShopItem, item_id)
            assert item.purchase_count == 6
            assert item.total_revenue == 240

    def test_open_account_ignores_existing_row(self, engine):
        _fund(engine, balance=70)

        with Session(engine) as session:
            created = ledger_service._open_account(
                session, Currency.PRIMARY, USER_ID, "Hammy", 1000
            )
            session.commit()

        assert created is False
        assert _balance(engine) == 70

    def test_account_opened_by_another_checkout_is_reused(self, engine):
        item_id = add_item(
            engine, price=100, requires_role=True, required_role_id=ROLE_R1,
        )

        def open_then_allow(user_id: int, role_id: int) -> bool:
            _fund(engine, user_id=user_id, balance=500)
            return True

        result = _checkout(engine, [item_id], 100, roles=open_then_allow)

        assert result.new_balance == 400
        with Session(engine) as session:
            assert session.scalar(select(func.count()).select_from(HamsterCoinAccount)) == 1

    def test_single_purchase_enforced_by_database(self, engine, monkeypatch):
        _fund(engine)
        item_id = add_item(engine, name="Badge", price=10)
        _checkout(engine, [item_id], 10)

        # Ownership read misses a row another checkout just committed
        monkeypatch.setattr(ledger_service, "owned_item_ids", lambda *args: set())

        with pytest.raises(AlreadyPurchased) as exc_info:
            _checkout(engine, [item_id], 10)

        assert exc_info.value.item_name == "Badge"
        assert _balance(engine) == 990
        assert _count(engine, PurchaseHistory) == 1
        assert _count(engine, Purchase) == 1

    def test_repeatable_items_have_no_single_purchase_key(self, engine):
        _fund(engine)
        item_id = add_item(engine, price=10, allow_multiple_purchases=True)

        _checkout(engine, [item_id], 10)
        _checkout(engine, [item_id], 10)

        with Session(engine) as session:
            keys = session.scalars(select(PurchaseHistory.single_purchase_item_id)).all()
            assert keys == [None, None]
