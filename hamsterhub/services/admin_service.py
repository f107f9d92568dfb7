"""
hamsterhub.services.admin_service — Audited Balance Adjustments
================================================================

Admin-initiated credits and debits.  Every write follows the pattern:
  1. Begin transaction
  2. Read "before" snapshot of the account
  3. Apply the change through the ledger
  4. Write admin_log with before/after JSON
  5. Commit
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from hamsterhub.constants import CURRENCY_DISPLAY_NAMES, DEFAULT_PRIMARY_STARTING_BALANCE
from hamsterhub.database.models import AdminActionType, AdminLog, Currency
from hamsterhub.services import ledger_service

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def _row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def _log_admin_action(
    session: Session,
    *,
    actor_id: int,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def adjust_balance(
    engine: Engine,
    *,
    user_id: int,
    username: str | None,
    currency: Currency | str,
    amount: int,
    reason: str = "",
    actor_id: int,
    starting_balance: int = DEFAULT_PRIMARY_STARTING_BALANCE,
) -> dict[str, Any]:
    """Credit (positive *amount*) or debit (negative) a member's balance.

    *username* only names a newly opened account or renames an existing
    one when given.  Debits use the ledger's conditional decrement and raise
    :class:`~hamsterhub.services.errors.InsufficientFunds` rather than
    drive the balance below zero.
    """
    currency = Currency(currency)
    if amount == 0:
        raise ValueError("Amount must be non-zero")

    with Session(engine) as session:
        account = ledger_service.get_or_create_account(
            session, currency, user_id, username,
            starting_balance=starting_balance,
        )
        before = _row_to_dict(account)

        if amount > 0:
            new_balance = ledger_service.credit(session, currency, user_id, amount)
            action = AdminActionType.CREDIT
        else:
            new_balance = ledger_service.debit(session, currency, user_id, -amount)
            action = AdminActionType.DEBIT

        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=action.value,
            target_table=account.__tablename__,
            target_id=str(user_id),
            before=before,
            after=_row_to_dict(account),
            reason=reason or None,
        )
        session.commit()

    logger.info(
        "Admin %s adjusted %s for %s by %+d (%s)",
        actor_id, CURRENCY_DISPLAY_NAMES[currency], user_id, amount, reason or "no reason",
    )
    return {
        "userId": str(user_id),
        "currency": currency.value,
        "amount": amount,
        "newBalance": new_balance,
    }
