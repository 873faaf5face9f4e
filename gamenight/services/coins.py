"""
Currency ledger: bettor coin balances.

Every call participates in the caller's session and never commits, so a
debit made while placing a wager rolls back with the rest of the placement.
"""

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from gamenight.models import Account

logger = logging.getLogger(__name__)


def get_balance(db: Session, bettor_id: str) -> Optional[int]:
    """Current coin balance, or None when the account does not exist."""
    return db.query(Account.coins).filter(Account.id == bettor_id).scalar()


def try_debit(db: Session, bettor_id: str, amount: int) -> bool:
    """
    Remove ``amount`` coins if the balance covers it.

    The check and the decrement are one conditional UPDATE, so two
    concurrent placements by the same bettor cannot both spend the same
    coins.  Returns False for non-positive amounts, unknown accounts, or an
    insufficient balance.
    """
    if amount <= 0:
        return False

    result = db.execute(
        update(Account)
        .where(Account.id == bettor_id, Account.coins >= amount)
        .values(coins=Account.coins - amount)
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        logger.debug("Debit of %d refused for %s", amount, bettor_id)
        return False
    return True


def try_credit(db: Session, bettor_id: str, amount: int) -> bool:
    """Add ``amount`` coins.  Returns False for non-positive amounts or unknown accounts."""
    if amount <= 0:
        return False

    result = db.execute(
        update(Account)
        .where(Account.id == bettor_id)
        .values(coins=Account.coins + amount)
        .execution_options(synchronize_session="evaluate")
    )
    return result.rowcount == 1
