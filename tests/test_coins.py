"""Tests for services.coins: conditional debits and credits."""

import pytest

from gamenight.services.coins import get_balance, try_credit, try_debit


def _with_session(session_factory, work):
    db = session_factory()
    try:
        result = work(db)
        db.commit()
        return result
    finally:
        db.close()


def test_debit_within_balance(session_factory, seed):
    seed.account("alice", 100)
    assert _with_session(session_factory, lambda db: try_debit(db, "alice", 100)) is True
    assert seed.balance("alice") == 0


def test_debit_beyond_balance_refused(session_factory, seed):
    seed.account("alice", 99)
    assert _with_session(session_factory, lambda db: try_debit(db, "alice", 100)) is False
    assert seed.balance("alice") == 99


@pytest.mark.parametrize("amount", [0, -10])
def test_non_positive_amounts_refused(session_factory, seed, amount):
    seed.account("alice", 100)
    assert _with_session(session_factory, lambda db: try_debit(db, "alice", amount)) is False
    assert _with_session(session_factory, lambda db: try_credit(db, "alice", amount)) is False
    assert seed.balance("alice") == 100


def test_unknown_account(session_factory):
    assert _with_session(session_factory, lambda db: try_debit(db, "ghost", 1)) is False
    assert _with_session(session_factory, lambda db: try_credit(db, "ghost", 1)) is False
    assert _with_session(session_factory, lambda db: get_balance(db, "ghost")) is None


def test_credit(session_factory, seed):
    seed.account("bob", 10)
    assert _with_session(session_factory, lambda db: try_credit(db, "bob", 15)) is True
    assert _with_session(session_factory, lambda db: get_balance(db, "bob")) == 25


def test_debit_rolls_back_with_caller(session_factory, seed):
    seed.account("alice", 100)
    db = session_factory()
    try:
        assert try_debit(db, "alice", 60)
        db.rollback()
    finally:
        db.close()
    assert seed.balance("alice") == 100
