#!/usr/bin/env python3
"""
Game-night database setup.

    python scripts/init_db.py                 # create tables
    python scripts/init_db.py --seed          # plus a demo night for today
    python scripts/init_db.py --fund user2=250
    python scripts/init_db.py --check         # connectivity and row counts
"""

import argparse
import logging
import sys
from datetime import date
from typing import Dict, List, Tuple

from dotenv import load_dotenv

load_dotenv()

from sqlalchemy import func, select, text  # noqa: E402

from gamenight.models import (  # noqa: E402
    Account,
    Base,
    GameInstance,
    Member,
    SessionLocal,
    Wager,
    engine,
    init_db,
)
from gamenight.services.schedule import ScheduleStore  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_MEMBERS = [("Alice", 1350), ("Bob", 1200), ("Chloe", 1150), ("Dev", 1280)]
DEMO_BETTORS = [("user1", "Host"), ("user2", "Guest")]
DEMO_STARTING_COINS = 500


def parse_funding(pairs: List[str]) -> List[Tuple[str, int]]:
    """Turn ``bettor=coins`` arguments into (bettor_id, coins) tuples."""
    parsed = []
    for pair in pairs:
        bettor_id, sep, coins = pair.partition("=")
        if not sep or not bettor_id or not coins.isdigit():
            raise argparse.ArgumentTypeError(f"expected BETTOR=COINS, got {pair!r}")
        parsed.append((bettor_id, int(coins)))
    return parsed


def reset_tables() -> bool:
    response = input("Drop every game-night table? Type 'yes' to confirm: ")
    if response.lower() != "yes":
        logger.info("Aborted.")
        return False
    Base.metadata.drop_all(bind=engine)
    logger.warning("All game-night tables dropped")
    return True


def fund_accounts(funding: List[Tuple[str, int]]) -> None:
    """Create missing bettor accounts and add coins to each."""
    db = SessionLocal()
    try:
        for bettor_id, coins in funding:
            account = db.get(Account, bettor_id)
            if account is None:
                account = Account(id=bettor_id, display_name=bettor_id, coins=0)
                db.add(account)
            account.coins += coins
            logger.info("Funded %s with %d coins", bettor_id, coins)
        db.commit()
    except Exception as e:
        logger.error("Funding failed: %s", e)
        db.rollback()
        raise
    finally:
        db.close()


def seed_demo_night() -> None:
    """Members, two funded bettors and two confirmed games for today."""
    db = SessionLocal()
    try:
        for bettor_id, name in DEMO_BETTORS:
            if db.get(Account, bettor_id) is None:
                db.add(Account(id=bettor_id, display_name=name, coins=DEMO_STARTING_COINS))
        db.commit()
    finally:
        db.close()

    schedule = ScheduleStore(SessionLocal)
    alice, bob, chloe, dev = [schedule.add_member(name, rating) for name, rating in DEMO_MEMBERS]

    free_for_all = schedule.create_game(
        "Azul", date.today(), [(m, None) for m in (alice, bob, chloe, dev)]
    )
    red_vs_blue = schedule.create_game(
        "Codenames", date.today(), [(alice, "Red"), (bob, "Red"), (chloe, "Blue"), (dev, "Blue")]
    )
    for game_id in (free_for_all, red_vs_blue):
        logger.info("Game %d open for betting: %s", game_id, schedule.confirm_game(game_id))


def row_counts() -> Dict[str, int]:
    db = SessionLocal()
    try:
        return {
            model.__tablename__: db.scalar(select(func.count()).select_from(model))
            for model in (Member, Account, GameInstance, Wager)
        }
    finally:
        db.close()


def check_connection() -> bool:
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        logger.info("Database connection successful")
        return True
    except Exception as e:
        logger.error("Database connection failed: %s", e)
        return False
    finally:
        db.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Set up the game-night database")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables first")
    parser.add_argument("--seed", action="store_true", help="Seed a demo game night")
    parser.add_argument("--fund", nargs="*", default=[], metavar="BETTOR=COINS",
                        help="Add coins to bettor accounts")
    parser.add_argument("--check", action="store_true", help="Only check connection")
    args = parser.parse_args(argv)

    if not check_connection():
        return 1

    if not args.check:
        if args.drop and not reset_tables():
            return 1
        init_db()
        if args.seed:
            seed_demo_night()
        if args.fund:
            fund_accounts(parse_funding(args.fund))

    try:
        logger.info("Rows: %s", row_counts())
    except Exception as e:
        logger.error("Tables missing, run without --check first: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
