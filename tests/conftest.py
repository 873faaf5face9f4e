"""Shared fixtures: an in-memory database and engine services wired to it."""

import os

# Must be set before gamenight.auth / gamenight.models are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["API_KEY_USER1"] = "test-admin-key"
os.environ["API_KEY_USER2"] = "test-bettor-key"

import random
from datetime import date, datetime
from typing import Dict, Iterable, Optional, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gamenight.core.engine_config import EngineConfig
from gamenight.models import (
    STATE_CONFIRMED,
    Account,
    Base,
    GameInstance,
    GamePlayer,
    Member,
    OddsQuote,
    Wager,
)
from gamenight.services.clock import FixedClock
from gamenight.services.notifications import NotificationHub
from gamenight.services.odds import OddsEngine
from gamenight.services.ratings import RatingEngine
from gamenight.services.wagers import WagerLedger

TODAY = date(2026, 10, 18)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 10, 18, 19, 30))


@pytest.fixture
def config():
    # No jitter so quotes are predictable
    return EngineConfig(jitter_pct=0.0)


@pytest.fixture
def hub():
    return NotificationHub()


@pytest.fixture
def ratings(config, clock):
    return RatingEngine(config, clock)


@pytest.fixture
def odds_engine(ratings, config, clock):
    return OddsEngine(ratings, config, random.Random(7), clock)


@pytest.fixture
def ledger(session_factory, odds_engine, ratings, clock, hub):
    return WagerLedger(session_factory, odds=odds_engine, ratings=ratings, clock=clock, hub=hub)


@pytest.fixture
def events(hub):
    received = []
    hub.subscribe(received.append)
    return received


class Seeder:
    """Direct-to-database setup and inspection helpers."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _add(self, row):
        db = self.session_factory()
        try:
            db.add(row)
            db.commit()
            return row.id
        finally:
            db.close()

    def member(self, name: str = "Player", rating: int = 1200) -> int:
        return self._add(Member(name=name, elo_rating=rating))

    def account(self, bettor_id: str, coins: int = 1000, display_name: Optional[str] = None) -> str:
        return self._add(Account(id=bettor_id, display_name=display_name or bettor_id, coins=coins))

    def game(
        self,
        players: Iterable[Tuple[int, Optional[str]]],
        scheduled_date: date = TODAY,
        state: str = STATE_CONFIRMED,
        name: str = "Catan",
    ) -> int:
        game = GameInstance(game_name=name, scheduled_date=scheduled_date, state=state)
        for member_id, team_name in players:
            game.players.append(GamePlayer(member_id=member_id, team_name=team_name))
        return self._add(game)

    def set_result(
        self,
        game_id: int,
        winner_member_id: Optional[int] = None,
        winner_team_name: Optional[str] = None,
        played: bool = True,
    ) -> None:
        db = self.session_factory()
        try:
            game = db.get(GameInstance, game_id)
            game.is_played = played
            game.winner_member_id = winner_member_id
            game.winner_team_name = winner_team_name
            db.commit()
        finally:
            db.close()

    def balance(self, bettor_id: str) -> int:
        db = self.session_factory()
        try:
            return db.get(Account, bettor_id).coins
        finally:
            db.close()

    def rating(self, member_id: int) -> int:
        db = self.session_factory()
        try:
            return db.get(Member, member_id).elo_rating
        finally:
            db.close()

    def quotes(self, game_id: int) -> Dict[int, int]:
        db = self.session_factory()
        try:
            rows = db.query(OddsQuote).filter(OddsQuote.game_instance_id == game_id).all()
            return {q.member_id: q.odds_times100 for q in rows}
        finally:
            db.close()

    def base_quotes(self, game_id: int) -> Dict[int, int]:
        db = self.session_factory()
        try:
            rows = db.query(OddsQuote).filter(OddsQuote.game_instance_id == game_id).all()
            return {q.member_id: q.base_odds_times100 for q in rows}
        finally:
            db.close()

    def wager_count(self, game_id: int) -> int:
        db = self.session_factory()
        try:
            return db.query(Wager).filter(Wager.game_instance_id == game_id).count()
        finally:
            db.close()

    def state(self, game_id: int) -> str:
        db = self.session_factory()
        try:
            return db.get(GameInstance, game_id).state
        finally:
            db.close()


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)
