"""
Database models for the game-night wagering engine
SQLAlchemy ORM; SQLite by default, PostgreSQL in production
"""

import os
from datetime import datetime

from dotenv import load_dotenv
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./gamenight.db")

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


#: Lifecycle states of a game instance.
STATE_PLANNED = "planned"
STATE_CONFIRMED = "confirmed"
STATE_RESOLVED = "resolved"


class Member(Base):
    """A meetup member who can play (and be bet on)"""

    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    elo_rating = Column(Integer, nullable=False, default=1200)
    elo_rating_updated_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)


class Account(Base):
    """Bettor coin balance (backing table for the currency ledger)"""

    __tablename__ = "accounts"

    id = Column(String, primary_key=True)  # External user id
    display_name = Column(String)
    coins = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)


class GameInstance(Base):
    """One game played on a game night, the outcome bettors wager on"""

    __tablename__ = "game_instances"

    id = Column(Integer, primary_key=True, index=True)
    game_name = Column(String, nullable=False)
    scheduled_date = Column(Date, nullable=False, index=True)
    state = Column(String, nullable=False, default=STATE_PLANNED)  # planned | confirmed | resolved

    # Result (filled after the game)
    is_played = Column(Boolean, default=False, nullable=False)
    winner_member_id = Column(Integer, ForeignKey("members.id"))
    winner_team_name = Column(String)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    players = relationship("GamePlayer", back_populates="game", cascade="all, delete-orphan")
    odds = relationship("OddsQuote", back_populates="game", cascade="all, delete-orphan")
    wagers = relationship("Wager", back_populates="game")

    @property
    def has_result(self) -> bool:
        return bool(self.is_played or self.winner_member_id is not None or self.winner_team_name)


class GamePlayer(Base):
    """Roster entry: a member taking part in a game, optionally on a team"""

    __tablename__ = "game_players"

    id = Column(Integer, primary_key=True, index=True)
    game_instance_id = Column(Integer, ForeignKey("game_instances.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    team_name = Column(String)

    game = relationship("GameInstance", back_populates="players")
    member = relationship("Member")

    __table_args__ = (UniqueConstraint("game_instance_id", "member_id", name="_game_player_uc"),)


class OddsQuote(Base):
    """Current odds on one contestant of a game"""

    __tablename__ = "odds_quotes"

    id = Column(Integer, primary_key=True, index=True)
    game_instance_id = Column(Integer, ForeignKey("game_instances.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)

    odds_times100 = Column(Integer, nullable=False)       # Decimal odds x100 offered now
    base_odds_times100 = Column(Integer, nullable=False)  # Anchor for cashflow repricing
    updated_at = Column(DateTime, default=datetime.utcnow)

    game = relationship("GameInstance", back_populates="odds")

    __table_args__ = (UniqueConstraint("game_instance_id", "member_id", name="_odds_game_member_uc"),)


class Wager(Base):
    """A bettor's coins on a predicted winner"""

    __tablename__ = "wagers"

    id = Column(Integer, primary_key=True, index=True)
    game_instance_id = Column(Integer, ForeignKey("game_instances.id"), nullable=False, index=True)
    bettor_id = Column(String, ForeignKey("accounts.id"), nullable=False, index=True)

    # Prediction: a member, or a team (member id is then a representative teammate)
    predicted_member_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    predicted_team_name = Column(String)

    amount = Column(Integer, nullable=False)
    odds_times100 = Column(Integer, nullable=False)  # Locked at placement

    # Settlement
    is_resolved = Column(Boolean, default=False, nullable=False, index=True)
    payout = Column(Integer, default=0, nullable=False)
    resolved_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    game = relationship("GameInstance", back_populates="wagers")

    __table_args__ = (UniqueConstraint("game_instance_id", "bettor_id", name="_wager_game_bettor_uc"),)


# Create all tables
def init_db(bind=None):
    """Initialize database tables"""
    Base.metadata.create_all(bind=bind or engine)
