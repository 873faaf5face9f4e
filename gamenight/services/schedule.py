"""
Game-night schedule and roster store.

A thin store over the same database as the wager ledger: create games,
seat players, confirm (which opens betting) and record results.  Results
are locked once any wager on the game has been settled.
"""

import logging
from datetime import date
from typing import Callable, Dict, Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from gamenight.core.roster import normalize_team
from gamenight.models import (
    STATE_CONFIRMED,
    STATE_PLANNED,
    STATE_RESOLVED,
    GameInstance,
    GamePlayer,
    Member,
    SessionLocal,
    Wager,
)
from gamenight.services.wagers import WagerLedger

logger = logging.getLogger(__name__)


class ScheduleError(ValueError):
    """Unknown game or member, or a change the game's state does not allow."""


class ScheduleNotFoundError(ScheduleError):
    """No such game or member."""


class ResultLockedError(ScheduleError):
    """The game's result can no longer change: wagers were settled on it."""


class ScheduleStore:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        ledger: Optional[WagerLedger] = None,
    ):
        self.session_factory = session_factory
        self.ledger = ledger or WagerLedger(session_factory)

    def add_member(self, name: str, rating: Optional[int] = None) -> int:
        def _add(db: Session) -> int:
            member = Member(name=name)
            if rating is not None:
                member.elo_rating = rating
            db.add(member)
            db.flush()
            return member.id

        return self._run(_add)

    def create_game(
        self,
        game_name: str,
        scheduled_date: date,
        players: Iterable[Tuple[int, Optional[str]]] = (),
    ) -> int:
        """Create a planned game, optionally seating ``(member_id, team_name)`` pairs."""
        roster = list(players)

        def _create(db: Session) -> int:
            game = GameInstance(game_name=game_name, scheduled_date=scheduled_date, state=STATE_PLANNED)
            db.add(game)
            for member_id, team_name in roster:
                _seat(db, game, member_id, team_name)
            db.flush()
            return game.id

        game_id = self._run(_create)
        logger.info("Created game %d (%s on %s, %d player(s))", game_id, game_name, scheduled_date, len(roster))
        return game_id

    def add_player(self, game_id: int, member_id: int, team_name: Optional[str] = None) -> None:
        def _add(db: Session) -> None:
            game = _get_game(db, game_id)
            if game.state != STATE_PLANNED:
                raise ScheduleError(f"Game {game_id} is {game.state}; roster is closed")
            _seat(db, game, member_id, team_name)

        self._run(_add)

    def confirm_game(self, game_id: int) -> Dict[int, int]:
        """Mark the game confirmed and open betting.  Returns the initial odds."""
        def _confirm(db: Session) -> None:
            game = _get_game(db, game_id)
            if game.state != STATE_PLANNED:
                raise ScheduleError(f"Game {game_id} is already {game.state}")
            if not game.players:
                raise ScheduleError(f"Game {game_id} has no players")
            game.state = STATE_CONFIRMED

        self._run(_confirm)
        logger.info("Game %d confirmed", game_id)
        return self.ledger.open_book(game_id)

    def record_winner(self, game_id: int, member_id: int) -> None:
        def _record(db: Session) -> None:
            game = _get_unlocked_game(db, game_id)
            if all(p.member_id != member_id for p in game.players):
                raise ScheduleError(f"Member {member_id} did not play game {game_id}")
            game.is_played = True
            game.winner_member_id = member_id
            game.winner_team_name = None

        self._run(_record)

    def record_team_winner(self, game_id: int, team_name: str) -> None:
        def _record(db: Session) -> None:
            game = _get_unlocked_game(db, game_id)
            wanted = normalize_team(team_name)
            teams: Dict[str, str] = {}
            for player in game.players:
                name = normalize_team(player.team_name)
                if name:
                    teams.setdefault(name.casefold(), name)
            if wanted is None or wanted.casefold() not in teams:
                raise ScheduleError(f"No team {team_name!r} in game {game_id}")
            game.is_played = True
            game.winner_member_id = None
            game.winner_team_name = teams[wanted.casefold()]

        self._run(_record)

    def record_no_winner(self, game_id: int) -> None:
        """Played, nobody won (a lost co-op game, an abandoned game)."""
        def _record(db: Session) -> None:
            game = _get_unlocked_game(db, game_id)
            game.is_played = True
            game.winner_member_id = None
            game.winner_team_name = None

        self._run(_record)

    def _run(self, work):
        db = self.session_factory()
        try:
            result = work(db)
            db.commit()
            return result
        except ScheduleError as exc:
            db.rollback()
            logger.warning("Schedule change refused: %s", exc)
            raise
        except Exception as exc:
            db.rollback()
            logger.error("Schedule change failed: %s", exc, exc_info=True)
            raise
        finally:
            db.close()


def _get_game(db: Session, game_id: int) -> GameInstance:
    game = db.get(GameInstance, game_id)
    if game is None:
        raise ScheduleNotFoundError(f"Game {game_id} not found")
    return game


def _get_unlocked_game(db: Session, game_id: int) -> GameInstance:
    game = _get_game(db, game_id)
    settled = (
        db.query(Wager.id)
        .filter(Wager.game_instance_id == game_id, Wager.is_resolved.is_(True))
        .first()
    )
    if settled is not None or game.state == STATE_RESOLVED:
        raise ResultLockedError(f"Game {game_id} is settled; result is locked")
    return game


def _seat(db: Session, game: GameInstance, member_id: int, team_name: Optional[str]) -> None:
    if db.get(Member, member_id) is None:
        raise ScheduleNotFoundError(f"Member {member_id} not found")
    if any(p.member_id == member_id for p in game.players):
        raise ScheduleError(f"Member {member_id} is already playing")
    game.players.append(GamePlayer(member_id=member_id, team_name=normalize_team(team_name)))
