"""
Wager ledger: placement, settlement and refunds of game-night bets.

Every mutating operation is one unit of work on a fresh session:

    db = session_factory()
    try:
        ...                      # validate, mutate, reprice
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

Business-rule rejections come back as enum statuses inside result
dataclasses and are never raised.  Storage errors, invariant violations
(ValueError) and OperationCancelled propagate after the rollback.
Notifications go out only after a successful commit.

Public API:
  WagerLedger.place_wager(game_id, predicted_winner, amount, bettor_id)
  WagerLedger.resolve_outcome(game_id)
  WagerLedger.cancel_open_wagers(game_id)
  WagerLedger.open_book(game_id)
  WagerLedger.get_user_wagers(game_id, bettor_id)
  WagerLedger.get_net_results(scheduled_date)
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gamenight.core.odds_math import compute_profit
from gamenight.core.roster import Branch, RosterLayout
from gamenight.models import (
    STATE_CONFIRMED,
    STATE_PLANNED,
    STATE_RESOLVED,
    Account,
    GameInstance,
    OddsQuote,
    SessionLocal,
    Wager,
)
from gamenight.services import coins
from gamenight.services.clock import Clock
from gamenight.services.notifications import (
    ODDS_UPDATED,
    WAGER_PLACED,
    WAGERS_CANCELLED,
    WAGERS_RESOLVED,
    ChangeEvent,
    NotificationHub,
    get_notification_hub,
)
from gamenight.services.odds import OddsEngine, branch_for_wager, roster_layout
from gamenight.services.ratings import RatingEngine

logger = logging.getLogger(__name__)


class OperationCancelled(Exception):
    """The caller's cancellation signal was set; nothing was committed."""


# ---------------------------------------------------------------------------
# Statuses and results
# ---------------------------------------------------------------------------

class PlaceWagerStatus(Enum):
    OK = "OK"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    NOT_FOUND = "NOT_FOUND"
    NOT_CONFIRMED = "NOT_CONFIRMED"
    PAST_DEADLINE = "PAST_DEADLINE"
    ALREADY_WAGERED = "ALREADY_WAGERED"
    INVALID_WINNER = "INVALID_WINNER"
    MISSING_ODDS = "MISSING_ODDS"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"


class ResolveStatus(Enum):
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    NOT_PAST = "NOT_PAST"
    MISSING_WINNER = "MISSING_WINNER"
    ALREADY_RESOLVED = "ALREADY_RESOLVED"


class CancelStatus(Enum):
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    BETS_ALREADY_SETTLED = "BETS_ALREADY_SETTLED"


@dataclass
class WagerView:
    """Detached snapshot of a wager row."""
    id: int
    game_id: int
    bettor_id: str
    predicted_member_id: int
    predicted_team_name: Optional[str]
    amount: int
    odds_times100: int
    is_resolved: bool
    payout: int
    created_at: Optional[datetime]
    resolved_at: Optional[datetime]

    @classmethod
    def from_row(cls, wager: Wager) -> "WagerView":
        return cls(
            id=wager.id,
            game_id=wager.game_instance_id,
            bettor_id=wager.bettor_id,
            predicted_member_id=wager.predicted_member_id,
            predicted_team_name=wager.predicted_team_name,
            amount=wager.amount,
            odds_times100=wager.odds_times100,
            is_resolved=wager.is_resolved,
            payout=wager.payout,
            created_at=wager.created_at,
            resolved_at=wager.resolved_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "game_id": self.game_id,
            "bettor_id": self.bettor_id,
            "predicted_member_id": self.predicted_member_id,
            "predicted_team_name": self.predicted_team_name,
            "amount": self.amount,
            "odds_times100": self.odds_times100,
            "is_resolved": self.is_resolved,
            "payout": self.payout,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


@dataclass
class PlaceWagerResult:
    status: PlaceWagerStatus
    wager: Optional[WagerView] = None
    odds: Dict[int, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is PlaceWagerStatus.OK


@dataclass
class ResolveResult:
    status: ResolveStatus
    settled: int = 0
    payouts: Dict[str, int] = field(default_factory=dict)  # bettor → coins credited

    @property
    def ok(self) -> bool:
        return self.status is ResolveStatus.OK


@dataclass
class CancelResult:
    status: CancelStatus
    refunded: Dict[str, int] = field(default_factory=dict)  # bettor → coins returned

    @property
    def ok(self) -> bool:
        return self.status is CancelStatus.OK


@dataclass
class NightResult:
    bettor_id: str
    display_name: Optional[str]
    staked: int
    returned: int

    @property
    def net(self) -> int:
        return self.returned - self.staked

    def to_dict(self) -> dict:
        return {
            "bettor_id": self.bettor_id,
            "display_name": self.display_name,
            "staked": self.staked,
            "returned": self.returned,
            "net": self.net,
        }


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class WagerLedger:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        odds: Optional[OddsEngine] = None,
        ratings: Optional[RatingEngine] = None,
        clock: Optional[Clock] = None,
        hub: Optional[NotificationHub] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock or Clock()
        self.ratings = ratings or (odds.ratings if odds else RatingEngine(clock=self.clock))
        self.odds = odds or OddsEngine(self.ratings, self.ratings.config, clock=self.clock)
        self.hub = hub or get_notification_hub()

    # -----------------------------------------------------------------------
    # Placement
    # -----------------------------------------------------------------------

    def place_wager(
        self,
        game_id: int,
        predicted_winner: Union[int, str],
        amount: int,
        bettor_id: str,
        cancel: Optional[threading.Event] = None,
    ) -> PlaceWagerResult:
        """
        Validate and record a wager, debit the stake and reprice the game.

        ``predicted_winner`` is a member id or a team name.  Picking a
        member who is on a team backs the whole team.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            return PlaceWagerResult(PlaceWagerStatus.INVALID_AMOUNT)

        db = self.session_factory()
        try:
            result = self._place(db, game_id, predicted_winner, amount, bettor_id)
            if result.ok:
                self._check_cancel(cancel)
                db.commit()
            else:
                db.rollback()
        except IntegrityError:
            db.rollback()
            logger.warning("Concurrent duplicate wager by %s on game %d", bettor_id, game_id)
            return PlaceWagerResult(PlaceWagerStatus.ALREADY_WAGERED)
        except OperationCancelled:
            db.rollback()
            logger.info("Wager placement on game %d cancelled by caller", game_id)
            raise
        except Exception as exc:
            db.rollback()
            logger.error("Wager placement on game %d failed: %s", game_id, exc, exc_info=True)
            raise
        finally:
            db.close()

        if not result.ok:
            logger.warning(
                "Wager rejected (%s): bettor=%s game=%d winner=%r amount=%d",
                result.status.value, bettor_id, game_id, predicted_winner, amount,
            )
            return result

        logger.info(
            "Wager %d placed: bettor=%s game=%d amount=%d odds=%d",
            result.wager.id, bettor_id, game_id, amount, result.wager.odds_times100,
        )
        self._publish(WAGER_PLACED, game_id, result.wager.to_dict())
        self._publish(ODDS_UPDATED, game_id, {"odds": result.odds})
        return result

    def _place(
        self, db: Session, game_id: int, predicted_winner: Union[int, str], amount: int, bettor_id: str
    ) -> PlaceWagerResult:
        # Row lock serializes placements on one game, so repricing sees every open wager
        game = (
            db.query(GameInstance)
            .filter(GameInstance.id == game_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if game is None:
            return PlaceWagerResult(PlaceWagerStatus.NOT_FOUND)
        if game.state != STATE_CONFIRMED:
            return PlaceWagerResult(PlaceWagerStatus.NOT_CONFIRMED)
        if game.scheduled_date < self.clock.today() or game.has_result:
            return PlaceWagerResult(PlaceWagerStatus.PAST_DEADLINE)

        existing = (
            db.query(Wager.id)
            .filter(Wager.game_instance_id == game_id, Wager.bettor_id == bettor_id)
            .first()
        )
        if existing is not None:
            return PlaceWagerResult(PlaceWagerStatus.ALREADY_WAGERED)

        pick = _resolve_prediction(roster_layout(game), predicted_winner)
        if pick is None:
            return PlaceWagerResult(PlaceWagerStatus.INVALID_WINNER)
        member_id, team_name = pick

        quote = (
            db.query(OddsQuote)
            .filter(OddsQuote.game_instance_id == game_id, OddsQuote.member_id == member_id)
            .first()
        )
        if quote is None:
            return PlaceWagerResult(PlaceWagerStatus.MISSING_ODDS)

        if not coins.try_debit(db, bettor_id, amount):
            return PlaceWagerResult(PlaceWagerStatus.INSUFFICIENT_FUNDS)

        wager = Wager(
            game_instance_id=game_id,
            bettor_id=bettor_id,
            predicted_member_id=member_id,
            predicted_team_name=team_name,
            amount=amount,
            odds_times100=quote.odds_times100,
            created_at=self.clock.now(),
        )
        db.add(wager)
        db.flush()

        self.odds.recalculate_for_cashflow(db, game_id)
        return PlaceWagerResult(
            PlaceWagerStatus.OK,
            wager=WagerView.from_row(wager),
            odds=self.odds.get_odds_for_outcome(db, game_id),
        )

    # -----------------------------------------------------------------------
    # Settlement
    # -----------------------------------------------------------------------

    def resolve_outcome(
        self, game_id: int, cancel: Optional[threading.Event] = None
    ) -> ResolveResult:
        """
        Settle every open wager on a finished game.

        Winners receive stake plus profit at their locked odds; losers
        receive nothing.  The first settlement pass also updates ratings
        and freezes the odds.  Repeating the call is harmless and returns
        ALREADY_RESOLVED.
        """
        db = self.session_factory()
        try:
            result = self._resolve(db, game_id)
            if result.ok:
                self._check_cancel(cancel)
                db.commit()
            else:
                db.rollback()
        except OperationCancelled:
            db.rollback()
            logger.info("Resolution of game %d cancelled by caller", game_id)
            raise
        except Exception as exc:
            db.rollback()
            logger.error("Resolution of game %d failed: %s", game_id, exc, exc_info=True)
            raise
        finally:
            db.close()

        if not result.ok:
            logger.info("Resolution of game %d skipped: %s", game_id, result.status.value)
            return result

        logger.info(
            "Game %d resolved: %d wager(s) settled, %d coin(s) paid to %d bettor(s)",
            game_id, result.settled, sum(result.payouts.values()), len(result.payouts),
        )
        self._publish(WAGERS_RESOLVED, game_id, {"settled": result.settled, "payouts": result.payouts})
        return result

    def _resolve(self, db: Session, game_id: int) -> ResolveResult:
        game = db.get(GameInstance, game_id)
        if game is None:
            return ResolveResult(ResolveStatus.NOT_FOUND)
        if game.scheduled_date > self.clock.today():
            return ResolveResult(ResolveStatus.NOT_PAST)
        if not game.has_result:
            return ResolveResult(ResolveStatus.MISSING_WINNER)

        # Re-read under the row lock; a concurrent pass may have just finished
        game = (
            db.query(GameInstance)
            .filter(GameInstance.id == game_id)
            .with_for_update()
            .populate_existing()
            .one()
        )
        open_wagers = (
            db.query(Wager)
            .filter(Wager.game_instance_id == game_id, Wager.is_resolved.is_(False))
            .order_by(Wager.id)
            .with_for_update()
            .all()
        )
        if game.state == STATE_RESOLVED and not open_wagers:
            return ResolveResult(ResolveStatus.ALREADY_RESOLVED)

        layout = roster_layout(game)
        winner = layout.winning_branch(game.winner_member_id, game.winner_team_name)
        now = self.clock.now()

        payouts: Dict[str, int] = defaultdict(int)
        for wager in open_wagers:
            if _wager_wins(layout, winner, wager):
                wager.payout = wager.amount + compute_profit(wager.amount, wager.odds_times100)
                payouts[wager.bettor_id] += wager.payout
            else:
                wager.payout = 0
            wager.is_resolved = True
            wager.resolved_at = now

        for bettor_id, total in payouts.items():
            if not coins.try_credit(db, bettor_id, total):
                raise ValueError(f"Cannot credit {total} coins to unknown account {bettor_id!r}")

        if game.state != STATE_RESOLVED:
            self.ratings.apply_outcome(db, game, layout)
            game.state = STATE_RESOLVED
        db.flush()

        return ResolveResult(ResolveStatus.OK, settled=len(open_wagers), payouts=dict(payouts))

    # -----------------------------------------------------------------------
    # Refunds
    # -----------------------------------------------------------------------

    def cancel_open_wagers(
        self, game_id: int, cancel: Optional[threading.Event] = None
    ) -> CancelResult:
        """Refund and delete every open wager, clear the quotes and reopen planning."""
        db = self.session_factory()
        try:
            result = self._cancel(db, game_id)
            if result.ok:
                self._check_cancel(cancel)
                db.commit()
            else:
                db.rollback()
        except OperationCancelled:
            db.rollback()
            logger.info("Refund of game %d cancelled by caller", game_id)
            raise
        except Exception as exc:
            db.rollback()
            logger.error("Refund of game %d failed: %s", game_id, exc, exc_info=True)
            raise
        finally:
            db.close()

        if not result.ok:
            logger.warning("Refund of game %d refused: %s", game_id, result.status.value)
            return result

        logger.info(
            "Game %d cancelled: refunded %d coin(s) to %d bettor(s)",
            game_id, sum(result.refunded.values()), len(result.refunded),
        )
        self._publish(WAGERS_CANCELLED, game_id, {"refunded": result.refunded})
        return result

    def _cancel(self, db: Session, game_id: int) -> CancelResult:
        game = (
            db.query(GameInstance)
            .filter(GameInstance.id == game_id)
            .with_for_update()
            .first()
        )
        if game is None:
            return CancelResult(CancelStatus.NOT_FOUND)

        settled = (
            db.query(Wager.id)
            .filter(Wager.game_instance_id == game_id, Wager.is_resolved.is_(True))
            .first()
        )
        if settled is not None or game.state == STATE_RESOLVED:
            return CancelResult(CancelStatus.BETS_ALREADY_SETTLED)

        open_wagers = (
            db.query(Wager)
            .filter(Wager.game_instance_id == game_id, Wager.is_resolved.is_(False))
            .with_for_update()
            .all()
        )
        refunded: Dict[str, int] = defaultdict(int)
        for wager in open_wagers:
            refunded[wager.bettor_id] += wager.amount
            db.delete(wager)

        for bettor_id, total in refunded.items():
            if not coins.try_credit(db, bettor_id, total):
                raise ValueError(f"Cannot refund {total} coins to unknown account {bettor_id!r}")

        game.odds.clear()
        game.state = STATE_PLANNED
        db.flush()
        return CancelResult(CancelStatus.OK, refunded=dict(refunded))

    # -----------------------------------------------------------------------
    # Book opening and reads
    # -----------------------------------------------------------------------

    def open_book(self, game_id: int, cancel: Optional[threading.Event] = None) -> Dict[int, int]:
        """Generate initial odds for a confirmed game.  Returns ``{}`` if nothing was priced."""
        db = self.session_factory()
        try:
            game = db.get(GameInstance, game_id)
            if game is None or game.state == STATE_RESOLVED:
                return {}
            odds = self.odds.generate_initial_odds(db, game_id)
            self._check_cancel(cancel)
            db.commit()
        except OperationCancelled:
            db.rollback()
            raise
        except Exception as exc:
            db.rollback()
            logger.error("Opening book for game %d failed: %s", game_id, exc, exc_info=True)
            raise
        finally:
            db.close()

        if odds:
            self._publish(ODDS_UPDATED, game_id, {"odds": odds})
        return odds

    def set_manual_odds(
        self,
        game_id: int,
        member_id: int,
        odds_times100: int,
        cancel: Optional[threading.Event] = None,
    ) -> Dict[int, int]:
        """Admin override of a contestant's (or their team's) odds.

        Raises:
            ValueError: odds out of range, unknown game, non-participant, or
                the game is already resolved.
        """
        db = self.session_factory()
        try:
            game = db.get(GameInstance, game_id)
            if game is not None and game.state == STATE_RESOLVED:
                raise ValueError(f"Game {game_id} is resolved; odds are frozen")
            self.odds.set_manual_odds(db, game_id, member_id, odds_times100)
            odds = self.odds.get_odds_for_outcome(db, game_id)
            self._check_cancel(cancel)
            db.commit()
        except OperationCancelled:
            db.rollback()
            raise
        except ValueError as exc:
            db.rollback()
            logger.warning("Manual odds for game %d refused: %s", game_id, exc)
            raise
        except Exception as exc:
            db.rollback()
            logger.error("Manual odds for game %d failed: %s", game_id, exc, exc_info=True)
            raise
        finally:
            db.close()

        self._publish(ODDS_UPDATED, game_id, {"odds": odds})
        return odds

    def get_user_wagers(self, game_id: int, bettor_id: str) -> List[WagerView]:
        db = self.session_factory()
        try:
            wagers = (
                db.query(Wager)
                .filter(Wager.game_instance_id == game_id, Wager.bettor_id == bettor_id)
                .order_by(Wager.created_at.desc())
                .all()
            )
            return [WagerView.from_row(w) for w in wagers]
        finally:
            db.close()

    def get_net_results(self, scheduled_date: date) -> List[NightResult]:
        """Per-bettor totals over resolved wagers for one game night, best first."""
        db = self.session_factory()
        try:
            rows = (
                db.query(
                    Wager.bettor_id,
                    Account.display_name,
                    func.sum(Wager.amount),
                    func.sum(Wager.payout),
                )
                .join(GameInstance, GameInstance.id == Wager.game_instance_id)
                .outerjoin(Account, Account.id == Wager.bettor_id)
                .filter(GameInstance.scheduled_date == scheduled_date, Wager.is_resolved.is_(True))
                .group_by(Wager.bettor_id, Account.display_name)
                .all()
            )
        finally:
            db.close()

        results = [
            NightResult(bettor_id, name, int(staked or 0), int(returned or 0))
            for bettor_id, name, staked, returned in rows
        ]
        results.sort(key=lambda r: (-r.net, r.bettor_id))
        return results

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    @staticmethod
    def _check_cancel(cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled()

    def _publish(self, kind: str, game_id: int, payload: dict) -> None:
        self.hub.publish(ChangeEvent(kind, game_id, payload, self.clock.now()))


def _resolve_prediction(
    layout: RosterLayout, predicted_winner: Union[int, str]
) -> Optional[Tuple[int, Optional[str]]]:
    """Map a member id or team name to ``(member_id, team_name)`` to store."""
    if isinstance(predicted_winner, str):
        branch = layout.team_branch(predicted_winner)
        if branch is None:
            return None
        return branch.member_ids[0], branch.team_name

    if isinstance(predicted_winner, bool):
        return None
    key = layout.branch_of_member.get(predicted_winner)
    if key is None:
        return None
    return predicted_winner, layout.branch(key).team_name


def _wager_wins(layout: RosterLayout, winner: Optional[Branch], wager: Wager) -> bool:
    if winner is None:
        return False
    return branch_for_wager(layout, wager) == winner.key
