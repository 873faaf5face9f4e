"""
Odds service: prices game-night outcomes from member ratings.

Lifecycle of a game's quotes:
  no quotes → initial quotes (on confirmation, jittered)
            → repriced after every wager (cashflow, no jitter)
            → frozen once the outcome is resolved

Public API:
  OddsEngine.generate_initial_odds(db, game_id)      → {member_id: odds×100}
  OddsEngine.recalculate_for_cashflow(db, game_id)   → {member_id: odds×100}
  OddsEngine.get_odds_for_outcome(db, game_id)       → {member_id: odds×100}
  OddsEngine.set_manual_odds(db, game_id, member_id, odds)

Nothing here commits.  The wager ledger owns the transaction.
"""

import logging
import random
from collections import defaultdict
from typing import Callable, Dict, Hashable, Iterable, Optional

from sqlalchemy.orm import Session

from gamenight.core.elo import team_average
from gamenight.core.engine_config import EngineConfig
from gamenight.core.odds_math import (
    apply_jitter,
    cashflow_multiplier,
    clamp_odds,
    implied_overround,
    potential_payout,
    snap_to_appealing,
    win_probabilities,
)
from gamenight.core.odds_math import probability_to_odds as _probability_to_odds
from gamenight.core.roster import COOP, RosterLayout, classify_roster
from gamenight.models import STATE_RESOLVED, GameInstance, OddsQuote, Wager
from gamenight.services.clock import Clock
from gamenight.services.ratings import RatingEngine

logger = logging.getLogger(__name__)

# Stand-in opponent a co-op team plays against
_NOMINAL_OPPONENT = "__nominal__"


def roster_layout(game: GameInstance) -> RosterLayout:
    return classify_roster((p.member_id, p.team_name) for p in game.players)


def branch_for_wager(layout: RosterLayout, wager: Wager) -> Optional[str]:
    """Branch key a wager is riding on, or None if it no longer matches the roster."""
    if wager.predicted_team_name:
        branch = layout.team_branch(wager.predicted_team_name)
        return branch.key if branch else None
    return layout.branch_of_member.get(wager.predicted_member_id)


class OddsEngine:
    """Rating-driven odds with exposure-based repricing."""

    def __init__(
        self,
        ratings: Optional[RatingEngine] = None,
        config: Optional[EngineConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or EngineConfig.defaults()
        self.ratings = ratings or RatingEngine(self.config)
        self.rng = rng or random.Random()
        self.clock = clock or Clock()

    # -----------------------------------------------------------------------
    # Pricing primitives
    # -----------------------------------------------------------------------

    def calculate_win_probabilities(
        self,
        contestants: Iterable[Hashable],
        rating_lookup: Callable[[Hashable], float],
    ) -> Dict[Hashable, float]:
        return win_probabilities(contestants, rating_lookup)

    def probability_to_odds(self, probability: float) -> int:
        return _probability_to_odds(
            probability,
            target_margin=self.config.target_margin,
            min_odds=self.config.min_odds,
            max_odds=self.config.max_odds,
        )

    def branch_probabilities(self, db: Session, layout: RosterLayout) -> Dict[str, float]:
        """Win probability per branch key.  Teams are priced on average rating."""
        if not layout.branches:
            return {}

        ratings = self.ratings.get_ratings(db, layout.member_ids)
        strength = {
            b.key: team_average(ratings[m] for m in b.member_ids) for b in layout.branches
        }

        if layout.mode == COOP:
            team_key = layout.branches[0].key
            strength[_NOMINAL_OPPONENT] = self.config.default_rating
            probabilities = win_probabilities([team_key, _NOMINAL_OPPONENT], strength.__getitem__)
            return {team_key: probabilities[team_key]}

        return win_probabilities([b.key for b in layout.branches], strength.__getitem__)

    # -----------------------------------------------------------------------
    # Quote lifecycle
    # -----------------------------------------------------------------------

    def generate_initial_odds(self, db: Session, game_id: int) -> Dict[int, int]:
        """
        Price every branch from ratings and replace the game's quotes.

        Each branch gets one jittered value; teammates share it.  The value
        is stored as both current and base odds.  Returns ``{}`` without
        writing anything when the game is unknown or has no players.
        """
        game = db.get(GameInstance, game_id)
        if game is None or not game.players:
            return {}

        layout = roster_layout(game)
        probabilities = self.branch_probabilities(db, layout)

        branch_odds: Dict[str, int] = {}
        for key, probability in probabilities.items():
            branch_odds[key] = apply_jitter(
                self.probability_to_odds(probability),
                self.rng,
                jitter_pct=self.config.jitter_pct,
                min_odds=self.config.min_odds,
                max_odds=self.config.max_odds,
            )

        game.odds.clear()
        db.flush()

        now = self.clock.now()
        result: Dict[int, int] = {}
        for branch in layout.branches:
            odds = branch_odds[branch.key]
            for member_id in branch.member_ids:
                game.odds.append(OddsQuote(
                    member_id=member_id,
                    odds_times100=odds,
                    base_odds_times100=odds,
                    updated_at=now,
                ))
                result[member_id] = odds
        db.flush()

        logger.info(
            "Initial odds for game %d (%s, %d branch(es)): %s",
            game_id, layout.mode, len(layout.branches), result,
        )
        return result

    def recalculate_for_cashflow(self, db: Session, game_id: int) -> Dict[int, int]:
        """
        Reprice a game's quotes from the open-wager exposure.

        Each branch with open wagers has its base odds cut in proportion to
        its potential payout relative to the largest one.  Branches with no
        open wagers keep their current quote.  If the resulting book falls
        outside the overround band, all branches are rescaled from base odds
        to the target margin.  Repeating the pass for the same wagers gives
        the same quotes.

        Returns the new ``{member_id: odds}``, or ``{}`` when there is
        nothing to reprice (unknown or resolved game, no quotes, no open
        wagers).
        """
        game = db.get(GameInstance, game_id)
        if game is None or game.state == STATE_RESOLVED:
            return {}

        quotes = db.query(OddsQuote).filter(OddsQuote.game_instance_id == game_id).all()
        if not quotes:
            return {}

        open_wagers = (
            db.query(Wager)
            .filter(Wager.game_instance_id == game_id, Wager.is_resolved.is_(False))
            .all()
        )
        if not open_wagers:
            return {}

        layout = roster_layout(game)
        quote_by_member = {q.member_id: q for q in quotes}

        base_odds: Dict[str, int] = {}
        for branch in layout.branches:
            quote = next(
                (quote_by_member[m] for m in branch.member_ids if m in quote_by_member), None
            )
            if quote is not None:
                base_odds[branch.key] = quote.base_odds_times100

        staked: Dict[str, int] = defaultdict(int)
        exposure: Dict[str, int] = defaultdict(int)
        for wager in open_wagers:
            key = branch_for_wager(layout, wager)
            if key not in base_odds:
                continue
            staked[key] += wager.amount
            exposure[key] += potential_payout(wager.amount, wager.odds_times100)

        if not exposure:
            return {}

        max_payout = max(exposure.values())
        adjusted: Dict[str, float] = {}
        for key, odds in base_odds.items():
            if key in exposure:
                odds = odds * cashflow_multiplier(
                    exposure[key],
                    max_payout,
                    factor=self.config.cashflow_factor,
                    window=self.config.adjustment_window,
                )
            adjusted[key] = float(odds)

        # A single branch (co-op) has no book to balance
        rescaled = False
        if len(adjusted) > 1:
            overround = sum(100.0 / o for o in adjusted.values())
            low, high = self.config.overround_band
            if not low <= overround <= high:
                scale = overround / self.config.target_margin
                adjusted = {key: odds * scale for key, odds in adjusted.items()}
                rescaled = True
                logger.debug(
                    "Game %d overround %.3f outside [%.2f, %.2f]; rescaled by %.3f",
                    game_id, overround, low, high, scale,
                )

        # Branches nobody backed keep their quote unless the whole book moved
        now = self.clock.now()
        result: Dict[int, int] = {}
        for branch in layout.branches:
            if branch.key not in adjusted:
                continue
            odds = None
            if rescaled or branch.key in exposure:
                odds = snap_to_appealing(
                    clamp_odds(int(adjusted[branch.key]), self.config.min_odds, self.config.max_odds)
                )
            for member_id in branch.member_ids:
                quote = quote_by_member.get(member_id)
                if quote is None:
                    continue
                if odds is not None:
                    quote.odds_times100 = odds
                    quote.updated_at = now
                result[member_id] = quote.odds_times100
        db.flush()

        logger.info(
            "Repriced game %d on %d open wager(s), %d staked: %s",
            game_id, len(open_wagers), sum(staked.values()), result,
        )
        return result

    def get_odds_for_outcome(self, db: Session, game_id: int) -> Dict[int, int]:
        rows = (
            db.query(OddsQuote.member_id, OddsQuote.odds_times100)
            .filter(OddsQuote.game_instance_id == game_id)
            .all()
        )
        return {member_id: odds for member_id, odds in rows}

    def set_manual_odds(
        self, db: Session, game_id: int, member_id: int, odds_times100: int
    ) -> Dict[int, int]:
        """
        Admin override of one contestant's odds.

        Applies to the whole team when the member is team-tagged, and sets
        both current and base odds so later repricing anchors on it.

        Raises:
            ValueError: odds outside the accepted range, or the member is
                not on the game's roster.
        """
        low, high = self.config.manual_odds_bounds
        if not low <= odds_times100 <= high:
            raise ValueError(f"Odds {odds_times100} outside [{low}, {high}]")

        game = db.get(GameInstance, game_id)
        if game is None:
            raise ValueError(f"Game {game_id} not found")

        layout = roster_layout(game)
        key = layout.branch_of_member.get(member_id)
        if key is None:
            raise ValueError(f"Member {member_id} is not playing game {game_id}")

        quote_by_member = {q.member_id: q for q in game.odds}
        now = self.clock.now()
        result: Dict[int, int] = {}
        for mate_id in layout.branch(key).member_ids:
            quote = quote_by_member.get(mate_id)
            if quote is None:
                quote = OddsQuote(member_id=mate_id)
                game.odds.append(quote)
            quote.odds_times100 = odds_times100
            quote.base_odds_times100 = odds_times100
            quote.updated_at = now
            result[mate_id] = odds_times100
        db.flush()

        logger.info("Manual odds for game %d: %s", game_id, result)
        return result


def book_overround(odds_by_member: Dict[int, int], layout: RosterLayout) -> float:
    """Overround of a game's quotes, counting each branch once."""
    per_branch = {}
    for member_id, odds in odds_by_member.items():
        key = layout.branch_of_member.get(member_id)
        if key is not None:
            per_branch[key] = odds
    return implied_overround(per_branch.values())
