"""
ELO-style skill ratings for meetup members.

Ratings move only when an outcome is finalized by the wager ledger.  All
updates run inside the caller's session and never commit; a failed
settlement therefore never leaves half-applied ratings behind.

Rules
-----
Individual win : winner gains round(K × (1 − E)) against each loser,
                  summed; each loser drops round(K × E_loser).
Team win       : same formula on team average ratings, applied uniformly
                  to every member of each team.
Co-op win      : the team gains against a nominal default-rated opponent.
No winner      : flat penalty to everyone (a lost co-op game, say).
All decreases are floor-clamped at the configured minimum rating.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from gamenight.core.elo import apply_floor, rating_change, team_average
from gamenight.core.engine_config import EngineConfig
from gamenight.core.roster import COOP, RosterLayout, classify_roster
from gamenight.models import GameInstance, Member
from gamenight.services.clock import Clock

logger = logging.getLogger(__name__)


@dataclass
class MemberRanking:
    member_id: int
    name: str
    rating: int
    last_updated: Optional[datetime]


class RatingEngine:
    """Reads and updates member ratings within a caller-supplied session."""

    def __init__(self, config: Optional[EngineConfig] = None, clock: Optional[Clock] = None):
        self.config = config or EngineConfig.defaults()
        self.clock = clock or Clock()

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get_rating(self, db: Session, member_id: int) -> int:
        rating = db.query(Member.elo_rating).filter(Member.id == member_id).scalar()
        return self.config.default_rating if rating is None else rating

    def get_ratings(self, db: Session, member_ids: Iterable[int]) -> Dict[int, int]:
        ids = list(dict.fromkeys(member_ids))
        if not ids:
            return {}

        rows = db.query(Member.id, Member.elo_rating).filter(Member.id.in_(ids)).all()
        found = {member_id: rating for member_id, rating in rows}
        return {i: found.get(i, self.config.default_rating) for i in ids}

    def get_leaderboard(self, db: Session, limit: int = 20) -> List[MemberRanking]:
        members = (
            db.query(Member)
            .order_by(Member.elo_rating.desc(), Member.name.asc())
            .limit(limit)
            .all()
        )
        return [
            MemberRanking(m.id, m.name, m.elo_rating, m.elo_rating_updated_at)
            for m in members
        ]

    # -----------------------------------------------------------------------
    # Updates
    # -----------------------------------------------------------------------

    def update_for_individual_win(
        self, db: Session, winner_id: int, loser_ids: Sequence[int]
    ) -> Dict[int, int]:
        """Apply pairwise deltas.  Returns ``{member_id: new_rating}`` for changed members."""
        losers = [i for i in dict.fromkeys(loser_ids) if i != winner_id]
        if not losers:
            return {}

        members = self._load_members(db, [winner_id, *losers])
        now = self.clock.now()
        winner = members[winner_id]
        winner_rating = winner.elo_rating
        total_gain = 0

        for loser_id in losers:
            loser = members[loser_id]
            gain, loss = rating_change(winner_rating, loser.elo_rating, self.config.k_factor)
            total_gain += gain
            loser.elo_rating = apply_floor(loser.elo_rating - loss, self.config.min_rating)
            loser.elo_rating_updated_at = now

        winner.elo_rating += total_gain
        winner.elo_rating_updated_at = now
        db.flush()

        logger.info("Individual win: member %d +%d over %d loser(s)", winner_id, total_gain, len(losers))
        return {m_id: members[m_id].elo_rating for m_id in [winner_id, *losers]}

    def update_for_team_win(
        self,
        db: Session,
        winning_team: Sequence[int],
        losing_teams: Sequence[Sequence[int]],
    ) -> Dict[int, int]:
        """Apply team-average deltas uniformly to every member of each team."""
        winners = list(dict.fromkeys(winning_team))
        losing = [list(dict.fromkeys(t)) for t in losing_teams if t]
        if not winners or not losing:
            return {}

        all_ids = winners + [m for team in losing for m in team]
        members = self._load_members(db, all_ids)
        now = self.clock.now()

        winning_average = team_average(members[m].elo_rating for m in winners)
        losing_averages = [team_average(members[m].elo_rating for m in team) for team in losing]

        gain_per_member = 0
        for team, losing_average in zip(losing, losing_averages):
            gain, loss = rating_change(winning_average, losing_average, self.config.k_factor)
            gain_per_member += gain
            for member_id in team:
                member = members[member_id]
                member.elo_rating = apply_floor(member.elo_rating - loss, self.config.min_rating)
                member.elo_rating_updated_at = now

        for member_id in winners:
            members[member_id].elo_rating += gain_per_member
            members[member_id].elo_rating_updated_at = now
        db.flush()

        logger.info(
            "Team win: %d member(s) +%d over %d losing team(s)",
            len(winners), gain_per_member, len(losing),
        )
        return {m_id: members[m_id].elo_rating for m_id in dict.fromkeys(all_ids)}

    def update_for_coop_win(self, db: Session, team: Sequence[int]) -> Dict[int, int]:
        """A co-op team beat the game: gain against a default-rated opponent."""
        players = list(dict.fromkeys(team))
        if not players:
            return {}

        members = self._load_members(db, players)
        now = self.clock.now()
        average = team_average(members[m].elo_rating for m in players)
        gain, _ = rating_change(average, self.config.default_rating, self.config.k_factor)
        for member_id in players:
            members[member_id].elo_rating += gain
            members[member_id].elo_rating_updated_at = now
        db.flush()

        logger.info("Co-op win: %d member(s) +%d", len(players), gain)
        return {m_id: members[m_id].elo_rating for m_id in players}

    def update_for_no_contest(self, db: Session, player_ids: Sequence[int]) -> Dict[int, int]:
        """Flat penalty for everyone when nobody won."""
        players = list(dict.fromkeys(player_ids))
        if not players:
            return {}

        members = self._load_members(db, players)
        now = self.clock.now()
        penalty = self.config.no_contest_penalty
        for member in members.values():
            member.elo_rating = apply_floor(member.elo_rating - penalty, self.config.min_rating)
            member.elo_rating_updated_at = now
        db.flush()

        logger.info("No contest: %d member(s) -%d", len(players), penalty)
        return {m_id: members[m_id].elo_rating for m_id in players}

    def apply_outcome(
        self, db: Session, game: GameInstance, layout: Optional[RosterLayout] = None
    ) -> Dict[int, int]:
        """
        Dispatch the rating update matching a finished game's result.

        A member winner who belongs to a team in a team game counts as a win
        for that team.  A team winner that matches no team on the roster, or
        a played game with no winner, is a no contest.
        """
        if layout is None:
            layout = classify_roster((p.member_id, p.team_name) for p in game.players)
        if len(layout.branches) == 0:
            return {}

        winning_branch = layout.winning_branch(game.winner_member_id, game.winner_team_name)
        if winning_branch is None:
            return self.update_for_no_contest(db, layout.member_ids)

        if layout.mode == COOP:
            return self.update_for_coop_win(db, winning_branch.member_ids)

        others = [b for b in layout.branches if b.key != winning_branch.key]
        if not winning_branch.is_team and all(not b.is_team for b in others):
            return self.update_for_individual_win(
                db, winning_branch.member_ids[0], [b.member_ids[0] for b in others]
            )
        return self.update_for_team_win(
            db, winning_branch.member_ids, [b.member_ids for b in others]
        )

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _load_members(self, db: Session, member_ids: Sequence[int]) -> Dict[int, Member]:
        """Load members for update, creating unknown ones at the default rating."""
        ids = list(dict.fromkeys(member_ids))
        members = {
            m.id: m
            for m in db.query(Member).filter(Member.id.in_(ids)).with_for_update().all()
        }
        for member_id in ids:
            if member_id not in members:
                member = Member(
                    id=member_id,
                    name=f"Member {member_id}",
                    elo_rating=self.config.default_rating,
                )
                db.add(member)
                members[member_id] = member
                logger.info("Created member %d at default rating", member_id)
        return members
