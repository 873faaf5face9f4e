"""Roster classification: how a game's participants group into branches.

A *branch* is one way a game can resolve for bettors: a single contestant,
a team, or the lone co-op team.  Pure functions only; callers pass plain
``(member_id, team_name)`` pairs.

Classification rules::

    no team tags                         → INDIVIDUAL  (one branch per member)
    one tag shared by every participant  → COOP        (one branch)
    anything else                        → TEAM        (one branch per tag,
                                                        untagged members solo)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

INDIVIDUAL = "individual"
TEAM = "team"
COOP = "coop"


def normalize_team(team_name: Optional[str]) -> Optional[str]:
    if team_name is None:
        return None
    cleaned = team_name.strip()
    return cleaned or None


def member_branch_key(member_id: int) -> str:
    return f"member:{member_id}"


def team_branch_key(team_name: str) -> str:
    return f"team:{team_name.casefold()}"


@dataclass(frozen=True)
class Branch:
    key: str
    member_ids: Tuple[int, ...]
    team_name: Optional[str] = None

    @property
    def is_team(self) -> bool:
        return self.team_name is not None


@dataclass
class RosterLayout:
    mode: str
    branches: List[Branch] = field(default_factory=list)
    branch_of_member: Dict[int, str] = field(default_factory=dict)

    @property
    def member_ids(self) -> List[int]:
        return list(self.branch_of_member)

    def branch(self, key: str) -> Optional[Branch]:
        for candidate in self.branches:
            if candidate.key == key:
                return candidate
        return None

    def team_branch(self, team_name: Optional[str]) -> Optional[Branch]:
        """Find a team branch by name, case-insensitively."""
        normalized = normalize_team(team_name)
        if normalized is None:
            return None
        return self.branch(team_branch_key(normalized))

    def member_team(self, member_id: int) -> Optional[str]:
        key = self.branch_of_member.get(member_id)
        branch = self.branch(key) if key else None
        return branch.team_name if branch else None

    def winning_branch(
        self, winner_member_id: Optional[int], winner_team_name: Optional[str]
    ) -> Optional[Branch]:
        """The branch a recorded result pays out on.

        A team name takes precedence.  A member winner who is on a team
        wins for the whole team.  None means nobody on the roster won.
        """
        if normalize_team(winner_team_name) is not None:
            return self.team_branch(winner_team_name)
        if winner_member_id is None:
            return None
        key = self.branch_of_member.get(winner_member_id)
        return self.branch(key) if key else None


def classify_roster(players: Iterable[Tuple[int, Optional[str]]]) -> RosterLayout:
    """Group ``(member_id, team_name)`` pairs into betting branches.

    Duplicate member ids keep their first team tag.  Team names are matched
    case-insensitively; the first spelling seen is kept for display.
    Branch order follows first appearance in ``players``.
    """
    seen: Dict[int, Optional[str]] = {}
    for member_id, team_name in players:
        if member_id not in seen:
            seen[member_id] = normalize_team(team_name)

    if not seen:
        return RosterLayout(mode=INDIVIDUAL)

    tags = {t.casefold() for t in seen.values() if t is not None}
    if not tags:
        branches = [Branch(member_branch_key(m), (m,)) for m in seen]
        return RosterLayout(
            mode=INDIVIDUAL,
            branches=branches,
            branch_of_member={m: member_branch_key(m) for m in seen},
        )

    mode = COOP if len(tags) == 1 and all(t is not None for t in seen.values()) else TEAM

    order: List[str] = []
    members_by_key: Dict[str, List[int]] = {}
    display: Dict[str, Optional[str]] = {}
    branch_of_member: Dict[int, str] = {}
    for member_id, team_name in seen.items():
        if team_name is None:
            key = member_branch_key(member_id)
        else:
            key = team_branch_key(team_name)
        if key not in members_by_key:
            order.append(key)
            members_by_key[key] = []
            display[key] = team_name
        members_by_key[key].append(member_id)
        branch_of_member[member_id] = key

    branches = [Branch(key, tuple(members_by_key[key]), display[key]) for key in order]
    return RosterLayout(mode=mode, branches=branches, branch_of_member=branch_of_member)
