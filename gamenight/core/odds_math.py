"""Fundamental odds mathematics: the single source of truth.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement locally in services or models.

The four pillars exposed are:

1. **Win probabilities**: multi-way strength from pairwise ELO scores.
2. **Odds conversion**: probability → margin-adjusted, clamped decimal
   odds ×100 snapped to a catalog of appealing fractions.
3. **Cashflow maths**: potential payouts, exposure multipliers, overround.
4. **Settlement and display**: reduced-fraction profit and formatting.

Design decisions
----------------
* Odds are integers scaled by 100 (``300`` = 3.00× total return) so that
  stored quotes never drift through floating-point round-trips.
* :func:`win_probabilities` is a deliberate heuristic: each contestant's
  strength is the sum of its expected scores against every other entrant,
  normalised over the pool.  It is not a calibrated multi-way choice model
  (Bradley-Terry, Plackett-Luce) and must not be "fixed"; quoted odds and
  their tests depend on its exact output.
* Profit is computed from the reduced fraction ``(odds − 100) / 100`` with
  integer floor division, matching the fraction shown to bettors, so a
  displayed 7/4 always pays exactly ``floor(stake × 7 / 4)``.

Run tests with::

    pytest tests/test_odds_math.py -v
"""

from __future__ import annotations

import bisect
import math
import random
from typing import Callable, Dict, Final, Hashable, Iterable, Sequence, Tuple, TypeVar

from gamenight.core.elo import expected_score

T = TypeVar("T", bound=Hashable)

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: Decimal odds ×100 that read as conventional fractions, sorted ascending.
#: 105 (1/20) opens the list so every clamped value has an exact entry.
APPEALING_ODDS: Final[Tuple[int, ...]] = (
    105,   # 1/20
    110,   # 1/10
    115,   # 3/20
    120,   # 1/5
    125,   # 1/4
    130,   # 3/10
    140,   # 2/5
    150,   # 1/2
    160,   # 3/5
    170,   # 7/10
    180,   # 4/5
    190,   # 9/10
    200,   # 1/1 (evens)
    210,   # 11/10
    220,   # 6/5
    225,   # 5/4
    240,   # 7/5
    250,   # 3/2
    275,   # 7/4
    300,   # 2/1
    325,   # 9/4
    350,   # 5/2
    375,   # 11/4
    400,   # 3/1
    450,   # 7/2
    500,   # 4/1
    550,   # 9/2
    600,   # 5/1
    650,   # 11/2
    700,   # 6/1
    800,   # 7/1
    900,   # 8/1
    1000,  # 9/1
    1100,  # 10/1
    1200,  # 11/1
    1400,  # 13/1
    1600,  # 15/1
    1800,  # 17/1
    2000,  # 19/1
)

#: Odds at or below even stake (1.00×) carry no profit.
EVEN_STAKE: Final[int] = 100

#: Tolerance used when asserting that probabilities sum to one.
PROBABILITY_SUM_TOL: Final[float] = 1e-9


# ---------------------------------------------------------------------------
# Win probabilities
# ---------------------------------------------------------------------------


def win_probabilities(
    contestants: Iterable[T],
    rating_lookup: Callable[[T], float],
) -> Dict[T, float]:
    """Approximate each contestant's chance of winning a multi-way game.

    For every contestant the expected scores against all other entrants are
    summed; each sum is then divided by the total of all sums.  Duplicate
    contestants are collapsed.

    Args:
        contestants: Members, teams, or any hashable unit.
        rating_lookup: Returns the rating used for a contestant.

    Returns:
        ``{contestant: probability}`` summing to 1.0.  An empty pool yields
        ``{}``; a single contestant yields ``{c: 1.0}``.

    Examples::

        win_probabilities(["a", "b"], {"a": 1200, "b": 1200}.get)
            → {"a": 0.5, "b": 0.5}
    """
    pool = list(dict.fromkeys(contestants))
    if not pool:
        return {}
    if len(pool) == 1:
        return {pool[0]: 1.0}

    ratings = {c: rating_lookup(c) for c in pool}
    strengths: Dict[T, float] = {}
    for contestant in pool:
        strengths[contestant] = sum(
            expected_score(ratings[contestant], ratings[opponent])
            for opponent in pool
            if opponent != contestant
        )

    total = sum(strengths.values())
    if total <= 0:
        return {c: 1.0 / len(pool) for c in pool}
    return {c: strengths[c] / total for c in pool}


# ---------------------------------------------------------------------------
# Odds conversion
# ---------------------------------------------------------------------------


def clamp_odds(odds_times100: int, min_odds: int, max_odds: int) -> int:
    return max(min_odds, min(max_odds, odds_times100))


def snap_to_appealing(
    odds_times100: int,
    catalog: Sequence[int] = APPEALING_ODDS,
) -> int:
    """Snap odds to the nearest catalog entry.

    An exact match is returned as is.  Otherwise the two bracketing entries
    are compared and the numerically closer one wins; a tie goes to the
    smaller odds.  Values outside the catalog snap to its ends.

    Examples::

        snap_to_appealing(160) → 160
        snap_to_appealing(136) → 140
        snap_to_appealing(135) → 130   (tie → smaller)
    """
    index = bisect.bisect_left(catalog, odds_times100)
    if index < len(catalog) and catalog[index] == odds_times100:
        return odds_times100
    if index == 0:
        return catalog[0]
    if index >= len(catalog):
        return catalog[-1]

    lower = catalog[index - 1]
    upper = catalog[index]
    return lower if (odds_times100 - lower) <= (upper - odds_times100) else upper


def probability_to_odds(
    probability: float,
    *,
    target_margin: float = 1.25,
    min_odds: int = 105,
    max_odds: int = 2000,
) -> int:
    """Convert a win probability to quoted decimal odds ×100.

    Fair odds ``1 / p`` are divided by ``target_margin`` (the house edge),
    truncated to an integer ×100, clamped to ``[min_odds, max_odds]`` and
    snapped with :func:`snap_to_appealing`.

    Args:
        probability: Win probability.  ``≤ 0`` prices at ``max_odds``;
            ``≥ 1`` prices at ``min_odds``.
        target_margin: Aggregate implied probability a fairly priced book
            should carry (1.25 → 125 %).

    Returns:
        A catalog entry within ``[min_odds, max_odds]``.

    Examples::

        probability_to_odds(0.5)  → 160   (2.00 / 1.25 = 1.60)
        probability_to_odds(0.25) → 320 → 325
    """
    if probability <= 0.0:
        return snap_to_appealing(max_odds)
    if probability >= 1.0:
        return snap_to_appealing(min_odds)

    fair_odds = 1.0 / probability
    priced = fair_odds / target_margin
    odds_times100 = int(priced * 100)
    return snap_to_appealing(clamp_odds(odds_times100, min_odds, max_odds))


def apply_jitter(
    odds_times100: int,
    rng: random.Random,
    *,
    jitter_pct: float,
    min_odds: int,
    max_odds: int,
) -> int:
    """Move odds by a uniform random amount within ``±jitter_pct``.

    The result is truncated and re-clamped but not snapped.
    """
    spread = odds_times100 * jitter_pct
    adjustment = (rng.random() * 2.0 - 1.0) * spread
    return clamp_odds(int(odds_times100 + adjustment), min_odds, max_odds)


# ---------------------------------------------------------------------------
# Cashflow maths
# ---------------------------------------------------------------------------


def potential_payout(amount: int, odds_times100: int) -> int:
    """Total return owed on a winning stake (stake included), truncated.

    Examples::

        potential_payout(100, 300) → 300
        potential_payout(10, 100)  → 10
    """
    if odds_times100 <= EVEN_STAKE:
        return amount
    return (amount * odds_times100) // 100


def cashflow_multiplier(
    payout: int,
    max_payout: int,
    *,
    factor: float,
    window: float,
) -> float:
    """Odds multiplier for a branch given its share of the house liability.

    The branch carrying ``max_payout`` is cut by ``factor``; branches with
    less exposure are cut proportionally less.  The result is bounded to
    ``[1 − window, 1 + window]``.
    """
    ratio = payout / max_payout if max_payout > 0 else 0.0
    multiplier = 1.0 - ratio * factor
    return max(1.0 - window, min(1.0 + window, multiplier))


def implied_overround(odds: Iterable[int]) -> float:
    """Aggregate implied probability ``Σ 100 / odds`` across branches.

    Example::

        implied_overround([160, 160]) → 1.25
    """
    return sum(100.0 / o for o in odds if o > 0)


# ---------------------------------------------------------------------------
# Settlement and display
# ---------------------------------------------------------------------------


def to_fraction(odds_times100: int) -> Tuple[int, int]:
    """Fractional (profit) odds as a reduced ``(numerator, denominator)``.

    Odds at or below even stake return ``(1, 1)``, the display convention
    used across the app.

    Examples::

        to_fraction(275) → (7, 4)
        to_fraction(300) → (2, 1)
    """
    if odds_times100 <= EVEN_STAKE:
        return 1, 1
    numerator = odds_times100 - EVEN_STAKE
    denominator = 100
    divisor = math.gcd(numerator, denominator) or 1
    return numerator // divisor, denominator // divisor


def compute_profit(amount: int, odds_times100: int) -> int:
    """Integer profit on a winning stake from the locked-in odds.

    Uses the reduced fraction so that rounding matches the displayed odds.

    Raises:
        ValueError: If ``amount`` is negative.

    Examples::

        compute_profit(100, 300) → 200
        compute_profit(10, 275)  → 17
        compute_profit(50, 100)  → 0
    """
    if amount < 0:
        raise ValueError(f"Stake {amount!r} must be non-negative.")
    if odds_times100 <= EVEN_STAKE:
        return 0
    numerator, denominator = to_fraction(odds_times100)
    return (amount * numerator) // denominator


def format_fraction(odds_times100: int) -> str:
    numerator, denominator = to_fraction(odds_times100)
    return f"{numerator}/{denominator}"


def format_decimal(odds_times100: int) -> str:
    return f"{odds_times100 / 100.0:.2f}"
