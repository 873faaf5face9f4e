"""ELO rating arithmetic.

Every function here is **pure**: no I/O, no logging, no side effects.
:mod:`gamenight.services.ratings` applies these results to stored members;
:mod:`gamenight.services.odds` reuses :func:`expected_score` for pricing.

Formula
-------
The expected score of A against B is the standard logistic curve::

    E_A = 1 / (1 + 10 ** ((R_B - R_A) / 400))

After a decisive game the winner moves by ``K × (1 − E_winner)`` and the
loser by ``K × (0 − E_loser)``.  Both deltas are rounded half-to-even
(Python's :func:`round`), so for a single pair they are always equal in
magnitude.
"""

from __future__ import annotations

from typing import Iterable, Tuple


def expected_score(rating_a: float, rating_b: float) -> float:
    """Probability that A beats B under the ELO model.

    Examples::

        expected_score(1200, 1200) → 0.5
        expected_score(1400, 1200) → 0.7597
    """
    return 1.0 / (1.0 + 10.0 ** ((rating_b - rating_a) / 400.0))


def rating_change(winner_rating: float, loser_rating: float, k_factor: int) -> Tuple[int, int]:
    """Return ``(winner_gain, loser_loss)`` for one decisive pairing.

    Both values are non-negative integers; the caller adds the first and
    subtracts the second.

    Example::

        rating_change(1400, 1200, 32) → (8, 8)
    """
    expected_winner = expected_score(winner_rating, loser_rating)
    expected_loser = 1.0 - expected_winner

    winner_gain = int(round(k_factor * (1.0 - expected_winner)))
    loser_loss = -int(round(k_factor * (0.0 - expected_loser)))
    return winner_gain, loser_loss


def team_average(ratings: Iterable[int]) -> int:
    """Mean rating of a team, truncated to an integer.

    Raises:
        ValueError: If ``ratings`` is empty.
    """
    values = list(ratings)
    if not values:
        raise ValueError("Cannot average an empty team")
    return int(sum(values) / len(values))


def apply_floor(rating: int, min_rating: int) -> int:
    return max(min_rating, rating)
