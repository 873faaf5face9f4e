"""Tests for core.elo: expected scores, rating deltas, team averages."""

import pytest

from gamenight.core.elo import apply_floor, expected_score, rating_change, team_average


# ---------------------------------------------------------------------------
# expected_score
# ---------------------------------------------------------------------------

def test_equal_ratings_are_a_coin_flip():
    assert expected_score(1200, 1200) == pytest.approx(0.5)


def test_stronger_player_is_favoured():
    assert expected_score(1400, 1200) == pytest.approx(0.7597, abs=1e-4)
    assert expected_score(1200, 1400) == pytest.approx(0.2403, abs=1e-4)


@pytest.mark.parametrize("a, b", [(1200, 1200), (1400, 1200), (900, 1650), (100, 2400)])
def test_expected_scores_are_complementary(a, b):
    assert expected_score(a, b) + expected_score(b, a) == pytest.approx(1.0)


# ---------------------------------------------------------------------------
# rating_change
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("winner, loser, expected", [
    (1400, 1200, (8, 8)),     # favourite wins: small move
    (1200, 1200, (16, 16)),   # even match: half of K
    (1200, 1400, (24, 24)),   # upset: large move
])
def test_rating_change(winner, loser, expected):
    assert rating_change(winner, loser, 32) == expected


def test_rating_change_scales_with_k():
    assert rating_change(1200, 1200, 16) == (8, 8)


def test_overwhelming_favourite_barely_moves():
    gain, loss = rating_change(2400, 100, 32)
    assert gain == 0
    assert loss == 0


# ---------------------------------------------------------------------------
# team_average / apply_floor
# ---------------------------------------------------------------------------

def test_team_average_truncates():
    assert team_average([1200, 1301]) == 1250


def test_team_average_of_one():
    assert team_average([1337]) == 1337


def test_team_average_empty_raises():
    with pytest.raises(ValueError):
        team_average([])


@pytest.mark.parametrize("rating, expected", [(90, 100), (100, 100), (1200, 1200)])
def test_apply_floor(rating, expected):
    assert apply_floor(rating, 100) == expected
