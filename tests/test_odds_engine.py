"""Tests for services.odds: initial pricing, cashflow repricing, overrides."""

import random
from unittest.mock import MagicMock

import pytest

from gamenight.core.engine_config import EngineConfig
from gamenight.core.roster import classify_roster
from gamenight.models import STATE_RESOLVED, GameInstance, Wager
from gamenight.services.odds import OddsEngine


def _run(session_factory, work):
    db = session_factory()
    try:
        result = work(db)
        db.commit()
        return result
    finally:
        db.close()


def _add_wager(session_factory, game_id, member_id, amount, odds, bettor="alice", team=None):
    def _add(db):
        db.add(Wager(
            game_instance_id=game_id,
            bettor_id=bettor,
            predicted_member_id=member_id,
            predicted_team_name=team,
            amount=amount,
            odds_times100=odds,
        ))
    _run(session_factory, _add)


@pytest.fixture
def duel(seed):
    a, b = seed.member("A"), seed.member("B")
    return seed.game([(a, None), (b, None)]), a, b


@pytest.fixture
def teams(seed):
    r1, r2, b1, b2 = (seed.member(n) for n in ("R1", "R2", "B1", "B2"))
    game = seed.game([(r1, "Red"), (r2, "Red"), (b1, "Blue"), (b2, "Blue")])
    return game, (r1, r2), (b1, b2)


# ---------------------------------------------------------------------------
# Pricing primitives
# ---------------------------------------------------------------------------

def test_probability_to_odds_uses_config(odds_engine):
    assert odds_engine.probability_to_odds(0.5) == 160


def test_calculate_win_probabilities(odds_engine):
    probs = odds_engine.calculate_win_probabilities([1, 2], {1: 1200, 2: 1200}.get)
    assert probs == {1: pytest.approx(0.5), 2: pytest.approx(0.5)}


def test_branch_probabilities_average_team_ratings():
    ratings = MagicMock()
    ratings.get_ratings.return_value = {1: 1300, 2: 1100, 3: 1200, 4: 1200}
    engine = OddsEngine(ratings=ratings, config=EngineConfig(jitter_pct=0.0))

    layout = classify_roster([(1, "Red"), (2, "Red"), (3, "Blue"), (4, "Blue")])
    probs = engine.branch_probabilities(None, layout)

    assert probs == {"team:red": pytest.approx(0.5), "team:blue": pytest.approx(0.5)}
    ratings.get_ratings.assert_called_once()


def test_branch_probabilities_coop_against_default_opponent():
    ratings = MagicMock()
    ratings.get_ratings.return_value = {1: 1400, 2: 1400}
    engine = OddsEngine(ratings=ratings, config=EngineConfig(jitter_pct=0.0))

    probs = engine.branch_probabilities(None, classify_roster([(1, "Crew"), (2, "Crew")]))

    assert list(probs) == ["team:crew"]
    assert probs["team:crew"] == pytest.approx(1 / (1 + 10 ** (-200 / 400)))


# ---------------------------------------------------------------------------
# generate_initial_odds
# ---------------------------------------------------------------------------

def test_two_equal_players_get_160(session_factory, odds_engine, seed, duel):
    game, a, b = duel
    odds = _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    assert odds == {a: 160, b: 160}
    assert seed.quotes(game) == {a: 160, b: 160}
    assert seed.base_quotes(game) == {a: 160, b: 160}


def test_three_equal_players(session_factory, odds_engine, seed):
    players = [seed.member(n) for n in ("A", "B", "C")]
    game = seed.game([(m, None) for m in players])
    odds = _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    assert set(odds.values()) == {240}


def test_favourite_gets_shorter_odds(session_factory, odds_engine, seed):
    ace, rookie = seed.member("Ace", 1500), seed.member("Rookie", 1000)
    game = seed.game([(ace, None), (rookie, None)])
    odds = _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    assert odds[ace] < odds[rookie]


def test_teammates_share_odds(session_factory, odds_engine, teams):
    game, red, blue = teams
    odds = _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    assert odds == {m: 160 for m in red + blue}


def test_coop_priced_against_nominal_opponent(session_factory, odds_engine, seed):
    crew = [seed.member("C1", 1300), seed.member("C2", 1100)]
    game = seed.game([(m, "Crew") for m in crew])
    odds = _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    assert odds == {crew[0]: 160, crew[1]: 160}


def test_team_with_solo_unit(session_factory, odds_engine, seed):
    r1, r2, solo = seed.member("R1"), seed.member("R2"), seed.member("S")
    game = seed.game([(r1, "Red"), (r2, "Red"), (solo, None)])
    odds = _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    assert odds == {r1: 160, r2: 160, solo: 160}


def test_missing_game_or_empty_roster(session_factory, odds_engine, seed):
    empty = seed.game([])
    assert _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, 999)) == {}
    assert _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, empty)) == {}
    assert seed.quotes(empty) == {}


def test_regeneration_replaces_quotes(session_factory, odds_engine, seed, duel):
    game, a, b = duel
    _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    assert len(seed.quotes(game)) == 2


def test_jitter_is_bounded_and_seedable(session_factory, ratings, clock, seed, teams):
    game, red, blue = teams

    def generate(seed_value):
        engine = OddsEngine(ratings, EngineConfig(), random.Random(seed_value), clock)
        return _run(session_factory, lambda db: engine.generate_initial_odds(db, game))

    first = generate(42)
    assert first == generate(42)
    for odds in first.values():
        assert 147 <= odds <= 172
    assert first[red[0]] == first[red[1]]
    assert first[blue[0]] == first[blue[1]]


# ---------------------------------------------------------------------------
# recalculate_for_cashflow
# ---------------------------------------------------------------------------

def test_exposed_branch_shortens(session_factory, odds_engine, seed, duel):
    game, a, b = duel
    _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    _add_wager(session_factory, game, a, 100, 160)

    odds = _run(session_factory, lambda db: odds_engine.recalculate_for_cashflow(db, game))
    # 160 × 0.85 = 136; book at 136 %, rescaled to 125 % → 148 / 174 → snapped
    assert odds == {a: 150, b: 170}
    assert seed.base_quotes(game) == {a: 160, b: 160}


def test_repricing_is_idempotent(session_factory, odds_engine, seed, duel):
    game, a, b = duel
    _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    _add_wager(session_factory, game, a, 100, 160)

    first = _run(session_factory, lambda db: odds_engine.recalculate_for_cashflow(db, game))
    second = _run(session_factory, lambda db: odds_engine.recalculate_for_cashflow(db, game))
    assert first == second == seed.quotes(game)


def test_repricing_keeps_teammates_in_sync(session_factory, odds_engine, seed, teams):
    game, red, blue = teams
    _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    _add_wager(session_factory, game, red[0], 100, 160, team="Red")

    odds = _run(session_factory, lambda db: odds_engine.recalculate_for_cashflow(db, game))
    assert odds[red[0]] == odds[red[1]] == 150
    assert odds[blue[0]] == odds[blue[1]] == 170


def test_balanced_book_left_within_band(session_factory, odds_engine, seed, duel):
    game, a, b = duel
    _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    _add_wager(session_factory, game, a, 100, 160, bettor="alice")
    _add_wager(session_factory, game, b, 100, 160, bettor="bob")

    odds = _run(session_factory, lambda db: odds_engine.recalculate_for_cashflow(db, game))
    # Equal exposure: both cut to 136, book at 147 % → rescaled back to 160
    assert odds == {a: 160, b: 160}


def test_unbacked_branches_keep_their_quotes_inside_band(session_factory, odds_engine, seed):
    a, b, c, d = (seed.member(n) for n in "ABCD")
    game = seed.game([(a, None), (b, None), (c, None), (d, None)])
    _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    _run(session_factory, lambda db: odds_engine.set_manual_odds(db, game, b, 330))
    assert seed.quotes(game) == {a: 325, b: 330, c: 325, d: 325}

    _add_wager(session_factory, game, a, 100, 325)
    odds = _run(session_factory, lambda db: odds_engine.recalculate_for_cashflow(db, game))

    # a: 325 × 0.85 → 275; book ≈ 1.28 stays in band, nobody else moves
    assert odds == {a: 275, b: 330, c: 325, d: 325}
    assert seed.quotes(game) == odds
    assert _run(session_factory, lambda db: odds_engine.recalculate_for_cashflow(db, game)) == odds


def test_no_open_wagers_is_noop(session_factory, odds_engine, seed, duel):
    game, a, b = duel
    _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    assert _run(session_factory, lambda db: odds_engine.recalculate_for_cashflow(db, game)) == {}
    assert seed.quotes(game) == {a: 160, b: 160}


def test_no_quotes_is_noop(session_factory, odds_engine, duel):
    game, a, b = duel
    _add_wager(session_factory, game, a, 100, 160)
    assert _run(session_factory, lambda db: odds_engine.recalculate_for_cashflow(db, game)) == {}


def test_resolved_game_is_frozen(session_factory, odds_engine, seed, duel):
    game, a, b = duel
    _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    _add_wager(session_factory, game, a, 100, 160)

    def resolve(db):
        db.get(GameInstance, game).state = STATE_RESOLVED
    _run(session_factory, resolve)

    assert _run(session_factory, lambda db: odds_engine.recalculate_for_cashflow(db, game)) == {}
    assert seed.quotes(game) == {a: 160, b: 160}


# ---------------------------------------------------------------------------
# Manual override and reads
# ---------------------------------------------------------------------------

def test_manual_odds_apply_to_team(session_factory, odds_engine, seed, teams):
    game, red, blue = teams
    _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    _run(session_factory, lambda db: odds_engine.set_manual_odds(db, game, red[1], 275))

    assert seed.quotes(game) == {red[0]: 275, red[1]: 275, blue[0]: 160, blue[1]: 160}
    assert seed.base_quotes(game)[red[0]] == 275


def test_manual_odds_become_repricing_anchor(session_factory, odds_engine, seed, duel):
    game, a, b = duel
    _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    _run(session_factory, lambda db: odds_engine.set_manual_odds(db, game, b, 300))
    _add_wager(session_factory, game, b, 100, 300)

    odds = _run(session_factory, lambda db: odds_engine.recalculate_for_cashflow(db, game))
    # b: 300 × 0.85 = 255; book 100/160 + 100/255 ≈ 1.017 → scaled by 0.814
    assert odds == {a: 130, b: 210}


@pytest.mark.parametrize("odds", [100, 10001])
def test_manual_odds_bounds(session_factory, odds_engine, duel, odds):
    game, a, b = duel
    with pytest.raises(ValueError):
        _run(session_factory, lambda db: odds_engine.set_manual_odds(db, game, a, odds))


def test_manual_odds_rejects_non_player(session_factory, odds_engine, duel):
    game, a, b = duel
    with pytest.raises(ValueError):
        _run(session_factory, lambda db: odds_engine.set_manual_odds(db, game, 404, 200))


def test_get_odds_for_outcome(session_factory, odds_engine, duel):
    game, a, b = duel
    _run(session_factory, lambda db: odds_engine.generate_initial_odds(db, game))
    assert _run(session_factory, lambda db: odds_engine.get_odds_for_outcome(db, game)) == {a: 160, b: 160}
