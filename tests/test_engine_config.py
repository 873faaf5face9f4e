"""Tests for core.engine_config: defaults, validation, environment overrides."""

from dataclasses import FrozenInstanceError, replace

import pytest

from gamenight.core.engine_config import ENV_PREFIX, EngineConfig


def test_defaults():
    cfg = EngineConfig.defaults()
    assert cfg.k_factor == 32
    assert cfg.default_rating == 1200
    assert (cfg.min_odds, cfg.max_odds) == (105, 2000)
    assert cfg.target_margin == pytest.approx(1.25)


def test_config_is_frozen():
    with pytest.raises(FrozenInstanceError):
        EngineConfig().k_factor = 16


@pytest.mark.parametrize("overrides", [
    {"min_odds": 100},
    {"min_odds": 500, "max_odds": 400},
    {"target_margin": 1.5},
    {"overround_band": (0.9, 1.3)},
    {"adjustment_window": 1.0},
])
def test_invalid_values_rejected(overrides):
    with pytest.raises(ValueError):
        replace(EngineConfig(), **overrides)


def test_from_env(monkeypatch):
    monkeypatch.setenv(ENV_PREFIX + "K_FACTOR", "16")
    monkeypatch.setenv(ENV_PREFIX + "JITTER_PCT", "0")
    cfg = EngineConfig.from_env()
    assert cfg.k_factor == 16
    assert cfg.jitter_pct == 0.0
    assert cfg.max_odds == 2000
