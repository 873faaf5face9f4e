"""Engine-level configuration. Every tunable constant lives here.

This module is the **registry** for the numbers the rating and odds engines
depend on.  Nowhere else in the codebase should the K-factor, odds bounds,
or the house margin be hard-coded.

Architecture
------------
:class:`EngineConfig` is a frozen dataclass.  :meth:`EngineConfig.defaults`
returns the game-night values; :meth:`EngineConfig.from_env` applies
``GAMENIGHT_*`` environment overrides on top of them.  Services receive the
config by injection and never read the environment themselves.

Typical usage::

    from gamenight.core.engine_config import EngineConfig

    cfg = EngineConfig.from_env()

    # Override a single constant for a one-off experiment:
    from dataclasses import replace
    generous = replace(cfg, target_margin=1.20)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final, Tuple

from dotenv import load_dotenv

#: Prefix for all environment overrides read by :meth:`EngineConfig.from_env`.
ENV_PREFIX: Final[str] = "GAMENIGHT_"


@dataclass(frozen=True)
class EngineConfig:
    """Immutable bundle of rating and odds constants.

    Attributes:
        k_factor: ELO K-factor.  Chess uses 16-32; 32 lets ratings move
            meaningfully in a casual group that plays few games.
        default_rating: Rating assumed for members who have never played.
        min_rating: Floor applied after every rating decrease.
        no_contest_penalty: Flat points removed from every participant of a
            game nobody won (e.g. a lost co-op game).

        min_odds: Lowest decimal odds ×100 ever quoted (1.05×).
        max_odds: Highest decimal odds ×100 ever quoted (20.00×).
        jitter_pct: Half-width of the uniform jitter applied to initial
            odds only, as a fraction of the computed value.
        target_margin: Divisor applied to fair odds.  1.25 puts the
            aggregate implied probability of a fairly priced book at 125 %.
        overround_band: Acceptable aggregate implied probability range
            after repricing.  Outside it, all branches are rescaled toward
            ``target_margin``.

        cashflow_factor: How strongly relative payout exposure lowers a
            branch's odds.  A branch carrying the maximum liability is cut
            by this fraction.
        adjustment_window: Maximum relative move of any branch away from
            its base odds in a single repricing pass.

        manual_odds_bounds: Inclusive range accepted by the admin odds
            override.
    """

    # Ratings
    k_factor: int = 32
    default_rating: int = 1200
    min_rating: int = 100
    no_contest_penalty: int = 10

    # Odds generation
    min_odds: int = 105
    max_odds: int = 2000
    jitter_pct: float = 0.08
    target_margin: float = 1.25
    overround_band: Tuple[float, float] = (1.20, 1.30)

    # Cashflow repricing
    cashflow_factor: float = 0.15
    adjustment_window: float = 0.25

    # Admin override
    manual_odds_bounds: Tuple[int, int] = (101, 10000)

    def __post_init__(self) -> None:
        if self.min_odds <= 100 or self.max_odds <= self.min_odds:
            raise ValueError(
                f"Invalid odds bounds [{self.min_odds}, {self.max_odds}]: "
                "min must exceed 100 and max must exceed min."
            )
        low, high = self.overround_band
        if not (1.0 <= low <= self.target_margin <= high):
            raise ValueError(
                f"target_margin={self.target_margin} must sit inside "
                f"overround_band={self.overround_band} and the band must be ≥ 1.0."
            )
        if not (0.0 <= self.adjustment_window < 1.0):
            raise ValueError("adjustment_window must be in [0, 1)")

    # ------------------------------------------------------------------
    # Named constructors
    # ------------------------------------------------------------------

    @classmethod
    def defaults(cls) -> "EngineConfig":
        return cls()

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a config from ``GAMENIGHT_*`` environment variables.

        Unset variables fall back to :meth:`defaults`.  Recognised names:
        ``K_FACTOR``, ``DEFAULT_RATING``, ``MIN_RATING``,
        ``NO_CONTEST_PENALTY``, ``MIN_ODDS``, ``MAX_ODDS``, ``JITTER_PCT``,
        ``TARGET_MARGIN``, ``CASHFLOW_FACTOR``, ``ADJUSTMENT_WINDOW``.
        """
        load_dotenv()
        base = cls.defaults()

        def _int(name: str, default: int) -> int:
            return int(os.getenv(ENV_PREFIX + name, str(default)))

        def _float(name: str, default: float) -> float:
            return float(os.getenv(ENV_PREFIX + name, str(default)))

        return cls(
            k_factor=_int("K_FACTOR", base.k_factor),
            default_rating=_int("DEFAULT_RATING", base.default_rating),
            min_rating=_int("MIN_RATING", base.min_rating),
            no_contest_penalty=_int("NO_CONTEST_PENALTY", base.no_contest_penalty),
            min_odds=_int("MIN_ODDS", base.min_odds),
            max_odds=_int("MAX_ODDS", base.max_odds),
            jitter_pct=_float("JITTER_PCT", base.jitter_pct),
            target_margin=_float("TARGET_MARGIN", base.target_margin),
            overround_band=base.overround_band,
            cashflow_factor=_float("CASHFLOW_FACTOR", base.cashflow_factor),
            adjustment_window=_float("ADJUSTMENT_WINDOW", base.adjustment_window),
            manual_odds_bounds=base.manual_odds_bounds,
        )
