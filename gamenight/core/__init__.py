"""Core mathematics and configuration for the game-night wagering engine.

This package contains pure building blocks:

- ``elo``            expected score and pairwise rating deltas
- ``odds_math``      win probabilities, odds catalog, payouts, formatting
- ``engine_config``  tunable rating and odds constants
- ``roster``         grouping of players into individual, team or co-op branches

Nothing in this package imports from ``gamenight.services`` or
``gamenight.models``.  All modules are side-effect-free and unit-testable
in isolation.
"""
