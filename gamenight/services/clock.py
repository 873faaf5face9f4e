"""
Time source for placement/resolution timestamps and deadline checks.

Timestamps are naive UTC to match the ``DateTime`` columns in
``gamenight.models``.  Tests pass a ``FixedClock``.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone


class Clock:
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def today(self) -> date:
        return self.now().date()


@dataclass
class FixedClock(Clock):
    """Clock frozen at ``current``; advance it by assigning a new value."""

    current: datetime

    def now(self) -> datetime:
        return self.current
