"""
Post-commit change notifications.

The wager ledger publishes a ``ChangeEvent`` only after its transaction has
committed.  Real-time layers (websocket push, chat bots) subscribe with a
callback.  Delivery is at-most-once and best-effort: a failing subscriber
is logged and skipped, and nothing here can roll back engine state.

Public API:
  NotificationHub.subscribe(callback)    → unsubscribe function
  NotificationHub.publish(event)         → number of subscribers reached
  get_notification_hub()                 → process-wide hub
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

ODDS_UPDATED = "odds_updated"
WAGER_PLACED = "wager_placed"
WAGERS_RESOLVED = "wagers_resolved"
WAGERS_CANCELLED = "wagers_cancelled"


# ---------------------------------------------------------------------------
# Event dataclass
# ---------------------------------------------------------------------------

@dataclass
class ChangeEvent:
    kind: str
    game_id: int
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc).replace(tzinfo=None)
    )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "game_id": self.game_id,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


Subscriber = Callable[[ChangeEvent], None]


# ---------------------------------------------------------------------------
# Hub
# ---------------------------------------------------------------------------

class NotificationHub:
    """
    In-process fan-out channel.

    Usage::

        hub = NotificationHub()
        unsubscribe = hub.subscribe(lambda e: print(e.kind))
        hub.publish(ChangeEvent(ODDS_UPDATED, game_id=1))
        unsubscribe()
    """

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, event: ChangeEvent) -> int:
        """Deliver ``event`` to every subscriber; return how many succeeded."""
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for callback in subscribers:
            try:
                callback(event)
                delivered += 1
            except Exception as exc:
                logger.error("Notification subscriber failed (%s, game %d): %s",
                             event.kind, event.game_id, exc)
        return delivered


_hub: Optional[NotificationHub] = None


def get_notification_hub() -> NotificationHub:
    global _hub
    if _hub is None:
        _hub = NotificationHub()
    return _hub
