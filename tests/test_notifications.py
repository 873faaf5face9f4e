"""Tests for services.notifications: fan-out, unsubscribe, failing subscribers."""

from datetime import datetime

from gamenight.services.notifications import (
    ODDS_UPDATED,
    ChangeEvent,
    NotificationHub,
    get_notification_hub,
)


def test_publish_reaches_every_subscriber():
    hub = NotificationHub()
    first, second = [], []
    hub.subscribe(first.append)
    hub.subscribe(second.append)

    event = ChangeEvent(ODDS_UPDATED, game_id=3, payload={"odds": {1: 160}})
    assert hub.publish(event) == 2
    assert first == [event]
    assert second == [event]


def test_unsubscribe():
    hub = NotificationHub()
    seen = []
    unsubscribe = hub.subscribe(seen.append)
    unsubscribe()
    unsubscribe()  # second call is harmless

    assert hub.publish(ChangeEvent(ODDS_UPDATED, game_id=1)) == 0
    assert seen == []


def test_failing_subscriber_does_not_block_others():
    hub = NotificationHub()
    seen = []

    def broken(event):
        raise RuntimeError("socket closed")

    hub.subscribe(broken)
    hub.subscribe(seen.append)

    assert hub.publish(ChangeEvent(ODDS_UPDATED, game_id=1)) == 1
    assert len(seen) == 1


def test_event_to_dict():
    event = ChangeEvent("wager_placed", 7, {"amount": 50}, datetime(2026, 10, 18, 20, 0))
    assert event.to_dict() == {
        "kind": "wager_placed",
        "game_id": 7,
        "payload": {"amount": 50},
        "occurred_at": "2026-10-18T20:00:00",
    }


def test_process_wide_hub_is_shared():
    assert get_notification_hub() is get_notification_hub()
