from __future__ import annotations

import logging

import pytest

from leadflow.core.events import ALL_EVENTS, InProcessEventBus, InternalEvent


def test_subscribers_receive_matching_and_wildcard_events() -> None:
    bus = InProcessEventBus()
    exact: list[InternalEvent] = []
    everything: list[str] = []
    bus.subscribe("pipeline.lead.stage_changed", exact.append)
    bus.subscribe(ALL_EVENTS, lambda event: everything.append(event.name))

    bus.publish("pipeline.lead.stage_changed", {"lead_id": "l1"})
    bus.publish("pipeline.message.sent", {"lead_id": "l1"})

    assert [event.payload for event in exact] == [{"lead_id": "l1"}]
    assert everything == ["pipeline.lead.stage_changed", "pipeline.message.sent"]


def test_duplicate_subscription_is_ignored_and_unsubscribe_stops_delivery() -> None:
    bus = InProcessEventBus()
    received: list[InternalEvent] = []
    bus.subscribe("system.started", received.append)
    bus.subscribe("system.started", received.append)

    bus.publish("system.started", {})
    bus.unsubscribe("system.started", received.append)
    bus.publish("system.started", {})

    assert len(received) == 1


def test_failing_subscriber_does_not_stop_others(caplog: pytest.LogCaptureFixture) -> None:
    bus = InProcessEventBus()
    received: list[str] = []

    def broken(event: InternalEvent) -> None:
        raise RuntimeError("subscriber down")

    bus.subscribe("pipeline.activity.completed", broken)
    bus.subscribe("pipeline.activity.completed", lambda event: received.append(event.name))

    with caplog.at_level(logging.ERROR, logger="leadflow.events"):
        bus.publish("pipeline.activity.completed", {"activity_id": "a1"})

    assert received == ["pipeline.activity.completed"]
    assert any(record.getMessage() == "event.handler_failed" for record in caplog.records)
