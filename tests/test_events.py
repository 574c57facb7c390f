"""Tests for the fleet EventBus."""

from __future__ import annotations

import logging

import pytest

from botfleet.events import (
    ChatObserved,
    EventBus,
    FleetEvent,
    FleetEventKind,
)
from botfleet.models import BotRecord, LogEntry, LogLevel


def _event(kind: FleetEventKind = FleetEventKind.BOT_UPDATED) -> FleetEvent:
    return FleetEvent(kind, BotRecord(id="b1", username="Alpha"))


class TestWireFormat:
    @pytest.mark.parametrize(
        ("kind", "wire"),
        [
            (FleetEventKind.BOT_CONNECTED, "botConnected"),
            (FleetEventKind.BOT_DISCONNECTED, "botDisconnected"),
            (FleetEventKind.BOT_UPDATED, "botUpdated"),
            (FleetEventKind.NEW_LOG, "newLog"),
            (FleetEventKind.CHAT_OBSERVED, "chatObserved"),
        ],
    )
    def test_wire_names(self, kind: FleetEventKind, wire: str) -> None:
        assert kind.wire_name == wire

    def test_bot_event_dict(self) -> None:
        data = _event(FleetEventKind.BOT_CONNECTED).to_dict()
        assert data["event"] == "botConnected"
        assert data["data"]["username"] == "Alpha"

    def test_log_event_dict(self) -> None:
        entry = LogEntry(id="l1", bot_id="b1", bot_name="Alpha", message="m", level=LogLevel.ERROR)
        data = FleetEvent(FleetEventKind.NEW_LOG, entry).to_dict()
        assert data["data"]["level"] == "error"
        assert data["data"]["botName"] == "Alpha"

    def test_chat_event_dict(self) -> None:
        chat = ChatObserved(bot_id="b1", sender="rabbit0009", message="hi")
        data = FleetEvent(FleetEventKind.CHAT_OBSERVED, chat).to_dict()
        assert data == {
            "event": "chatObserved",
            "data": {"botId": "b1", "username": "rabbit0009", "message": "hi"},
        }


class TestEventBus:
    def test_delivers_to_all_subscribers(self) -> None:
        bus = EventBus()
        first: list[FleetEvent] = []
        second: list[FleetEvent] = []
        bus.subscribe(first.append)
        bus.subscribe(second.append)

        event = _event()
        bus.publish(event)

        assert first == [event]
        assert second == [event]

    def test_cancel_is_idempotent(self) -> None:
        bus = EventBus()
        received: list[FleetEvent] = []
        sub = bus.subscribe(received.append)
        sub.cancel()
        sub.cancel()

        bus.publish(_event())

        assert received == []
        assert bus.subscriber_count == 0

    def test_unsubscribe_unknown_handler(self) -> None:
        EventBus().unsubscribe(lambda e: None)

    def test_handler_may_cancel_itself(self) -> None:
        bus = EventBus()
        calls: list[str] = []

        def once(event: FleetEvent) -> None:
            calls.append("once")
            sub.cancel()

        sub = bus.subscribe(once)
        bus.subscribe(lambda e: calls.append("always"))

        bus.publish(_event())
        bus.publish(_event())

        assert calls == ["once", "always", "always"]

    def test_handler_removed_mid_delivery_is_skipped(self) -> None:
        bus = EventBus()
        calls: list[str] = []
        late_sub = None

        def remover(event: FleetEvent) -> None:
            calls.append("remover")
            late_sub.cancel()

        bus.subscribe(remover)
        late_sub = bus.subscribe(lambda e: calls.append("late"))

        bus.publish(_event())

        assert calls == ["remover"]

    def test_failing_handler_does_not_stop_delivery(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        bus = EventBus()
        received: list[FleetEvent] = []

        def broken(event: FleetEvent) -> None:
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(received.append)

        with caplog.at_level(logging.ERROR, logger="botfleet.events"):
            bus.publish(_event())

        assert len(received) == 1
        assert "boom" in caplog.text
