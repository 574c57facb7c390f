"""Tests for the in-memory bot and log storage."""

from __future__ import annotations

from botfleet.models import BotAction, ConnectionState, LogLevel
from botfleet.storage import MemoryStorage


class TestBotRecords:
    def test_create_assigns_unique_ids(self) -> None:
        storage = MemoryStorage()
        a = storage.create_bot("Alpha")
        b = storage.create_bot("Beta")
        assert a.id != b.id
        assert len(storage) == 2

    def test_get_bots_sorted_by_username(self) -> None:
        storage = MemoryStorage()
        for name in ("Charlie", "alpha", "Bravo"):
            storage.create_bot(name)
        assert [b.username for b in storage.get_bots()] == ["Bravo", "Charlie", "alpha"]

    def test_lookup_by_username(self) -> None:
        storage = MemoryStorage()
        record = storage.create_bot("Alpha")
        assert storage.get_bot_by_username("Alpha") == record
        assert storage.get_bot_by_username("Nobody") is None

    def test_update_returns_new_record(self) -> None:
        storage = MemoryStorage()
        original = storage.create_bot("Alpha")

        updated = storage.update_bot(
            original.id,
            connection_state=ConnectionState.ONLINE,
            action=BotAction.ANTI_IDLE,
        )

        assert updated is not None
        assert updated.connection_state is ConnectionState.ONLINE
        assert updated.last_seen >= original.last_seen
        assert storage.get_bot(original.id) is updated
        # Earlier snapshots are not mutated
        assert original.connection_state is ConnectionState.OFFLINE

    def test_update_unknown_bot(self) -> None:
        assert MemoryStorage().update_bot("missing", health=3) is None

    def test_delete(self) -> None:
        storage = MemoryStorage()
        record = storage.create_bot("Alpha")
        assert storage.delete_bot(record.id) is True
        assert storage.delete_bot(record.id) is False
        assert storage.get_bot(record.id) is None


class TestLogs:
    def test_most_recent_first(self) -> None:
        storage = MemoryStorage()
        for i in range(5):
            storage.add_log("b1", "Alpha", f"m{i}", LogLevel.INFO)
        assert [e.message for e in storage.get_logs(3)] == ["m4", "m3", "m2"]

    def test_default_limits(self) -> None:
        storage = MemoryStorage()
        for i in range(100):
            storage.add_log("b1", "Alpha", f"m{i}", LogLevel.INFO)
        assert len(storage.get_logs()) == 50
        assert len(storage.get_bot_logs("b1")) == 20

    def test_bot_logs_filtered(self) -> None:
        storage = MemoryStorage()
        storage.add_log("b1", "Alpha", "a", LogLevel.INFO)
        storage.add_log("b2", "Beta", "b", LogLevel.WARNING)
        storage.add_log("b1", "Alpha", "c", LogLevel.ERROR)
        assert [e.message for e in storage.get_bot_logs("b1")] == ["c", "a"]

    def test_retention_evicts_oldest(self) -> None:
        storage = MemoryStorage()
        first = storage.add_log("b1", "Alpha", "log 0", LogLevel.INFO)
        for i in range(1, 1001):
            storage.add_log("b1", "Alpha", f"log {i}", LogLevel.INFO)

        logs = storage.get_logs(limit=2000)
        assert len(logs) == 1000
        assert first.id not in {e.id for e in logs}
        assert logs[0].message == "log 1000"
        assert logs[-1].message == "log 1"

    def test_custom_retention(self) -> None:
        storage = MemoryStorage(log_retention=3)
        for i in range(5):
            storage.add_log("b1", "Alpha", f"m{i}", LogLevel.INFO)
        assert storage.log_retention == 3
        assert [e.message for e in storage.get_logs()] == ["m4", "m3", "m2"]

    def test_clear(self) -> None:
        storage = MemoryStorage()
        storage.add_log("b1", "Alpha", "m", LogLevel.INFO)
        storage.clear_logs()
        assert storage.get_logs() == []
