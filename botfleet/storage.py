"""In-memory storage for bot records and activity logs.

Last write wins; nothing survives a process restart.  Logs are a bounded
FIFO: once ``retention`` entries are held, appending evicts the oldest.
"""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import replace
from datetime import datetime
from typing import Any

from .models import BotRecord, LogEntry, LogLevel

DEFAULT_LOG_RETENTION = 1000


class MemoryStorage:
    """Key-value CRUD for ``BotRecord`` plus append/query/clear for logs."""

    def __init__(self, log_retention: int = DEFAULT_LOG_RETENTION) -> None:
        self._bots: dict[str, BotRecord] = {}
        self._logs: deque[LogEntry] = deque(maxlen=log_retention)

    # --- Bots ---

    def get_bots(self) -> list[BotRecord]:
        return sorted(self._bots.values(), key=lambda b: b.username)

    def get_bot(self, bot_id: str) -> BotRecord | None:
        return self._bots.get(bot_id)

    def get_bot_by_username(self, username: str) -> BotRecord | None:
        for record in self._bots.values():
            if record.username == username:
                return record
        return None

    def create_bot(self, username: str, **fields: Any) -> BotRecord:
        record = BotRecord(id=str(uuid.uuid4()), username=username, **fields)
        self._bots[record.id] = record
        return record

    def update_bot(self, bot_id: str, **changes: Any) -> BotRecord | None:
        """Apply ``changes`` to a copy of the record and store it.

        Returns the new record, or None if ``bot_id`` is unknown.  Records
        handed out earlier are never mutated in place.
        """
        record = self._bots.get(bot_id)
        if record is None:
            return None
        updated = replace(record, **changes, last_seen=datetime.now())
        self._bots[bot_id] = updated
        return updated

    def delete_bot(self, bot_id: str) -> bool:
        return self._bots.pop(bot_id, None) is not None

    # --- Logs ---

    @property
    def log_retention(self) -> int:
        return self._logs.maxlen or DEFAULT_LOG_RETENTION

    def add_log(
        self, bot_id: str, bot_name: str, message: str, level: LogLevel
    ) -> LogEntry:
        entry = LogEntry(
            id=str(uuid.uuid4()),
            bot_id=bot_id,
            bot_name=bot_name,
            message=message,
            level=level,
        )
        self._logs.append(entry)
        return entry

    def get_logs(self, limit: int = 50) -> list[LogEntry]:
        """Most recent first."""
        return list(reversed(self._logs))[:limit]

    def get_bot_logs(self, bot_id: str, limit: int = 20) -> list[LogEntry]:
        """Most recent first, filtered to one bot."""
        matching = [e for e in reversed(self._logs) if e.bot_id == bot_id]
        return matching[:limit]

    def clear_logs(self) -> None:
        self._logs.clear()

    def __len__(self) -> int:
        return len(self._bots)
