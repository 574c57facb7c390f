"""Fleet event channel.

Each FleetManager owns one EventBus.  Observers (the WebSocket broadcaster,
the Telegram bot, tests) subscribe explicitly and get a Subscription back.
Publishing iterates over a snapshot of subscribers, so a handler may cancel
its own subscription, or subscribe others, while an event is being delivered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from .models import BotRecord, LogEntry, bot_to_dict, log_to_dict

logger = logging.getLogger(__name__)


class FleetEventKind(str, Enum):
    BOT_CONNECTED = "bot_connected"
    BOT_DISCONNECTED = "bot_disconnected"
    BOT_UPDATED = "bot_updated"
    NEW_LOG = "new_log"
    CHAT_OBSERVED = "chat_observed"

    @property
    def wire_name(self) -> str:
        """camelCase name used on the broadcast socket (``botConnected``)."""
        head, *rest = self.value.split("_")
        return head + "".join(part.capitalize() for part in rest)


@dataclass(frozen=True)
class ChatObserved:
    bot_id: str
    sender: str
    message: str


@dataclass(frozen=True)
class FleetEvent:
    kind: FleetEventKind
    payload: BotRecord | LogEntry | ChatObserved

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.payload, BotRecord):
            data = bot_to_dict(self.payload)
        elif isinstance(self.payload, LogEntry):
            data = log_to_dict(self.payload)
        else:
            data = {
                "botId": self.payload.bot_id,
                "username": self.payload.sender,
                "message": self.payload.message,
            }
        return {"event": self.kind.wire_name, "data": data}


EventHandler = Callable[[FleetEvent], None]


class Subscription:
    """Handle returned by ``EventBus.subscribe``; cancel() is idempotent."""

    def __init__(self, bus: EventBus, handler: EventHandler) -> None:
        self._bus = bus
        self.handler = handler
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._bus.unsubscribe(self.handler)


class EventBus:
    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Subscription:
        self._handlers.append(handler)
        return Subscription(self, handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        """Safe to call even if ``handler`` is not subscribed."""
        if handler in self._handlers:
            self._handlers.remove(handler)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def publish(self, event: FleetEvent) -> None:
        for handler in list(self._handlers):
            # May have been removed by an earlier handler in this delivery
            if handler not in self._handlers:
                continue
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Event handler %r failed on %s: %s",
                    handler, event.kind.value, e,
                )
