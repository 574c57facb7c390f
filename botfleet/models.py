"""Data models for the bot fleet.

``BotRecord`` and ``LogEntry`` are the records kept by storage and pushed to
observers; ``Command`` is the validated shape of a command arriving from a
transport.  The ``*_to_dict`` helpers produce the camelCase JSON payloads the
dashboard clients consume.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

FLEET_LOG_ID = "fleet"

# Command names that take a target player instead of being sent as chat
TARGETED_COMMANDS = frozenset({"follow", "attack"})


class ConnectionState(str, Enum):
    OFFLINE = "offline"
    CONNECTING = "connecting"
    ONLINE = "online"
    RECONNECTING = "reconnecting"


class BotAction(str, Enum):
    IDLE = "idle"
    FOLLOWING = "following"
    ATTACKING = "attacking"
    ANTI_IDLE = "anti_idle"
    DISCONNECTED = "disconnected"


class LogLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Position:
    x: float
    y: float
    z: float

    def distance_to(self, other: Position) -> float:
        return math.sqrt(
            (self.x - other.x) ** 2
            + (self.y - other.y) ** 2
            + (self.z - other.z) ** 2
        )

    def rounded(self) -> Position:
        return Position(round(self.x), round(self.y), round(self.z))


@dataclass
class BotRecord:
    """Status record for one registered bot."""

    id: str
    username: str
    connection_state: ConnectionState = ConnectionState.OFFLINE
    action: BotAction = BotAction.IDLE
    target: str | None = None

    # Telemetry (only updated while online)
    health: float = 20.0
    max_health: float = 20.0
    position: Position | None = None

    uptime_seconds: int = 0
    is_registered: bool = False
    last_seen: datetime = field(default_factory=datetime.now)

    @property
    def online(self) -> bool:
        return self.connection_state is ConnectionState.ONLINE


@dataclass
class LogEntry:
    id: str
    bot_id: str
    bot_name: str
    message: str
    level: LogLevel
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class CommandResult:
    """Outcome of a command-surface call, with a human-readable message."""

    success: bool
    message: str
    error: str | None = None  # error class name, e.g. "TargetNotFound"

    @classmethod
    def ok(cls, message: str) -> CommandResult:
        return cls(True, message)

    @classmethod
    def fail(cls, message: str, error: str | None = None) -> CommandResult:
        return cls(False, message, error)

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message, "error": self.error}


class Command(BaseModel):
    """A raw command or chat line addressed to one bot or the whole fleet.

    With ``target`` set, ``command`` names a targeted action instead
    (``follow`` or ``attack``).
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["individual", "global"]
    bot_id: str | None = Field(default=None, alias="botId")
    command: str = Field(min_length=1)
    target: str | None = None

    @model_validator(mode="after")
    def _check_bot_id(self) -> Command:
        if self.type == "individual" and not self.bot_id:
            raise ValueError("botId is required for individual commands")
        if self.type == "global" and self.bot_id:
            raise ValueError("botId must not be set for global commands")
        if self.target is not None and self.command not in TARGETED_COMMANDS:
            raise ValueError(
                f"target is only valid with {sorted(TARGETED_COMMANDS)} commands"
            )
        return self

    @property
    def is_raw(self) -> bool:
        """Raw protocol commands start with a slash; anything else is chat."""
        return self.command.startswith("/")


# ---------------------------------------------------------------------------
#  Serialization
# ---------------------------------------------------------------------------


def bot_to_dict(record: BotRecord) -> dict[str, Any]:
    position = None
    if record.position is not None:
        position = {
            "x": record.position.x,
            "y": record.position.y,
            "z": record.position.z,
        }
    return {
        "id": record.id,
        "username": record.username,
        "status": record.connection_state.value,
        "action": record.action.value,
        "target": record.target,
        "health": record.health,
        "maxHealth": record.max_health,
        "uptime": record.uptime_seconds,
        "isRegistered": record.is_registered,
        "position": position,
        "lastSeen": record.last_seen.isoformat(),
    }


def log_to_dict(entry: LogEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "botId": entry.bot_id,
        "botName": entry.bot_name,
        "message": entry.message,
        "level": entry.level.value,
        "timestamp": entry.timestamp.isoformat(),
    }


# ---------------------------------------------------------------------------
#  Parsing of bridge event payloads
# ---------------------------------------------------------------------------


def parse_position(data: dict) -> Position:
    """Parse ``{"x", "y", "z"}`` into a Position rounded to whole blocks."""
    return Position(
        x=float(data["x"]), y=float(data["y"]), z=float(data["z"])
    ).rounded()


def parse_health(data: dict) -> tuple[float, float]:
    """Parse a health event into ``(health, max_health)``."""
    health = max(0.0, float(data["health"]))
    max_health = max(0.0, float(data.get("max_health", 20.0)))
    return health, max_health
