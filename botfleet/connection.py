"""Connection handle for a single bot session.

The game protocol itself is spoken by a bridge sidecar; a BridgeConnection
drives one session through it over a WebSocket, exchanging JSON frames.
Inbound frames are decoded into ConnectionEvents and handed to a callback,
one at a time and in arrival order.  The handle never reconnects by itself:
once it has reported ``end`` (or ``kicked``) it is finished.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

import websockets
from websockets.exceptions import ConnectionClosed

from .errors import CommandDispatchFailed, ConnectionFailed
from .models import Position, parse_position

logger = logging.getLogger(__name__)


class ConnectionEventKind(str, Enum):
    LOGIN = "login"
    END = "end"
    ERROR = "error"
    KICKED = "kicked"
    HEALTH = "health"
    MOVE = "move"
    CHAT = "chat"


TERMINAL_EVENTS = frozenset({ConnectionEventKind.END, ConnectionEventKind.KICKED})


@dataclass(frozen=True)
class ConnectionEvent:
    kind: ConnectionEventKind
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def reason(self) -> str:
        return str(self.data.get("reason") or self.data.get("message") or "unknown")


@dataclass(frozen=True)
class EntityRef:
    """Live reference to a player entity as last reported by the server."""

    name: str
    entity_id: int
    position: Position


EventCallback = Callable[[ConnectionEvent], Awaitable[None]]


class ConnectionHandle(Protocol):
    """Capability surface the fleet needs from a network client session.

    Every outbound call is fire-and-forget.  Network failures are reported
    as ``error`` events; only calls on an already-closed handle raise
    (CommandDispatchFailed).
    """

    username: str
    supports_pathfinding: bool

    @property
    def closed(self) -> bool: ...

    @property
    def position(self) -> Position | None: ...

    def quit(self) -> None: ...

    def chat(self, text: str) -> None: ...

    def attack(self, entity: EntityRef) -> None: ...

    def set_follow_goal(self, entity: EntityRef, radius: int) -> None: ...

    def clear_goal(self) -> None: ...

    def set_control_state(self, control: str, state: bool) -> None: ...

    def resolve_player(self, name: str) -> EntityRef | None: ...


ConnectionFactory = Callable[
    [str, int, str, str, EventCallback], Awaitable[ConnectionHandle]
]


class BridgeConnection:
    """One game session driven through the protocol bridge."""

    supports_pathfinding = True

    def __init__(
        self,
        bridge_url: str,
        host: str,
        port: int,
        username: str,
        version: str,
        on_event: EventCallback,
        ping_interval: float = 20.0,
    ) -> None:
        self.bridge_url = bridge_url
        self.host = host
        self.port = port
        self.username = username
        self.version = version
        self._on_event = on_event
        self._ping_interval = ping_interval

        self._closed = False
        self._ws: Any = None
        self._task: asyncio.Task | None = None
        self._outbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._players: dict[str, EntityRef] = {}
        self._position: Position | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def position(self) -> Position | None:
        return self._position

    def open(self) -> None:
        """Start the session in the background; returns immediately."""
        self._task = asyncio.create_task(
            self._run(), name=f"bridge-{self.username}"
        )

    # --- Outbound ---

    def quit(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._ws is None:
            if self._task is not None:
                self._task.cancel()
            return
        self._outbox.put_nowait({"op": "quit"})
        self._outbox.put_nowait(None)

    def chat(self, text: str) -> None:
        self._send({"op": "chat", "text": text})

    def attack(self, entity: EntityRef) -> None:
        self._send({"op": "attack", "entity_id": entity.entity_id})

    def set_follow_goal(self, entity: EntityRef, radius: int) -> None:
        self._send(
            {"op": "follow", "entity_id": entity.entity_id, "radius": radius}
        )

    def clear_goal(self) -> None:
        self._send({"op": "clear_goal"})

    def set_control_state(self, control: str, state: bool) -> None:
        self._send({"op": "control", "control": control, "state": state})

    def resolve_player(self, name: str) -> EntityRef | None:
        return self._players.get(name)

    def _send(self, payload: dict[str, Any]) -> None:
        if self._closed:
            raise CommandDispatchFailed(
                f"connection for {self.username} is closed"
            )
        self._outbox.put_nowait(payload)

    # --- Session loop ---

    async def _run(self) -> None:
        reason = "bridge closed the connection"
        writer: asyncio.Task | None = None
        try:
            async with websockets.connect(
                self.bridge_url,
                ping_interval=self._ping_interval,
                ping_timeout=20,
            ) as ws:
                self._ws = ws
                await ws.send(json.dumps({
                    "op": "connect",
                    "host": self.host,
                    "port": self.port,
                    "username": self.username,
                    "version": self.version,
                }))
                writer = asyncio.create_task(self._write_loop(ws))

                async for raw_message in ws:
                    if self._closed:
                        break
                    event = self._parse_frame(raw_message)
                    if event is None:
                        continue
                    if event.kind in TERMINAL_EVENTS:
                        self._closed = True
                    await self._on_event(event)
                    if self._closed:
                        return

        except (ConnectionClosed, ConnectionError, OSError) as e:
            reason = str(e) or type(e).__name__
            if not self._closed:
                await self._on_event(
                    ConnectionEvent(ConnectionEventKind.ERROR, {"message": reason})
                )
        except Exception as e:
            # Rejected handshake (InvalidStatus / InvalidHandshake) and the like
            reason = str(e) or type(e).__name__
            logger.error(
                "Unexpected error in bridge session for %s: %s", self.username, e
            )
            if not self._closed:
                await self._on_event(
                    ConnectionEvent(ConnectionEventKind.ERROR, {"message": reason})
                )
        finally:
            self._ws = None
            if writer is not None:
                writer.cancel()

        if not self._closed:
            self._closed = True
            await self._on_event(
                ConnectionEvent(ConnectionEventKind.END, {"reason": reason})
            )

    async def _write_loop(self, ws: Any) -> None:
        while True:
            payload = await self._outbox.get()
            if payload is None:
                await ws.close()
                return
            try:
                await ws.send(json.dumps(payload))
            except ConnectionClosed as e:
                logger.debug(
                    "Dropped %s for %s: %s", payload.get("op"), self.username, e
                )
                return

    def _parse_frame(self, raw_message: str | bytes) -> ConnectionEvent | None:
        """Decode one raw frame; malformed frames are logged and skipped."""
        try:
            msg = json.loads(raw_message)
            return self._decode(msg.get("event_type"), msg.get("data") or {})
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON from bridge for %s: %s", self.username, e)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(
                "Malformed bridge frame for %s: %r (%s)",
                self.username, raw_message, e,
            )
        return None

    def _decode(self, event_type: str | None, data: dict) -> ConnectionEvent | None:
        """Turn a bridge frame into a ConnectionEvent, updating local caches.

        Entity bookkeeping frames (``player``, ``player_left``) only refresh
        the cache and produce no event.
        """
        if event_type == "player":
            self._players[data["name"]] = EntityRef(
                name=data["name"],
                entity_id=int(data["entity_id"]),
                position=Position(float(data["x"]), float(data["y"]), float(data["z"])),
            )
            return None
        if event_type == "player_left":
            self._players.pop(data.get("name", ""), None)
            return None
        if event_type == "move":
            self._position = Position(
                float(data["x"]), float(data["y"]), float(data["z"])
            )
            return ConnectionEvent(
                ConnectionEventKind.MOVE, {"position": parse_position(data)}
            )

        try:
            kind = ConnectionEventKind(event_type)
        except ValueError:
            logger.debug("Ignoring bridge event %r for %s", event_type, self.username)
            return None
        return ConnectionEvent(kind, data)


def bridge_connector(bridge_url: str) -> ConnectionFactory:
    """Build a ConnectionFactory that opens sessions through ``bridge_url``."""

    async def open_connection(
        host: str, port: int, username: str, version: str, on_event: EventCallback
    ) -> ConnectionHandle:
        if not username:
            raise ConnectionFailed("username is required")
        conn = BridgeConnection(bridge_url, host, port, username, version, on_event)
        conn.open()
        return conn

    return open_connection
