"""WebSocket server that streams fleet events to dashboard observers.

Every FleetEvent goes out as ``{"event": <camelCase kind>, "data": {...}}``.
Observers may also send command frames; each one is answered with a
``commandResult`` frame on the same socket.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed

from .config import BroadcastConfig
from .events import FleetEvent, Subscription
from .models import Command, CommandResult, bot_to_dict, log_to_dict

if TYPE_CHECKING:
    from .fleet import FleetManager

logger = logging.getLogger(__name__)

SNAPSHOT_LOG_LIMIT = 50


class EventBroadcaster:
    def __init__(self, fleet: FleetManager, config: BroadcastConfig) -> None:
        self._fleet = fleet
        self._config = config
        self._clients: set[Any] = set()
        self._subscription: Subscription | None = None
        self._server: Any = None

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def start(self) -> None:
        self._subscription = self._fleet.events.subscribe(self._on_event)
        self._server = await websockets.serve(
            self._handle_client, self._config.host, self._config.port
        )
        logger.info(
            "Broadcasting fleet events on ws://%s:%d",
            self._config.host, self._config.port,
        )

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("Broadcaster stopped")

    def _on_event(self, event: FleetEvent) -> None:
        if not self._clients:
            return
        websockets.broadcast(self._clients, json.dumps(event.to_dict()))

    async def _handle_client(self, ws: Any) -> None:
        self._clients.add(ws)
        logger.info("Observer connected (%d total)", len(self._clients))
        try:
            await ws.send(json.dumps(self.snapshot()))
            async for raw_message in ws:
                reply = await self.handle_message(raw_message)
                await ws.send(json.dumps(reply))
        except ConnectionClosed:
            pass
        finally:
            self._clients.discard(ws)
            logger.info("Observer disconnected (%d left)", len(self._clients))

    def snapshot(self) -> dict[str, Any]:
        return {
            "event": "snapshot",
            "data": {
                "bots": [bot_to_dict(b) for b in self._fleet.get_bots()],
                "logs": [
                    log_to_dict(e) for e in self._fleet.get_logs(SNAPSHOT_LOG_LIMIT)
                ],
            },
        }

    async def handle_message(self, raw_message: str | bytes) -> dict[str, Any]:
        try:
            msg = json.loads(raw_message)
        except json.JSONDecodeError as e:
            result = CommandResult.fail(f"Invalid JSON: {e}")
        else:
            if isinstance(msg, dict):
                result = await self._dispatch(msg)
            else:
                result = CommandResult.fail("Command frame must be an object")
        return {"event": "commandResult", "data": result.to_dict()}

    async def _dispatch(self, msg: dict[str, Any]) -> CommandResult:
        action = msg.get("action")
        if action is None:
            try:
                command = Command.model_validate(msg)
            except ValidationError as e:
                return CommandResult.fail(f"Invalid command: {e.errors()[0]['msg']}")
            return await self._fleet.dispatch(command)

        fleet = self._fleet
        bot_id = msg.get("botId")
        target = msg.get("target")

        if action in ("follow", "attack") and not target:
            return CommandResult.fail("Target player required")

        if action == "spawn":
            try:
                count = int(msg.get("count", 10))
            except (TypeError, ValueError):
                return CommandResult.fail(f"Invalid count: {msg.get('count')!r}")
            return await fleet.spawn_named(count)
        if action == "teleport":
            return await fleet.teleport_to_operator()
        if action == "follow":
            if bot_id:
                return await fleet.follow_individual(bot_id, target)
            return await fleet.follow_global(target)
        if action == "attack":
            if bot_id:
                return await fleet.attack_individual(bot_id, target)
            return await fleet.attack_global(target)
        if action == "stop":
            if bot_id:
                return await fleet.stop_individual(bot_id)
            return await fleet.stop_global()

        if not bot_id:
            return CommandResult.fail(f"botId required for {action}")
        if action == "connect":
            return await fleet.connect_bot(bot_id)
        if action == "disconnect":
            return await fleet.disconnect_bot(bot_id)
        if action == "anti_idle":
            return await fleet.toggle_anti_idle(bot_id)

        return CommandResult.fail(f"Unknown action: {action}")
