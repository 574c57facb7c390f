"""Bot instance — one connection lifecycle plus its action runner.

Connection states: OFFLINE -> CONNECTING -> ONLINE, and on loss of the
connection OFFLINE -> (timer) RECONNECTING -> CONNECTING.  Only an explicit
``disconnect()`` leaves the bot OFFLINE with no reconnect pending.

Every connect starts a new incarnation.  Events are tagged with the
incarnation that produced them; anything from an older incarnation, or
arriving after that incarnation reported ``end``/``kicked``, is dropped.
The instance never writes its record directly: all changes go through the
fleet's ``update_status`` / ``add_log``.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import random
import time
from typing import TYPE_CHECKING

from .actions import ActionRunner
from .config import FleetConfig
from .connection import (
    ConnectionEvent,
    ConnectionEventKind,
    ConnectionFactory,
    ConnectionHandle,
)
from .errors import BotNotConnected, CommandDispatchFailed
from .events import ChatObserved, FleetEventKind
from .models import (
    BotAction,
    BotRecord,
    ConnectionState,
    LogLevel,
    parse_health,
)
from .scheduler import ReconnectScheduler

if TYPE_CHECKING:
    from .fleet import FleetManager

logger = logging.getLogger(__name__)


class BotInstance:
    def __init__(
        self,
        bot_id: str,
        username: str,
        fleet: FleetManager,
        config: FleetConfig,
        connector: ConnectionFactory,
        rng: random.Random | None = None,
    ) -> None:
        self.bot_id = bot_id
        self.username = username
        self._fleet = fleet
        self._config = config
        self._connector = connector
        self._rng = rng

        self.scheduler = ReconnectScheduler(bot_id, self._reconnect)
        self.handle: ConnectionHandle | None = None
        self.runner: ActionRunner | None = None
        self.started_at = time.monotonic()

        self._incarnation = 0
        self._session_open = False
        self._auth_task: asyncio.Task | None = None

    @property
    def record(self) -> BotRecord | None:
        return self._fleet.storage.get_bot(self.bot_id)

    @property
    def online(self) -> bool:
        record = self.record
        return record is not None and record.online and self.handle is not None

    def uptime_seconds(self) -> int:
        return int(time.monotonic() - self.started_at)

    # --- Connection lifecycle ---

    async def connect(self) -> None:
        """Open a new session, replacing any existing one."""
        self.scheduler.cancel()
        self._close_session()
        self._incarnation += 1
        incarnation = self._incarnation
        self._session_open = True
        self.started_at = time.monotonic()

        server = self._config.server
        self._fleet.update_status(
            self.bot_id,
            connection_state=ConnectionState.CONNECTING,
            action=BotAction.IDLE,
            target=None,
        )
        self._fleet.add_log(
            self.bot_id, f"Connecting to {server.host}:{server.port}", LogLevel.INFO
        )

        try:
            handle = await self._connector(
                server.host,
                server.port,
                self.username,
                server.version,
                functools.partial(self._on_connection_event, incarnation),
            )
        except Exception as e:
            if incarnation != self._incarnation:
                return
            self._session_open = False
            self._fleet.add_log(
                self.bot_id, f"Connection failed: {e}", LogLevel.ERROR
            )
            self._fleet.update_status(
                self.bot_id,
                connection_state=ConnectionState.OFFLINE,
                action=BotAction.DISCONNECTED,
                target=None,
            )
            self.scheduler.schedule(self._config.timing.reconnect_delay_seconds)
            return

        if incarnation != self._incarnation:
            # Superseded by a newer connect/disconnect while opening
            handle.quit()
            return
        self.handle = handle

    async def disconnect(self) -> None:
        """Explicit stop: the only path that leaves no reconnect pending."""
        self.scheduler.cancel()
        self._incarnation += 1
        self._session_open = False
        self._close_session()
        self._fleet.update_status(
            self.bot_id,
            connection_state=ConnectionState.OFFLINE,
            action=BotAction.DISCONNECTED,
            target=None,
        )
        self._fleet.add_log(self.bot_id, "Bot disconnected by user", LogLevel.INFO)

    def shutdown(self) -> None:
        """Process shutdown: cancel timers and quit without status writes."""
        self.scheduler.cancel()
        self._incarnation += 1
        self._session_open = False
        self._close_session()

    def _close_session(self) -> None:
        if self._auth_task is not None:
            self._auth_task.cancel()
            self._auth_task = None
        if self.runner is not None:
            self.runner.teardown()
            self.runner = None
        if self.handle is not None:
            self.handle.quit()
            self.handle = None

    async def _reconnect(self) -> None:
        self._fleet.add_log(self.bot_id, "Attempting to reconnect...", LogLevel.INFO)
        self._fleet.update_status(
            self.bot_id,
            connection_state=ConnectionState.RECONNECTING,
            action=BotAction.DISCONNECTED,
            target=None,
        )
        await self.connect()

    # --- Connection events ---

    async def _on_connection_event(
        self, incarnation: int, event: ConnectionEvent
    ) -> None:
        if incarnation != self._incarnation or not self._session_open:
            logger.debug(
                "Dropping stale %s event for %s", event.kind.value, self.username
            )
            return

        try:
            if event.kind is ConnectionEventKind.LOGIN:
                self._handle_login()
            elif event.kind is ConnectionEventKind.END:
                self._handle_session_lost(
                    f"Disconnected: {event.reason}", LogLevel.WARNING
                )
            elif event.kind is ConnectionEventKind.KICKED:
                self._handle_session_lost(
                    f"Kicked from server: {event.reason}", LogLevel.ERROR
                )
            elif event.kind is ConnectionEventKind.ERROR:
                self._fleet.add_log(
                    self.bot_id, f"Error: {event.reason}", LogLevel.ERROR
                )
            elif event.kind is ConnectionEventKind.HEALTH:
                if self.online:
                    health, max_health = parse_health(event.data)
                    self._fleet.update_status(
                        self.bot_id, health=health, max_health=max_health
                    )
            elif event.kind is ConnectionEventKind.MOVE:
                if self.online:
                    self._fleet.update_status(
                        self.bot_id, position=event.data["position"]
                    )
            elif event.kind is ConnectionEventKind.CHAT:
                self._handle_chat(event.data)
        except Exception as e:
            logger.error(
                "Failed to process %s event for %s: %s",
                event.kind.value, self.username, e,
            )

    def _handle_login(self) -> None:
        handle = self.handle
        if handle is None:
            return
        self.scheduler.cancel()
        # A repeated login on the same session restarts auth and actions
        if self._auth_task is not None:
            self._auth_task.cancel()
            self._auth_task = None
        if self.runner is not None:
            self.runner.teardown()
        self.runner = ActionRunner(handle, self._config.timing, self._rng)
        record = self._fleet.update_status(
            self.bot_id,
            connection_state=ConnectionState.ONLINE,
            action=BotAction.IDLE,
            target=None,
        )
        self._fleet.add_log(
            self.bot_id, "Successfully connected to server", LogLevel.SUCCESS
        )
        registered = record.is_registered if record is not None else False
        self._auth_task = asyncio.create_task(
            self._authenticate(handle, registered),
            name=f"auth-{self.username}",
        )
        if record is not None:
            self._fleet.emit(FleetEventKind.BOT_CONNECTED, record)

    def _handle_session_lost(self, message: str, level: LogLevel) -> None:
        self._session_open = False
        self._close_session()
        record = self._fleet.update_status(
            self.bot_id,
            connection_state=ConnectionState.OFFLINE,
            action=BotAction.DISCONNECTED,
            target=None,
        )
        self._fleet.add_log(self.bot_id, message, level)
        self.scheduler.schedule(self._config.timing.reconnect_delay_seconds)
        if record is not None:
            self._fleet.emit(FleetEventKind.BOT_DISCONNECTED, record)

    def _handle_chat(self, data: dict) -> None:
        sender = data.get("username")
        if sender != self._config.fleet.operator:
            return
        self._fleet.emit(
            FleetEventKind.CHAT_OBSERVED,
            ChatObserved(
                bot_id=self.bot_id, sender=sender, message=str(data.get("message", ""))
            ),
        )

    async def _authenticate(self, handle: ConnectionHandle, registered: bool) -> None:
        """Send /register (first login only) then /login, paced by the server."""
        auth = self._config.auth
        try:
            if not registered:
                await asyncio.sleep(auth.register_delay_seconds)
                handle.chat(f"/register {auth.password}")
                # Registration is server-side and sticky once sent
                self._fleet.update_status(self.bot_id, is_registered=True)
                self._fleet.add_log(
                    self.bot_id, "Registration command sent", LogLevel.SUCCESS
                )
            await asyncio.sleep(auth.login_delay_seconds)
            handle.chat(f"/login {auth.password}")
        except CommandDispatchFailed as e:
            self._fleet.add_log(
                self.bot_id, f"Authentication failed: {e}", LogLevel.ERROR
            )
            return

        if registered:
            self._fleet.add_log(self.bot_id, "Login completed", LogLevel.SUCCESS)
        else:
            self._fleet.add_log(
                self.bot_id, "Registration and login completed", LogLevel.SUCCESS
            )

    # --- Commands (raise FleetError subclasses; the fleet reports them) ---

    def execute_command(self, text: str) -> None:
        handle = self._require_online()
        handle.chat(text)
        if text.startswith("/"):
            self._fleet.add_log(self.bot_id, f"Executed command: {text}", LogLevel.INFO)
        else:
            self._fleet.add_log(self.bot_id, f"Sent chat: {text}", LogLevel.INFO)

    def follow(self, target: str) -> None:
        runner = self._require_runner()
        runner.set_follow(target)
        self._fleet.update_status(
            self.bot_id, action=BotAction.FOLLOWING, target=target
        )
        self._fleet.add_log(
            self.bot_id, f"Started following {target}", LogLevel.SUCCESS
        )

    def attack(self, target: str) -> None:
        runner = self._require_runner()
        runner.set_attack(target)
        self._fleet.update_status(
            self.bot_id, action=BotAction.ATTACKING, target=target
        )
        self._fleet.add_log(
            self.bot_id, f"Started attacking {target}", LogLevel.WARNING
        )

    def stop(self) -> bool:
        runner = self._require_runner()
        if not runner.stop():
            self._fleet.add_log(self.bot_id, "No active action to stop", LogLevel.INFO)
            return False
        self._fleet.update_status(self.bot_id, action=BotAction.IDLE, target=None)
        self._fleet.add_log(self.bot_id, "Stopped current action", LogLevel.INFO)
        return True

    def toggle_anti_idle(self) -> bool:
        runner = self._require_runner()
        enabled = runner.toggle_anti_idle()
        if enabled:
            self._fleet.update_status(
                self.bot_id, action=BotAction.ANTI_IDLE, target=None
            )
            self._fleet.add_log(self.bot_id, "Anti-idle enabled", LogLevel.INFO)
        else:
            self._fleet.update_status(self.bot_id, action=BotAction.IDLE, target=None)
            self._fleet.add_log(self.bot_id, "Anti-idle disabled", LogLevel.INFO)
        return enabled

    def _require_online(self) -> ConnectionHandle:
        if not self.online or self.handle is None:
            raise BotNotConnected(self.username)
        return self.handle

    def _require_runner(self) -> ActionRunner:
        self._require_online()
        if self.runner is None:
            raise BotNotConnected(self.username)
        return self.runner
