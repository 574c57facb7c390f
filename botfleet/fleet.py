"""Fleet manager — owns every bot instance and the command surface.

The manager is the only writer of bot records: instances ask for changes via
``update_status`` and ``add_log``, which also push the matching events to
the fleet's EventBus.  Public command methods never raise fleet errors; they
log the failure and return a ``CommandResult``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Callable

from .config import FleetConfig
from .connection import ConnectionFactory
from .errors import (
    BotNotConnected,
    BotNotFound,
    CommandDispatchFailed,
    FleetError,
    TargetNotFound,
)
from .events import ChatObserved, EventBus, FleetEvent, FleetEventKind
from .instance import BotInstance
from .logging_utils import SUCCESS
from .models import (
    FLEET_LOG_ID,
    BotAction,
    BotRecord,
    Command,
    CommandResult,
    ConnectionState,
    LogEntry,
    LogLevel,
)
from .storage import MemoryStorage

logger = logging.getLogger(__name__)

NAME_PREFIXES = [
    "Craft", "Mine", "Build", "Guard", "Farm",
    "Battle", "Scout", "Helper", "Worker", "Digger",
]

DEFAULT_SPAWN_COUNT = 10

_ACTIVE_ACTIONS = {BotAction.FOLLOWING, BotAction.ATTACKING, BotAction.ANTI_IDLE}

_LOG_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: SUCCESS,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class FleetManager:
    """Registry of bot instances plus the fleet-wide command surface."""

    def __init__(
        self,
        config: FleetConfig,
        connector: ConnectionFactory,
        storage: MemoryStorage | None = None,
        events: EventBus | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._connector = connector
        self.storage = storage or MemoryStorage(config.logs.retention)
        self.events = events or EventBus()
        self._rng = rng or random.Random()
        self._instances: dict[str, BotInstance] = {}
        self._registry_lock = asyncio.Lock()

    @property
    def operator(self) -> str:
        return self._config.fleet.operator

    # --- Registry ---

    def get_bots(self) -> list[BotRecord]:
        return self.storage.get_bots()

    def get_bot(self, bot_id: str) -> BotRecord | None:
        return self.storage.get_bot(bot_id)

    def get_instance(self, bot_id: str) -> BotInstance:
        instance = self._instances.get(bot_id)
        if instance is None:
            raise BotNotFound(bot_id)
        return instance

    def online_instances(self) -> list[BotInstance]:
        """Snapshot of the instances that are ONLINE right now."""
        return [i for i in list(self._instances.values()) if i.online]

    # --- Lifecycle ---

    def generate_names(self, count: int) -> list[str]:
        """``<Prefix>Bot_<4 digits>`` names unused by the registry or each other."""
        taken = {record.username for record in self.storage.get_bots()}
        names: list[str] = []
        for i in range(count):
            prefix = NAME_PREFIXES[i % len(NAME_PREFIXES)]
            name = f"{prefix}Bot_{self._rng.randint(1000, 9999)}"
            while name in taken:
                name = f"{prefix}Bot_{self._rng.randint(1000, 9999)}"
            taken.add(name)
            names.append(name)
        return names

    async def spawn_named(self, count: int = DEFAULT_SPAWN_COUNT) -> CommandResult:
        if count <= 0:
            return CommandResult.fail("Spawn count must be positive")
        names = self.generate_names(count)
        for username in names:
            await self.create_bot(username)
        self.add_log(FLEET_LOG_ID, f"Spawned {len(names)} bot(s)", LogLevel.INFO)
        return CommandResult.ok(f"Spawning {len(names)} bot(s)")

    async def create_bot(self, username: str) -> BotRecord:
        """Create and connect a bot, or return the record already holding ``username``."""
        async with self._registry_lock:
            existing = self.storage.get_bot_by_username(username)
            if existing is not None:
                return existing
            record = self.storage.create_bot(
                username,
                connection_state=ConnectionState.OFFLINE,
                action=BotAction.IDLE,
            )
            instance = BotInstance(
                record.id,
                username,
                fleet=self,
                config=self._config,
                connector=self._connector,
                rng=self._rng,
            )
            self._instances[record.id] = instance

        logger.info("Created bot %s (%s)", username, record.id)
        await instance.connect()
        return self.storage.get_bot(record.id) or record

    async def connect_bot(self, bot_id: str) -> CommandResult:
        try:
            instance = self.get_instance(bot_id)
        except BotNotFound as e:
            return self._report(bot_id, e)
        await instance.connect()
        return CommandResult.ok("Bot connection initiated")

    async def disconnect_bot(self, bot_id: str) -> CommandResult:
        try:
            instance = self.get_instance(bot_id)
        except BotNotFound as e:
            return self._report(bot_id, e)
        await instance.disconnect()
        return CommandResult.ok("Bot disconnected")

    async def remove_bot(self, bot_id: str) -> CommandResult:
        try:
            instance = self.get_instance(bot_id)
        except BotNotFound as e:
            return self._report(bot_id, e)
        instance.shutdown()
        async with self._registry_lock:
            self._instances.pop(bot_id, None)
            self.storage.delete_bot(bot_id)
        self.add_log(FLEET_LOG_ID, f"Removed bot {instance.username}", LogLevel.INFO)
        return CommandResult.ok(f"Bot {instance.username} removed")

    async def shutdown(self) -> None:
        """Quit every session and cancel every timer; records are left as-is."""
        for instance in list(self._instances.values()):
            instance.shutdown()
        logger.info("Fleet shut down (%d bot(s))", len(self._instances))

    # --- Individual commands ---

    async def execute_command(self, bot_id: str, text: str) -> CommandResult:
        return self._run(
            bot_id, lambda i: i.execute_command(text), "Individual command executed"
        )

    async def follow_individual(self, bot_id: str, target: str) -> CommandResult:
        return self._run(bot_id, lambda i: i.follow(target), f"Bot following {target}")

    async def attack_individual(self, bot_id: str, target: str) -> CommandResult:
        return self._run(bot_id, lambda i: i.attack(target), f"Bot attacking {target}")

    async def stop_individual(self, bot_id: str) -> CommandResult:
        return self._run(bot_id, lambda i: i.stop(), "Bot action stopped")

    async def toggle_anti_idle(self, bot_id: str) -> CommandResult:
        try:
            enabled = self.get_instance(bot_id).toggle_anti_idle()
        except FleetError as e:
            return self._report(bot_id, e)
        return CommandResult.ok("Anti-idle enabled" if enabled else "Anti-idle disabled")

    # --- Global (fan-out) commands ---

    async def execute_global_command(self, text: str) -> CommandResult:
        result = self._fan_out("command", lambda i: i.execute_command(text))
        self.add_log(FLEET_LOG_ID, f"Global command executed: {text}", LogLevel.INFO)
        return result

    async def follow_global(self, target: str) -> CommandResult:
        result = self._fan_out(f"follow {target}", lambda i: i.follow(target))
        self.add_log(FLEET_LOG_ID, f"All bots following {target}", LogLevel.INFO)
        return result

    async def attack_global(self, target: str) -> CommandResult:
        result = self._fan_out(f"attack {target}", lambda i: i.attack(target))
        self.add_log(FLEET_LOG_ID, f"All bots attacking {target}", LogLevel.INFO)
        return result

    async def stop_global(self) -> CommandResult:
        result = self._fan_out("stop", lambda i: i.stop())
        self.add_log(FLEET_LOG_ID, "All bots stopped", LogLevel.INFO)
        return result

    async def teleport_to_operator(self) -> CommandResult:
        return await self.execute_global_command(f"/tp {self.operator}")

    async def dispatch(self, command: Command) -> CommandResult:
        """Route a validated transport Command.

        Targeted commands go to follow / attack; everything else is sent as
        a raw command or chat line.
        """
        bot_id = command.bot_id
        if command.type == "individual" and bot_id is None:
            return CommandResult.fail("botId is required for individual commands")

        if command.target is not None:
            target = command.target
            if command.command == "follow":
                if bot_id is None:
                    return await self.follow_global(target)
                return await self.follow_individual(bot_id, target)
            if command.command == "attack":
                if bot_id is None:
                    return await self.attack_global(target)
                return await self.attack_individual(bot_id, target)
            return CommandResult.fail(f"Command {command.command!r} takes no target")

        if bot_id is None:
            return await self.execute_global_command(command.command)
        return await self.execute_command(bot_id, command.command)

    # --- Status & logs (the single write path for records) ---

    def update_status(self, bot_id: str, **changes: Any) -> BotRecord | None:
        """Write record fields, refresh uptime and emit ``bot_updated``."""
        current = self.storage.get_bot(bot_id)
        if current is None:
            return None

        instance = self._instances.get(bot_id)
        if instance is not None:
            changes["uptime_seconds"] = instance.uptime_seconds()

        state = changes.get("connection_state", current.connection_state)
        action = changes.get("action", current.action)
        if state is not ConnectionState.ONLINE and action in _ACTIVE_ACTIONS:
            changes["action"] = BotAction.DISCONNECTED
            changes["target"] = None

        record = self.storage.update_bot(bot_id, **changes)
        if record is not None:
            self.emit(FleetEventKind.BOT_UPDATED, record)
        return record

    def add_log(self, bot_id: str, message: str, level: LogLevel) -> LogEntry:
        record = self.storage.get_bot(bot_id)
        if record is not None:
            bot_name = record.username
        elif bot_id == FLEET_LOG_ID:
            bot_name = "Fleet"
        else:
            bot_name = "Unknown"

        entry = self.storage.add_log(bot_id, bot_name, message, level)
        logger.log(_LOG_LEVELS[level], "[%s] %s", bot_name, message)
        self.emit(FleetEventKind.NEW_LOG, entry)
        return entry

    def emit(
        self, kind: FleetEventKind, payload: BotRecord | LogEntry | ChatObserved
    ) -> None:
        self.events.publish(FleetEvent(kind, payload))

    def get_logs(self, limit: int = 50) -> list[LogEntry]:
        return self.storage.get_logs(limit)

    def get_bot_logs(self, bot_id: str, limit: int = 20) -> list[LogEntry]:
        return self.storage.get_bot_logs(bot_id, limit)

    def clear_logs(self) -> None:
        self.storage.clear_logs()

    # --- Internals ---

    def _run(
        self,
        bot_id: str,
        op: Callable[[BotInstance], Any],
        success_message: str,
    ) -> CommandResult:
        try:
            op(self.get_instance(bot_id))
        except FleetError as e:
            return self._report(bot_id, e)
        return CommandResult.ok(success_message)

    def _fan_out(
        self, description: str, op: Callable[[BotInstance], Any]
    ) -> CommandResult:
        """Apply ``op`` to every online bot; one bot failing never stops the rest."""
        dispatched = 0
        skipped = 0
        failed = 0
        for instance in list(self._instances.values()):
            if not instance.online:
                skipped += 1
                record = instance.record
                state = record.connection_state.value if record else "unknown"
                self.add_log(
                    instance.bot_id,
                    f"Skipped global {description}: bot is {state}",
                    LogLevel.INFO,
                )
                continue
            dispatched += 1
            try:
                op(instance)
            except FleetError as e:
                failed += 1
                self._report(instance.bot_id, e)

        return CommandResult.ok(
            f"Global {description} sent to {dispatched} bot(s)"
            f" ({skipped} skipped, {failed} failed)"
        )

    def _report(self, bot_id: str, error: FleetError) -> CommandResult:
        if isinstance(error, (TargetNotFound, BotNotConnected, BotNotFound)):
            level = LogLevel.WARNING
            message = str(error)
        elif isinstance(error, CommandDispatchFailed):
            level = LogLevel.ERROR
            message = f"Command failed: {error}"
        else:
            level = LogLevel.ERROR
            message = str(error)
        self.add_log(bot_id, message, level)
        return CommandResult.fail(message, error=type(error).__name__)
