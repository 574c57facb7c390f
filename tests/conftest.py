"""Shared test fixtures for the bot fleet tests."""

from __future__ import annotations

import random

import pytest
import pytest_asyncio

from botfleet.config import (
    AuthConfig,
    BroadcastConfig,
    FleetConfig,
    ServerConfig,
    TimingConfig,
)
from botfleet.connection import (
    ConnectionEvent,
    ConnectionEventKind,
    EntityRef,
    EventCallback,
)
from botfleet.errors import CommandDispatchFailed
from botfleet.events import FleetEvent
from botfleet.fleet import FleetManager
from botfleet.models import BotRecord, Position


class FakeConnection:
    """In-memory ConnectionHandle that records calls and emits events on demand."""

    supports_pathfinding = True

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        version: str,
        on_event: EventCallback,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.version = version
        self._on_event = on_event
        self._closed = False
        self._position: Position | None = Position(0, 64, 0)

        self.quit_calls = 0
        self.chats: list[str] = []
        self.attacks: list[str] = []
        self.goals: list[tuple[str, int] | None] = []
        self.controls: list[tuple[str, bool]] = []
        self.players: dict[str, EntityRef] = {}

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def position(self) -> Position | None:
        return self._position

    def quit(self) -> None:
        self.quit_calls += 1
        self._closed = True

    def chat(self, text: str) -> None:
        self._check_open()
        self.chats.append(text)

    def attack(self, entity: EntityRef) -> None:
        self._check_open()
        self.attacks.append(entity.name)

    def set_follow_goal(self, entity: EntityRef, radius: int) -> None:
        self._check_open()
        self.goals.append((entity.name, radius))

    def clear_goal(self) -> None:
        self._check_open()
        self.goals.append(None)

    def set_control_state(self, control: str, state: bool) -> None:
        self._check_open()
        self.controls.append((control, state))

    def resolve_player(self, name: str) -> EntityRef | None:
        return self.players.get(name)

    # --- Test helpers ---

    def add_player(
        self, name: str, entity_id: int = 1, position: Position | None = None
    ) -> EntityRef:
        entity = EntityRef(name, entity_id, position or Position(2, 64, 0))
        self.players[name] = entity
        return entity

    async def emit(self, kind: ConnectionEventKind, **data: object) -> None:
        if kind in (ConnectionEventKind.END, ConnectionEventKind.KICKED):
            self._closed = True
        await self._on_event(ConnectionEvent(kind, dict(data)))

    def _check_open(self) -> None:
        if self._closed:
            raise CommandDispatchFailed(f"connection for {self.username} is closed")


class FakeConnector:
    """ConnectionFactory that hands out FakeConnections."""

    def __init__(self) -> None:
        self.connections: list[FakeConnection] = []
        self.fail_next: Exception | None = None

    async def __call__(
        self,
        host: str,
        port: int,
        username: str,
        version: str,
        on_event: EventCallback,
    ) -> FakeConnection:
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error
        conn = FakeConnection(host, port, username, version, on_event)
        self.connections.append(conn)
        return conn

    def for_user(self, username: str) -> FakeConnection:
        """Most recent connection opened for ``username``."""
        return [c for c in self.connections if c.username == username][-1]

    def count(self, username: str) -> int:
        return sum(1 for c in self.connections if c.username == username)


@pytest.fixture
def fleet_config() -> FleetConfig:
    return FleetConfig(
        server=ServerConfig(host="mc.test.local", port=25565),
        auth=AuthConfig(
            password="hunter2",
            register_delay_seconds=0,
            login_delay_seconds=0,
        ),
        timing=TimingConfig(
            attack_interval_seconds=0.01,
            follow_refresh_seconds=0.01,
            anti_idle_interval_seconds=0.01,
            anti_idle_pulse_seconds=0,
        ),
        broadcast=BroadcastConfig(enabled=False),
    )


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest_asyncio.fixture
async def fleet(fleet_config: FleetConfig, connector: FakeConnector):
    manager = FleetManager(fleet_config, connector, rng=random.Random(7))
    yield manager
    await manager.shutdown()


@pytest.fixture
def events(fleet: FleetManager) -> list[FleetEvent]:
    received: list[FleetEvent] = []
    fleet.events.subscribe(received.append)
    return received


async def bring_online(
    fleet: FleetManager, connector: FakeConnector, username: str
) -> BotRecord:
    """Create a bot, deliver ``login`` and wait for the auth sequence."""
    record = await fleet.create_bot(username)
    await connector.for_user(username).emit(ConnectionEventKind.LOGIN)
    auth_task = fleet.get_instance(record.id)._auth_task
    if auth_task is not None:
        await auth_task
    current = fleet.get_bot(record.id)
    assert current is not None
    return current
