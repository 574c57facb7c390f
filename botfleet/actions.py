"""Per-bot action runner: idle, following, attacking and anti-idle.

Whatever periodic work an action needs runs in a single asyncio task held in
``ActiveTick``.  Every transition cancels the current tick before starting
the next one, so a bot never has more than one action timer alive.  The
runner belongs to one connection; when that connection ends the runner is
torn down and a fresh one is built on the next login.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Union

from .config import TimingConfig
from .connection import ConnectionHandle, EntityRef
from .errors import BotNotConnected, CommandDispatchFailed, TargetNotFound
from .models import BotAction

logger = logging.getLogger(__name__)


@dataclass
class FollowTick:
    target: str
    task: asyncio.Task


@dataclass
class AttackTick:
    target: str
    task: asyncio.Task


@dataclass
class AntiIdleTick:
    task: asyncio.Task


ActiveTick = Union[FollowTick, AttackTick, AntiIdleTick, None]


class ActionRunner:
    def __init__(
        self,
        handle: ConnectionHandle,
        timing: TimingConfig,
        rng: random.Random | None = None,
    ) -> None:
        self._handle = handle
        self._timing = timing
        self._rng = rng or random.Random()
        self._tick: ActiveTick = None
        self._torn_down = False
        self.state = BotAction.IDLE
        self.target: str | None = None

    @property
    def active_tick(self) -> ActiveTick:
        return self._tick

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    # --- Transitions ---

    def set_follow(self, target: str) -> None:
        self._require_live()
        if not self._handle.supports_pathfinding:
            raise CommandDispatchFailed(
                f"{self._handle.username} cannot path-find"
            )
        entity = self._resolve(target)
        self._cancel_tick()
        self._handle.set_follow_goal(entity, self._timing.follow_radius)
        task = asyncio.create_task(
            self._follow_loop(target, entity.entity_id),
            name=f"follow-{self._handle.username}",
        )
        self._tick = FollowTick(target=target, task=task)
        self.state = BotAction.FOLLOWING
        self.target = target

    def set_attack(self, target: str) -> None:
        self._require_live()
        self._resolve(target)
        self._clear_current()
        task = asyncio.create_task(
            self._attack_loop(target),
            name=f"attack-{self._handle.username}",
        )
        self._tick = AttackTick(target=target, task=task)
        self.state = BotAction.ATTACKING
        self.target = target

    def stop(self) -> bool:
        """Return to IDLE.  Returns False when the bot was already idle."""
        self._require_live()
        if self.state is BotAction.IDLE and self._tick is None:
            return False
        self._clear_current()
        self.state = BotAction.IDLE
        self.target = None
        return True

    def toggle_anti_idle(self) -> bool:
        """Flip anti-idle.  Returns True when it is now enabled."""
        self._require_live()
        if isinstance(self._tick, AntiIdleTick):
            self._cancel_tick()
            self.state = BotAction.IDLE
            self.target = None
            return False

        self._clear_current()
        task = asyncio.create_task(
            self._anti_idle_loop(),
            name=f"anti-idle-{self._handle.username}",
        )
        self._tick = AntiIdleTick(task=task)
        self.state = BotAction.ANTI_IDLE
        self.target = None
        return True

    def teardown(self) -> None:
        """Cancel everything without touching the (probably dead) handle."""
        self._cancel_tick()
        self._torn_down = True
        self.state = BotAction.IDLE
        self.target = None

    # --- Internals ---

    def _require_live(self) -> None:
        if self._torn_down or self._handle.closed:
            raise BotNotConnected(self._handle.username)

    def _resolve(self, target: str) -> EntityRef:
        entity = self._handle.resolve_player(target)
        if entity is None:
            raise TargetNotFound(target)
        return entity

    def _cancel_tick(self) -> None:
        if self._tick is not None:
            self._tick.task.cancel()
            self._tick = None

    def _clear_current(self) -> None:
        """Cancel the tick and drop any path-finding goal left by a follow."""
        was_following = isinstance(self._tick, FollowTick)
        self._cancel_tick()
        if was_following:
            self._handle.clear_goal()

    async def _follow_loop(self, target: str, entity_id: int) -> None:
        # Re-issue the goal when the player's entity changes (respawn, rejoin)
        while True:
            await asyncio.sleep(self._timing.follow_refresh_seconds)
            entity = self._handle.resolve_player(target)
            if entity is None or entity.entity_id == entity_id:
                continue
            entity_id = entity.entity_id
            try:
                self._handle.set_follow_goal(entity, self._timing.follow_radius)
            except CommandDispatchFailed as e:
                logger.debug("Follow tick stopped for %s: %s", target, e)
                return

    async def _attack_loop(self, target: str) -> None:
        while True:
            await asyncio.sleep(self._timing.attack_interval_seconds)
            entity = self._handle.resolve_player(target)
            own = self._handle.position
            if entity is None or own is None:
                continue
            if own.distance_to(entity.position) > self._timing.attack_range:
                continue
            try:
                self._handle.attack(entity)
            except CommandDispatchFailed as e:
                logger.debug("Attack tick stopped for %s: %s", target, e)
                return

    async def _anti_idle_loop(self) -> None:
        while True:
            await asyncio.sleep(self._timing.anti_idle_interval_seconds)
            if self._rng.random() >= self._timing.anti_idle_probability:
                continue
            try:
                await self._jump_pulse()
            except CommandDispatchFailed as e:
                logger.debug("Anti-idle tick stopped: %s", e)
                return

    async def _jump_pulse(self) -> None:
        self._handle.set_control_state("jump", True)
        try:
            await asyncio.sleep(self._timing.anti_idle_pulse_seconds)
        finally:
            if not self._handle.closed:
                self._handle.set_control_state("jump", False)
