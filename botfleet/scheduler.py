"""Per-bot reconnect timer.

Armed by a disconnect, disarmed by a successful login or an explicit
disconnect.  Re-arming replaces the pending timer, so a bot never has two
reconnect attempts queued.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class ReconnectScheduler:
    def __init__(
        self, bot_id: str, on_fire: Callable[[], Awaitable[None]]
    ) -> None:
        self.bot_id = bot_id
        self._on_fire = on_fire
        self._task: asyncio.Task | None = None
        self._due_at: float | None = None
        self.delay: float | None = None

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def due_in(self) -> float | None:
        """Seconds until the pending reconnect fires, or None when idle."""
        if not self.armed or self._due_at is None:
            return None
        return max(0.0, self._due_at - asyncio.get_running_loop().time())

    def schedule(self, delay: float) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self.delay = delay
        self._due_at = loop.time() + delay
        self._task = loop.create_task(
            self._wait_and_fire(delay), name=f"reconnect-{self.bot_id}"
        )
        logger.debug("Reconnect for %s armed in %.1fs", self.bot_id, delay)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug("Reconnect for %s cancelled", self.bot_id)
        self._task = None
        self._due_at = None
        self.delay = None

    async def _wait_and_fire(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Disarm before firing so the callback may re-arm
        self._task = None
        self._due_at = None
        self.delay = None
        await self._on_fire()
