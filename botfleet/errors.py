"""Fleet error taxonomy.

None of these are fatal to the process: the Fleet Manager catches them at its
public boundary, logs them and reports a failed ``CommandResult``.
"""

from __future__ import annotations


class FleetError(Exception):
    """Base class for recoverable fleet errors."""


class BotNotFound(FleetError):
    def __init__(self, bot_id: str) -> None:
        super().__init__(f"Bot not found: {bot_id}")
        self.bot_id = bot_id


class BotNotConnected(FleetError):
    def __init__(self, bot_name: str) -> None:
        super().__init__(f"Bot not connected: {bot_name}")
        self.bot_name = bot_name


class TargetNotFound(FleetError):
    def __init__(self, target: str) -> None:
        super().__init__(f"Player {target} not found")
        self.target = target


class ConnectionFailed(FleetError):
    """The connect request itself was rejected (bridge unreachable, bad args)."""


class CommandDispatchFailed(FleetError):
    """A send was attempted on a handle that is already closed."""
