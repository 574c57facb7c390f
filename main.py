"""Bot Fleet Manager — Entry Point.

Runs a fleet of game bots through the protocol bridge, streams fleet events
to dashboard observers over WebSocket, and optionally takes operator
commands from Telegram.

Usage:
    python main.py configs/fleet.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from botfleet.broadcaster import EventBroadcaster
from botfleet.config import load_config
from botfleet.connection import bridge_connector
from botfleet.fleet import FleetManager
from botfleet.logging_utils import configure_logging
from botfleet.telegram_bot import TelegramBot

logger = logging.getLogger(__name__)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Game Bot Fleet Manager")
    parser.add_argument(
        "config_file",
        help="Path to the YAML configuration file",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file",
    )
    args = parser.parse_args()

    config = load_config(args.config_file)
    configure_logging(config.logs.level, args.log_file)

    logger.info(
        "Starting fleet manager for %s:%d via %s",
        config.server.host, config.server.port, config.bridge.url,
    )

    fleet = FleetManager(config, bridge_connector(config.bridge.url))

    broadcaster = None
    if config.broadcast.enabled:
        broadcaster = EventBroadcaster(fleet, config.broadcast)
        await broadcaster.start()

    telegram_bot = None
    if config.telegram is not None:
        telegram_bot = TelegramBot(config.telegram, fleet)
        await telegram_bot.start()

    # Signal handling for graceful shutdown
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    for username in config.fleet.usernames:
        await fleet.create_bot(username)
    if config.fleet.spawn_on_start:
        await fleet.spawn_named(config.fleet.spawn_on_start)

    await stop_event.wait()

    # Graceful shutdown
    logger.info("Shutting down...")
    await fleet.shutdown()
    if broadcaster is not None:
        await broadcaster.stop()
    if telegram_bot is not None:
        await telegram_bot.stop()
    logger.info("Fleet manager stopped.")


if __name__ == "__main__":
    asyncio.run(main())
