"""Telegram bot: operator command surface and fleet alerts.

Commands are accepted only from the configured chat.  Bots can be addressed
by username, full id, or the short id prefix shown by /bots.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import Application, CommandHandler, ContextTypes, filters

from .config import TelegramConfig
from .events import FleetEvent, FleetEventKind, Subscription
from .formatter import (
    format_connected_alert,
    format_disconnected_alert,
    format_fleet_status,
    format_logs,
    format_result,
)
from .models import BotRecord, CommandResult

if TYPE_CHECKING:
    from .fleet import FleetManager

logger = logging.getLogger(__name__)

# Telegram message length limit
MAX_MESSAGE_LENGTH = 4096

HELP_TEXT = (
    "/bots — status of every bot\n"
    "/spawn [n] — spawn n named bots (default 10)\n"
    "/connect &lt;bot&gt; · /disconnect &lt;bot&gt;\n"
    "/say &lt;text&gt; — chat or /command from every online bot\n"
    "/follow &lt;player&gt; [bot] · /attack &lt;player&gt; [bot]\n"
    "/stop [bot] — stop current action\n"
    "/antiidle &lt;bot&gt; — toggle anti-idle\n"
    "/tp — teleport every bot to the operator\n"
    "/logs [n] — recent activity\n"
    "/help — this message"
)


class TelegramBot:
    """Telegram bot with command handlers and fleet alert pushes."""

    def __init__(self, config: TelegramConfig, fleet: FleetManager) -> None:
        self._chat_id = int(config.chat_id)
        self._fleet = fleet
        self._subscription: Subscription | None = None
        self._pending: set[asyncio.Task] = set()
        self._app = Application.builder().token(config.bot_token).build()

        only_operator = filters.Chat(chat_id=self._chat_id)
        for name, handler in (
            ("bots", self._cmd_bots),
            ("spawn", self._cmd_spawn),
            ("connect", self._cmd_connect),
            ("disconnect", self._cmd_disconnect),
            ("say", self._cmd_say),
            ("follow", self._cmd_follow),
            ("attack", self._cmd_attack),
            ("stop", self._cmd_stop),
            ("antiidle", self._cmd_anti_idle),
            ("tp", self._cmd_teleport),
            ("logs", self._cmd_logs),
            ("help", self._cmd_help),
        ):
            self._app.add_handler(CommandHandler(name, handler, filters=only_operator))

    async def start(self) -> None:
        """Start polling and subscribe to fleet alerts."""
        self._subscription = self._fleet.events.subscribe(self._on_fleet_event)
        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling()
        logger.info("Telegram bot polling started")

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        try:
            await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
            logger.info("Telegram bot stopped")
        except Exception as e:
            logger.error("Error stopping Telegram bot: %s", e)

    # --- Alerts ---

    def _on_fleet_event(self, event: FleetEvent) -> None:
        if not isinstance(event.payload, BotRecord):
            return
        if event.kind is FleetEventKind.BOT_CONNECTED:
            text = format_connected_alert(event.payload)
        elif event.kind is FleetEventKind.BOT_DISCONNECTED:
            text = format_disconnected_alert(event.payload)
        else:
            return
        task = asyncio.create_task(self._send_safe(self._chat_id, text))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # --- Command Handlers ---

    async def _cmd_bots(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        if not update.message:
            return
        await self._send_safe(
            update.message.chat_id, format_fleet_status(self._fleet.get_bots())
        )

    async def _cmd_spawn(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        args = context.args or []
        try:
            count = int(args[0]) if args else 10
        except ValueError:
            await self._reply(update, CommandResult.fail(f"not a number: {args[0]}"))
            return
        await self._reply(update, await self._fleet.spawn_named(count))

    async def _cmd_connect(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        bot_id = self._bot_arg(context.args, 0)
        if bot_id is None:
            await self._reply(update, CommandResult.fail("usage: /connect <bot>"))
            return
        await self._reply(update, await self._fleet.connect_bot(bot_id))

    async def _cmd_disconnect(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        bot_id = self._bot_arg(context.args, 0)
        if bot_id is None:
            await self._reply(update, CommandResult.fail("usage: /disconnect <bot>"))
            return
        await self._reply(update, await self._fleet.disconnect_bot(bot_id))

    async def _cmd_say(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        text = " ".join(context.args or [])
        if not text:
            await self._reply(update, CommandResult.fail("usage: /say <text>"))
            return
        await self._reply(update, await self._fleet.execute_global_command(text))

    async def _cmd_follow(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        args = context.args or []
        if not args:
            await self._reply(update, CommandResult.fail("Target player required"))
            return
        bot_id = self._bot_arg(args, 1)
        if bot_id is None:
            result = await self._fleet.follow_global(args[0])
        else:
            result = await self._fleet.follow_individual(bot_id, args[0])
        await self._reply(update, result)

    async def _cmd_attack(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        args = context.args or []
        if not args:
            await self._reply(update, CommandResult.fail("Target player required"))
            return
        bot_id = self._bot_arg(args, 1)
        if bot_id is None:
            result = await self._fleet.attack_global(args[0])
        else:
            result = await self._fleet.attack_individual(bot_id, args[0])
        await self._reply(update, result)

    async def _cmd_stop(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        bot_id = self._bot_arg(context.args, 0)
        if bot_id is None:
            result = await self._fleet.stop_global()
        else:
            result = await self._fleet.stop_individual(bot_id)
        await self._reply(update, result)

    async def _cmd_anti_idle(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        bot_id = self._bot_arg(context.args, 0)
        if bot_id is None:
            await self._reply(update, CommandResult.fail("usage: /antiidle <bot>"))
            return
        await self._reply(update, await self._fleet.toggle_anti_idle(bot_id))

    async def _cmd_teleport(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        await self._reply(update, await self._fleet.teleport_to_operator())

    async def _cmd_logs(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        if not update.message:
            return
        args = context.args or []
        limit = int(args[0]) if args and args[0].isdigit() else 20
        await self._send_safe(
            update.message.chat_id, format_logs(self._fleet.get_logs(limit))
        )

    async def _cmd_help(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        if not update.message:
            return
        await update.message.reply_text(HELP_TEXT, parse_mode=ParseMode.HTML)

    # --- Internal Helpers ---

    def _bot_arg(self, args: list[str] | None, index: int) -> str | None:
        """Resolve a username / id / id-prefix argument to a bot id."""
        if not args or len(args) <= index:
            return None
        return self.resolve_bot(args[index])

    def resolve_bot(self, ref: str) -> str:
        records = self._fleet.get_bots()
        for record in records:
            if record.id == ref or record.username == ref:
                return record.id
        matches = [r.id for r in records if r.id.startswith(ref)]
        if len(matches) == 1:
            return matches[0]
        # Unknown or ambiguous: let the fleet report it
        return ref

    async def _reply(self, update: Update, result: CommandResult) -> None:
        if update.message:
            await self._send_safe(update.message.chat_id, format_result(result))

    async def _send_safe(self, chat_id: int, text: str) -> None:
        """Send a message, splitting if it exceeds Telegram's limit."""
        for chunk in self._split_message(text):
            try:
                await self._app.bot.send_message(
                    chat_id, chunk, parse_mode=ParseMode.HTML
                )
            except Exception as e:
                logger.error("Failed to send Telegram message: %s", e)

    @staticmethod
    def _split_message(text: str) -> list[str]:
        """Split a long message into chunks that fit Telegram's limit."""
        if len(text) <= MAX_MESSAGE_LENGTH:
            return [text]

        chunks: list[str] = []
        current = ""
        for line in text.split("\n"):
            if len(current) + len(line) + 1 > MAX_MESSAGE_LENGTH:
                if current:
                    chunks.append(current.rstrip())
                current = line + "\n"
            else:
                current += line + "\n"

        if current.strip():
            chunks.append(current.rstrip())

        return chunks if chunks else [text[:MAX_MESSAGE_LENGTH]]
