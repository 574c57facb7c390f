"""HTML message formatting for Telegram.

Message styles:
  - format_bot_status():   one bot, one or two lines (for /bots)
  - format_fleet_status(): whole fleet with a header count
  - format_logs():         recent activity log lines (for /logs)
  - alerts for connect / disconnect pushes
"""

from __future__ import annotations

from html import escape

from .models import BotAction, BotRecord, CommandResult, LogEntry, LogLevel

_LEVEL_MARKS = {
    LogLevel.INFO: "·",
    LogLevel.SUCCESS: "✓",
    LogLevel.WARNING: "!",
    LogLevel.ERROR: "✗",
}


# ---------------------------------------------------------------------------
#  Fleet status (for /bots command)
# ---------------------------------------------------------------------------


def format_bot_status(record: BotRecord) -> str:
    name = f"<b>{escape(record.username)}</b>"
    if not record.online:
        return f"{name}  {record.connection_state.value}  <code>{record.id[:8]}</code>"

    line = (
        f"{name}  {_format_action(record)}  <code>{record.id[:8]}</code>\n"
        f"  hp {record.health:g}/{record.max_health:g}"
        f"  ·  up {format_uptime(record.uptime_seconds)}"
    )
    if record.position is not None:
        p = record.position
        line += f"  ·  {p.x:g}, {p.y:g}, {p.z:g}"
    return line


def format_fleet_status(records: list[BotRecord]) -> str:
    if not records:
        return "no bots registered"
    online = sum(1 for r in records if r.online)
    header = f"<b>fleet</b>  {online}/{len(records)} online"
    return header + "\n\n" + "\n".join(format_bot_status(r) for r in records)


def _format_action(record: BotRecord) -> str:
    if record.action in (BotAction.FOLLOWING, BotAction.ATTACKING) and record.target:
        return f"{record.action.value} {escape(record.target)}"
    return record.action.value.replace("_", "-")


# ---------------------------------------------------------------------------
#  Logs
# ---------------------------------------------------------------------------


def format_log_entry(entry: LogEntry) -> str:
    mark = _LEVEL_MARKS[entry.level]
    return (
        f"{entry.timestamp:%H:%M:%S} {mark} "
        f"<b>{escape(entry.bot_name)}</b> {escape(entry.message)}"
    )


def format_logs(entries: list[LogEntry]) -> str:
    if not entries:
        return "no log entries"
    # Oldest first reads naturally in a chat window
    return "\n".join(format_log_entry(e) for e in reversed(entries))


# ---------------------------------------------------------------------------
#  Alerts & replies
# ---------------------------------------------------------------------------


def format_connected_alert(record: BotRecord) -> str:
    return f"<b>{escape(record.username)}</b> — online"


def format_disconnected_alert(record: BotRecord) -> str:
    return f"<b>{escape(record.username)}</b> — connection lost, retrying"


def format_result(result: CommandResult) -> str:
    prefix = "ok" if result.success else "failed"
    return f"{prefix}: {escape(result.message)}"


def format_uptime(seconds: int) -> str:
    """Human-readable uptime, e.g. ``2d 14h 30m`` or ``45s``."""
    if seconds < 60:
        return f"{max(seconds, 0)}s"
    minutes, _ = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
