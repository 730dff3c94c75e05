"""
Command definitions and message formatting helpers for the Telegram bot.
"""
import html
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..control import CommandResult, DetailedMetrics, SystemStatus
from .models import Action

BRAND = "GHOSTLINE CLEAN V4.1"


@dataclass
class BotCommand:
    """Telegram bot command definition."""
    command: str
    description: str
    action: Action


COMMANDS: List[BotCommand] = [
    BotCommand("start", "Main control panel", Action.START),
    BotCommand("status", "System status check", Action.STATUS),
    BotCommand("help", "Help information", Action.HELP),
    BotCommand("menu", "Navigation menu", Action.MENU),
]

TEXT_COMMANDS: Dict[str, Action] = {f"/{cmd.command}": cmd.action for cmd in COMMANDS}


def parse_text_command(text: str) -> Optional[Action]:
    """
    Map a text message to an action.

    Accepts the "/status@BotName" form Telegram uses in group chats and
    ignores trailing arguments.
    """
    parts = (text or "").split(maxsplit=1)
    if not parts:
        return None
    head = parts[0].split("@", 1)[0].lower()
    return TEXT_COMMANDS.get(head)


# ─── Fixed responses ──────────────────────────────────────────────────────

UNAUTHORIZED_TEXT = "🚫 Unauthorized access"
UNAUTHORIZED_ACK = "Not authorized."
ERROR_TEXT = "❌ Sorry, there was an error processing your request."
ERROR_ACK = "❌ Error processing request"
STATUS_ERROR_TEXT = "❌ Error getting status"
METRICS_ERROR_TEXT = "❌ Error getting metrics"
NOTHING_TO_CONFIRM_TEXT = "ℹ️ No emergency stop is pending."
CONFIRMATION_EXPIRED_TEXT = "⌛ Emergency stop request expired. Nothing was stopped."


def format_usage_text() -> str:
    lines = [f"🤖 {BRAND} is running!\n", "📋 Available Commands:"]
    for cmd in COMMANDS[:3]:
        lines.append(f"/{cmd.command} - {html.escape(cmd.description)}")
    lines.append("\n✨ Use /start to access the full interface!")
    return "\n".join(lines)


def format_help_text() -> str:
    """Format the help message listing all commands."""
    lines = [f"🆘 <b>HELP - {BRAND}</b>\n", "<b>📋 Available Commands:</b>"]
    for cmd in COMMANDS:
        lines.append(f"/{cmd.command} - {html.escape(cmd.description)}")
    lines.extend([
        "",
        "<b>🎛️ Control Panel:</b>",
        "🌾 Start / stop the harvester",
        "📊 Real-time metrics",
        "🚨 Emergency stop (asks for confirmation)",
        "",
        "<b>💡 Quick Start:</b>",
        "1. Use /start for the main menu",
        "2. Try the \"Start Harvester\" button",
        "3. Check metrics for progress",
    ])
    return "\n".join(lines)


def format_main_menu_text() -> str:
    return (
        f"🚀 <b>{BRAND}</b>\n\n"
        "💰 Clean Revenue Generation System\n\n"
        "📊 Status: Online ✅\n"
        "🔒 Security: Active ✅\n"
        "🌾 Task Harvesting: Ready ✅\n\n"
        "🎮 Choose an option below:"
    )


def format_control_text() -> str:
    return (
        "🎛️ <b>CONTROL PANEL</b>\n\n"
        "⚙️ System Control Functions\n"
        "⚠️ Use with caution\n\n"
        "Select an action:"
    )


def format_emergency_prompt() -> str:
    return (
        "🚨 <b>EMERGENCY STOP</b>\n\n"
        "⚠️ This will immediately stop all modules!\n"
        "⚠️ Are you sure you want to continue?\n\n"
        "This action cannot be undone."
    )


def format_uptime(milliseconds: float) -> str:
    """Format an uptime in milliseconds as "Xh Ym"."""
    milliseconds = max(0, int(milliseconds or 0))
    hours = milliseconds // 3_600_000
    minutes = (milliseconds % 3_600_000) // 60_000
    return f"{hours}h {minutes}m"


def _text(value, default: str = "N/A") -> str:
    return html.escape(str(value)) if value not in (None, "") else default


def format_system_status(status: SystemStatus) -> str:
    """Format a status snapshot as Telegram HTML."""
    harvester = status.module("harvester")
    telegram = status.module("telegram")
    return "\n".join([
        "📊 <b>SYSTEM STATUS</b>\n",
        f"⏱️ Runtime: {_text(status.runtime)}",
        f"🟢 Status: {_text(status.status, 'Unknown')}",
        f"🏷️ Version: {_text(status.version)}\n",
        f"🌾 Harvester: {_text(harvester.status)}",
        f"📡 Telegram: {_text(telegram.status)}\n",
        f"💰 Earnings: {harvester.earnings:.4f} ETH",
        f"🔒 Security Events: {status.security.events}",
    ])


def format_metrics(metrics: DetailedMetrics) -> str:
    """Format a metrics snapshot as Telegram HTML."""
    harvester = metrics.harvester
    performance = metrics.performance
    return "\n".join([
        "📊 <b>DETAILED METRICS</b>\n",
        f"⏱️ System Uptime: {format_uptime(metrics.system.uptime)}",
        f"🔧 Active Modules: {metrics.system.active_modules}",
        f"🔒 Security Score: {_text(metrics.security.security_level)}\n",
        "🌾 <b>Harvester:</b>",
        f"   • Tasks: {harvester.tasks_completed}",
        f"   • Earnings: {harvester.total_earnings:.4f} ETH",
        f"   • Success Rate: {_text(harvester.success_rate, '0%')}",
        f"   • Scraping: {_text(harvester.scraping.success_rate, '0%')}\n",
        "💰 <b>Performance:</b>",
        f"   • Tasks/Hour: {_text(performance.tasks_per_hour, '0.0')}",
        f"   • Earnings/Hour: {_text(performance.hourly_earnings, '0.0000')} ETH",
        f"   • Overall Success: {_text(performance.success_rate, '0%')}",
    ])


def format_module_result(verb: str, module: str, result: CommandResult) -> str:
    """Report a start/stop command result, passing the control message through."""
    past = {"start": "started", "stop": "stopped"}.get(verb, verb)
    message = html.escape(result.message)
    if result.success:
        return f"✅ {module} {past} successfully!\n{message}"
    return f"❌ Failed to {verb} {module}:\n{message}"


def format_emergency_result(result: CommandResult) -> str:
    message = html.escape(result.message)
    if result.success:
        return f"✅ Emergency stop completed: {message}"
    return f"❌ Emergency stop failed: {message}"
