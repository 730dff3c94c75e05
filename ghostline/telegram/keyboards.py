"""
Inline keyboard layouts. Button labels are display only; routing uses the
action ids.
"""
from typing import List, Tuple

from .models import Action, Button, KeyboardLayout


def kb(rows: List[List[Tuple[str, Action]]]) -> KeyboardLayout:
    """Build a layout from rows of (label, action) tuples."""
    return [[Button(label, action.value) for label, action in row] for row in rows]


def main_menu() -> KeyboardLayout:
    """Main menu shown on /start and /menu."""
    return kb([
        [("📊 Status", Action.STATUS), ("🎛️ Control", Action.CONTROL)],
        [("🌾 Start Harvester", Action.START_HARVESTER), ("🛑 Stop Harvester", Action.STOP_HARVESTER)],
        [("📈 Metrics", Action.METRICS), ("🆘 Help", Action.HELP)],
    ])


def control_menu() -> KeyboardLayout:
    return kb([
        [("🌾 Start Harvester", Action.START_HARVESTER), ("🛑 Stop Harvester", Action.STOP_HARVESTER)],
        [("📊 Metrics", Action.METRICS), ("🚨 Emergency Stop", Action.EMERGENCY_STOP)],
        [("◀️ Back to Menu", Action.MENU)],
    ])


def metrics_menu() -> KeyboardLayout:
    return kb([[("◀️ Back to Control", Action.CONTROL)]])


def back_to_menu() -> KeyboardLayout:
    return kb([[("◀️ Back to Menu", Action.MENU)]])


def emergency_confirm_menu() -> KeyboardLayout:
    # Cancel routes to the control panel, which implicitly cancels the request
    return kb([
        [("✅ CONFIRM STOP", Action.CONFIRM_EMERGENCY), ("❌ Cancel", Action.CONTROL)],
    ])
