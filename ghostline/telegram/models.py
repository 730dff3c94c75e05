"""
Data models for the Telegram remote-control module.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union

from ..config import Config


class Action(str, Enum):
    """Closed set of operator actions. Values double as callback data."""
    START = "start"
    STATUS = "status"
    HELP = "help"
    MENU = "menu"
    CONTROL = "control"
    METRICS = "metrics"
    START_HARVESTER = "start_harvester"
    STOP_HARVESTER = "stop_harvester"
    EMERGENCY_STOP = "emergency_stop"
    CONFIRM_EMERGENCY = "confirm_emergency"

    @classmethod
    def from_callback(cls, data: str) -> Optional["Action"]:
        try:
            return cls(data)
        except ValueError:
            return None


class ConfirmationState(Enum):
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


# ─── Inbound events ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class TextMessage:
    chat_id: str
    text: str


@dataclass(frozen=True)
class CallbackAction:
    chat_id: str
    message_ref: Optional[int]
    action_id: str
    query_id: str


InboundEvent = Union[TextMessage, CallbackAction]


# ─── Outbound responses ───────────────────────────────────────────────────


@dataclass(frozen=True)
class Button:
    label: str
    action_id: str


KeyboardLayout = List[List[Button]]


@dataclass
class OutboundResponse:
    chat_id: str
    body: str
    menu: Optional[KeyboardLayout] = None

    def action_ids(self) -> List[str]:
        if not self.menu:
            return []
        return [button.action_id for row in self.menu for button in row]


# ─── Session state ────────────────────────────────────────────────────────


@dataclass
class PendingConfirmation:
    """A destructive action waiting for its confirming event."""
    chat_id: str
    action: Action
    requested_at: datetime = field(default_factory=datetime.now)
    expiry_task: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)


@dataclass
class BotIdentity:
    id: int
    username: str = ""
    first_name: str = ""


@dataclass
class Session:
    """Live connection state plus the operator binding."""
    connected: bool = False
    starting: bool = False
    authorized_chat_id: Optional[str] = None
    retry_count: int = 0
    started_at: Optional[datetime] = None
    bot_username: str = ""
    confirmations: Dict[str, PendingConfirmation] = field(default_factory=dict)

    def mark_starting(self):
        self.connected = False
        self.starting = True

    def mark_connected(self, identity: Optional[BotIdentity] = None):
        self.starting = False
        self.connected = True
        self.retry_count = 0
        self.started_at = datetime.now()
        if identity is not None:
            self.bot_username = identity.username

    def mark_stopped(self):
        self.starting = False
        self.connected = False
        self.started_at = None

    def bind_operator(self, chat_id: str) -> bool:
        """Bind the operator on first contact. Returns False if already bound."""
        if self.authorized_chat_id is not None:
            return False
        self.authorized_chat_id = str(chat_id)
        return True

    def reset_operator(self):
        self.authorized_chat_id = None

    def is_operator(self, chat_id: str) -> bool:
        return self.authorized_chat_id is not None and str(chat_id) == self.authorized_chat_id

    def to_dict(self) -> dict:
        return {
            "connected": self.connected,
            "starting": self.starting,
            "authorized_chat_id": self.authorized_chat_id,
            "retry_count": self.retry_count,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "bot_username": self.bot_username,
            "pending_confirmations": sorted(self.confirmations),
        }


@dataclass
class ConnectionSettings:
    """Timing knobs for the connection manager and router, in seconds."""
    poll_timeout: float = 10.0
    start_attempts: int = 3
    retry_delay: float = 2.0        # multiplied by the attempt number
    reconnect_delay: float = 5.0
    ack_timeout: float = 5.0
    shutdown_grace: float = 5.0
    confirmation_timeout: float = 60.0

    @classmethod
    def from_config(cls, config: Config) -> "ConnectionSettings":
        defaults = cls()
        return cls(
            poll_timeout=config.get_float("POLL_TIMEOUT", defaults.poll_timeout),
            start_attempts=max(1, config.get_int("START_ATTEMPTS", defaults.start_attempts)),
            retry_delay=config.get_float("RETRY_DELAY", defaults.retry_delay),
            reconnect_delay=config.get_float("RECONNECT_DELAY", defaults.reconnect_delay),
            ack_timeout=config.get_float("ACK_TIMEOUT", defaults.ack_timeout),
            shutdown_grace=config.get_float("SHUTDOWN_GRACE", defaults.shutdown_grace),
            confirmation_timeout=config.get_float("CONFIRMATION_TIMEOUT", defaults.confirmation_timeout),
        )

    def to_dict(self) -> dict:
        return {
            "poll_timeout": self.poll_timeout,
            "start_attempts": self.start_attempts,
            "retry_delay": self.retry_delay,
            "reconnect_delay": self.reconnect_delay,
            "ack_timeout": self.ack_timeout,
            "shutdown_grace": self.shutdown_grace,
            "confirmation_timeout": self.confirmation_timeout,
        }
