"""
Telegram remote control for the Ghostline control system.

Wires the connection manager, command router and confirmation flow around a
shared Session, and exposes start/stop results, operator notifications and a
status snapshot to the CLI.
"""
import asyncio
import html
from enum import Enum
from typing import Optional

from ..audit import AuditEventType, AuditLogger, audit_logger
from ..config import CHAT_ID_KEY, Config
from ..control import ControlSystem
from ..logging_config import get_logger
from .commands import COMMANDS
from .confirmation import ConfirmationFlow
from .connection import ConnectionManager, TransportFactory
from .errors import StartError, StopError
from .models import ConnectionSettings, OutboundResponse, Session
from .router import CommandRouter

logger = get_logger("ghostline.telegram")


class NotificationLevel(str, Enum):
    INFO = "info"
    SYSTEM = "system"
    ALERT = "alert"
    SUCCESS = "success"


NOTIFICATION_PREFIXES = {
    NotificationLevel.INFO: "📢",
    NotificationLevel.SYSTEM: "🤖",
    NotificationLevel.ALERT: "🚨",
    NotificationLevel.SUCCESS: "✅",
}


class RemoteControlBot:
    """Telegram bot for remote control of the Ghostline control system."""

    def __init__(
        self,
        config: Config,
        control: ControlSystem,
        transport_factory: Optional[TransportFactory] = None,
        settings: Optional[ConnectionSettings] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self._config = config
        self._audit = audit or audit_logger
        self._settings = settings or ConnectionSettings.from_config(config)
        self._session = Session(authorized_chat_id=config.get(CHAT_ID_KEY))
        self._halted = asyncio.Event()
        self._fatal_error: Optional[Exception] = None

        self._manager = ConnectionManager(
            config,
            session=self._session,
            settings=self._settings,
            transport_factory=transport_factory,
            commands=[(cmd.command, cmd.description) for cmd in COMMANDS],
            audit=self._audit,
        )
        self._confirmations = ConfirmationFlow(self._session, self._settings.confirmation_timeout)
        self._router = CommandRouter(
            self._session,
            control,
            outbox=self._manager,
            config=config,
            confirmations=self._confirmations,
            audit=self._audit,
        )
        self._manager.set_event_handler(self._router.on_event)
        self._manager.set_fatal_callback(self._on_fatal)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    @property
    def router(self) -> CommandRouter:
        return self._router

    # ─── Lifecycle ─────────────────────────────────────────────────────

    async def start(self) -> dict:
        try:
            identity = await self._manager.start()
        except StartError as e:
            return {"success": False, "message": str(e), "error": type(e).__name__}
        self._halted.clear()
        if self._session.authorized_chat_id is None:
            logger.warning("No operator bound yet: the first chat to message the bot becomes the operator")
        return {"success": True, "message": f"Telegram interface started as @{identity.username}"}

    async def stop(self) -> dict:
        self._confirmations.clear_all()
        try:
            await self._manager.stop()
        except StopError as e:
            return {"success": False, "message": str(e), "error": type(e).__name__}
        finally:
            self._halted.set()
        return {"success": True, "message": "Telegram interface stopped"}

    async def wait_halted(self):
        """Block until the bot is stopped or halted by a rejected token."""
        await self._halted.wait()

    @property
    def fatal_error(self) -> Optional[Exception]:
        return self._fatal_error

    async def _on_fatal(self, error: Exception):
        self._fatal_error = error
        self._confirmations.clear_all()
        self._halted.set()

    # ─── Operator ──────────────────────────────────────────────────────

    def reset_operator(self):
        """Forget the bound operator; the next chat to write binds again."""
        previous = self._session.authorized_chat_id
        self._session.reset_operator()
        self._confirmations.clear_all()
        self._config.reset(CHAT_ID_KEY)
        self._audit.log(AuditEventType.OPERATOR_RESET, chat_id=previous)

    async def notify(self, text: str, level: NotificationLevel = NotificationLevel.INFO) -> bool:
        """Push a message to the operator. Returns False if nobody is bound or offline."""
        chat_id = self._session.authorized_chat_id
        if not chat_id or not self._session.connected:
            return False
        body = f"{NOTIFICATION_PREFIXES[level]} {html.escape(text)}"
        return await self._manager.send(chat_id, OutboundResponse(chat_id=chat_id, body=body))

    async def send_alert(self, text: str) -> bool:
        return await self.notify(text, NotificationLevel.ALERT)

    async def send_success(self, text: str) -> bool:
        return await self.notify(text, NotificationLevel.SUCCESS)

    async def send_system_message(self, text: str) -> bool:
        return await self.notify(text, NotificationLevel.SYSTEM)

    def get_status(self) -> dict:
        return self._manager.get_status()
