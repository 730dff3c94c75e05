"""
Command router for the remote-control bot.

Every inbound event goes through ``on_event`` exactly once: the operator gate,
classification into an ``Action``, dispatch through the handler table, and
exactly one acknowledgment back to the transport. Button presses from the
operator are acknowledged before the handler runs.
"""
from typing import Awaitable, Callable, Dict, Optional, Protocol

from ..audit import AuditEventType, AuditLogger, audit_logger
from ..config import CHAT_ID_KEY, Config
from ..control import CommandResult, ControlSystem, DetailedMetrics, SystemStatus
from ..logging_config import get_logger
from . import keyboards
from .commands import (
    CONFIRMATION_EXPIRED_TEXT,
    ERROR_ACK,
    ERROR_TEXT,
    METRICS_ERROR_TEXT,
    NOTHING_TO_CONFIRM_TEXT,
    STATUS_ERROR_TEXT,
    UNAUTHORIZED_ACK,
    UNAUTHORIZED_TEXT,
    format_control_text,
    format_emergency_prompt,
    format_emergency_result,
    format_help_text,
    format_main_menu_text,
    format_metrics,
    format_module_result,
    format_system_status,
    format_usage_text,
    parse_text_command,
)
from .confirmation import ConfirmationFlow
from .errors import HandlerError
from .models import (
    Action,
    CallbackAction,
    InboundEvent,
    KeyboardLayout,
    OutboundResponse,
    PendingConfirmation,
    Session,
    TextMessage,
)

logger = get_logger("ghostline.telegram.router")

Handler = Callable[[InboundEvent], Awaitable[None]]

# Actions that keep a pending confirmation alive
CONFIRMATION_ACTIONS = (Action.EMERGENCY_STOP, Action.CONFIRM_EMERGENCY)


class Outbox(Protocol):
    async def send(self, chat_id: str, response: OutboundResponse) -> bool:
        ...

    async def acknowledge(self, event: InboundEvent, text: Optional[str] = None) -> bool:
        ...


def describe_event(event: InboundEvent) -> str:
    if isinstance(event, CallbackAction):
        return f"callback '{event.action_id}' from chat {event.chat_id}"
    return f"message {event.text!r} from chat {event.chat_id}"


class CommandRouter:
    """Authorizes, classifies and dispatches inbound events."""

    def __init__(
        self,
        session: Session,
        control: ControlSystem,
        outbox: Outbox,
        config: Optional[Config] = None,
        confirmations: Optional[ConfirmationFlow] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self._session = session
        self._control = control
        self._outbox = outbox
        self._config = config
        self._confirmations = confirmations or ConfirmationFlow(session)
        self._confirmations.set_expiry_callback(self._on_confirmation_expired)
        self._audit = audit or audit_logger

        self._handlers: Dict[Action, Handler] = {
            Action.START: self._show_main_menu,
            Action.MENU: self._show_main_menu,
            Action.HELP: self._show_help,
            Action.STATUS: self._show_status,
            Action.CONTROL: self._show_control,
            Action.METRICS: self._show_metrics,
            Action.START_HARVESTER: self._start_harvester,
            Action.STOP_HARVESTER: self._stop_harvester,
            Action.EMERGENCY_STOP: self._request_emergency_stop,
            Action.CONFIRM_EMERGENCY: self._confirm_emergency_stop,
        }
        missing = set(Action) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for actions: {sorted(a.value for a in missing)}")

    @property
    def confirmations(self) -> ConfirmationFlow:
        return self._confirmations

    # ─── Entry point ───────────────────────────────────────────────────

    async def on_event(self, event: InboundEvent):
        """Process one inbound event. Never raises for handler failures."""
        ack_text = None
        acknowledged = False
        try:
            if not await self._authorize(event):
                ack_text = UNAUTHORIZED_ACK
                return

            # Dismiss the button spinner before the control system is called;
            # Telegram rejects answers to queries that are too old
            if isinstance(event, CallbackAction):
                acknowledged = True
                await self._outbox.acknowledge(event, None)

            action = self.classify(event)
            if action is None:
                await self._handle_unrecognized(event)
                return

            await self._dispatch(event, action)
        except HandlerError as e:
            ack_text = ERROR_ACK
            logger.error(f"{e}: {e.__cause__}", exc_info=e.__cause__)
            await self._reply(event.chat_id, ERROR_TEXT)
        except Exception as e:
            ack_text = ERROR_ACK
            logger.exception(f"Unexpected error processing {describe_event(event)}: {e}")
            await self._reply(event.chat_id, ERROR_TEXT)
        finally:
            if not acknowledged:
                await self._outbox.acknowledge(event, ack_text)

    # ─── Auth ──────────────────────────────────────────────────────────

    async def _authorize(self, event: InboundEvent) -> bool:
        chat_id = event.chat_id
        if self._session.bind_operator(chat_id):
            # Trust on first contact: whoever writes first becomes the operator
            if self._config is not None:
                self._config.set(CHAT_ID_KEY, chat_id, persist=True)
            logger.warning(f"Operator chat automatically bound to {chat_id} (first contact)")
            self._audit.log(AuditEventType.OPERATOR_BOUND, chat_id=chat_id, details={"mode": "first_contact"})

        if self._session.is_operator(chat_id):
            return True

        logger.warning_with("Unauthorized access attempt", chat_id=chat_id)
        self._audit.log(
            AuditEventType.UNAUTHORIZED_ACCESS,
            chat_id=chat_id,
            details={"event": describe_event(event)},
            success=False,
        )
        await self._reply(chat_id, UNAUTHORIZED_TEXT)
        return False

    # ─── Classification & dispatch ─────────────────────────────────────

    @staticmethod
    def classify(event: InboundEvent) -> Optional[Action]:
        if isinstance(event, TextMessage):
            return parse_text_command(event.text)
        if isinstance(event, CallbackAction):
            return Action.from_callback(event.action_id)
        return None

    async def _handle_unrecognized(self, event: InboundEvent):
        if isinstance(event, TextMessage):
            await self._reply(event.chat_id, format_usage_text())
        else:
            logger.debug_with("Ignoring unknown callback", action_id=event.action_id, chat_id=event.chat_id)

    async def _dispatch(self, event: InboundEvent, action: Action):
        chat_id = event.chat_id
        if action not in CONFIRMATION_ACTIONS:
            pending = self._confirmations.cancel(chat_id)
            if pending is not None:
                logger.info(f"Pending {pending.action.value} implicitly cancelled by {action.value}")
                self._audit.log(
                    AuditEventType.EMERGENCY_CANCELLED,
                    chat_id=chat_id,
                    details={"reason": "implicit", "action": action.value},
                )

        logger.info_with("Dispatching action", action=action.value, chat_id=chat_id)
        handler = self._handlers[action]
        try:
            await handler(event)
        except Exception as e:
            raise HandlerError(f"Handler for {action.value} failed") from e

    async def _reply(self, chat_id: str, body: str, menu: Optional[KeyboardLayout] = None) -> bool:
        return await self._outbox.send(chat_id, OutboundResponse(chat_id=chat_id, body=body, menu=menu))

    # ─── Views ─────────────────────────────────────────────────────────

    async def _show_main_menu(self, event: InboundEvent):
        await self._reply(event.chat_id, format_main_menu_text(), keyboards.main_menu())

    async def _show_help(self, event: InboundEvent):
        await self._reply(event.chat_id, format_help_text(), keyboards.back_to_menu())

    async def _show_control(self, event: InboundEvent):
        await self._reply(event.chat_id, format_control_text(), keyboards.control_menu())

    async def _show_status(self, event: InboundEvent):
        try:
            status = SystemStatus.model_validate(await self._control.get_system_status())
        except Exception as e:
            logger.error(f"Failed to get system status: {e}")
            await self._reply(event.chat_id, STATUS_ERROR_TEXT)
            return
        await self._reply(event.chat_id, format_system_status(status), keyboards.back_to_menu())

    async def _show_metrics(self, event: InboundEvent):
        try:
            metrics = DetailedMetrics.model_validate(await self._control.get_detailed_metrics())
        except Exception as e:
            logger.error(f"Failed to get metrics: {e}")
            await self._reply(event.chat_id, METRICS_ERROR_TEXT)
            return
        await self._reply(event.chat_id, format_metrics(metrics), keyboards.metrics_menu())

    # ─── Commands ──────────────────────────────────────────────────────

    async def _start_harvester(self, event: InboundEvent):
        await self._run_module_command(event, "start", "harvester")

    async def _stop_harvester(self, event: InboundEvent):
        await self._run_module_command(event, "stop", "harvester")

    async def _execute(self, chat_id: str, command: str) -> Optional[CommandResult]:
        """Run a control command; None means the control system failed."""
        try:
            result = CommandResult.coerce(await self._control.execute_command(command))
        except Exception as e:
            logger.error_with("Control command failed", command=command, error=e)
            self._audit.log(
                AuditEventType.COMMAND_EXECUTED,
                chat_id=chat_id,
                details={"command": command, "error": type(e).__name__},
                success=False,
            )
            return None
        self._audit.log(
            AuditEventType.COMMAND_EXECUTED,
            chat_id=chat_id,
            details={"command": command},
            success=result.success,
        )
        return result

    async def _run_module_command(self, event: InboundEvent, verb: str, module: str):
        chat_id = event.chat_id
        progress = "Starting" if verb == "start" else "Stopping"
        await self._reply(chat_id, f"🔄 {progress} {module}...")

        result = await self._execute(chat_id, f"{verb}_{module}")
        if result is None:
            await self._reply(chat_id, f"❌ Error trying to {verb} {module}. Control system unavailable.")
            return
        await self._reply(chat_id, format_module_result(verb, module, result))

    async def _request_emergency_stop(self, event: InboundEvent):
        self._confirmations.arm(event.chat_id, Action.EMERGENCY_STOP)
        self._audit.log(AuditEventType.EMERGENCY_REQUESTED, chat_id=event.chat_id)
        await self._reply(event.chat_id, format_emergency_prompt(), keyboards.emergency_confirm_menu())

    async def _confirm_emergency_stop(self, event: InboundEvent):
        chat_id = event.chat_id
        if self._confirmations.confirm(chat_id) is None:
            logger.info(f"Ignoring emergency confirmation from chat {chat_id}: nothing pending")
            await self._reply(chat_id, NOTHING_TO_CONFIRM_TEXT, keyboards.back_to_menu())
            return

        self._audit.log(AuditEventType.EMERGENCY_CONFIRMED, chat_id=chat_id)
        result = await self._execute(chat_id, "emergency_stop")
        if result is None:
            await self._reply(chat_id, "❌ Emergency stop failed: control system unavailable.")
            return
        await self._reply(chat_id, format_emergency_result(result))

    async def _on_confirmation_expired(self, pending: PendingConfirmation):
        self._audit.log(
            AuditEventType.EMERGENCY_EXPIRED,
            chat_id=pending.chat_id,
            details={"action": pending.action.value},
        )
        await self._reply(pending.chat_id, CONFIRMATION_EXPIRED_TEXT, keyboards.back_to_menu())
