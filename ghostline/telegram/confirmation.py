"""
Two-step confirmation for destructive actions.

Per chat: IDLE -> AWAITING_CONFIRMATION -> IDLE. Pending requests live on the
Session so they die with it; each one carries an expiry task that clears it
after the timeout unless it was confirmed or cancelled first.
"""
import asyncio
from typing import Awaitable, Callable, Optional

from ..logging_config import get_logger
from .models import Action, ConfirmationState, PendingConfirmation, Session

logger = get_logger("ghostline.telegram.confirmation")

ExpiryCallback = Callable[[PendingConfirmation], Awaitable[None]]


class ConfirmationFlow:

    DEFAULT_TIMEOUT_SECONDS = 60.0

    def __init__(
        self,
        session: Session,
        timeout_seconds: Optional[float] = None,
        on_expire: Optional[ExpiryCallback] = None,
    ):
        self._session = session
        self._timeout = self.DEFAULT_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self._on_expire = on_expire

    def set_expiry_callback(self, callback: Optional[ExpiryCallback]):
        self._on_expire = callback

    def state(self, chat_id: str) -> ConfirmationState:
        if str(chat_id) in self._session.confirmations:
            return ConfirmationState.AWAITING_CONFIRMATION
        return ConfirmationState.IDLE

    def is_awaiting(self, chat_id: str) -> bool:
        return self.state(chat_id) is ConfirmationState.AWAITING_CONFIRMATION

    def arm(self, chat_id: str, action: Action = Action.EMERGENCY_STOP) -> PendingConfirmation:
        """Enter AWAITING_CONFIRMATION, replacing any earlier request for the chat."""
        chat_id = str(chat_id)
        self._discard(chat_id)
        pending = PendingConfirmation(chat_id=chat_id, action=action)
        if self._timeout > 0:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                # No running loop: the request simply never expires
                loop = None
            if loop is not None:
                pending.expiry_task = loop.create_task(self._expire_later(pending))
        self._session.confirmations[chat_id] = pending
        logger.info(f"Awaiting confirmation of {action.value} from chat {chat_id}")
        return pending

    def confirm(self, chat_id: str) -> Optional[PendingConfirmation]:
        """Consume the pending request. Returns None when the chat was IDLE."""
        return self._discard(str(chat_id))

    def cancel(self, chat_id: str) -> Optional[PendingConfirmation]:
        return self._discard(str(chat_id))

    def clear_all(self):
        for chat_id in list(self._session.confirmations):
            self._discard(chat_id)

    def _discard(self, chat_id: str) -> Optional[PendingConfirmation]:
        pending = self._session.confirmations.pop(chat_id, None)
        if pending is not None and pending.expiry_task is not None:
            if pending.expiry_task is not asyncio.current_task():
                pending.expiry_task.cancel()
            pending.expiry_task = None
        return pending

    async def _expire_later(self, pending: PendingConfirmation):
        await asyncio.sleep(self._timeout)
        if self._session.confirmations.get(pending.chat_id) is not pending:
            return
        self._session.confirmations.pop(pending.chat_id, None)
        pending.expiry_task = None
        if not self._session.connected:
            return
        logger.info(f"Confirmation of {pending.action.value} expired for chat {pending.chat_id}")
        if self._on_expire is not None:
            try:
                await self._on_expire(pending)
            except Exception as e:
                logger.error(f"Confirmation expiry callback failed: {e}")
