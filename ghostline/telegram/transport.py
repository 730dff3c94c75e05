"""
Platform transport for the remote-control bot.

The connection manager only talks to the ``Transport`` protocol, so tests can
swap in an in-memory fake. ``TelegramTransport`` implements it on top of the
python-telegram-bot ``Bot`` class using getUpdates long-polling, and maps
library errors onto the remote-control error taxonomy.
"""
from typing import List, Optional, Protocol, Sequence, Tuple

from ..logging_config import get_logger
from .errors import PermanentCredentialError, RemoteControlError, SendError, TransientTransportError
from .models import BotIdentity, CallbackAction, InboundEvent, KeyboardLayout, TextMessage

logger = get_logger("ghostline.telegram.transport")

MAX_MESSAGE_LENGTH = 4096
ALLOWED_UPDATES = ["message", "callback_query"]


class Transport(Protocol):
    async def open(self) -> None:
        ...

    async def get_me(self) -> BotIdentity:
        ...

    async def set_commands(self, commands: Sequence[Tuple[str, str]]) -> None:
        ...

    async def receive(self, timeout: float) -> List[InboundEvent]:
        ...

    async def send_message(self, chat_id: str, text: str, menu: Optional[KeyboardLayout] = None) -> None:
        ...

    async def answer_callback(self, query_id: str, text: Optional[str] = None) -> None:
        ...

    async def close(self) -> None:
        ...


def truncate_message(text: str) -> str:
    if len(text) > MAX_MESSAGE_LENGTH:
        return text[:MAX_MESSAGE_LENGTH - 6] + "\n..."
    return text


def _retry_after_seconds(value) -> float:
    # int in older releases, timedelta in newer ones
    if hasattr(value, "total_seconds"):
        return float(value.total_seconds())
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def translate_error(error: Exception, sending: bool = False) -> RemoteControlError:
    """Map a python-telegram-bot exception onto the remote-control taxonomy."""
    from telegram.error import BadRequest, Forbidden, InvalidToken, RetryAfter

    if isinstance(error, InvalidToken):
        return PermanentCredentialError(f"Bot token rejected: {error}")
    if sending and isinstance(error, (Forbidden, BadRequest)):
        return SendError(str(error))
    if isinstance(error, RetryAfter):
        delay = _retry_after_seconds(getattr(error, "retry_after", 0))
        return TransientTransportError(f"Rate limited, retry after {delay:.0f}s", retry_after=delay)
    return TransientTransportError(f"{type(error).__name__}: {error}")


def update_to_event(update) -> Optional[InboundEvent]:
    """Convert a telegram ``Update`` to an inbound event, or None to skip it."""
    message = getattr(update, "message", None)
    if message is not None and message.text is not None:
        return TextMessage(chat_id=str(message.chat.id), text=message.text)

    query = getattr(update, "callback_query", None)
    if query is not None and query.data is not None:
        if query.message is not None:
            chat_id = str(query.message.chat.id)
            message_ref = query.message.message_id
        else:
            chat_id = str(query.from_user.id)
            message_ref = None
        return CallbackAction(
            chat_id=chat_id,
            message_ref=message_ref,
            action_id=query.data,
            query_id=str(query.id),
        )
    return None


def build_markup(menu: Optional[KeyboardLayout]):
    """Build InlineKeyboardMarkup from rows of buttons."""
    if not menu:
        return None
    from telegram import InlineKeyboardButton, InlineKeyboardMarkup
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(button.label, callback_data=button.action_id) for button in row]
        for row in menu
    ])


class TelegramTransport:
    """Long-polling transport backed by ``telegram.Bot``."""

    def __init__(self, token: str):
        try:
            from telegram import Bot
        except ImportError:
            raise RuntimeError("python-telegram-bot not installed. Run: pip install python-telegram-bot")
        from telegram.error import InvalidToken

        try:
            self._bot = Bot(token)
        except InvalidToken as e:
            raise PermanentCredentialError(f"Bot token rejected: {e}") from e
        self._offset: Optional[int] = None
        self._opened = False

    async def open(self) -> None:
        from telegram.error import TelegramError
        if self._opened:
            return
        try:
            await self._bot.initialize()
        except TelegramError as e:
            raise translate_error(e) from e
        self._opened = True

    async def get_me(self) -> BotIdentity:
        from telegram.error import TelegramError
        try:
            me = await self._bot.get_me()
        except TelegramError as e:
            raise translate_error(e) from e
        return BotIdentity(id=me.id, username=me.username or "", first_name=me.first_name or "")

    async def set_commands(self, commands: Sequence[Tuple[str, str]]) -> None:
        from telegram import BotCommand
        from telegram.error import TelegramError
        try:
            await self._bot.set_my_commands([BotCommand(name, description) for name, description in commands])
        except TelegramError as e:
            raise translate_error(e) from e

    async def receive(self, timeout: float) -> List[InboundEvent]:
        from telegram.error import TelegramError
        try:
            updates = await self._bot.get_updates(
                offset=self._offset,
                timeout=int(timeout),
                allowed_updates=ALLOWED_UPDATES,
            )
        except TelegramError as e:
            raise translate_error(e) from e

        events = []
        for update in updates:
            # Consume the offset even for skipped updates so they are not redelivered
            self._offset = update.update_id + 1
            event = update_to_event(update)
            if event is None:
                logger.debug(f"Skipping unsupported update {update.update_id}")
                continue
            events.append(event)
        return events

    async def send_message(self, chat_id: str, text: str, menu: Optional[KeyboardLayout] = None) -> None:
        from telegram.error import TelegramError
        try:
            await self._bot.send_message(
                chat_id=chat_id,
                text=truncate_message(text),
                parse_mode="HTML",
                reply_markup=build_markup(menu),
            )
        except TelegramError as e:
            raise translate_error(e, sending=True) from e

    async def answer_callback(self, query_id: str, text: Optional[str] = None) -> None:
        from telegram.error import TelegramError
        try:
            await self._bot.answer_callback_query(query_id, text=text)
        except TelegramError as e:
            raise translate_error(e, sending=True) from e

    async def close(self) -> None:
        if not self._opened:
            return
        self._opened = False
        await self._bot.shutdown()
