"""
Connection lifecycle for the remote-control bot.

The manager owns the long-polling session: it verifies the bot identity before
going live, retries the initial connect with a linear backoff, keeps a poll
task feeding an event queue, and a single dispatch task that hands events to
the router one at a time in arrival order. Mid-session transport failures
schedule one delayed reconnect; a rejected token halts the session.
"""
import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from ..audit import AuditEventType, AuditLogger, audit_logger
from ..config import BOT_TOKEN_KEY, Config
from ..logging_config import get_logger
from .errors import (
    AlreadyStarting,
    MissingCredential,
    PermanentCredentialError,
    StartError,
    StopError,
    TransientTransportError,
)
from .models import BotIdentity, CallbackAction, ConnectionSettings, InboundEvent, OutboundResponse, Session
from .transport import Transport

logger = get_logger("ghostline.telegram.connection")

EventHandler = Callable[[InboundEvent], Awaitable[None]]
TransportFactory = Callable[[str], Transport]
FatalCallback = Callable[[Exception], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]

_STOP = object()  # dispatch-loop sentinel


def _default_transport_factory(token: str) -> Transport:
    from .transport import TelegramTransport
    return TelegramTransport(token)


class ConnectionManager:
    """Owns the polling session and transmits router responses."""

    def __init__(
        self,
        config: Config,
        session: Optional[Session] = None,
        settings: Optional[ConnectionSettings] = None,
        transport_factory: Optional[TransportFactory] = None,
        event_handler: Optional[EventHandler] = None,
        commands: Sequence[Tuple[str, str]] = (),
        audit: Optional[AuditLogger] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._config = config
        self._session = session or Session()
        self._settings = settings or ConnectionSettings.from_config(config)
        self._transport_factory = transport_factory or _default_transport_factory
        self._event_handler = event_handler
        self._commands = list(commands)
        self._audit = audit or audit_logger
        self._sleep = sleep

        self._transport: Optional[Transport] = None
        self._events: Optional[asyncio.Queue] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._abort_start = False
        self._on_fatal: Optional[FatalCallback] = None

    @property
    def session(self) -> Session:
        return self._session

    @property
    def settings(self) -> ConnectionSettings:
        return self._settings

    def set_event_handler(self, handler: EventHandler):
        self._event_handler = handler

    def set_fatal_callback(self, callback: Optional[FatalCallback]):
        """Called when the session halts on a permanent credential failure."""
        self._on_fatal = callback

    # ─── Lifecycle ─────────────────────────────────────────────────────

    async def start(self) -> BotIdentity:
        """
        Connect and start long-polling.

        Raises:
            AlreadyStarting: start() is in progress or the session is live
            MissingCredential: no bot token configured
            PermanentCredentialError: the platform rejected the token
            StartError: every connect attempt failed with a transient error,
                or stop() was called before the session went live
        """
        if self._session.starting or self._session.connected:
            raise AlreadyStarting("Telegram is already starting or connected")

        token = self._config.get(BOT_TOKEN_KEY)
        if not token:
            raise MissingCredential(f"{BOT_TOKEN_KEY} not configured")

        self._session.mark_starting()
        self._abort_start = False
        logger.info("Starting Telegram long-polling session...")
        try:
            self._transport = self._transport_factory(token)
            identity = await self._connect_with_retry()
            await self._register_commands()
            # stop() may have arrived while commands were being registered
            if self._abort_start:
                raise StartError("Start aborted by stop()")
        except StartError as e:
            self._session.mark_stopped()
            await self._release_transport()
            if isinstance(e, PermanentCredentialError):
                self._audit.log(AuditEventType.CREDENTIAL_REJECTED, details={"phase": "start"}, success=False)
            logger.error(f"Telegram start failed: {e}")
            raise
        except BaseException:
            self._session.mark_stopped()
            await self._release_transport()
            raise

        self._session.mark_connected(identity)
        self._events = asyncio.Queue()
        self._dispatch_task = asyncio.create_task(self._dispatch_loop(self._events))
        self._poll_task = asyncio.create_task(self._poll_loop())
        self._audit.log(AuditEventType.BOT_STARTED, details={"bot": identity.username})
        logger.info_with("Telegram bot connected", bot=identity.username)
        return identity

    async def _connect_with_retry(self) -> BotIdentity:
        attempts = self._settings.start_attempts
        for attempt in range(1, attempts + 1):
            try:
                logger.info(f"Connecting (attempt {attempt}/{attempts})...")
                await self._transport.open()
                identity = await self._transport.get_me()
                logger.info(f"Bot verified: {identity.first_name} (@{identity.username})")
                if self._abort_start:
                    raise StartError("Start aborted by stop()")
                return identity
            except PermanentCredentialError:
                raise
            except TransientTransportError as e:
                logger.warning(f"Connect attempt {attempt} failed: {e}")
                if attempt >= attempts:
                    raise StartError(f"Could not connect after {attempts} attempts: {e}") from e
                delay = max(attempt * self._settings.retry_delay, e.retry_after)
                logger.info(f"Retrying in {delay:.1f}s...")
                await self._sleep(delay)
                if self._abort_start:
                    raise StartError("Start aborted by stop()")
        raise StartError("No connect attempts configured")

    async def _register_commands(self):
        if not self._commands:
            return
        try:
            await self._transport.set_commands(self._commands)
        except Exception as e:
            logger.warning(f"Failed to register bot commands: {e}")

    async def stop(self):
        """
        Stop polling and release the transport.

        Safe to call when never started and safe to call twice; the second
        call finds nothing to release.
        """
        if self._session.starting:
            self._abort_start = True
        was_live = self._session.connected
        self._session.connected = False

        await self._cancel_task(self._reconnect_task)
        self._reconnect_task = None
        await self._cancel_task(self._poll_task)
        self._poll_task = None
        await self._drain_dispatch()

        if self._session.starting:
            # start() owns the transport until it returns
            return

        self._session.mark_stopped()
        if self._transport is None:
            return
        try:
            await self._release_transport(raise_errors=True)
        finally:
            if was_live:
                self._audit.log(AuditEventType.BOT_STOPPED)
                logger.info("Telegram bot stopped")

    async def _drain_dispatch(self):
        """Let the in-flight event finish, bounded by the shutdown grace."""
        task = self._dispatch_task
        self._dispatch_task = None
        if task is None or task is asyncio.current_task():
            return
        if self._events is not None:
            self._events.put_nowait(_STOP)
        try:
            await asyncio.wait_for(task, timeout=self._settings.shutdown_grace)
        except asyncio.TimeoutError:
            logger.warning("Dispatch loop did not finish within the shutdown grace period")
        self._events = None

    async def _release_transport(self, raise_errors: bool = False):
        transport = self._transport
        self._transport = None
        if transport is None:
            return
        try:
            await transport.close()
        except Exception as e:
            logger.error(f"Error releasing Telegram transport: {e}")
            if raise_errors:
                raise StopError(f"Failed to release transport: {e}") from e

    @staticmethod
    async def _cancel_task(task: Optional[asyncio.Task]):
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Cancelled task ended with {e}")

    # ─── Polling ───────────────────────────────────────────────────────

    async def _poll_loop(self):
        while self._session.connected and self._transport is not None:
            try:
                events = await self._transport.receive(self._settings.poll_timeout)
            except PermanentCredentialError as e:
                await self._halt(e)
                return
            except TransientTransportError as e:
                logger.warning(f"Polling error: {e}")
                self._schedule_reconnect(e.retry_after)
                return
            except Exception as e:
                logger.error(f"Unexpected polling error: {e}", exc_info=True)
                self._schedule_reconnect()
                return

            self._session.retry_count = 0
            if not self._session.connected or self._events is None:
                return
            for event in events:
                self._events.put_nowait(event)

    def _schedule_reconnect(self, retry_after: float = 0.0):
        if self._reconnect_task is not None and not self._reconnect_task.done():
            logger.debug("Reconnect already scheduled")
            return
        self._session.retry_count += 1
        delay = max(self._settings.reconnect_delay, retry_after)
        logger.info_with("Reconnect scheduled", delay=delay, failures=self._session.retry_count)
        self._reconnect_task = asyncio.create_task(self._reconnect_later(delay))

    async def _reconnect_later(self, delay: float):
        await self._sleep(delay)
        if not self._session.connected or self._transport is None:
            logger.debug("Session stopped before reconnect; abandoning")
            return
        logger.info("Restarting polling...")
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def _halt(self, error: Exception):
        logger.error(f"Bot token rejected by the platform, stopping: {error}")
        self._audit.log(AuditEventType.CREDENTIAL_REJECTED, details={"phase": "polling"}, success=False)
        try:
            await self.stop()
        except StopError as e:
            logger.error(f"Error while halting: {e}")
        if self._on_fatal is not None:
            try:
                await self._on_fatal(error)
            except Exception as e:
                logger.error(f"Fatal callback failed: {e}")

    # ─── Dispatch ──────────────────────────────────────────────────────

    async def _dispatch_loop(self, events: asyncio.Queue):
        while True:
            event = await events.get()
            if event is _STOP:
                return
            if self._event_handler is None:
                logger.warning("No event handler registered; dropping event")
                continue
            try:
                await self._event_handler(event)
            except Exception as e:
                # One bad event must never end the session
                logger.error(f"Event handler failed: {e}", exc_info=True)

    # ─── Outbound ──────────────────────────────────────────────────────

    async def send(self, chat_id: str, response: OutboundResponse) -> bool:
        """Best-effort send. Logs and returns False on any failure."""
        transport = self._transport
        if transport is None:
            logger.warning(f"Cannot send to chat {chat_id}: not connected")
            return False
        try:
            await transport.send_message(chat_id, response.body, response.menu)
            return True
        except Exception as e:
            logger.error(f"Failed to send message to chat {chat_id}: {e}")
            return False

    async def acknowledge(self, event: InboundEvent, text: Optional[str] = None) -> bool:
        """Answer a callback query. Text messages need no acknowledgment."""
        if not isinstance(event, CallbackAction):
            return True
        transport = self._transport
        if transport is None:
            return False
        try:
            await asyncio.wait_for(
                transport.answer_callback(event.query_id, text),
                timeout=self._settings.ack_timeout,
            )
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Timed out answering callback query {event.query_id}")
            return False
        except Exception as e:
            logger.error(f"Failed to answer callback query {event.query_id}: {e}")
            return False

    def get_status(self) -> dict:
        return {
            **self._session.to_dict(),
            "queued_events": self._events.qsize() if self._events is not None else 0,
            "reconnect_pending": self._reconnect_task is not None and not self._reconnect_task.done(),
            "settings": self._settings.to_dict(),
        }
