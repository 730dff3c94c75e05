"""
Error taxonomy for the remote-control connection and router.
"""


class RemoteControlError(Exception):
    """Base class for remote-control errors."""


class StartError(RemoteControlError):
    """start() failed and the session is stopped."""


class MissingCredential(StartError):
    """No bot token configured."""


class AlreadyStarting(StartError):
    """start() called while already starting or connected."""


class PermanentCredentialError(StartError):
    """The platform rejected the bot identity. Never retried."""


class TransientTransportError(RemoteControlError):
    """Timeouts, rate limits, network failures. Retryable."""

    def __init__(self, message: str, retry_after: float = 0.0):
        super().__init__(message)
        self.retry_after = retry_after


class SendError(RemoteControlError):
    """An outbound message could not be delivered."""


class HandlerError(RemoteControlError):
    """A command handler failed while processing one event."""


class StopError(RemoteControlError):
    """The polling handle could not be released cleanly."""
