"""Exception hierarchy for the session orchestrator."""

from __future__ import annotations

from typing import Optional


class ChatkeeperError(Exception):
    """Base error."""

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message


class FatalError(ChatkeeperError):
    """Condition that terminates the process; never retried."""


class MissingCredentialsError(FatalError):
    """The durable session credential artifact is absent."""


class SessionInvalidError(FatalError):
    """The transport rejected the session as unauthorized."""


class ReconnectExhaustedError(FatalError):
    """Reconnect attempts exceeded the configured maximum."""


class NotConnectedError(ChatkeeperError):
    """A transport operation was requested without an active connection."""


class CommandError(ChatkeeperError):
    """Raised by a command body to report a user-facing failure."""


class ProviderError(ChatkeeperError):
    """A chat-response provider returned no usable answer."""


class TransportConfigError(FatalError):
    """TRANSPORT_FACTORY is missing, malformed or does not build a Transport."""
