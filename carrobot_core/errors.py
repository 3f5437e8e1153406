"""Error taxonomy for the control session.

None of these are fatal to a session: connect failures degrade to the
ERROR connection state, decode failures drop the frame, and send failures
are logged while the optimistic local state stands.
"""

from __future__ import annotations


class CarroBotError(Exception):
    """Base exception for carrobot_core."""


class ConnectError(CarroBotError):
    """Raised by a transport when a connection attempt fails."""

    reason = "connect_failed"

    def __init__(self, message: str, target: str | None = None):
        super().__init__(message)
        self.target = target


class ConnectTimeout(ConnectError):
    reason = "timeout"


class ConnectRefused(ConnectError):
    reason = "refused"


class UnknownHost(ConnectError):
    reason = "unknown_host"


class DecodeError(CarroBotError):
    """Raised when an inbound frame cannot be turned into a command."""

    def __init__(self, message: str, frame: str | None = None):
        super().__init__(message)
        self.frame = frame


class MalformedFrame(DecodeError):
    pass


class UnknownAction(DecodeError):
    def __init__(self, action: str, frame: str | None = None):
        super().__init__(f"Unknown action: {action!r}", frame)
        self.action = action


class SendError(CarroBotError):
    """Raised by a transport when a frame could not be delivered."""


__all__ = [
    "CarroBotError",
    "ConnectError",
    "ConnectRefused",
    "ConnectTimeout",
    "DecodeError",
    "MalformedFrame",
    "SendError",
    "UnknownAction",
    "UnknownHost",
]
