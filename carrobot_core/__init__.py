"""
carrobot_core: remote-control session for a CarroBot robot car.

Public exports:
- SessionFacade: the one entry point a UI drives
- SessionConfig / load_config: timings, link and bridge settings
- data types for commands, connection and robot state
"""

from __future__ import annotations

from .config import SessionConfig, load_config
from .errors import (
    CarroBotError,
    ConnectError,
    ConnectRefused,
    ConnectTimeout,
    DecodeError,
    MalformedFrame,
    SendError,
    UnknownAction,
    UnknownHost,
)
from .facade import SessionFacade
from .models import (
    NO_VALUE,
    BoolValue,
    ConnectionState,
    ConnectionStatus,
    ConnectionType,
    Device,
    NoValue,
    Notice,
    NoticeKind,
    RobotAction,
    RobotCommand,
    RobotState,
    TextValue,
)
from .transport import SimulatedTransport

__version__ = "0.1.0"

__all__ = [
    "BoolValue",
    "CarroBotError",
    "ConnectError",
    "ConnectRefused",
    "ConnectTimeout",
    "ConnectionState",
    "ConnectionStatus",
    "ConnectionType",
    "DecodeError",
    "Device",
    "MalformedFrame",
    "NO_VALUE",
    "NoValue",
    "Notice",
    "NoticeKind",
    "RobotAction",
    "RobotCommand",
    "RobotState",
    "SendError",
    "SessionConfig",
    "SessionFacade",
    "SimulatedTransport",
    "TextValue",
    "UnknownAction",
    "UnknownHost",
    "__version__",
    "load_config",
]
