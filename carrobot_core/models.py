"""Value types shared across the control session.

All types are frozen dataclasses: a state change is a new value, never an
in-place edit. Invariants are checked at construction, so a snapshot that
violates them cannot exist.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Union


def now_ms() -> int:
    """Milliseconds since the epoch."""
    return int(time.time() * 1000)


class ConnectionType(str, Enum):
    WIFI = "WIFI"
    BLUETOOTH = "BLUETOOTH"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"


class RobotAction(str, Enum):
    # movement
    FORWARD = "FORWARD"
    BACKWARD = "BACKWARD"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    STOP = "STOP"

    # LEDs
    LED_FRONT_ON = "LED_FRONT_ON"
    LED_FRONT_OFF = "LED_FRONT_OFF"
    LED_BACK_ON = "LED_BACK_ON"
    LED_BACK_OFF = "LED_BACK_OFF"
    LED_LEFT_ON = "LED_LEFT_ON"
    LED_LEFT_OFF = "LED_LEFT_OFF"
    LED_RIGHT_ON = "LED_RIGHT_ON"
    LED_RIGHT_OFF = "LED_RIGHT_OFF"

    # sound
    HORN_ON = "HORN_ON"
    HORN_OFF = "HORN_OFF"
    BEEP = "BEEP"

    # sensors
    ULTRASONIC_READ = "ULTRASONIC_READ"

    # automation
    OBSTACLE_AVOIDANCE_ON = "OBSTACLE_AVOIDANCE_ON"
    OBSTACLE_AVOIDANCE_OFF = "OBSTACLE_AVOIDANCE_OFF"
    LINE_FOLLOWING_ON = "LINE_FOLLOWING_ON"
    LINE_FOLLOWING_OFF = "LINE_FOLLOWING_OFF"
    AUTO_LIGHTS_ON = "AUTO_LIGHTS_ON"
    AUTO_LIGHTS_OFF = "AUTO_LIGHTS_OFF"

    # system
    CALIBRATE_SENSORS = "CALIBRATE_SENSORS"
    GET_STATUS = "GET_STATUS"
    EMERGENCY_STOP = "EMERGENCY_STOP"

    # reserved by the firmware protocol; decodable, no session intent yet
    SET_CRUISE_CONTROL = "SET_CRUISE_CONTROL"
    CAMERA_UP = "CAMERA_UP"
    CAMERA_DOWN = "CAMERA_DOWN"
    CAMERA_LEFT = "CAMERA_LEFT"
    CAMERA_RIGHT = "CAMERA_RIGHT"
    CAMERA_CENTER = "CAMERA_CENTER"


MOVEMENT_ACTIONS = frozenset(
    {RobotAction.FORWARD, RobotAction.BACKWARD, RobotAction.LEFT, RobotAction.RIGHT}
)


class AutomationMode(str, Enum):
    OBSTACLE_AVOIDANCE = "OBSTACLE_AVOIDANCE"
    LINE_FOLLOWING = "LINE_FOLLOWING"
    AUTO_LIGHTS = "AUTO_LIGHTS"


# ---------------------------
# Command payload (tagged union)
# ---------------------------
@dataclass(frozen=True)
class NoValue:
    def render(self) -> str:
        return ""

    def to_json(self) -> Any:
        return None


@dataclass(frozen=True)
class BoolValue:
    value: bool

    def render(self) -> str:
        return "true" if self.value else "false"

    def to_json(self) -> Any:
        return self.value


@dataclass(frozen=True)
class TextValue:
    text: str

    def __post_init__(self) -> None:
        if ":" in self.text or "\n" in self.text or "\r" in self.text:
            raise ValueError(f"Command text may not contain ':' or line breaks: {self.text!r}")
        # empty and boolean literals decode as NoValue / BoolValue
        if self.text == "" or self.text.lower() in ("true", "false"):
            raise ValueError(f"Command text must not be empty or a boolean literal: {self.text!r}")

    def render(self) -> str:
        return self.text

    def to_json(self) -> Any:
        return self.text


CommandValue = Union[NoValue, BoolValue, TextValue]
NO_VALUE = NoValue()


def parse_value(raw: str) -> CommandValue:
    """Map a wire VALUE field back onto the tagged union."""
    if raw == "":
        return NO_VALUE
    lowered = raw.lower()
    if lowered in ("true", "false"):
        return BoolValue(lowered == "true")
    return TextValue(raw)


@dataclass(frozen=True)
class RobotCommand:
    action: RobotAction
    speed: int = 0
    value: CommandValue = NO_VALUE
    timestamp: int = field(default_factory=now_ms)

    def __post_init__(self) -> None:
        if not 0 <= self.speed <= 100:
            raise ValueError(f"speed must be within [0, 100], got {self.speed}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "speed": self.speed,
            "value": self.value.to_json(),
            "timestamp": self.timestamp,
        }


# ---------------------------
# Device / connection
# ---------------------------
@dataclass(frozen=True)
class Device:
    id: str
    name: str
    address: str
    type: ConnectionType
    is_connected: bool = False
    signal_strength: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data


@dataclass(frozen=True)
class ConnectionState:
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    device: Device | None = None
    error_message: str | None = None

    def __post_init__(self) -> None:
        if (self.device is not None) != (self.status is ConnectionStatus.CONNECTED):
            raise ValueError("device must be set exactly when status is CONNECTED")
        if (self.error_message is not None) != (self.status is ConnectionStatus.ERROR):
            raise ValueError("error_message must be set exactly when status is ERROR")

    @classmethod
    def disconnected(cls) -> ConnectionState:
        return cls(ConnectionStatus.DISCONNECTED)

    @classmethod
    def connecting(cls) -> ConnectionState:
        return cls(ConnectionStatus.CONNECTING)

    @classmethod
    def connected(cls, device: Device) -> ConnectionState:
        return cls(ConnectionStatus.CONNECTED, device=device)

    @classmethod
    def error(cls, message: str) -> ConnectionState:
        return cls(ConnectionStatus.ERROR, error_message=message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "device": self.device.to_dict() if self.device else None,
            "error_message": self.error_message,
        }


# ---------------------------
# Robot state
# ---------------------------
@dataclass(frozen=True)
class RobotState:
    is_moving: bool = False
    current_speed: int = 0

    front_led_on: bool = False
    back_led_on: bool = False
    left_led_on: bool = False
    right_led_on: bool = False

    horn_active: bool = False

    ultrasonic_distance: float | None = None

    obstacle_avoidance_on: bool = False
    line_following_on: bool = False
    auto_lights_on: bool = False

    is_calibrating: bool = False

    # telemetry placeholders, filled once the firmware reports status
    battery_level: int = 100
    temperature_celsius: float | None = None
    light_level: int | None = None

    def __post_init__(self) -> None:
        if self.obstacle_avoidance_on and self.line_following_on:
            raise ValueError("obstacle avoidance and line following are mutually exclusive")
        if not self.is_moving and self.current_speed != 0:
            raise ValueError("current_speed must be 0 while not moving")
        if not 0 <= self.current_speed <= 100:
            raise ValueError(f"current_speed must be within [0, 100], got {self.current_speed}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class NoticeKind(str, Enum):
    COMMAND_SENT = "COMMAND_SENT"
    COMMAND_FAILED = "COMMAND_FAILED"
    CALIBRATION_STARTED = "CALIBRATION_STARTED"
    CALIBRATION_COMPLETED = "CALIBRATION_COMPLETED"
    CALIBRATION_CANCELLED = "CALIBRATION_CANCELLED"
    EMERGENCY_STOP = "EMERGENCY_STOP"
    DECODE_DROPPED = "DECODE_DROPPED"


@dataclass(frozen=True)
class Notice:
    """User-facing result line (what the UI shows under the controls)."""

    kind: NoticeKind
    message: str
    action: RobotAction | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "action": self.action.value if self.action else None,
        }


__all__ = [
    "AutomationMode",
    "BoolValue",
    "CommandValue",
    "ConnectionState",
    "ConnectionStatus",
    "ConnectionType",
    "Device",
    "MOVEMENT_ACTIONS",
    "NO_VALUE",
    "NoValue",
    "Notice",
    "NoticeKind",
    "RobotAction",
    "RobotCommand",
    "RobotState",
    "TextValue",
    "now_ms",
    "parse_value",
]
