"""Wire codec: ``ACTION:SPEED:VALUE:TIMESTAMP``.

Decoding is forward tolerant: only the action is mandatory, so frames from
older or newer firmware interoperate. Missing or unparsable SPEED becomes
0, a missing VALUE becomes ``NoValue`` and a missing TIMESTAMP becomes the
current time.
"""

from __future__ import annotations

from collections.abc import Callable

from .errors import MalformedFrame, UnknownAction
from .models import NO_VALUE, RobotAction, RobotCommand, now_ms, parse_value
from .util import clamp, to_int_or_none

SEPARATOR = ":"
ENCODING = "utf-8"

_ACTIONS = {action.value: action for action in RobotAction}


def encode(cmd: RobotCommand) -> str:
    return SEPARATOR.join(
        (cmd.action.value, str(cmd.speed), cmd.value.render(), str(cmd.timestamp))
    )


def decode(frame: str, *, now: Callable[[], int] = now_ms) -> RobotCommand:
    """Parse one frame.

    Raises
    ------
    MalformedFrame
        If the frame has fewer than two fields.
    UnknownAction
        If the first field is not a known action name.
    """
    parts = frame.split(SEPARATOR)
    if len(parts) < 2:
        raise MalformedFrame(f"Expected at least 2 fields, got {len(parts)}", frame)

    action = _ACTIONS.get(parts[0].strip())
    if action is None:
        raise UnknownAction(parts[0], frame)

    speed = to_int_or_none(parts[1])
    try:
        value = parse_value(parts[2]) if len(parts) > 2 else NO_VALUE
    except ValueError as e:
        raise MalformedFrame(str(e), frame) from e
    timestamp = to_int_or_none(parts[3]) if len(parts) > 3 else None

    return RobotCommand(
        action=action,
        speed=clamp(speed, 0, 100) if speed is not None else 0,
        value=value,
        timestamp=timestamp if timestamp is not None else now(),
    )


def encode_bytes(cmd: RobotCommand) -> bytes:
    return encode(cmd).encode(ENCODING)


def decode_bytes(data: bytes, *, now: Callable[[], int] = now_ms) -> RobotCommand:
    """Decode a UTF-8 frame, ignoring a trailing line terminator."""
    try:
        text = data.decode(ENCODING)
    except UnicodeDecodeError as e:
        raise MalformedFrame(f"Frame is not valid UTF-8: {e}") from e
    return decode(text.rstrip("\r\n"), now=now)


__all__ = ["ENCODING", "SEPARATOR", "decode", "decode_bytes", "encode", "encode_bytes"]
