"""Authoritative robot state snapshot.

The store is the only writer of ``RobotState``. Every mutation is merged,
normalized and swapped in as one new frozen value under a lock, so readers
never see a half-applied update and the automation/movement invariants
hold for every snapshot ever published.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, fields, replace

from .logging_setup import session_logger as logger
from .models import (
    AutomationMode,
    MOVEMENT_ACTIONS,
    RobotAction,
    RobotCommand,
    RobotState,
    TextValue,
)

StateCallback = Callable[[RobotState], None]


@dataclass(frozen=True)
class StateDelta:
    """Partial update; ``None`` leaves a field unchanged."""

    is_moving: bool | None = None
    current_speed: int | None = None
    front_led_on: bool | None = None
    back_led_on: bool | None = None
    left_led_on: bool | None = None
    right_led_on: bool | None = None
    horn_active: bool | None = None
    ultrasonic_distance: float | None = None
    obstacle_avoidance_on: bool | None = None
    line_following_on: bool | None = None
    auto_lights_on: bool | None = None
    is_calibrating: bool | None = None
    battery_level: int | None = None
    temperature_celsius: float | None = None
    light_level: int | None = None

    def changes(self) -> dict[str, object]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def is_empty(self) -> bool:
        return not self.changes()


EMERGENCY_STOP_DELTA = StateDelta(
    is_moving=False,
    current_speed=0,
    horn_active=False,
    obstacle_avoidance_on=False,
    line_following_on=False,
)

_AUTOMATION_FIELDS = {
    AutomationMode.OBSTACLE_AVOIDANCE: "obstacle_avoidance_on",
    AutomationMode.LINE_FOLLOWING: "line_following_on",
    AutomationMode.AUTO_LIGHTS: "auto_lights_on",
}

# obstacle avoidance and line following both drive the wheels
_EXCLUSIVE = {
    "obstacle_avoidance_on": "line_following_on",
    "line_following_on": "obstacle_avoidance_on",
}


def _normalize(current: RobotState, changes: dict[str, object]) -> RobotState:
    if changes.get("obstacle_avoidance_on") and changes.get("line_following_on"):
        raise ValueError("cannot enable obstacle avoidance and line following together")
    for flag, opposite in _EXCLUSIVE.items():
        if changes.get(flag):
            changes[opposite] = False

    moving = changes.get("is_moving", current.is_moving)
    if not moving:
        changes["current_speed"] = 0
    return replace(current, **changes)


class RobotStateStore:
    """Holds the current ``RobotState`` and applies validated mutations."""

    def __init__(self, initial: RobotState | None = None) -> None:
        self._state = initial or RobotState()
        self._lock = threading.Lock()
        self._subscribers: list[StateCallback] = []

    def read(self) -> RobotState:
        return self._state

    def apply(self, delta: StateDelta) -> RobotState:
        """Merge ``delta`` into the snapshot and return the new snapshot.

        Enabling one of obstacle avoidance / line following clears the other
        in the same replace; a non-moving result always has speed 0.
        """
        with self._lock:
            old = self._state
            new = _normalize(old, delta.changes())
            self._state = new
        if new != old:
            self._notify(new)
        return new

    def set_automation(self, mode: AutomationMode, enabled: bool) -> RobotState:
        """Single mutator for automation modes."""
        new = self.apply(StateDelta(**{_AUTOMATION_FIELDS[mode]: enabled}))
        logger.debug({"event": "state_automation_set", "mode": mode.value, "enabled": enabled})
        return new

    def reset(self) -> RobotState:
        with self._lock:
            old = self._state
            self._state = RobotState()
            new = self._state
        if new != old:
            self._notify(new)
        logger.debug({"event": "state_reset"})
        return new

    def subscribe(self, cb: StateCallback) -> Callable[[], None]:
        """Register ``cb`` for every new snapshot; returns an unsubscribe callable."""
        self._subscribers.append(cb)

        def _unsubscribe() -> None:
            if cb in self._subscribers:
                self._subscribers.remove(cb)

        return _unsubscribe

    def _notify(self, state: RobotState) -> None:
        for cb in list(self._subscribers):
            try:
                cb(state)
            except Exception as e:
                logger.warning({"event": "state_subscriber_error", "error": repr(e)})


_LED_ACTIONS = {
    RobotAction.LED_FRONT_ON: StateDelta(front_led_on=True),
    RobotAction.LED_FRONT_OFF: StateDelta(front_led_on=False),
    RobotAction.LED_BACK_ON: StateDelta(back_led_on=True),
    RobotAction.LED_BACK_OFF: StateDelta(back_led_on=False),
    RobotAction.LED_LEFT_ON: StateDelta(left_led_on=True),
    RobotAction.LED_LEFT_OFF: StateDelta(left_led_on=False),
    RobotAction.LED_RIGHT_ON: StateDelta(right_led_on=True),
    RobotAction.LED_RIGHT_OFF: StateDelta(right_led_on=False),
}

_FIXED_EFFECTS = {
    **_LED_ACTIONS,
    RobotAction.STOP: StateDelta(is_moving=False, current_speed=0),
    RobotAction.HORN_ON: StateDelta(horn_active=True),
    RobotAction.HORN_OFF: StateDelta(horn_active=False),
    RobotAction.OBSTACLE_AVOIDANCE_ON: StateDelta(obstacle_avoidance_on=True),
    RobotAction.OBSTACLE_AVOIDANCE_OFF: StateDelta(obstacle_avoidance_on=False),
    RobotAction.LINE_FOLLOWING_ON: StateDelta(line_following_on=True),
    RobotAction.LINE_FOLLOWING_OFF: StateDelta(line_following_on=False),
    RobotAction.AUTO_LIGHTS_ON: StateDelta(auto_lights_on=True),
    RobotAction.AUTO_LIGHTS_OFF: StateDelta(auto_lights_on=False),
    RobotAction.EMERGENCY_STOP: EMERGENCY_STOP_DELTA,
}


def delta_for(command: RobotCommand) -> StateDelta:
    """State effect of ``command`` once the device has (or will have) run it.

    Actions with no modelled effect (BEEP, GET_STATUS, camera...) map to an
    empty delta. An ULTRASONIC_READ carrying a numeric value is a reading.
    """
    if command.action in MOVEMENT_ACTIONS:
        return StateDelta(is_moving=True, current_speed=command.speed)
    if command.action is RobotAction.ULTRASONIC_READ:
        value = command.value
        if isinstance(value, TextValue):
            try:
                return StateDelta(ultrasonic_distance=float(value.text))
            except ValueError:
                return StateDelta()
        return StateDelta()
    return _FIXED_EFFECTS.get(command.action, StateDelta())


__all__ = ["EMERGENCY_STOP_DELTA", "RobotStateStore", "StateDelta", "delta_for"]
