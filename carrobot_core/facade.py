"""
Session facade - the single entry point for a UI (or any other client).

Every user intent is a method that schedules its work as an asyncio task
and returns that task. Device intents are no-ops (they return ``None``)
unless the session is CONNECTED; connecting and disconnecting are always
accepted. Observers receive immutable snapshots of the connection state,
the robot state, and user-facing notices.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

from . import codec
from .config import SessionConfig
from .connection import ConnectionManager
from .errors import DecodeError
from .logging_setup import session_logger as logger
from .models import (
    AutomationMode,
    NO_VALUE,
    BoolValue,
    CommandValue,
    ConnectionState,
    ConnectionStatus,
    Notice,
    NoticeKind,
    RobotAction,
    RobotCommand,
    RobotState,
)
from .ports import Clock, SystemClock, Transport
from .state_store import RobotStateStore, delta_for
from .transport import SimulatedTransport
from .util import clamp

T = TypeVar("T")

_LEDS = {
    "front": ("front_led_on", RobotAction.LED_FRONT_ON, RobotAction.LED_FRONT_OFF),
    "back": ("back_led_on", RobotAction.LED_BACK_ON, RobotAction.LED_BACK_OFF),
    "left": ("left_led_on", RobotAction.LED_LEFT_ON, RobotAction.LED_LEFT_OFF),
    "right": ("right_led_on", RobotAction.LED_RIGHT_ON, RobotAction.LED_RIGHT_OFF),
}

_AUTOMATION = {
    AutomationMode.OBSTACLE_AVOIDANCE: (
        "obstacle_avoidance_on",
        RobotAction.OBSTACLE_AVOIDANCE_ON,
        RobotAction.OBSTACLE_AVOIDANCE_OFF,
    ),
    AutomationMode.LINE_FOLLOWING: (
        "line_following_on",
        RobotAction.LINE_FOLLOWING_ON,
        RobotAction.LINE_FOLLOWING_OFF,
    ),
    AutomationMode.AUTO_LIGHTS: (
        "auto_lights_on",
        RobotAction.AUTO_LIGHTS_ON,
        RobotAction.AUTO_LIGHTS_OFF,
    ),
}


class SessionFacade:
    """
    High-level API for one robot control session.

    Parameters
    ----------
    transport : Transport, optional
        Link to the robot. Defaults to a ``SimulatedTransport`` using the
        configured latencies.
    config : SessionConfig, optional
        Timings and defaults.
    clock : Clock, optional
        Time source for timestamps and hold timers.
    sampler : callable, optional
        Ultrasonic sample source used by the read sequence.
    """

    def __init__(
        self,
        transport: Transport | None = None,
        *,
        config: SessionConfig | None = None,
        clock: Clock | None = None,
        sampler: Callable[[], float] | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self._clock = clock or SystemClock()
        self._transport = transport or SimulatedTransport(
            wifi_latency_s=self.config.simulated_wifi_latency_s,
            bluetooth_latency_s=self.config.simulated_bluetooth_latency_s,
            send_latency_ms=self.config.send_latency_ms,
        )
        self._store = RobotStateStore()
        self._connection = ConnectionManager(
            self._transport,
            self._store,
            config=self.config,
            clock=self._clock,
            sampler=sampler,
            notify=self._publish_notice,
        )
        self._sequencer = self._connection.sequencer

        self._speed = clamp(self.config.default_speed, 0, 100)
        self._last_notice: Notice | None = None
        self._notice_subscribers: list[Callable[[Notice], None]] = []

        # Task management
        self._tasks: set[asyncio.Task[Any]] = set()
        self._intent_tasks: set[asyncio.Task[Any]] = set()
        self._intent_lock = asyncio.Lock()

        self._transport.on_frame(self.handle_frame)
        self._connection.subscribe(self._on_connection_changed)

    # --------- observation ---------

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection.state

    @property
    def robot_state(self) -> RobotState:
        return self._store.read()

    @property
    def speed(self) -> int:
        return self._speed

    @property
    def last_notice(self) -> Notice | None:
        return self._last_notice

    def is_connected(self) -> bool:
        return self._connection.is_connected()

    def active_sequences(self) -> list[str]:
        return self._sequencer.active()

    def subscribe(
        self,
        on_connection_state_changed: Callable[[ConnectionState], None] | None = None,
        on_robot_state_changed: Callable[[RobotState], None] | None = None,
        on_notice: Callable[[Notice], None] | None = None,
    ) -> Callable[[], None]:
        """Register observers; returns one callable that removes them all."""
        undo: list[Callable[[], None]] = []
        if on_connection_state_changed is not None:
            undo.append(self._connection.subscribe(on_connection_state_changed))
        if on_robot_state_changed is not None:
            undo.append(self._store.subscribe(on_robot_state_changed))
        if on_notice is not None:
            self._notice_subscribers.append(on_notice)

            def _drop_notice() -> None:
                if on_notice in self._notice_subscribers:
                    self._notice_subscribers.remove(on_notice)

            undo.append(_drop_notice)

        def _unsubscribe() -> None:
            for fn in undo:
                fn()

        return _unsubscribe

    def _publish_notice(self, notice: Notice) -> None:
        self._last_notice = notice
        for cb in list(self._notice_subscribers):
            try:
                cb(notice)
            except Exception as e:
                logger.warning({"event": "notice_subscriber_error", "error": repr(e)})

    def _on_connection_changed(self, state: ConnectionState) -> None:
        if state.status is ConnectionStatus.CONNECTED:
            self._sequencer.start_status_poll()

    # --------- task plumbing ---------

    def _schedule(self, coro: Coroutine[Any, Any, T]) -> asyncio.Task[T]:
        """Schedule async task safely."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(self._log_task_failure)
        return task

    @staticmethod
    def _log_task_failure(task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error({"event": "session_task_error", "task": task.get_name(), "error": repr(exc)})

    def _intent(self, name: str, body: Callable[[], Awaitable[None]]) -> asyncio.Task[None] | None:
        """Run a device intent under the session lock, if connected."""
        if not self.is_connected():
            logger.debug({"event": "intent_ignored_not_connected", "intent": name})
            return None

        async def _run() -> None:
            async with self._intent_lock:
                if not self.is_connected():
                    return
                await body()

        task = self._schedule(_run())
        self._intent_tasks.add(task)
        task.add_done_callback(self._intent_tasks.discard)
        return task

    def _cancel_intents(self) -> None:
        current = asyncio.current_task()
        for task in list(self._intent_tasks):
            if task is not current and not task.done():
                task.cancel()

    def _command(
        self, action: RobotAction, speed: int = 0, value: CommandValue = NO_VALUE
    ) -> RobotCommand:
        return RobotCommand(action=action, speed=speed, value=value, timestamp=self._clock.now_ms())

    async def _send_and_apply(self, command: RobotCommand) -> None:
        # a failed send keeps the optimistic state; GET_STATUS reconciles it
        await self._connection.send(command)
        if self.is_connected():
            self._store.apply(delta_for(command))

    # --------- connection intents ---------

    def connect_wifi(self, address: str) -> asyncio.Task[ConnectionState]:
        logger.info({"event": "intent_connect_wifi", "address": address})
        return self._schedule(self._connection.connect_wifi(address))

    def connect_bluetooth(self, address: str | None = None) -> asyncio.Task[ConnectionState]:
        logger.info({"event": "intent_connect_bluetooth", "address": address})
        return self._schedule(self._connection.connect_bluetooth(address))

    def disconnect(self) -> asyncio.Task[ConnectionState]:
        logger.info({"event": "intent_disconnect"})
        self._cancel_intents()
        return self._schedule(self._connection.disconnect())

    # --------- movement ---------

    def set_speed(self, speed: int) -> int:
        """Set the speed used by movement intents (clamped to 0-100)."""
        self._speed = clamp(int(speed), 0, 100)
        return self._speed

    def _movement(self, action: RobotAction, speed: int | None) -> asyncio.Task[None] | None:
        async def body() -> None:
            value = self._speed if speed is None else clamp(int(speed), 0, 100)
            await self._send_and_apply(self._command(action, speed=value))

        return self._intent(action.value.lower(), body)

    def move_forward(self, speed: int | None = None) -> asyncio.Task[None] | None:
        return self._movement(RobotAction.FORWARD, speed)

    def move_backward(self, speed: int | None = None) -> asyncio.Task[None] | None:
        return self._movement(RobotAction.BACKWARD, speed)

    def turn_left(self, speed: int | None = None) -> asyncio.Task[None] | None:
        return self._movement(RobotAction.LEFT, speed)

    def turn_right(self, speed: int | None = None) -> asyncio.Task[None] | None:
        return self._movement(RobotAction.RIGHT, speed)

    def stop_movement(self) -> asyncio.Task[None] | None:
        return self._movement(RobotAction.STOP, None)

    # --------- LEDs ---------

    def _toggle_led(self, position: str) -> asyncio.Task[None] | None:
        field, on_action, off_action = _LEDS[position]

        async def body() -> None:
            new = not getattr(self._store.read(), field)
            action = on_action if new else off_action
            await self._send_and_apply(self._command(action, value=BoolValue(new)))

        return self._intent(f"toggle_{position}_led", body)

    def toggle_front_led(self) -> asyncio.Task[None] | None:
        return self._toggle_led("front")

    def toggle_back_led(self) -> asyncio.Task[None] | None:
        return self._toggle_led("back")

    def toggle_left_led(self) -> asyncio.Task[None] | None:
        return self._toggle_led("left")

    def toggle_right_led(self) -> asyncio.Task[None] | None:
        return self._toggle_led("right")

    # --------- automation ---------

    def _toggle_automation(self, mode: AutomationMode) -> asyncio.Task[None] | None:
        field, on_action, off_action = _AUTOMATION[mode]

        async def body() -> None:
            new = not getattr(self._store.read(), field)
            action = on_action if new else off_action
            await self._connection.send(self._command(action, value=BoolValue(new)))
            if self.is_connected():
                self._store.set_automation(mode, new)
            logger.info({"event": "automation_toggled", "mode": mode.value, "enabled": new})

        return self._intent(f"toggle_{mode.value.lower()}", body)

    def toggle_obstacle_avoidance(self) -> asyncio.Task[None] | None:
        return self._toggle_automation(AutomationMode.OBSTACLE_AVOIDANCE)

    def toggle_line_following(self) -> asyncio.Task[None] | None:
        return self._toggle_automation(AutomationMode.LINE_FOLLOWING)

    def toggle_auto_lights(self) -> asyncio.Task[None] | None:
        return self._toggle_automation(AutomationMode.AUTO_LIGHTS)

    # --------- sound / sensors / system ---------

    def activate_horn(self) -> asyncio.Task[None] | None:
        """Sound the horn for ``horn_hold_ms``."""
        if not self.is_connected():
            return None
        return self._sequencer.horn_pulse()

    def beep(self) -> asyncio.Task[None] | None:
        return self._intent("beep", lambda: self._send_and_apply(self._command(RobotAction.BEEP)))

    def calibrate_sensors(self) -> asyncio.Task[None] | None:
        if not self.is_connected():
            return None
        logger.info({"event": "intent_calibrate_sensors"})
        return self._sequencer.calibrate()

    def read_ultrasonic(self) -> asyncio.Task[None] | None:
        if not self.is_connected():
            return None
        return self._sequencer.read_ultrasonic()

    def refresh_status(self) -> asyncio.Task[None] | None:
        """Ask the robot to report its full status (GET_STATUS)."""
        return self._intent(
            "refresh_status", lambda: self._send_and_apply(self._command(RobotAction.GET_STATUS))
        )

    def emergency_stop(self) -> asyncio.Task[None] | None:
        """Stop everything immediately.

        The stopped state is visible as soon as this returns; the returned
        task delivers STOP and the OFF frames to the robot.
        """
        if not self.is_connected():
            return None
        self._cancel_intents()
        return self._sequencer.emergency_stop()

    # --------- inbound frames ---------

    def handle_frame(self, frame: str) -> RobotCommand | None:
        """Reconcile a frame reported by the robot into the robot state.

        Undecodable frames are logged and dropped; the state is untouched.
        """
        try:
            command = codec.decode(frame, now=self._clock.now_ms)
        except DecodeError as e:
            logger.warning({"event": "frame_dropped", "frame": frame, "error": str(e)})
            self._publish_notice(Notice(NoticeKind.DECODE_DROPPED, f"Dropped frame: {e}"))
            return None

        if not self.is_connected():
            logger.debug({"event": "frame_ignored_not_connected", "frame": frame})
            return None
        if command.action is RobotAction.EMERGENCY_STOP:
            self._cancel_intents()
            self._sequencer.cancel_all()
        self._store.apply(delta_for(command))
        logger.debug({"event": "frame_applied", "action": command.action.value})
        return command

    # --------- lifecycle ---------

    async def close(self) -> None:
        """Cancel all work and disconnect."""
        self._cancel_intents()
        await self._connection.disconnect()
        await self._sequencer.shutdown()
        pending = [t for t in self._tasks if not t.done() and t is not asyncio.current_task()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info({"event": "session_closed"})

    async def __aenter__(self) -> SessionFacade:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


__all__ = ["SessionFacade"]
