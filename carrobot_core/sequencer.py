"""
Action sequencer - timed, cancellable multi-step robot actions

Each sequence runs as its own asyncio task, registered under a name:
- horn: HORN_ON, hold, HORN_OFF
- calibration: CALIBRATE_SENSORS, hold while the robot sweeps its sensors
- ultrasonic: ULTRASONIC_READ, sampling latency, store the distance
- status_poll: periodic GET_STATUS (optionally with an ultrasonic read)
- emergency_stop: cancels everything else, forces the stopped state, then
  sends the OFF/STOP frames

Cancellation is asyncio task cancellation, delivered at the hold timers.
Any flag a sequence raises is lowered again in a ``finally`` block, and
cleanup only ever writes inactive values, so a cancelled sequence can never
leave the horn or calibration "stuck on".
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from .config import SessionConfig
from .logging_setup import session_logger as logger
from .models import NO_VALUE, CommandValue, Notice, NoticeKind, RobotAction, RobotCommand
from .ports import Clock, SystemClock
from .state_store import EMERGENCY_STOP_DELTA, RobotStateStore, StateDelta

Sender = Callable[[RobotCommand], Awaitable[bool]]
NoticeSink = Callable[[Notice], None]

HORN = "horn"
CALIBRATION = "calibration"
ULTRASONIC = "ultrasonic"
STATUS_POLL = "status_poll"
EMERGENCY_STOP = "emergency_stop"

EMERGENCY_STOP_ACTIONS = (
    RobotAction.STOP,
    RobotAction.OBSTACLE_AVOIDANCE_OFF,
    RobotAction.LINE_FOLLOWING_OFF,
    RobotAction.HORN_OFF,
)


def sample_distance_cm() -> float:
    """Placeholder sensor sample: whole centimetres in [5, 200]."""
    return float(random.randint(5, 200))


class ActionSequencer:
    """Runs named sequences as independently cancellable tasks.

    At most one task per name is in flight; asking for a running sequence
    returns the task already running it.
    """

    def __init__(
        self,
        store: RobotStateStore,
        send: Sender,
        *,
        config: SessionConfig | None = None,
        clock: Clock | None = None,
        sampler: Callable[[], float] | None = None,
        notify: NoticeSink | None = None,
    ) -> None:
        self._store = store
        self._send = send
        self.config = config or SessionConfig()
        self._clock = clock or SystemClock()
        self._sampler = sampler or sample_distance_cm
        self._notify_cb = notify

        self._tasks: dict[str, asyncio.Task[None]] = {}
        # cancelled tasks still unwinding their cleanup
        self._draining: set[asyncio.Task[None]] = set()

    # --------- registry ---------

    def active(self) -> list[str]:
        """Names of sequences currently in flight."""
        return [name for name, task in self._tasks.items() if not task.done()]

    def _start(self, name: str, factory: Callable[[], Coroutine[Any, Any, None]]) -> asyncio.Task[None]:
        running = self._tasks.get(name)
        if running is not None and not running.done():
            logger.debug({"event": "sequence_already_running", "sequence": name})
            return running

        task = asyncio.create_task(self._guard(name, factory), name=f"carrobot:{name}")
        self._tasks[name] = task

        def _forget(t: asyncio.Task[None]) -> None:
            if self._tasks.get(name) is t:
                del self._tasks[name]

        task.add_done_callback(_forget)
        logger.debug({"event": "sequence_started", "sequence": name})
        return task

    async def _guard(self, name: str, factory: Callable[[], Coroutine[Any, Any, None]]) -> None:
        try:
            await factory()
            logger.debug({"event": "sequence_completed", "sequence": name})
        except asyncio.CancelledError:
            logger.debug({"event": "sequence_cancelled", "sequence": name})
            raise
        except Exception as e:
            logger.error({"event": "sequence_error", "sequence": name, "error": repr(e)})

    def cancel(self, name: str) -> bool:
        """Cancel one sequence; returns True if something was in flight."""
        task = self._tasks.pop(name, None)
        if task is None or task.done():
            return False
        task.cancel()
        self._draining.add(task)
        task.add_done_callback(self._draining.discard)
        return True

    def cancel_all(self, exclude: str | None = None) -> int:
        """Cancel every in-flight sequence except ``exclude``."""
        cancelled = [name for name in list(self._tasks) if name != exclude and self.cancel(name)]
        if cancelled:
            logger.info({"event": "sequences_cancelled", "sequences": cancelled})
        return len(cancelled)

    async def settle(self, timeout: float | None = None) -> None:
        """Wait (bounded) for cancelled sequences to finish their cleanup."""
        pending = [t for t in self._draining if not t.done()]
        if not pending:
            return
        _, still = await asyncio.wait(pending, timeout=timeout)
        if still:
            logger.warning({"event": "sequences_settle_timeout", "pending": len(still)})

    async def shutdown(self) -> None:
        """Cancel everything and wait for cleanup to finish."""
        self.cancel_all()
        await self.settle(self.config.stop_grace_s)

    # --------- helpers ---------

    def _command(self, action: RobotAction, value: CommandValue = NO_VALUE) -> RobotCommand:
        return RobotCommand(action=action, value=value, timestamp=self._clock.now_ms())

    def _notify(self, kind: NoticeKind, message: str, action: RobotAction | None = None) -> None:
        if self._notify_cb is None:
            return
        try:
            self._notify_cb(Notice(kind, message, action))
        except Exception as e:
            logger.warning({"event": "sequence_notice_error", "error": repr(e)})

    async def _hold(self, ms: float) -> None:
        await self._clock.sleep(ms / 1000.0)

    # --------- sequences ---------

    def horn_pulse(self) -> asyncio.Task[None]:
        return self._start(HORN, self._horn)

    async def _horn(self) -> None:
        await self._send(self._command(RobotAction.HORN_ON))
        self._store.apply(StateDelta(horn_active=True))
        try:
            await self._hold(self.config.horn_hold_ms)
            await self._send(self._command(RobotAction.HORN_OFF))
        finally:
            self._store.apply(StateDelta(horn_active=False))

    def calibrate(self) -> asyncio.Task[None]:
        return self._start(CALIBRATION, self._calibration)

    async def _calibration(self) -> None:
        await self._send(self._command(RobotAction.CALIBRATE_SENSORS))
        self._store.apply(StateDelta(is_calibrating=True))
        self._notify(NoticeKind.CALIBRATION_STARTED, "Calibrating sensors...", RobotAction.CALIBRATE_SENSORS)
        completed = False
        try:
            await self._hold(self.config.calibration_hold_ms)
            completed = True
        finally:
            self._store.apply(StateDelta(is_calibrating=False))
            if completed:
                self._notify(NoticeKind.CALIBRATION_COMPLETED, "Sensors calibrated", RobotAction.CALIBRATE_SENSORS)
            else:
                self._notify(NoticeKind.CALIBRATION_CANCELLED, "Calibration cancelled", RobotAction.CALIBRATE_SENSORS)

    def read_ultrasonic(self) -> asyncio.Task[None]:
        return self._start(ULTRASONIC, self._ultrasonic)

    async def _ultrasonic(self) -> None:
        await self._send(self._command(RobotAction.ULTRASONIC_READ))
        await self._hold(self.config.ultrasonic_latency_ms)
        distance = float(self._sampler())
        self._store.apply(StateDelta(ultrasonic_distance=distance))
        logger.debug({"event": "ultrasonic_sample", "distance_cm": distance})

    def start_status_poll(self, interval_s: float | None = None) -> asyncio.Task[None] | None:
        """Start periodic GET_STATUS polling; None when polling is disabled."""
        interval = self.config.status_poll_interval_s if interval_s is None else interval_s
        if interval <= 0:
            return None
        return self._start(STATUS_POLL, lambda: self._status_poll(interval))

    async def _status_poll(self, interval_s: float) -> None:
        while True:
            await self._send(self._command(RobotAction.GET_STATUS))
            if self.config.poll_ultrasonic:
                await self._ultrasonic()
            await self._clock.sleep(interval_s)

    def emergency_stop(self) -> asyncio.Task[None]:
        """Stop everything now; the returned task delivers the stop frames.

        The stopped state is in the store before this returns, without
        waiting on any other sequence's hold timer.
        """
        self.cancel_all()
        self._store.apply(EMERGENCY_STOP_DELTA)
        logger.warning({"event": "emergency_stop_activated"})
        self._notify(NoticeKind.EMERGENCY_STOP, "EMERGENCY STOP", RobotAction.EMERGENCY_STOP)
        return self._start(EMERGENCY_STOP, self._emergency_stop_frames)

    async def _emergency_stop_frames(self) -> None:
        await self.settle(self.config.stop_grace_s)
        self._store.apply(EMERGENCY_STOP_DELTA)
        for action in EMERGENCY_STOP_ACTIONS:
            try:
                await self._send(self._command(action))
            except Exception as e:
                logger.warning({
                    "event": "emergency_stop_frame_failed",
                    "action": action.value,
                    "error": repr(e),
                })


__all__ = [
    "ActionSequencer",
    "CALIBRATION",
    "EMERGENCY_STOP",
    "EMERGENCY_STOP_ACTIONS",
    "HORN",
    "STATUS_POLL",
    "ULTRASONIC",
    "sample_distance_cm",
]
