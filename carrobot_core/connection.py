"""
Connection manager for one CarroBot device.

Owns the connection state machine and the single "connected" gate every
outbound command passes through:

    DISCONNECTED/ERROR --connect--> CONNECTING --ok--> CONNECTED
                                          \\--fail/timeout--> ERROR
    any --disconnect--> DISCONNECTED

Only one connection attempt is in flight at a time. Disconnecting (or a
failed attempt) cancels all sequencer work before the robot state is reset,
so no hold timer can fire into a fresh session.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from . import codec
from .config import SessionConfig
from .errors import ConnectError, ConnectTimeout, SendError, UnknownHost
from .logging_setup import link_logger as logger
from .models import (
    ConnectionState,
    ConnectionStatus,
    ConnectionType,
    Device,
    Notice,
    NoticeKind,
    RobotCommand,
)
from .ports import Clock, ConnectTarget, DeviceInfo, SystemClock, Transport
from .sequencer import ActionSequencer, NoticeSink
from .state_store import RobotStateStore

ConnectionCallback = Callable[[ConnectionState], None]

_LABELS = {ConnectionType.WIFI: "WiFi", ConnectionType.BLUETOOTH: "Bluetooth"}


def _device_id(target: ConnectTarget) -> str:
    if target.type is ConnectionType.WIFI:
        return f"wifi_{target.address}"
    return "bt_" + target.address.replace(":", "").lower()


class ConnectionManager:
    """Connection lifecycle, send gate, and owner of the action sequencer."""

    def __init__(
        self,
        transport: Transport,
        store: RobotStateStore,
        *,
        config: SessionConfig | None = None,
        clock: Clock | None = None,
        sampler: Callable[[], float] | None = None,
        notify: NoticeSink | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self._transport = transport
        self._store = store
        self._clock = clock or SystemClock()
        self._notify_cb = notify
        self._state = ConnectionState.disconnected()
        self._subscribers: list[ConnectionCallback] = []
        self._attempt: asyncio.Future[DeviceInfo] | None = None
        self.last_error: ConnectError | None = None

        self.sequencer = ActionSequencer(
            store,
            self.send,
            config=self.config,
            clock=self._clock,
            sampler=sampler,
            notify=notify,
        )

    # --------- observation ---------

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state.status is ConnectionStatus.CONNECTED

    def subscribe(self, cb: ConnectionCallback) -> Callable[[], None]:
        """Register ``cb`` for connection state changes; returns an unsubscribe callable."""
        self._subscribers.append(cb)

        def _unsubscribe() -> None:
            if cb in self._subscribers:
                self._subscribers.remove(cb)

        return _unsubscribe

    def _set_state(self, new: ConnectionState) -> None:
        old = self._state
        self._state = new
        if new == old:
            return
        logger.info({
            "event": "connection_state_changed",
            "from": old.status.value,
            "to": new.status.value,
            "address": new.device.address if new.device else None,
            "error": new.error_message,
        })
        for cb in list(self._subscribers):
            try:
                cb(new)
            except Exception as e:
                logger.warning({"event": "connection_subscriber_error", "error": repr(e)})

    def _notify(self, notice: Notice) -> None:
        if self._notify_cb is None:
            return
        try:
            self._notify_cb(notice)
        except Exception as e:
            logger.warning({"event": "connection_notice_error", "error": repr(e)})

    # --------- connect / disconnect ---------

    async def connect_wifi(self, address: str) -> ConnectionState:
        target = ConnectTarget(ConnectionType.WIFI, address.strip())
        return await self._connect(target, self.config.wifi_connect_timeout_s)

    async def connect_bluetooth(self, address: str | None = None) -> ConnectionState:
        target = ConnectTarget(ConnectionType.BLUETOOTH, (address or self.config.bluetooth_address).strip())
        return await self._connect(target, self.config.bluetooth_connect_timeout_s)

    async def _connect(self, target: ConnectTarget, timeout: float) -> ConnectionState:
        label = _LABELS[target.type]
        if self._state.status in (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED):
            logger.info({
                "event": "connect_rejected",
                "reason": self._state.status.value.lower(),
                "type": target.type.value,
                "address": target.address,
            })
            return self._state

        if not target.address:
            self._fail(label, UnknownHost("no address given", target.address))
            return self._state

        self.last_error = None
        self._set_state(ConnectionState.connecting())
        started = self._clock.monotonic()
        logger.info({
            "event": "connect_attempt",
            "type": target.type.value,
            "address": target.address,
            "timeout": timeout,
        })

        attempt = asyncio.ensure_future(asyncio.wait_for(self._transport.connect(target), timeout))
        self._attempt = attempt
        try:
            await asyncio.wait([attempt])
        except asyncio.CancelledError:
            attempt.cancel()
            if self._attempt is attempt:
                self._attempt = None
                self._set_state(ConnectionState.disconnected())
            raise

        if self._attempt is not attempt:
            # disconnect() took over while we were waiting
            if not attempt.cancelled() and attempt.exception() is None:
                await self._close_transport()
            return self._state
        self._attempt = None

        if attempt.cancelled():
            return self._state
        exc = attempt.exception()
        if exc is None:
            info = attempt.result()
            device = Device(
                id=_device_id(target),
                name=info.name,
                address=info.address or target.address,
                type=target.type,
                is_connected=True,
                signal_strength=info.signal_strength,
            )
            self._set_state(ConnectionState.connected(device))
            logger.info({
                "event": "connect_success",
                "device": device.to_dict(),
                "elapsed_s": round(self._clock.monotonic() - started, 3),
            })
        elif isinstance(exc, asyncio.TimeoutError):
            self._fail(label, ConnectTimeout(f"connection timed out after {timeout:g}s", target.address))
        elif isinstance(exc, ConnectError):
            self._fail(label, exc)
        else:
            logger.error({"event": "connect_unexpected_error", "error": repr(exc)})
            wrapped = ConnectError(str(exc), target.address)
            wrapped.__cause__ = exc
            self._fail(label, wrapped)
        return self._state

    def _fail(self, label: str, error: ConnectError) -> None:
        """Cancel work, reset the robot and enter ERROR for ``error``."""
        self.last_error = error
        message = f"Error {label}: {error}"
        self.sequencer.cancel_all()
        self._store.reset()
        self._set_state(ConnectionState.error(message))
        logger.warning({
            "event": "connect_failed",
            "reason": error.reason,
            "target": error.target,
            "error": message,
        })

    async def disconnect(self) -> ConnectionState:
        """Tear the session down to DISCONNECTED.

        Valid from every state; an in-flight connection attempt is
        abandoned. Sequencer work is cancelled before the store is reset.
        """
        previous = self._state.status
        attempt, self._attempt = self._attempt, None
        if attempt is not None and not attempt.done():
            attempt.cancel()

        self.sequencer.cancel_all()
        self._store.reset()
        self._set_state(ConnectionState.disconnected())
        logger.info({"event": "disconnected", "previous": previous.value})

        await self.sequencer.settle(self.config.stop_grace_s)
        if previous is not ConnectionStatus.DISCONNECTED and self._state.status is ConnectionStatus.DISCONNECTED:
            await self._close_transport()
        return self._state

    async def _close_transport(self) -> None:
        try:
            await self._transport.close()
        except Exception as e:
            logger.warning({"event": "transport_close_error", "error": repr(e)})

    # --------- send gate ---------

    async def send(self, command: RobotCommand) -> bool:
        """Send ``command`` if connected.

        Commands while not connected are dropped without error; the UI
        disables those controls anyway. A failed send is logged and reported
        as a notice, and the connection stays up.
        """
        if not self.is_connected():
            logger.debug({"event": "command_dropped_not_connected", "action": command.action.value})
            return False

        frame = codec.encode(command)
        try:
            await self._transport.send(frame)
        except SendError as e:
            logger.warning({"event": "command_send_failed", "frame": frame, "error": str(e)})
            self._notify(Notice(NoticeKind.COMMAND_FAILED, f"Error: {e}", command.action))
            return False

        logger.debug({"event": "command_sent", "frame": frame})
        self._notify(Notice(NoticeKind.COMMAND_SENT, f"Sent {command.action.value}", command.action))
        return True


__all__ = ["ConnectionManager"]
