"""Simulated device link.

Stands in for the WiFi socket / Bluetooth RFCOMM link with the latencies
the robot firmware exhibits. It records every frame so a developer can run
the whole session without hardware; real links implement the same
``Transport`` protocol.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from .errors import ConnectRefused, SendError
from .logging_setup import link_logger as logger
from .models import ConnectionType
from .ports import ConnectTarget, DeviceInfo

DEVICE_NAMES = {
    ConnectionType.WIFI: "CarroBot WiFi",
    ConnectionType.BLUETOOTH: "CarroBot BT",
}


class SimulatedTransport:
    """In-process link with configurable latency and injectable failures."""

    def __init__(
        self,
        wifi_latency_s: float = 2.0,
        bluetooth_latency_s: float = 3.0,
        send_latency_ms: int = 50,
    ) -> None:
        self.wifi_latency_s = wifi_latency_s
        self.bluetooth_latency_s = bluetooth_latency_s
        self.send_latency_ms = send_latency_ms
        self.sent: list[str] = []
        self.refuse_connect = False
        self.fail_sends = False
        self._connected = False
        self._frame_cb: Callable[[str], None] | None = None

    async def connect(self, target: ConnectTarget) -> DeviceInfo:
        latency = (
            self.wifi_latency_s if target.type is ConnectionType.WIFI else self.bluetooth_latency_s
        )
        logger.info({"event": "sim_connect", "type": target.type.value, "address": target.address})
        await asyncio.sleep(latency)
        if self.refuse_connect:
            raise ConnectRefused(f"{target.address} refused the connection", target.address)
        self._connected = True
        logger.info({"event": "sim_connected", "address": target.address})
        return DeviceInfo(name=DEVICE_NAMES[target.type], address=target.address)

    async def send(self, frame: str) -> None:
        if not self._connected:
            raise SendError("link is closed")
        await asyncio.sleep(self.send_latency_ms / 1000.0)
        if self.fail_sends:
            raise SendError(f"simulated send failure for {frame!r}")
        self.sent.append(frame)
        logger.debug({"event": "sim_frame_sent", "frame": frame})

    async def close(self) -> None:
        self._connected = False
        logger.info({"event": "sim_closed"})

    def on_frame(self, cb: Callable[[str], None]) -> None:
        self._frame_cb = cb

    def inject(self, frame: str) -> None:
        """Deliver ``frame`` as if the robot had sent it."""
        if self._frame_cb is not None:
            self._frame_cb(frame)


__all__ = ["DEVICE_NAMES", "SimulatedTransport"]
