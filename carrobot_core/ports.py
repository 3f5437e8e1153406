"""Protocol definitions for the external ports the session consumes.

These small Protocols document the minimal methods the runtime
infrastructure (device link, clock) must provide. Real WiFi/Bluetooth
sockets and test doubles both plug in here.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .models import ConnectionType


@dataclass(frozen=True)
class ConnectTarget:
    """Where to connect: a WiFi host or a Bluetooth address."""

    type: ConnectionType
    address: str


@dataclass(frozen=True)
class DeviceInfo:
    """What a transport learned about the device it connected to."""

    name: str
    address: str
    signal_strength: int | None = None


@runtime_checkable
class Transport(Protocol):
    """Link to one robot device."""

    async def connect(self, target: ConnectTarget) -> DeviceInfo:
        """Open the link; raise ConnectError on failure."""

    async def send(self, frame: str) -> None:
        """Deliver one wire frame; raise SendError on failure."""

    async def close(self) -> None:
        """Close the link and release resources."""

    def on_frame(self, cb: Callable[[str], None]) -> None:
        """Register a callback receiving inbound frames from the device."""


@runtime_checkable
class Clock(Protocol):
    """Clock protocol providing wall time, monotonic time and async sleep."""

    def now_ms(self) -> int:
        """Return milliseconds since the epoch."""

    def monotonic(self) -> float:
        """Return a monotonic clock value (seconds)."""

    async def sleep(self, seconds: float) -> None:
        """Async sleep for the given number of seconds."""


class SystemClock:
    """Clock backed by the host clock and asyncio."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


__all__ = ["Clock", "ConnectTarget", "DeviceInfo", "SystemClock", "Transport"]
