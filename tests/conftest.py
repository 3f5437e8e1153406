"""
Pytest configuration for carrobot_core tests.

- Ensures the repository root is on sys.path so `carrobot_core` and
  `tests.helpers` import without an installed package.
- Provides a SessionConfig with holds short enough for a fast suite.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = str(Path(__file__).resolve().parent.parent)
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


_ensure_repo_root_on_syspath()

from carrobot_core.config import SessionConfig  # noqa: E402
from tests.helpers.fakes import FakeClock, FakeMQTT, RecordingTransport  # noqa: E402


def pytest_configure(config):  # noqa: D401
    """Keep developer config files and env overrides out of the suite."""
    os.environ.setdefault("CARROBOT_CONFIG", str(Path(__file__).parent / "no-such-config.yaml"))


@pytest.fixture
def fast_config():
    return SessionConfig(
        horn_hold_ms=50,
        calibration_hold_ms=80,
        ultrasonic_latency_ms=10,
        stop_grace_s=0.5,
        wifi_connect_timeout_s=0.5,
        bluetooth_connect_timeout_s=0.5,
        simulated_wifi_latency_s=0.0,
        simulated_bluetooth_latency_s=0.0,
        send_latency_ms=0,
    )


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_mqtt():
    return FakeMQTT()
