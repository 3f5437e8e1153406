"""
End-to-end session scenarios on the simulated link.

Covers the canonical drive-and-stop flow, failure/retry of a connection,
and observation of every transition a UI would render.
"""

import asyncio
from dataclasses import replace

import pytest

from carrobot_core.facade import SessionFacade
from carrobot_core.models import ConnectionStatus, RobotState
from carrobot_core.transport import SimulatedTransport

pytestmark = pytest.mark.integration


def _session(config, clock=None):
    link = SimulatedTransport(wifi_latency_s=0.01, bluetooth_latency_s=0.01, send_latency_ms=0)
    return SessionFacade(link, config=config, clock=clock), link


class TestDriveAndStop:
    @pytest.mark.asyncio
    async def test_wifi_drive_and_stop(self, fast_config, clock):
        session, link = _session(fast_config, clock)
        statuses = []
        session.subscribe(on_connection_state_changed=lambda s: statuses.append(s.status))

        assert session.connection_state.status is ConnectionStatus.DISCONNECTED
        state = await session.connect_wifi("192.168.1.100")
        assert statuses == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]
        assert state.device.address == "192.168.1.100"
        assert state.device.name == "CarroBot WiFi"

        session.set_speed(70)
        await session.move_forward()
        assert link.sent[-1] == f"FORWARD:70::{clock.now}"
        assert session.robot_state.is_moving is True
        assert session.robot_state.current_speed == 70

        await session.stop_movement()
        assert link.sent[-1].startswith("STOP:")
        assert session.robot_state.is_moving is False
        assert session.robot_state.current_speed == 0

        await session.close()
        assert session.connection_state.status is ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_bluetooth_session_with_lights_and_horn(self, fast_config):
        session, link = _session(fast_config)
        state = await session.connect_bluetooth()
        assert state.device.name == "CarroBot BT"

        await asyncio.gather(session.toggle_front_led(), session.toggle_back_led())
        await session.activate_horn()
        actions = [f.split(":")[0] for f in link.sent]
        assert actions == ["LED_FRONT_ON", "LED_BACK_ON", "HORN_ON", "HORN_OFF"]
        assert session.robot_state.front_led_on and session.robot_state.back_led_on
        await session.close()


class TestConnectionFailures:
    @pytest.mark.asyncio
    async def test_refused_then_retry(self, fast_config):
        session, link = _session(fast_config)
        link.refuse_connect = True
        state = await session.connect_wifi("192.168.1.100")
        assert state.status is ConnectionStatus.ERROR
        assert session.move_forward() is None

        link.refuse_connect = False
        state = await session.connect_wifi("192.168.1.100")
        assert state.status is ConnectionStatus.CONNECTED
        await session.close()

    @pytest.mark.asyncio
    async def test_connect_timeout(self, fast_config):
        config = replace(fast_config, wifi_connect_timeout_s=0.05)
        link = SimulatedTransport(wifi_latency_s=1.0, send_latency_ms=0)
        session = SessionFacade(link, config=config)
        state = await session.connect_wifi("192.168.1.100")
        assert state.status is ConnectionStatus.ERROR
        assert "timed out" in state.error_message
        assert session.robot_state == RobotState()


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect_during_connecting(self, fast_config):
        link = SimulatedTransport(wifi_latency_s=1.0, send_latency_ms=0)
        session = SessionFacade(link, config=fast_config)
        connecting = session.connect_wifi("192.168.1.100")
        await asyncio.sleep(0.01)
        assert session.connection_state.status is ConnectionStatus.CONNECTING

        state = await session.disconnect()
        assert state.status is ConnectionStatus.DISCONNECTED
        assert session.robot_state == RobotState()
        await connecting
        assert session.connection_state.status is ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_mid_calibration_resets_everything(self, fast_config):
        config = replace(fast_config, calibration_hold_ms=2000)
        session, link = _session(config)
        await session.connect_wifi("192.168.1.100")
        await session.move_forward()
        calibration = session.calibrate_sensors()
        await asyncio.sleep(0.01)
        assert session.robot_state.is_calibrating is True

        await session.disconnect()
        assert calibration.cancelled()
        assert session.robot_state == RobotState()
        assert session.active_sequences() == []
        assert session.last_notice.message == "Calibration cancelled"
