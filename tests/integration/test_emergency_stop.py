"""
Emergency stop across the whole session.

The stop must win against anything in flight: movement, automation, a horn
pulse mid-hold, or a calibration sweep.
"""

import asyncio
from dataclasses import replace

import pytest

from carrobot_core.facade import SessionFacade
from carrobot_core.models import NoticeKind

pytestmark = pytest.mark.integration


async def _driving_session(transport, config):
    session = SessionFacade(transport, config=config)
    await session.connect_wifi("192.168.1.100")
    await session.move_forward(80)
    await session.toggle_obstacle_avoidance()
    transport.sent.clear()
    return session


class TestEmergencyStop:
    @pytest.mark.asyncio
    async def test_stops_everything_immediately(self, transport, fast_config):
        config = replace(fast_config, horn_hold_ms=5000)
        session = await _driving_session(transport, config)
        session.activate_horn()
        await asyncio.sleep(0.01)
        assert session.robot_state.horn_active is True

        task = session.emergency_stop()
        state = session.robot_state
        assert state.is_moving is False
        assert state.current_speed == 0
        assert state.horn_active is False
        assert state.obstacle_avoidance_on is False
        assert session.last_notice.kind is NoticeKind.EMERGENCY_STOP

        await task
        assert transport.actions()[-4:] == ["STOP", "OBSTACLE_AVOIDANCE_OFF", "LINE_FOLLOWING_OFF", "HORN_OFF"]
        assert session.robot_state.horn_active is False
        assert session.active_sequences() == []
        assert session.is_connected()
        await session.close()

    @pytest.mark.asyncio
    async def test_cancels_queued_intents(self, transport, fast_config):
        session = await _driving_session(transport, fast_config)
        queued = [session.turn_left(), session.turn_right(), session.move_forward()]
        await session.emergency_stop()
        await asyncio.gather(*queued, return_exceptions=True)
        assert all(t.cancelled() for t in queued)
        assert "LEFT" not in transport.actions()
        assert session.robot_state.is_moving is False
        await session.close()

    @pytest.mark.asyncio
    async def test_inbound_emergency_stop_frame(self, transport, fast_config):
        session = await _driving_session(transport, fast_config)
        calibration = session.calibrate_sensors()
        await asyncio.sleep(0.01)
        transport.inject("EMERGENCY_STOP:0::1")
        state = session.robot_state
        assert not state.is_moving and state.current_speed == 0
        await asyncio.gather(calibration, return_exceptions=True)
        assert calibration.cancelled()
        assert session.robot_state.is_calibrating is False
        await session.close()

    @pytest.mark.asyncio
    async def test_inbound_emergency_stop_cancels_queued_intents(self, transport, fast_config):
        session = await _driving_session(transport, fast_config)
        await session.stop_movement()
        transport.sent.clear()
        queued = [session.move_forward(90), session.turn_left(40)]
        transport.inject("EMERGENCY_STOP:0::1")
        await asyncio.gather(*queued, return_exceptions=True)
        assert all(t.cancelled() for t in queued)
        assert "FORWARD" not in transport.actions()
        assert "LEFT" not in transport.actions()
        assert session.robot_state.is_moving is False
        assert session.robot_state.current_speed == 0
        await session.close()

    @pytest.mark.asyncio
    async def test_session_usable_after_stop(self, transport, fast_config):
        session = await _driving_session(transport, fast_config)
        await session.emergency_stop()
        await session.move_backward(30)
        assert session.robot_state.is_moving is True
        assert session.robot_state.current_speed == 30
        await session.close()
