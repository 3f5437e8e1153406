"""RobotStateStore: atomic, invariant-preserving mutations."""

import pytest

from carrobot_core.models import AutomationMode, BoolValue, RobotAction, RobotCommand, RobotState, TextValue
from carrobot_core.state_store import EMERGENCY_STOP_DELTA, RobotStateStore, StateDelta, delta_for


class TestApply:
    def test_apply_merges_fields(self):
        store = RobotStateStore()
        new = store.apply(StateDelta(front_led_on=True, is_moving=True, current_speed=40))
        assert new.front_led_on and new.is_moving and new.current_speed == 40
        assert store.read() is new

    def test_stopping_forces_speed_zero(self):
        store = RobotStateStore(RobotState(is_moving=True, current_speed=70))
        assert store.apply(StateDelta(is_moving=False)).current_speed == 0

    def test_speed_without_motion_is_zeroed(self):
        store = RobotStateStore()
        assert store.apply(StateDelta(current_speed=55)).current_speed == 0

    def test_empty_delta_is_noop(self):
        store = RobotStateStore()
        seen = []
        store.subscribe(seen.append)
        before = store.read()
        assert store.apply(StateDelta()) == before
        assert StateDelta().is_empty()
        assert seen == []

    def test_both_exclusive_modes_in_one_delta_rejected(self):
        store = RobotStateStore()
        with pytest.raises(ValueError):
            store.apply(StateDelta(obstacle_avoidance_on=True, line_following_on=True))
        assert store.read() == RobotState()


class TestAutomation:
    def test_enabling_obstacle_avoidance_clears_line_following(self):
        store = RobotStateStore()
        store.set_automation(AutomationMode.LINE_FOLLOWING, True)
        state = store.set_automation(AutomationMode.OBSTACLE_AVOIDANCE, True)
        assert state.obstacle_avoidance_on is True
        assert state.line_following_on is False

    def test_enabling_line_following_clears_obstacle_avoidance(self):
        store = RobotStateStore()
        store.set_automation(AutomationMode.OBSTACLE_AVOIDANCE, True)
        state = store.set_automation(AutomationMode.LINE_FOLLOWING, True)
        assert (state.obstacle_avoidance_on, state.line_following_on) == (False, True)

    def test_auto_lights_independent(self):
        store = RobotStateStore()
        store.set_automation(AutomationMode.OBSTACLE_AVOIDANCE, True)
        state = store.set_automation(AutomationMode.AUTO_LIGHTS, True)
        assert state.auto_lights_on and state.obstacle_avoidance_on


class TestObservers:
    def test_subscribers_get_snapshots_and_can_unsubscribe(self):
        store = RobotStateStore()
        seen = []
        unsubscribe = store.subscribe(seen.append)
        store.apply(StateDelta(horn_active=True))
        unsubscribe()
        store.apply(StateDelta(horn_active=False))
        assert len(seen) == 1
        assert seen[0].horn_active is True

    def test_failing_subscriber_does_not_block_others(self):
        store = RobotStateStore()
        seen = []

        def boom(_state):
            raise RuntimeError("observer bug")

        store.subscribe(boom)
        store.subscribe(seen.append)
        store.apply(StateDelta(back_led_on=True))
        assert seen and seen[0].back_led_on

    def test_reset_returns_defaults(self):
        store = RobotStateStore(RobotState(is_moving=True, current_speed=20, horn_active=True))
        assert store.reset() == RobotState()


class TestDeltaFor:
    def test_movement(self):
        delta = delta_for(RobotCommand(RobotAction.LEFT, speed=35))
        assert delta == StateDelta(is_moving=True, current_speed=35)

    def test_stop_and_leds(self):
        assert delta_for(RobotCommand(RobotAction.STOP, speed=50)) == StateDelta(is_moving=False, current_speed=0)
        assert delta_for(RobotCommand(RobotAction.LED_RIGHT_ON, value=BoolValue(True))) == StateDelta(right_led_on=True)

    def test_ultrasonic_reading(self):
        cmd = RobotCommand(RobotAction.ULTRASONIC_READ, value=TextValue("42.5"))
        assert delta_for(cmd) == StateDelta(ultrasonic_distance=42.5)
        assert delta_for(RobotCommand(RobotAction.ULTRASONIC_READ, value=TextValue("n/a"))).is_empty()
        assert delta_for(RobotCommand(RobotAction.ULTRASONIC_READ)).is_empty()

    def test_no_effect_actions(self):
        for action in (RobotAction.BEEP, RobotAction.GET_STATUS, RobotAction.CAMERA_UP):
            assert delta_for(RobotCommand(action)).is_empty()

    def test_emergency_stop(self):
        assert delta_for(RobotCommand(RobotAction.EMERGENCY_STOP)) == EMERGENCY_STOP_DELTA
        store = RobotStateStore(RobotState(is_moving=True, current_speed=80, horn_active=True, line_following_on=True))
        state = store.apply(EMERGENCY_STOP_DELTA)
        assert not state.is_moving and state.current_speed == 0
        assert not state.horn_active and not state.line_following_on
