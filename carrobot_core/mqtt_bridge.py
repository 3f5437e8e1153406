"""
mqtt_bridge.py

Mirrors a control session onto MQTT so remote dashboards can observe and
drive it:

- ``<base>/state/connection`` and ``<base>/state/robot``: retained JSON snapshots
- ``<base>/event/notice``: user-facing result notices
- ``<base>/event/rejected``: intents that were refused, with a reason
- ``<base>/status``: ``online`` / ``offline`` (LWT)
- ``<base>/command/<intent>``: drives the session; the payload is the
  intent argument (address, speed) or empty

paho runs its network loop on its own thread; every inbound command hops
onto the session's event loop before touching the session.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import paho.mqtt.client as mqtt

from .config import SessionConfig
from .facade import SessionFacade
from .logging_setup import logger
from .models import ConnectionState, Notice, RobotState


def _optional_int(payload: str) -> int | None:
    return int(payload) if payload else None


def _required(payload: str) -> str:
    if not payload:
        raise ValueError("payload required")
    return payload


def _intents(session: SessionFacade) -> dict[str, Callable[[str], Any]]:
    return {
        "connect_wifi": lambda p: session.connect_wifi(_required(p)),
        "connect_bluetooth": lambda p: session.connect_bluetooth(p or None),
        "disconnect": lambda p: session.disconnect(),
        "set_speed": lambda p: session.set_speed(int(_required(p))),
        "move_forward": lambda p: session.move_forward(_optional_int(p)),
        "move_backward": lambda p: session.move_backward(_optional_int(p)),
        "turn_left": lambda p: session.turn_left(_optional_int(p)),
        "turn_right": lambda p: session.turn_right(_optional_int(p)),
        "stop_movement": lambda p: session.stop_movement(),
        "toggle_front_led": lambda p: session.toggle_front_led(),
        "toggle_back_led": lambda p: session.toggle_back_led(),
        "toggle_left_led": lambda p: session.toggle_left_led(),
        "toggle_right_led": lambda p: session.toggle_right_led(),
        "toggle_obstacle_avoidance": lambda p: session.toggle_obstacle_avoidance(),
        "toggle_line_following": lambda p: session.toggle_line_following(),
        "toggle_auto_lights": lambda p: session.toggle_auto_lights(),
        "activate_horn": lambda p: session.activate_horn(),
        "beep": lambda p: session.beep(),
        "calibrate_sensors": lambda p: session.calibrate_sensors(),
        "read_ultrasonic": lambda p: session.read_ultrasonic(),
        "refresh_status": lambda p: session.refresh_status(),
        "emergency_stop": lambda p: session.emergency_stop(),
    }


class MqttBridge:
    """Publishes session state to MQTT and dispatches MQTT commands to intents."""

    def __init__(
        self,
        session: SessionFacade,
        client: Any,
        *,
        base: str = "carrobot",
        qos: int = 1,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.session = session
        self.client = client
        self.base = base.rstrip("/")
        self.qos = qos
        self._loop = loop
        self._intents = _intents(session)
        self._unsubscribe: Callable[[], None] | None = None

    # --------- topics ---------

    @property
    def command_topic(self) -> str:
        return f"{self.base}/command/#"

    @property
    def status_topic(self) -> str:
        return f"{self.base}/status"

    def _topic(self, suffix: str) -> str:
        return f"{self.base}/{suffix}"

    # --------- wiring ---------

    def attach(self) -> None:
        """Observe the session and publish the current snapshots."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        if self._unsubscribe is None:
            self._unsubscribe = self.session.subscribe(
                on_connection_state_changed=self.publish_connection_state,
                on_robot_state_changed=self.publish_robot_state,
                on_notice=self.publish_notice,
            )
        self.subscribe_commands()
        self.publish_connection_state(self.session.connection_state)
        self.publish_robot_state(self.session.robot_state)
        logger.info({"event": "mqtt_bridge_attached", "base": self.base})

    def subscribe_commands(self) -> None:
        self.client.subscribe(self.command_topic, qos=self.qos)
        self.client.message_callback_add(self.command_topic, self._on_message)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.client.message_callback_remove(self.command_topic)
        logger.info({"event": "mqtt_bridge_detached", "base": self.base})

    # --------- outbound ---------

    def _publish(self, suffix: str, payload: dict[str, Any], retain: bool) -> None:
        data = json.dumps(payload, separators=(",", ":"), default=str)
        try:
            self.client.publish(self._topic(suffix), payload=data, qos=self.qos, retain=retain)
        except Exception as e:
            logger.warning({"event": "mqtt_publish_error", "topic": self._topic(suffix), "error": repr(e)})

    def publish_connection_state(self, state: ConnectionState) -> None:
        self._publish("state/connection", state.to_dict(), retain=True)

    def publish_robot_state(self, state: RobotState) -> None:
        self._publish("state/robot", state.to_dict(), retain=True)

    def publish_notice(self, notice: Notice) -> None:
        self._publish("event/notice", notice.to_dict(), retain=False)

    def publish_rejected(self, intent: str, reason: str) -> None:
        self._publish("event/rejected", {"cmd": intent, "reason": reason}, retain=False)

    # --------- inbound ---------

    def _on_message(self, client: Any, userdata: Any, msg: Any) -> None:
        """paho thread: hand the command over to the session loop."""
        prefix = f"{self.base}/command/"
        intent = msg.topic[len(prefix):] if msg.topic.startswith(prefix) else ""
        raw = msg.payload
        payload = raw.decode("utf-8", "replace") if isinstance(raw, (bytes, bytearray)) else str(raw or "")
        if self._loop is None:
            logger.warning({"event": "mqtt_command_no_loop", "intent": intent})
            return
        self._loop.call_soon_threadsafe(self.dispatch, intent, payload.strip())

    def dispatch(self, intent: str, payload: str = "") -> Any:
        """Run ``intent`` on the session; must be called on the session loop."""
        handler = self._intents.get(intent)
        if handler is None:
            logger.warning({"event": "mqtt_unknown_intent", "intent": intent})
            self.publish_rejected(intent, "unknown_intent")
            return None
        try:
            result = handler(payload)
        except ValueError as e:
            logger.warning({"event": "mqtt_invalid_payload", "intent": intent, "error": str(e)})
            self.publish_rejected(intent, f"invalid_payload: {e}")
            return None
        if result is None:
            self.publish_rejected(intent, "not_connected")
        logger.info({"event": "mqtt_command_dispatched", "intent": intent})
        return result


def start_mqtt_bridge(
    session: SessionFacade,
    config: SessionConfig | None = None,
    loop: asyncio.AbstractEventLoop | None = None,
) -> MqttBridge:
    """Connect to the broker and bridge ``session`` onto it.

    - Publishes LWT: status=offline (retain)
    - On connect: status=online (retain), (re)subscribes the command topic
    - Reason-logged connect/disconnect
    """
    cfg = config or session.config
    loop = loop or asyncio.get_running_loop()
    client = mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=cfg.mqtt_client_id,
        protocol=mqtt.MQTTv311,
        clean_session=True,
    )
    bridge = MqttBridge(session, client, base=cfg.mqtt_base, qos=cfg.mqtt_qos, loop=loop)

    if cfg.mqtt_username is not None:
        client.username_pw_set(username=cfg.mqtt_username, password=cfg.mqtt_password or "")
    client.will_set(bridge.status_topic, payload="offline", qos=cfg.mqtt_qos, retain=True)
    client.reconnect_delay_set(min_delay=1, max_delay=30)

    def _on_connect(client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error({"event": "mqtt_connect_failed", "reason": str(reason_code)})
            return
        logger.info({"event": "mqtt_connected", "reason": str(reason_code)})
        client.publish(bridge.status_topic, payload="online", qos=cfg.mqtt_qos, retain=True)
        bridge.subscribe_commands()

    def _on_disconnect(client, userdata, flags, reason_code, properties=None):
        logger.warning({"event": "mqtt_disconnected", "reason": str(reason_code)})

    client.on_connect = _on_connect
    client.on_disconnect = _on_disconnect

    logger.info({
        "event": "mqtt_connect_attempt",
        "host": cfg.mqtt_host,
        "port": cfg.mqtt_port,
        "client_id": cfg.mqtt_client_id,
        "user": bool(cfg.mqtt_username),
        "base": cfg.mqtt_base,
    })
    bridge.attach()
    client.connect_async(cfg.mqtt_host, cfg.mqtt_port, 60)
    client.loop_start()
    return bridge


def stop_mqtt_bridge(bridge: MqttBridge) -> None:
    """Mark the bridge offline and stop the paho network loop."""
    bridge.detach()
    client = bridge.client
    try:
        client.publish(bridge.status_topic, payload="offline", qos=bridge.qos, retain=True)
        client.disconnect()
    finally:
        client.loop_stop()


__all__ = ["MqttBridge", "start_mqtt_bridge", "stop_mqtt_bridge"]
