"""SessionConfig loading: defaults, YAML, and CARROBOT_* env overlay."""

from unittest.mock import patch

from carrobot_core.config import SessionConfig, load_config


class TestDefaults:
    def test_defaults_match_firmware_timings(self):
        cfg = SessionConfig()
        assert cfg.default_speed == 50
        assert cfg.horn_hold_ms == 1000
        assert cfg.calibration_hold_ms == 3000
        assert cfg.ultrasonic_latency_ms == 100
        assert cfg.wifi_connect_timeout_s == 5.0
        assert cfg.bluetooth_connect_timeout_s == 8.0
        assert cfg.bluetooth_address == "00:11:22:33:44:55"
        assert cfg.status_poll_interval_s == 0.0
        assert cfg.mqtt_base == "carrobot"


class TestFromMapping:
    def test_keys_are_case_insensitive_and_coerced(self):
        cfg = SessionConfig.from_mapping({"HORN_HOLD_MS": "250", "poll_ultrasonic": "yes", "mqtt_port": 1884})
        assert cfg.horn_hold_ms == 250
        assert cfg.poll_ultrasonic is True
        assert cfg.mqtt_port == 1884

    def test_unknown_keys_and_bad_values_are_skipped(self):
        cfg = SessionConfig.from_mapping({"warp_drive": True, "default_speed": "fast", "stop_grace_s": "0.25"})
        assert cfg.default_speed == 50
        assert cfg.stop_grace_s == 0.25
        assert not hasattr(cfg, "warp_drive")

    def test_optional_fields_accept_none(self):
        cfg = SessionConfig.from_mapping({"mqtt_username": None, "log_path": "/tmp/x.log"})
        assert cfg.mqtt_username is None
        assert cfg.log_path == "/tmp/x.log"


class TestLoadConfig:
    def test_yaml_then_env(self, tmp_path):
        path = tmp_path / "carrobot.yaml"
        path.write_text("default_speed: 70\nmqtt_host: broker.lan\nhorn_hold_ms: 400\n", encoding="utf-8")
        with patch.dict("os.environ", {"CARROBOT_HORN_HOLD_MS": "900"}, clear=False):
            cfg, source = load_config([path])
        assert source == path
        assert cfg.default_speed == 70
        assert cfg.mqtt_host == "broker.lan"
        assert cfg.horn_hold_ms == 900

    def test_first_readable_file_wins(self, tmp_path):
        broken = tmp_path / "broken.yaml"
        broken.write_text("default_speed: [unclosed\n", encoding="utf-8")
        scalar = tmp_path / "scalar.yaml"
        scalar.write_text("just a string\n", encoding="utf-8")
        good = tmp_path / "good.yaml"
        good.write_text("default_speed: 30\n", encoding="utf-8")
        cfg, source = load_config([tmp_path / "missing.yaml", broken, scalar, good])
        assert source == good
        assert cfg.default_speed == 30

    def test_no_file_gives_defaults(self, tmp_path):
        cfg, source = load_config([tmp_path / "missing.yaml"])
        assert source is None
        assert cfg == SessionConfig.from_env(SessionConfig())

    def test_empty_file_is_valid(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        cfg, source = load_config([path])
        assert source == path

    def test_env_only_override(self):
        with patch.dict("os.environ", {"CARROBOT_MQTT_BASE": "garage/car"}, clear=False):
            cfg = SessionConfig.from_env()
        assert cfg.mqtt_base == "garage/car"
