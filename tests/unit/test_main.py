import pytest

from carrobot_core import main as cli
from carrobot_core.config import SessionConfig


def test_parser_connection_options():
    args = cli.build_parser().parse_args(["--wifi", "192.168.1.100", "--mqtt"])
    assert args.wifi == "192.168.1.100"
    assert args.bluetooth is None
    assert args.mqtt is True


def test_bluetooth_address_is_optional():
    assert cli.build_parser().parse_args(["--bluetooth"]).bluetooth == ""
    assert cli.build_parser().parse_args(["--bluetooth", "AA:BB:CC:DD:EE:FF"]).bluetooth == "AA:BB:CC:DD:EE:FF"


def test_wifi_and_bluetooth_are_exclusive():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["--wifi", "10.0.0.2", "--bluetooth"])


def test_cli_overrides_config():
    args = cli.build_parser().parse_args(["--mqtt-host", "broker.lan", "--log-level", "DEBUG"])
    cfg = cli._apply_overrides(SessionConfig(), args)
    assert cfg.mqtt_host == "broker.lan"
    assert cfg.log_level == "DEBUG"
    assert cli._apply_overrides(cfg, cli.build_parser().parse_args([])) is cfg
