"""Session configuration.

Precedence, lowest to highest: dataclass defaults, the first YAML file
found among the candidate paths, then ``CARROBOT_*`` environment variables.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "CARROBOT_"


@dataclass(frozen=True)
class SessionConfig:
    """Timings, link settings and bridge settings for one session."""

    # movement
    default_speed: int = 50

    # sequence holds
    horn_hold_ms: int = 1000
    calibration_hold_ms: int = 3000
    ultrasonic_latency_ms: int = 100
    stop_grace_s: float = 0.5

    # polling (0 disables)
    status_poll_interval_s: float = 0.0
    poll_ultrasonic: bool = False

    # connection
    wifi_connect_timeout_s: float = 5.0
    bluetooth_connect_timeout_s: float = 8.0
    bluetooth_address: str = "00:11:22:33:44:55"

    # simulated link
    simulated_wifi_latency_s: float = 2.0
    simulated_bluetooth_latency_s: float = 3.0
    send_latency_ms: int = 50

    # MQTT bridge
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_base: str = "carrobot"
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_client_id: str = "carrobot-session"
    mqtt_qos: int = 1

    # logging
    log_level: str = "INFO"
    log_path: str | None = None

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> SessionConfig:
        """Build a config from a loose mapping.

        Keys are matched case-insensitively; unknown keys and values that do
        not coerce to the field type are logged and skipped.
        """
        known = {f.name: f for f in dataclasses.fields(cls)}
        defaults = cls()
        values: dict[str, Any] = {}
        for raw_key, raw in data.items():
            key = str(raw_key).lower()
            if key not in known:
                logger.warning("[CONFIG] Ignoring unknown key: %s", raw_key)
                continue
            try:
                values[key] = _coerce(raw, getattr(defaults, key), known[key].type)
            except (TypeError, ValueError) as exc:
                logger.warning("[CONFIG] Invalid value for %s (%r): %s", key, raw, exc)
        return cls(**values)

    @classmethod
    def from_env(cls, base: SessionConfig | None = None) -> SessionConfig:
        """Overlay ``CARROBOT_<FIELD>`` environment variables on ``base``."""
        base = base or cls()
        overrides = {
            f.name: os.environ[ENV_PREFIX + f.name.upper()]
            for f in dataclasses.fields(cls)
            if ENV_PREFIX + f.name.upper() in os.environ
        }
        if not overrides:
            return base
        merged = {**dataclasses.asdict(base), **overrides}
        return cls.from_mapping(merged)


_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _coerce(raw: Any, default: Any, annotation: str) -> Any:
    if raw is None:
        if "None" in str(annotation):
            return None
        raise ValueError("value is required")
    if isinstance(default, bool) or annotation == "bool":
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUTHY:
            return True
        if text in _FALSY:
            return False
        raise ValueError(f"not a boolean: {raw!r}")
    if isinstance(default, int) and not isinstance(default, bool):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return str(raw)


def _candidate_paths() -> list[Path]:
    paths: list[Path] = []
    env_path = os.environ.get(ENV_PREFIX + "CONFIG")
    if env_path:
        paths.append(Path(env_path))
    paths.extend(
        [
            Path.cwd() / "carrobot.yaml",
            Path.home() / ".config" / "carrobot" / "config.yaml",
        ]
    )
    return paths


def _load_yaml_cfg(
    paths: list[Path] | None = None,
) -> tuple[dict[str, Any], Path | None]:
    """Load YAML config from the first readable candidate path.

    Returns (data, source_path); an empty dict when none is valid.
    """
    for pth in paths if paths is not None else _candidate_paths():
        if not pth.exists():
            logger.debug("[CONFIG] Path not found: %s", pth)
            continue
        try:
            with pth.open("r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            logger.warning("[CONFIG] Failed to parse YAML %s: %s", pth, exc)
            continue
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("[CONFIG] Failed to read YAML %s: %s", pth, exc)
            continue
        if data is None:
            data = {}
        if not isinstance(data, dict):
            logger.warning("[CONFIG] YAML root not a mapping: %s", pth)
            continue
        logger.info("[CONFIG] Loaded YAML config from: %s", pth)
        return data, pth
    return {}, None


def load_config(paths: list[Path] | None = None) -> tuple[SessionConfig, Path | None]:
    """Produce the effective configuration and the YAML file it came from."""
    data, source = _load_yaml_cfg(paths)
    cfg = SessionConfig.from_env(SessionConfig.from_mapping(data))
    logger.debug("[CONFIG] Active source: %s", source)
    return cfg, source


__all__ = ["SessionConfig", "load_config"]
