"""Command-line runner for a CarroBot control session.

Builds a session on the simulated link, optionally connects and mirrors it
onto MQTT, then runs until SIGINT/SIGTERM and tears down cleanly.
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import contextlib
import dataclasses
import os
import signal
import sys

from .config import SessionConfig, load_config
from .facade import SessionFacade
from .logging_setup import init_file_handler, logger, setup_logging


def _flush_logs() -> None:
    for h in getattr(logger, "handlers", []):
        if hasattr(h, "flush"):
            with contextlib.suppress(OSError, ValueError):
                h.flush()


atexit.register(_flush_logs)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="carrobot-session",
        description="Run a CarroBot remote-control session.",
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--wifi", metavar="ADDRESS", help="connect over WiFi to ADDRESS")
    target.add_argument(
        "--bluetooth",
        nargs="?",
        const="",
        metavar="ADDRESS",
        help="connect over Bluetooth (configured address when omitted)",
    )
    parser.add_argument("--mqtt", action="store_true", help="bridge the session onto MQTT")
    parser.add_argument("--mqtt-host", help="override the configured broker host")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")
    parser.add_argument("--log-path", help="also write JSON logs to this file")
    return parser


def _apply_overrides(cfg: SessionConfig, args: argparse.Namespace) -> SessionConfig:
    overrides = {}
    if args.mqtt_host:
        overrides["mqtt_host"] = args.mqtt_host
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_path:
        overrides["log_path"] = args.log_path
    return dataclasses.replace(cfg, **overrides) if overrides else cfg


async def run(cfg: SessionConfig, args: argparse.Namespace) -> int:
    """Run one session until a termination signal arrives."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    def _on_signal(signum: int) -> None:
        logger.info({"event": "signal_received", "signum": signum})
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _on_signal, sig)

    bridge = None
    async with SessionFacade(config=cfg) as session:
        if args.mqtt:
            from .mqtt_bridge import start_mqtt_bridge, stop_mqtt_bridge

            bridge = start_mqtt_bridge(session, cfg, loop)

        try:
            if args.wifi:
                state = await session.connect_wifi(args.wifi)
                logger.info({"event": "startup_connect", "state": state.to_dict()})
            elif args.bluetooth is not None:
                state = await session.connect_bluetooth(args.bluetooth or None)
                logger.info({"event": "startup_connect", "state": state.to_dict()})

            logger.info({"event": "session_running", "pid": os.getpid()})
            await stop.wait()
            logger.info({"event": "session_stopping"})
        finally:
            if bridge is not None:
                stop_mqtt_bridge(bridge)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``carrobot-session``."""
    args = build_parser().parse_args(argv)
    cfg, source = load_config()
    cfg = _apply_overrides(cfg, args)

    setup_logging(cfg.log_level)
    if cfg.log_path:
        init_file_handler(cfg.log_path)
    logger.info({"event": "carrobot_session_started", "pid": os.getpid(), "config": str(source) if source else None})

    try:
        return asyncio.run(run(cfg, args))
    except KeyboardInterrupt:
        logger.info({"event": "interrupted"})
        return 0
    except Exception:
        logger.exception("fatal error in main")
        _flush_logs()
        return 1


if __name__ == "__main__":
    sys.exit(main())
