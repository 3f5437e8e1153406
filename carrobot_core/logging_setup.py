"""Structured logging for carrobot_core.

Loggers emit dict payloads with an ``"event"`` key; ``JsonRedactingHandler``
renders them as single JSON lines and masks credential-looking values.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import re
import sys
import tempfile

REDACT = re.compile(
    r"(?i)[\"']?\b(pass(word)?|token|apikey|api_key|secret|bearer)\b[\"']?\s*[:=]\s*[\"']?([^\"',\s]+)[\"']?"
)


def redact(s: str) -> str:
    return REDACT.sub(lambda m: f"{m.group(1)}=***REDACTED***", s)


class JsonRedactingHandler(logging.StreamHandler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = record.msg
            line = json.dumps(msg, default=str) if isinstance(msg, dict) else record.getMessage()
            line = redact(line)
            self.stream.write(line + "\n")
            self.flush()
        except Exception:
            self.handleError(record)


LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

logger = logging.getLogger("carrobot_core")
session_logger = logging.getLogger("carrobot_core.session")
link_logger = logging.getLogger("carrobot_core.link")


def get_log_level(override: str | None = None) -> int:
    """Resolve a numeric log level.

    Checks, in order: ``override``, CARROBOT_LOG_LEVEL, LOG_LEVEL. Unknown or
    missing values fall back to INFO.
    """
    lvl = override or os.environ.get("CARROBOT_LOG_LEVEL") or os.environ.get("LOG_LEVEL")
    if not lvl:
        return logging.INFO
    return LOG_LEVEL_MAP.get(str(lvl).upper(), logging.INFO)


def setup_logging(level: str | int | None = None) -> logging.Logger:
    """(Re)initialize the package logger.

    Child loggers propagate to ``carrobot_core`` so a single handler is
    attached; calling this repeatedly does not duplicate handlers.
    """
    numeric_level = level if isinstance(level, int) else get_log_level(level)
    logger.setLevel(numeric_level)
    if not any(isinstance(h, JsonRedactingHandler) for h in logger.handlers):
        logger.addHandler(JsonRedactingHandler(sys.stdout))
    logger.propagate = False
    for child in (session_logger, link_logger):
        child.setLevel(logging.NOTSET)
        child.propagate = True
    return logger


def _writable(path: str) -> bool:
    try:
        p = pathlib.Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with open(p, "a"):
            pass
        return True
    except OSError:
        return False


def init_file_handler(path: str | None = None) -> logging.Handler:
    """Attach a JSON file handler.

    Prefers ``path``, then CARROBOT_LOG_PATH, then the temp directory; falls
    back to stderr when nothing is writable. Emits one warning on fallback.
    """
    candidate = path or os.environ.get("CARROBOT_LOG_PATH")
    if not candidate or not _writable(candidate):
        tmp = os.path.join(tempfile.gettempdir(), "carrobot_session.log")
        fallback = tmp if _writable(tmp) else None
        if candidate:
            logger.warning({"event": "log_path_fallback", "requested": candidate, "target": fallback or "stderr"})
        candidate = fallback
    handler: logging.Handler
    if candidate:
        handler = JsonRedactingHandler(open(candidate, "a", encoding="utf-8"))
    else:
        handler = JsonRedactingHandler(sys.stderr)
    logger.addHandler(handler)
    return handler


setup_logging()

__all__ = [
    "JsonRedactingHandler",
    "LOG_LEVEL_MAP",
    "get_log_level",
    "init_file_handler",
    "link_logger",
    "logger",
    "redact",
    "session_logger",
    "setup_logging",
]
