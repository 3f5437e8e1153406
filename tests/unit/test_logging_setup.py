import io
import json
import logging
from unittest.mock import patch

from carrobot_core import logging_setup


def _record(msg, *args):
    return logging.LogRecord("carrobot_core", logging.INFO, __file__, 1, msg, args, None)


def test_redact_masks_secrets():
    out = logging_setup.redact("password=hunter2 token: abc123")
    assert "hunter2" not in out
    assert "abc123" not in out
    assert "***REDACTED***" in out


def test_dict_messages_render_as_json_lines():
    stream = io.StringIO()
    handler = logging_setup.JsonRedactingHandler(stream)
    handler.emit(_record({"event": "command_sent", "frame": "BEEP:0::1"}))
    line = stream.getvalue().strip()
    assert json.loads(line) == {"event": "command_sent", "frame": "BEEP:0::1"}


def test_plain_messages_are_formatted_and_redacted():
    stream = io.StringIO()
    handler = logging_setup.JsonRedactingHandler(stream)
    handler.emit(_record("login with password=%s", "s3cret"))
    assert "s3cret" not in stream.getvalue()


def test_get_log_level_sources():
    with patch.dict("os.environ", {"CARROBOT_LOG_LEVEL": "debug"}, clear=False):
        assert logging_setup.get_log_level() == logging.DEBUG
    assert logging_setup.get_log_level("warning") == logging.WARNING
    assert logging_setup.get_log_level("chatty") == logging.INFO


def test_setup_logging_is_idempotent():
    logger = logging_setup.setup_logging("INFO")
    before = len(logger.handlers)
    logging_setup.setup_logging("DEBUG")
    assert len(logger.handlers) == before
    assert logger.level == logging.DEBUG
    assert logging_setup.session_logger.propagate is True
    logging_setup.setup_logging("INFO")


def test_file_handler_falls_back_when_unwritable(tmp_path):
    target = tmp_path / "logs" / "session.log"
    handler = logging_setup.init_file_handler(str(target))
    try:
        assert target.exists()
    finally:
        logging_setup.logger.removeHandler(handler)
        handler.close()

    with patch.object(logging_setup, "_writable", return_value=False):
        handler = logging_setup.init_file_handler("/nonexistent/dir/session.log")
    try:
        assert isinstance(handler, logging_setup.JsonRedactingHandler)
    finally:
        logging_setup.logger.removeHandler(handler)
