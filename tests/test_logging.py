import json
import logging
import re

import pytest

from loransems.core.config import LoggingConfig
from loransems.core.logging import (
    JsonLogFormatter,
    LogFileHandler,
    RedactingFilter,
    configure_logging,
    redact,
)


ARGON2 = "$argon2id$v=19$m=1024,t=1,p=1$c2FsdHNhbHQ$aGFzaGhhc2hoYXNo"
BCRYPT = "$2y$10$92IXUNpkjO0rOQ5byMi.Ye4oKoEa3Ro9llC/.og/at2.uheWG/igi"


@pytest.mark.parametrize("text,secret", [
    ("login password=hunter2 for rana", "hunter2"),
    ("token: abcdefTOKEN123", "abcdefTOKEN123"),
    (f"stored hash {ARGON2}", ARGON2),
    (f"legacy {BCRYPT} found", BCRYPT),
    ("hash " + "ab" * 32, "ab" * 32),
])
def test_redact_removes_secrets(text, secret):
    cleaned = redact(text)
    assert secret not in cleaned
    assert "[REDACTED]" in cleaned


def test_redact_keeps_ordinary_messages():
    message = "Invalid password for rana (attempt 2/5)"
    assert redact(message) == message


def _record(msg, args=None):
    return logging.LogRecord("loransems.auth", logging.INFO, __file__, 1, msg, args, None)


def test_filter_sanitizes_message_and_args():
    record = _record("user %s password=%s", ("rana", "x"))
    record.msg = "session_token=abc123 for %s"
    record.args = (f"hash {ARGON2}",)

    assert RedactingFilter().filter(record)
    assert "abc123" not in record.getMessage()
    assert ARGON2 not in record.getMessage()


def test_structured_formatter_outputs_json():
    data = json.loads(JsonLogFormatter().format(_record("User logged in: rana")))
    assert data["logger"] == "loransems.auth"
    assert data["message"] == "User logged in: rana"
    assert data["level"] == "INFO"


def test_rotating_handler_creates_directory(tmp_path):
    handler = LogFileHandler(tmp_path / "logs" / "ems.log")
    try:
        assert (tmp_path / "logs").is_dir()
    finally:
        handler.close()


def test_rotating_handler_rejects_traversal(tmp_path):
    with pytest.raises(ValueError):
        LogFileHandler(tmp_path / ".." / "escape.log")


def test_configure_logging_writes_redacted_file(tmp_path):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(LoggingConfig(enable_console=False, enable_file=True), log_dir=tmp_path)
        logging.getLogger("loransems.auth").info("password=hunter2 for rana")
        for handler in root.handlers:
            handler.flush()
        content = (tmp_path / "loransems.log").read_text(encoding="utf-8")
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

    assert "hunter2" not in content
    assert "rana" in content


def test_json_formatter_includes_auth_context():
    record = _record("User logged in: rana")
    record.user_id = 7
    record.ip_address = "10.0.0.5"

    data = json.loads(JsonLogFormatter().format(record))

    assert data["user_id"] == 7
    assert data["ip_address"] == "10.0.0.5"
    assert "username" not in data


def test_filter_applies_extra_patterns():
    record = _record("employee code EMP-4411 viewed")
    RedactingFilter(extra_patterns=[re.compile(r"EMP-\d+")]).filter(record)
    assert record.getMessage() == "employee code [REDACTED] viewed"


def test_configure_logging_replaces_previous_handlers(tmp_path):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(LoggingConfig(level="warning"))
        configure_logging(LoggingConfig(level="warning"))
        assert len(root.handlers) == 1
        assert root.level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
