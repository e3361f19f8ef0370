"""
Log Output
==========

Handlers and formatting for the ``loransems.*`` loggers.

Every handler installed by :func:`configure_logging` carries a
:class:`RedactingFilter`, so plaintext passwords, encoded Argon2 or bcrypt
hashes and session tokens never reach the console or the log file, even
when they slip into an exception message.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Final, Iterable, Optional, Pattern

from loransems.core.config import LoggingConfig


LOG_FILE_NAME: Final[str] = "loransems.log"
REDACTED: Final[str] = "[REDACTED]"

# key=value pairs whose value is a credential; group 1 is the key
_CREDENTIAL_ASSIGNMENTS: Final[Pattern[str]] = re.compile(
    r'(?i)\b(password_hash|password|passwd|pwd|session_token|token_hash|token|bearer|secret_key|secret)'
    r'\s*[=:]\s*["\']?[^\s"\',}]+["\']?'
)

# Encoded hashes and bare secrets, wherever they appear
_SECRET_VALUES: Final[tuple[tuple[str, Pattern[str]], ...]] = (
    ("argon2_hash", re.compile(r'\$argon2(?:id|i|d)\$[^\s"\']+')),
    ("bcrypt_hash", re.compile(r'\$2[abxy]\$\d{2}\$[./A-Za-z0-9]{53}')),
    ("hex_secret", re.compile(r'(?i)\b[a-f0-9]{32,}\b')),
)

# Attributes copied into JSON output when a caller passes them via ``extra=``
_CONTEXT_FIELDS: Final[tuple[str, ...]] = ("user_id", "username", "ip_address", "action")

_TEXT_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DETAILED_TEXT_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"


def redact(text: str) -> str:
    """Return *text* with credentials and secrets replaced by ``[REDACTED]``."""
    # Encoded hashes contain commas, which would end a key=value match early
    for label, pattern in _SECRET_VALUES:
        text = pattern.sub(f"{label}={REDACTED}", text)
    return _CREDENTIAL_ASSIGNMENTS.sub(lambda m: f"{m.group(1)}={REDACTED}", text)


class RedactingFilter(logging.Filter):
    """
    Rewrite a record's message and string arguments through :func:`redact`.

    Records are never dropped. Extra site-specific patterns can be supplied;
    their matches are replaced wholesale.
    """

    def __init__(self, name: str = "", extra_patterns: Iterable[Pattern[str]] = ()) -> None:
        super().__init__(name)
        self._extra_patterns = tuple(extra_patterns)

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._clean(record.msg)

        args = record.args
        if isinstance(args, dict):
            record.args = {key: self._clean_arg(value) for key, value in args.items()}
        elif isinstance(args, tuple):
            record.args = tuple(self._clean_arg(value) for value in args)

        return True

    def _clean_arg(self, value: object) -> object:
        return self._clean(value) if isinstance(value, str) else value

    def _clean(self, text: str) -> str:
        text = redact(text)
        for pattern in self._extra_patterns:
            text = pattern.sub(REDACTED, text)
        return text


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line, with auth context fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for field_name in _CONTEXT_FIELDS:
            if hasattr(record, field_name):
                entry[field_name] = getattr(record, field_name)
        if record.exc_info:
            entry["exception"] = redact(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class LogFileHandler(RotatingFileHandler):
    """Size-rotated UTF-8 log file; the parent directory is created on demand."""

    def __init__(self, path: str | Path, max_bytes: int = 10 * 1024 * 1024, backups: int = 5) -> None:
        path = Path(path)
        if ".." in path.parts:
            raise ValueError(f"Refusing log path outside its directory: {path}")
        path = path.resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(str(path), maxBytes=max_bytes, backupCount=backups, encoding="utf-8")


def _build_handlers(settings: LoggingConfig, log_dir: Optional[Path]) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []

    if settings.enable_console:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt="%H:%M:%S"))
        handlers.append(console)

    if settings.enable_file and log_dir is not None:
        log_file = LogFileHandler(
            Path(log_dir) / LOG_FILE_NAME,
            max_bytes=settings.max_file_size_bytes,
            backups=settings.backup_count,
        )
        if settings.enable_json:
            log_file.setFormatter(JsonLogFormatter())
        else:
            log_file.setFormatter(logging.Formatter(_DETAILED_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        handlers.append(log_file)

    return handlers


def configure_logging(settings: Optional[LoggingConfig] = None, log_dir: Optional[Path] = None) -> logging.Logger:
    """
    Install redacting handlers on the root logger.

    Existing root handlers are replaced, so calling this again (for example
    after a config reload) does not duplicate output. File output needs both
    ``settings.enable_file`` and a *log_dir*.

    Returns:
        The root logger
    """
    settings = settings or LoggingConfig()
    root = logging.getLogger()
    root.setLevel(settings.level.upper())
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    redacting = RedactingFilter()
    for handler in _build_handlers(settings, log_dir):
        handler.addFilter(redacting)
        root.addHandler(handler)

    return root
