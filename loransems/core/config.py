"""
Configuration Module
====================

Immutable configuration for the authentication service, built from defaults
and ``LORANSEMS_`` environment variables. A double underscore separates the
section from the key:

    LORANSEMS_SECURITY__SESSION_TIMEOUT=1800
    LORANSEMS_SECURITY__MAX_LOGIN_ATTEMPTS=3
    LORANSEMS_DATABASE__URL=postgresql://ems@db/lorans_medical_ems
    LORANSEMS_LOGGING__LEVEL=DEBUG

Variables whose name looks like a credential are ignored; database
passwords belong in the URL or a libpq service file, and the Flask signing
key is read from ``SECRET_KEY`` by the web layer.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import platform
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, ClassVar, Final, Mapping, Optional

from loransems.security.constants import (
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_TIME_COST,
    MAX_LOGIN_ATTEMPTS,
    SESSION_TIMEOUT_SECONDS,
)

log = logging.getLogger("loransems.config")

ENV_PREFIX: Final[str] = "LORANSEMS"
SQLITE_FILE_NAME: Final[str] = "lorans_medical.db"

_CREDENTIAL_WORDS: Final[tuple[str, ...]] = (
    "password", "secret", "token", "api_key", "private", "credential", "salt",
)

_LOG_LEVELS: Final[frozenset[str]] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _looks_like_credential(name: str) -> bool:
    name = name.lower()
    return any(word in name for word in _CREDENTIAL_WORDS)


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Field annotations (as strings, see the __future__ import) to parsers
_PARSERS: Final[dict[str, Callable[[str], Any]]] = {
    "int": int,
    "bool": _parse_bool,
    "str": str,
    "Optional[str]": str,
    "Path": Path,
}


def _platform_dirs() -> tuple[Path, Path]:
    """(data_dir, log_dir) following each OS's conventions."""
    home = Path.home()
    system = platform.system()

    if system == "Windows":
        root = Path(os.environ.get("LOCALAPPDATA", home / "AppData" / "Local")) / "LoransEMS"
        return root, root / "Logs"
    if system == "Darwin":
        return home / "Library" / "Application Support" / "LoransEMS", home / "Library" / "Logs" / "LoransEMS"

    data_home = Path(os.environ.get("XDG_DATA_HOME", home / ".local" / "share"))
    state_home = Path(os.environ.get("XDG_STATE_HOME", home / ".local" / "state"))
    return data_home / "LoransEMS", state_home / "LoransEMS" / "logs"


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Data and log locations."""

    data_dir: Path = field(default_factory=lambda: _platform_dirs()[0])
    log_dir: Path = field(default_factory=lambda: _platform_dirs()[1])

    def __post_init__(self) -> None:
        for name in ("data_dir", "log_dir"):
            if not getattr(self, name).is_absolute():
                raise ValueError(f"paths.{name} must be absolute, got {getattr(self, name)}")


@dataclass(frozen=True, slots=True)
class SecurityConfig:
    """Session, lockout and hashing settings."""

    session_timeout: int = SESSION_TIMEOUT_SECONDS
    max_login_attempts: int = MAX_LOGIN_ATTEMPTS
    argon2_memory_cost: int = ARGON2_MEMORY_COST
    argon2_time_cost: int = ARGON2_TIME_COST
    argon2_parallelism: int = ARGON2_PARALLELISM

    def __post_init__(self) -> None:
        if self.session_timeout <= 0:
            raise ValueError("security.session_timeout must be a positive number of seconds")
        if self.max_login_attempts < 1:
            raise ValueError("security.max_login_attempts must be at least 1")
        if self.argon2_parallelism < 1:
            raise ValueError("security.argon2_parallelism must be at least 1")


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    """Where credentials, audit logs and sessions live."""

    # Empty means a SQLite file under paths.data_dir
    url: str = ""
    sslmode: Optional[str] = None

    @property
    def is_postgres(self) -> bool:
        return self.url.startswith(("postgresql://", "postgres://"))


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    enable_console: bool = True
    enable_file: bool = False
    enable_json: bool = False

    def __post_init__(self) -> None:
        level = self.level.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"logging.level must be one of {sorted(_LOG_LEVELS)}, got {self.level!r}")
        object.__setattr__(self, "level", level)


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Identity and web routing."""

    app_name: str = "Lorans Medical EMS"
    version: str = "1.0.0"
    login_url: str = "/login"
    unauthorized_url: str = "/unauthorized"
    # Trust one X-Forwarded-For hop so audit entries record the real client
    behind_proxy: bool = False


def env_overrides(prefix: str, environ: Mapping[str, str]) -> dict[str, dict[str, str]]:
    """
    Group ``PREFIX_SECTION__KEY`` variables as ``{section: {key: raw}}``.

    Names without a section separator and names that look like credentials
    are skipped.
    """
    lead = f"{prefix.upper()}_"
    grouped: dict[str, dict[str, str]] = {}

    for name, raw in environ.items():
        if not name.startswith(lead):
            continue
        section, sep, key = name[len(lead):].lower().partition("__")
        if not sep or _looks_like_credential(name):
            continue
        grouped.setdefault(section, {})[key] = raw

    return grouped


def _build_section(section_cls: type, section: str, raw: Mapping[str, str]) -> Any:
    known = {f.name: f for f in dataclasses.fields(section_cls)}
    kwargs: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            log.warning("Ignoring unknown setting %s.%s", section, key)
            continue
        parse = _PARSERS[str(known[key].type)]
        try:
            kwargs[key] = parse(value)
        except ValueError as e:
            raise ValueError(f"Invalid value for {section}.{key}: {value!r}") from e
    return section_cls(**kwargs)


@dataclass(frozen=True, slots=True)
class EMSConfig:
    """
    Complete service configuration.

    Usage:
        config = EMSConfig.load()
        timeout = config.security.session_timeout
        backend = open_backend(config.database_url, config.database.sslmode)
    """

    paths: PathConfig = field(default_factory=PathConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    app: AppConfig = field(default_factory=AppConfig)

    _SECTIONS: ClassVar[dict[str, type]] = {
        "paths": PathConfig,
        "security": SecurityConfig,
        "database": DatabaseConfig,
        "logging": LoggingConfig,
        "app": AppConfig,
    }

    @property
    def database_url(self) -> str:
        """The configured URL, or the SQLite file under data_dir."""
        return self.database.url or str(self.paths.data_dir / SQLITE_FILE_NAME)

    @classmethod
    def load(cls, env_prefix: str = ENV_PREFIX, environ: Optional[Mapping[str, str]] = None) -> EMSConfig:
        """
        Defaults overlaid with environment variables.

        Args:
            env_prefix: Prefix for environment variables
            environ: Mapping to read instead of os.environ

        Raises:
            ValueError: If a value cannot be parsed or fails validation
        """
        grouped = env_overrides(env_prefix, os.environ if environ is None else environ)
        sections: dict[str, Any] = {}
        for section, raw in grouped.items():
            if section not in cls._SECTIONS:
                log.warning("Ignoring unknown configuration section %r", section)
                continue
            sections[section] = _build_section(cls._SECTIONS[section], section, raw)
        return cls(**sections)

    def ensure_directories(self) -> None:
        """Create data and log directories, owner-only where the OS allows."""
        for directory in (self.paths.data_dir, self.paths.log_dir):
            directory.mkdir(parents=True, exist_ok=True)
            if platform.system() != "Windows":
                directory.chmod(stat.S_IRWXU)
