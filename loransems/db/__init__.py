"""
Database module - Credential, audit and session persistence.

Backends:
- SQLite for the desktop / single-node deployment
- PostgreSQL for the hosted deployment

Security Considerations:
- Parameterized queries only
- Session tokens are stored as SHA-256 hashes
- system_logs is append-only from this package
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loransems.db.base import (
    CredentialStore,
    LockState,
    PersistenceError,
    SessionStore,
    UserExistsError,
    UserRecord,
    UserStatus,
)
from loransems.db.sqlite import (
    SQLiteAuditSink,
    SQLiteCredentialStore,
    SQLiteDatabase,
    SQLiteSessionStore,
)
from loransems.db.postgres import (
    PostgresAuditSink,
    PostgresCredentialStore,
    PostgresDatabase,
    PostgresSessionStore,
)


@dataclass(frozen=True)
class StorageBackend:
    """The stores of one database, wired together."""
    database: Any
    credentials: Any
    audit_sink: Any
    sessions: Any


def open_backend(url: str, sslmode: str | None = None) -> StorageBackend:
    """
    Build the stores for a database URL.

    ``postgresql://`` and ``postgres://`` URLs select PostgreSQL; anything
    else (optionally prefixed ``sqlite:///``) is a SQLite file path.
    """
    if url.startswith(("postgresql://", "postgres://")):
        database = PostgresDatabase(url, sslmode=sslmode)
        return StorageBackend(
            database=database,
            credentials=PostgresCredentialStore(database),
            audit_sink=PostgresAuditSink(database),
            sessions=PostgresSessionStore(database),
        )

    path = url[len("sqlite:///"):] if url.startswith("sqlite:///") else url
    database = SQLiteDatabase(path)
    return StorageBackend(
        database=database,
        credentials=SQLiteCredentialStore(database),
        audit_sink=SQLiteAuditSink(database),
        sessions=SQLiteSessionStore(database),
    )


__all__ = [
    "CredentialStore",
    "LockState",
    "PersistenceError",
    "SessionStore",
    "UserExistsError",
    "UserRecord",
    "UserStatus",
    "SQLiteAuditSink",
    "SQLiteCredentialStore",
    "SQLiteDatabase",
    "SQLiteSessionStore",
    "PostgresAuditSink",
    "PostgresCredentialStore",
    "PostgresDatabase",
    "PostgresSessionStore",
    "StorageBackend",
    "open_backend",
]
