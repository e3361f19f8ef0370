"""
PostgreSQL Backend
==================

Credential, audit and session storage for the hosted deployment.

Mirrors the SQLite backend. The failed-attempt update uses RETURNING so
the new counter and lock flag come back from the same atomic statement.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Final, Iterator, List, Optional

import psycopg2
import psycopg2.errors
import psycopg2.extras

from loransems.core.auth.session_control import Session, SessionState
from loransems.db.base import LockState, PersistenceError, UserExistsError, UserRecord
from loransems.security.audit import AuditError, AuditEvent


_SCHEMA: Final[tuple[str, ...]] = (
    """
    CREATE TABLE IF NOT EXISTS locations (
        location_id SERIAL PRIMARY KEY,
        location_name VARCHAR(100) NOT NULL,
        location_code VARCHAR(10) NOT NULL UNIQUE,
        country VARCHAR(50) NOT NULL,
        city VARCHAR(50) NOT NULL,
        timezone VARCHAR(50) DEFAULT 'UTC',
        status VARCHAR(10) DEFAULT 'active' CHECK (status IN ('active', 'inactive')),
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS departments (
        department_id SERIAL PRIMARY KEY,
        department_name VARCHAR(100) NOT NULL,
        department_code VARCHAR(20) NOT NULL,
        location_id INTEGER NOT NULL REFERENCES locations(location_id),
        status VARCHAR(10) DEFAULT 'active' CHECK (status IN ('active', 'inactive')),
        created_at TIMESTAMPTZ DEFAULT NOW(),
        UNIQUE (department_code, location_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS employees (
        employee_id SERIAL PRIMARY KEY,
        employee_code VARCHAR(20) NOT NULL UNIQUE,
        first_name VARCHAR(50) NOT NULL,
        last_name VARCHAR(50) NOT NULL,
        email VARCHAR(100) NOT NULL UNIQUE,
        location_id INTEGER NOT NULL REFERENCES locations(location_id),
        department_id INTEGER NOT NULL REFERENCES departments(department_id),
        position VARCHAR(100) NOT NULL,
        status VARCHAR(20) DEFAULT 'active' CHECK (status IN ('active', 'inactive', 'terminated')),
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id SERIAL PRIMARY KEY,
        employee_id INTEGER NOT NULL UNIQUE REFERENCES employees(employee_id),
        username VARCHAR(50) NOT NULL UNIQUE,
        password_hash VARCHAR(255) NOT NULL,
        role VARCHAR(20) DEFAULT 'employee' CHECK (role IN ('super_admin', 'admin', 'hr_manager', 'department_head', 'employee')),
        permissions TEXT,
        last_login TIMESTAMPTZ,
        login_attempts INTEGER NOT NULL DEFAULT 0 CHECK (login_attempts >= 0),
        account_locked BOOLEAN NOT NULL DEFAULT FALSE,
        password_reset_token VARCHAR(255),
        password_reset_expires TIMESTAMPTZ,
        status VARCHAR(20) DEFAULT 'active' CHECK (status IN ('active', 'inactive', 'suspended')),
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS system_logs (
        log_id BIGSERIAL PRIMARY KEY,
        user_id INTEGER,
        action VARCHAR(100) NOT NULL,
        module VARCHAR(50) NOT NULL,
        description TEXT,
        ip_address VARCHAR(45),
        user_agent TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_system_logs_user ON system_logs(user_id)",
    """
    CREATE TABLE IF NOT EXISTS sessions (
        token_hash TEXT PRIMARY KEY,
        user_id INTEGER NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
        role VARCHAR(20) NOT NULL,
        location_id INTEGER,
        context JSONB NOT NULL,
        login_time TIMESTAMPTZ NOT NULL,
        last_activity TIMESTAMPTZ NOT NULL,
        ip_address VARCHAR(45),
        user_agent TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sessions_activity ON sessions(last_activity)",
)

_SEED: Final[tuple[str, ...]] = (
    """
    INSERT INTO locations (location_name, location_code, country, city, timezone) VALUES
        ('Syria Call Center', 'SYR-CC', 'Syria', 'Damascus', 'Asia/Damascus'),
        ('Turkey Clinic', 'TUR-CL', 'Turkey', 'Istanbul', 'Europe/Istanbul')
    ON CONFLICT (location_code) DO NOTHING
    """,
    """
    INSERT INTO departments (department_name, department_code, location_id)
    SELECT v.name, v.code, l.location_id
    FROM (VALUES
        ('Sales Team', 'SALES', 'SYR-CC'),
        ('Call Center Operations', 'CALL-OPS', 'SYR-CC'),
        ('Medical Services', 'MED-SRV', 'TUR-CL'),
        ('Administration', 'ADMIN', 'SYR-CC'),
        ('Human Resources', 'HR', 'SYR-CC')
    ) AS v(name, code, location_code)
    JOIN locations l ON l.location_code = v.location_code
    ON CONFLICT (department_code, location_id) DO NOTHING
    """,
)

_USER_CONTEXT_QUERY: Final[str] = """
SELECT u.user_id, u.employee_id, u.username, u.password_hash, u.role,
       u.login_attempts, u.account_locked, u.last_login, u.status,
       e.first_name, e.last_name, e.employee_code, e.position,
       e.location_id, e.department_id,
       l.location_name, l.location_code,
       d.department_name
FROM users u
JOIN employees e ON u.employee_id = e.employee_id
JOIN locations l ON e.location_id = l.location_id
JOIN departments d ON e.department_id = d.department_id
"""


class PostgresDatabase:
    """
    Connection factory and schema owner for a PostgreSQL database.

    Each transaction opens its own connection; nothing is shared between
    requests.
    """

    __slots__ = ("_dsn", "_sslmode", "_log")

    def __init__(self, dsn: str, sslmode: Optional[str] = None) -> None:
        self._dsn = dsn
        self._sslmode = sslmode
        self._log = logging.getLogger("loransems.db")

    def _get_connection(self):
        kwargs = {"cursor_factory": psycopg2.extras.RealDictCursor}
        if self._sslmode:
            kwargs["sslmode"] = self._sslmode
        return psycopg2.connect(self._dsn, **kwargs)

    @contextmanager
    def transaction(self) -> Iterator["psycopg2.extras.RealDictCursor"]:
        """Yield a cursor; commit on success, roll back and wrap errors otherwise."""
        try:
            conn = self._get_connection()
        except psycopg2.Error as e:
            raise PersistenceError(f"Cannot connect to PostgreSQL: {e}") from e

        try:
            with conn.cursor() as cur:
                yield cur
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            raise PersistenceError(f"PostgreSQL query failed: {e}") from e
        finally:
            conn.close()

    def initialize(self, seed: bool = True) -> None:
        with self.transaction() as cur:
            for statement in _SCHEMA:
                cur.execute(statement)
            if seed:
                for statement in _SEED:
                    cur.execute(statement)

        self._log.info("PostgreSQL schema ready")


def _row_to_user(row: dict) -> UserRecord:
    return UserRecord(
        user_id=row["user_id"],
        employee_id=row["employee_id"],
        username=row["username"],
        password_hash=row["password_hash"],
        role=row["role"],
        login_attempts=row["login_attempts"],
        account_locked=bool(row["account_locked"]),
        last_login=row["last_login"],
        status=row["status"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        employee_code=row["employee_code"],
        position=row["position"],
        location_id=row["location_id"],
        location_name=row["location_name"],
        location_code=row["location_code"],
        department_id=row["department_id"],
        department_name=row["department_name"],
    )


class PostgresCredentialStore:
    """CredentialStore over PostgreSQL."""

    __slots__ = ("_db",)

    def __init__(self, database: PostgresDatabase) -> None:
        self._db = database

    def get_lock_state(self, username: str) -> Optional[LockState]:
        with self._db.transaction() as cur:
            cur.execute(
                "SELECT login_attempts, account_locked FROM users WHERE username = %s",
                (username,),
            )
            row = cur.fetchone()

        if not row:
            return None
        return LockState(row["login_attempts"], bool(row["account_locked"]))

    def find_active_user(self, username: str) -> Optional[UserRecord]:
        with self._db.transaction() as cur:
            cur.execute(
                _USER_CONTEXT_QUERY + " WHERE u.username = %s AND u.status = 'active'",
                (username,),
            )
            row = cur.fetchone()

        return _row_to_user(row) if row else None

    def record_failed_attempt(self, user_id: int, max_attempts: int) -> LockState:
        with self._db.transaction() as cur:
            cur.execute(
                """
                UPDATE users
                SET login_attempts = login_attempts + 1,
                    account_locked = CASE
                        WHEN login_attempts + 1 >= %s THEN TRUE
                        ELSE account_locked
                    END
                WHERE user_id = %s
                RETURNING login_attempts, account_locked
                """,
                (max_attempts, user_id),
            )
            row = cur.fetchone()

        if not row:
            raise PersistenceError(f"User with ID '{user_id}' not found")
        return LockState(row["login_attempts"], bool(row["account_locked"]))

    def record_successful_login(self, user_id: int, when: datetime, max_attempts: int) -> bool:
        with self._db.transaction() as cur:
            cur.execute(
                """
                UPDATE users
                SET login_attempts = 0, account_locked = FALSE, last_login = %s
                WHERE user_id = %s AND NOT account_locked AND login_attempts < %s
                """,
                (when, user_id, max_attempts),
            )
            return cur.rowcount == 1

    def update_password_hash(self, user_id: int, password_hash: str) -> None:
        with self._db.transaction() as cur:
            cur.execute(
                "UPDATE users SET password_hash = %s WHERE user_id = %s",
                (password_hash, user_id),
            )
            if cur.rowcount == 0:
                raise PersistenceError(f"User with ID '{user_id}' not found")

    def unlock_user(self, username: str) -> bool:
        with self._db.transaction() as cur:
            cur.execute(
                "UPDATE users SET login_attempts = 0, account_locked = FALSE WHERE username = %s",
                (username,),
            )
            return cur.rowcount > 0

    def create_employee(
        self,
        employee_code: str,
        first_name: str,
        last_name: str,
        email: str,
        location_id: int,
        department_id: int,
        position: str,
    ) -> int:
        try:
            with self._db.transaction() as cur:
                cur.execute(
                    """
                    INSERT INTO employees (employee_code, first_name, last_name, email,
                                           location_id, department_id, position)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING employee_id
                    """,
                    (employee_code, first_name, last_name, email,
                     location_id, department_id, position),
                )
                return cur.fetchone()["employee_id"]
        except PersistenceError as e:
            if isinstance(e.__cause__, psycopg2.errors.UniqueViolation):
                raise UserExistsError(f"Employee '{employee_code}' already exists") from e
            raise

    def create_user(
        self,
        employee_id: int,
        username: str,
        password_hash: str,
        role: str = "employee",
        status: str = "active",
    ) -> int:
        try:
            with self._db.transaction() as cur:
                cur.execute(
                    """
                    INSERT INTO users (employee_id, username, password_hash, role, status)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING user_id
                    """,
                    (employee_id, username, password_hash, role, status),
                )
                return cur.fetchone()["user_id"]
        except PersistenceError as e:
            if isinstance(e.__cause__, psycopg2.errors.UniqueViolation):
                raise UserExistsError(f"User '{username}' already exists") from e
            raise


class PostgresAuditSink:
    """Append-only writer for system_logs."""

    __slots__ = ("_db",)

    def __init__(self, database: PostgresDatabase) -> None:
        self._db = database

    def append(self, event: AuditEvent) -> None:
        try:
            with self._db.transaction() as cur:
                cur.execute(
                    """
                    INSERT INTO system_logs (user_id, action, module, description,
                                             ip_address, user_agent, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        event.user_id,
                        event.action,
                        event.module,
                        event.description,
                        event.ip_address,
                        event.user_agent,
                        event.created_at,
                    ),
                )
        except PersistenceError as e:
            raise AuditError(f"Cannot append audit event '{event.action}': {e}") from e

    def list_events(
        self,
        user_id: Optional[int] = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        with self._db.transaction() as cur:
            cur.execute(
                """
                SELECT * FROM system_logs
                WHERE (%s IS NULL OR user_id = %s)
                  AND (%s IS NULL OR action = %s)
                ORDER BY log_id ASC
                LIMIT %s
                """,
                (user_id, user_id, action, action, limit),
            )
            rows = cur.fetchall()

        return [
            AuditEvent(
                user_id=row["user_id"],
                action=row["action"],
                module=row["module"],
                description=row["description"] or "",
                ip_address=row["ip_address"],
                user_agent=row["user_agent"],
                created_at=row["created_at"],
            )
            for row in rows
        ]


class PostgresSessionStore:
    """Server-side sessions; only token hashes are stored."""

    __slots__ = ("_db",)

    def __init__(self, database: PostgresDatabase) -> None:
        self._db = database

    def save_session(
        self,
        token_hash: str,
        session: Session,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        with self._db.transaction() as cur:
            cur.execute(
                """
                INSERT INTO sessions (
                    token_hash, user_id, role, location_id, context,
                    login_time, last_activity, ip_address, user_agent
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (token_hash) DO UPDATE SET
                    last_activity = EXCLUDED.last_activity
                """,
                (
                    token_hash,
                    session.user_id,
                    session.role,
                    session.location_id,
                    psycopg2.extras.Json(session.context()),
                    session.login_time,
                    session.last_activity,
                    ip_address,
                    user_agent,
                ),
            )

    def load_session(self, token_hash: str) -> Optional[Session]:
        with self._db.transaction() as cur:
            cur.execute("SELECT * FROM sessions WHERE token_hash = %s", (token_hash,))
            row = cur.fetchone()

        if not row:
            return None

        data = dict(row["context"])
        data.update(
            state=SessionState.AUTHENTICATED.value,
            user_id=row["user_id"],
            role=row["role"],
            location_id=row["location_id"],
            login_time=row["login_time"],
            last_activity=row["last_activity"],
        )
        return Session.from_dict(data)

    def touch_session(self, token_hash: str, last_activity: datetime) -> None:
        with self._db.transaction() as cur:
            cur.execute(
                "UPDATE sessions SET last_activity = %s WHERE token_hash = %s",
                (last_activity, token_hash),
            )

    def delete_session(self, token_hash: str) -> None:
        with self._db.transaction() as cur:
            cur.execute("DELETE FROM sessions WHERE token_hash = %s", (token_hash,))

    def purge_expired(self, cutoff: datetime) -> int:
        with self._db.transaction() as cur:
            cur.execute("DELETE FROM sessions WHERE last_activity < %s", (cutoff,))
            return cur.rowcount
