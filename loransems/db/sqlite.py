"""
SQLite Backend
==============

Credential, audit and session storage for single-node (desktop) deployments.

All operations use parameterized queries. Driver errors are wrapped in
PersistenceError (or AuditError for the audit sink) with the original
exception chained.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Final, Iterator, List, Optional

from loransems.core.auth.session_control import Session, SessionState
from loransems.db.base import LockState, PersistenceError, UserExistsError, UserRecord
from loransems.security.audit import AuditError, AuditEvent


_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS locations (
    location_id INTEGER PRIMARY KEY AUTOINCREMENT,
    location_name VARCHAR(100) NOT NULL,
    location_code VARCHAR(10) NOT NULL UNIQUE,
    country VARCHAR(50) NOT NULL,
    city VARCHAR(50) NOT NULL,
    timezone VARCHAR(50) DEFAULT 'UTC',
    status VARCHAR(10) DEFAULT 'active' CHECK (status IN ('active', 'inactive')),
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS departments (
    department_id INTEGER PRIMARY KEY AUTOINCREMENT,
    department_name VARCHAR(100) NOT NULL,
    department_code VARCHAR(20) NOT NULL,
    location_id INTEGER NOT NULL,
    status VARCHAR(10) DEFAULT 'active' CHECK (status IN ('active', 'inactive')),
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (department_code, location_id),
    FOREIGN KEY (location_id) REFERENCES locations(location_id)
);

CREATE TABLE IF NOT EXISTS employees (
    employee_id INTEGER PRIMARY KEY AUTOINCREMENT,
    employee_code VARCHAR(20) NOT NULL UNIQUE,
    first_name VARCHAR(50) NOT NULL,
    last_name VARCHAR(50) NOT NULL,
    email VARCHAR(100) NOT NULL UNIQUE,
    location_id INTEGER NOT NULL,
    department_id INTEGER NOT NULL,
    position VARCHAR(100) NOT NULL,
    status VARCHAR(20) DEFAULT 'active' CHECK (status IN ('active', 'inactive', 'terminated')),
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (location_id) REFERENCES locations(location_id),
    FOREIGN KEY (department_id) REFERENCES departments(department_id)
);

CREATE TABLE IF NOT EXISTS users (
    user_id INTEGER PRIMARY KEY AUTOINCREMENT,
    employee_id INTEGER NOT NULL UNIQUE,
    username VARCHAR(50) NOT NULL UNIQUE,
    password_hash VARCHAR(255) NOT NULL,
    role VARCHAR(20) DEFAULT 'employee' CHECK (role IN ('super_admin', 'admin', 'hr_manager', 'department_head', 'employee')),
    permissions TEXT,
    last_login DATETIME,
    login_attempts INTEGER NOT NULL DEFAULT 0 CHECK (login_attempts >= 0),
    account_locked INTEGER NOT NULL DEFAULT 0,
    password_reset_token VARCHAR(255),
    password_reset_expires DATETIME,
    status VARCHAR(20) DEFAULT 'active' CHECK (status IN ('active', 'inactive', 'suspended')),
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (employee_id) REFERENCES employees(employee_id)
);

CREATE TABLE IF NOT EXISTS system_logs (
    log_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER,
    action VARCHAR(100) NOT NULL,
    module VARCHAR(50) NOT NULL,
    description TEXT,
    ip_address VARCHAR(45),
    user_agent TEXT,
    created_at DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_system_logs_user ON system_logs(user_id);
CREATE INDEX IF NOT EXISTS idx_system_logs_created ON system_logs(created_at);

CREATE TABLE IF NOT EXISTS sessions (
    token_hash TEXT PRIMARY KEY,
    user_id INTEGER NOT NULL,
    role VARCHAR(20) NOT NULL,
    location_id INTEGER,
    context TEXT NOT NULL,
    login_time TEXT NOT NULL,
    last_activity TEXT NOT NULL,
    ip_address VARCHAR(45),
    user_agent TEXT,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);
CREATE INDEX IF NOT EXISTS idx_sessions_activity ON sessions(last_activity);
"""

# The two business units and their departments
_SEED: Final[str] = """
INSERT OR IGNORE INTO locations (location_name, location_code, country, city, timezone) VALUES
    ('Syria Call Center', 'SYR-CC', 'Syria', 'Damascus', 'Asia/Damascus'),
    ('Turkey Clinic', 'TUR-CL', 'Turkey', 'Istanbul', 'Europe/Istanbul');

INSERT OR IGNORE INTO departments (department_name, department_code, location_id) VALUES
    ('Sales Team', 'SALES', 1),
    ('Call Center Operations', 'CALL-OPS', 1),
    ('Medical Services', 'MED-SRV', 2),
    ('Administration', 'ADMIN', 1),
    ('Human Resources', 'HR', 1);
"""

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


class SQLiteDatabase:
    """
    Connection factory and schema owner for one SQLite file.

    Usage:
        database = SQLiteDatabase(data_dir / "lorans_medical.db")
        database.initialize()
        store = SQLiteCredentialStore(database)
    """

    __slots__ = ("_db_path", "_log")

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._log = logging.getLogger("loransems.db")

    @property
    def path(self) -> Path:
        return self._db_path

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection; commit on success, roll back and wrap errors otherwise."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {self._db_path}: {e}") from e

        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"SQLite query failed: {e}") from e
        finally:
            conn.close()

    def initialize(self, seed: bool = True) -> None:
        """Create tables (and default locations/departments) if missing."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self.transaction() as conn:
            conn.executescript(_SCHEMA)
            if seed:
                conn.executescript(_SEED)

        self._log.info(f"SQLite schema ready at {self._db_path}")


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _row_to_user(row: sqlite3.Row) -> UserRecord:
    return UserRecord(
        user_id=row["user_id"],
        employee_id=row["employee_id"],
        username=row["username"],
        password_hash=row["password_hash"],
        role=row["role"],
        login_attempts=row["login_attempts"],
        account_locked=bool(row["account_locked"]),
        last_login=_parse_time(row["last_login"]),
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


class SQLiteCredentialStore:
    """CredentialStore over the users/employees/locations/departments tables."""

    __slots__ = ("_db",)

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def get_lock_state(self, username: str) -> Optional[LockState]:
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT login_attempts, account_locked FROM users WHERE username = ?",
                (username,),
            ).fetchone()

        if not row:
            return None
        return LockState(row["login_attempts"], bool(row["account_locked"]))

    def find_active_user(self, username: str) -> Optional[UserRecord]:
        with self._db.transaction() as conn:
            row = conn.execute(
                _USER_CONTEXT_QUERY + " WHERE u.username = ? AND u.status = 'active'",
                (username,),
            ).fetchone()

        return _row_to_user(row) if row else None

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self._db.transaction() as conn:
            row = conn.execute(
                _USER_CONTEXT_QUERY + " WHERE u.user_id = ?",
                (user_id,),
            ).fetchone()

        return _row_to_user(row) if row else None

    def record_failed_attempt(self, user_id: int, max_attempts: int) -> LockState:
        """
        Count a failed password in a single statement.

        The lock flag is derived from the incremented value inside the same
        UPDATE, so concurrent failures cannot lose an increment.
        """
        with self._db.transaction() as conn:
            result = conn.execute(
                """
                UPDATE users
                SET login_attempts = login_attempts + 1,
                    account_locked = CASE
                        WHEN login_attempts + 1 >= ? THEN 1
                        ELSE account_locked
                    END
                WHERE user_id = ?
                """,
                (max_attempts, user_id),
            )
            if result.rowcount == 0:
                raise PersistenceError(f"User with ID '{user_id}' not found")

            row = conn.execute(
                "SELECT login_attempts, account_locked FROM users WHERE user_id = ?",
                (user_id,),
            ).fetchone()

        return LockState(row["login_attempts"], bool(row["account_locked"]))

    def record_successful_login(self, user_id: int, when: datetime, max_attempts: int) -> bool:
        with self._db.transaction() as conn:
            result = conn.execute(
                """
                UPDATE users
                SET login_attempts = 0, account_locked = 0, last_login = ?
                WHERE user_id = ? AND account_locked = 0 AND login_attempts < ?
                """,
                (when.isoformat(), user_id, max_attempts),
            )
            return result.rowcount == 1

    def update_password_hash(self, user_id: int, password_hash: str) -> None:
        with self._db.transaction() as conn:
            result = conn.execute(
                "UPDATE users SET password_hash = ? WHERE user_id = ?",
                (password_hash, user_id),
            )
            if result.rowcount == 0:
                raise PersistenceError(f"User with ID '{user_id}' not found")

    def unlock_user(self, username: str) -> bool:
        """Clear the lock and counter. Returns False if no such user."""
        with self._db.transaction() as conn:
            result = conn.execute(
                "UPDATE users SET login_attempts = 0, account_locked = 0 WHERE username = ?",
                (username,),
            )
            return result.rowcount > 0

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
        """Insert the minimal employee row a user account hangs off."""
        try:
            with self._db.transaction() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO employees (employee_code, first_name, last_name, email,
                                           location_id, department_id, position)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (employee_code, first_name, last_name, email,
                     location_id, department_id, position),
                )
                return cur.lastrowid
        except PersistenceError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
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
        """
        Create a user account for an existing employee.

        Raises:
            UserExistsError: If the username or employee already has an account
        """
        try:
            with self._db.transaction() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO users (employee_id, username, password_hash, role, status)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (employee_id, username, password_hash, role, status),
                )
                return cur.lastrowid
        except PersistenceError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise UserExistsError(f"User '{username}' already exists") from e
            raise


class SQLiteAuditSink:
    """Append-only writer for the system_logs table."""

    __slots__ = ("_db",)

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def append(self, event: AuditEvent) -> None:
        try:
            with self._db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO system_logs (user_id, action, module, description,
                                             ip_address, user_agent, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        event.user_id,
                        event.action,
                        event.module,
                        event.description,
                        event.ip_address,
                        event.user_agent,
                        event.created_at.isoformat(),
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
        """Read back events, oldest first (read-only)."""
        clauses = []
        params: list = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if action is not None:
            clauses.append("action = ?")
            params.append(action)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        with self._db.transaction() as conn:
            rows = conn.execute(
                f"SELECT * FROM system_logs {where} ORDER BY log_id ASC LIMIT ?",
                params,
            ).fetchall()

        return [
            AuditEvent(
                user_id=row["user_id"],
                action=row["action"],
                module=row["module"],
                description=row["description"] or "",
                ip_address=row["ip_address"],
                user_agent=row["user_agent"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]


class SQLiteSessionStore:
    """Server-side sessions; only token hashes are stored."""

    __slots__ = ("_db",)

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def save_session(
        self,
        token_hash: str,
        session: Session,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO sessions (
                    token_hash, user_id, role, location_id, context,
                    login_time, last_activity, ip_address, user_agent
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    token_hash,
                    session.user_id,
                    session.role,
                    session.location_id,
                    json.dumps(session.context()),
                    session.login_time.isoformat(),
                    session.last_activity.isoformat(),
                    ip_address,
                    user_agent,
                ),
            )

    def load_session(self, token_hash: str) -> Optional[Session]:
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE token_hash = ?",
                (token_hash,),
            ).fetchone()

        if not row:
            return None

        data = json.loads(row["context"])
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
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE sessions SET last_activity = ? WHERE token_hash = ?",
                (last_activity.isoformat(), token_hash),
            )

    def delete_session(self, token_hash: str) -> None:
        with self._db.transaction() as conn:
            conn.execute("DELETE FROM sessions WHERE token_hash = ?", (token_hash,))

    def purge_expired(self, cutoff: datetime) -> int:
        """Delete sessions idle since before cutoff. Returns rows removed."""
        with self._db.transaction() as conn:
            result = conn.execute(
                "DELETE FROM sessions WHERE last_activity < ?",
                (cutoff.isoformat(),),
            )
            return result.rowcount
