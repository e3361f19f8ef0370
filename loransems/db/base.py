"""
Persistence Contract
====================

Records and protocols shared by the credential, audit and session stores.

The relational schema is owned by the backends (SQLite, PostgreSQL); this
module only describes what the authentication layer reads and writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from loransems.core.auth.session_control import Session


class PersistenceError(Exception):
    """Raised when the store is unreachable or a query fails."""
    pass


class UserExistsError(Exception):
    """Raised when creating a user or employee that already exists."""
    pass


class UserStatus(Enum):
    """Account status column values."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


@dataclass(frozen=True)
class LockState:
    """Lockout counters of a single user row."""
    login_attempts: int
    account_locked: bool

    def is_locked(self, max_attempts: int) -> bool:
        """A locked flag or an exhausted counter both block login."""
        return self.account_locked or self.login_attempts >= max_attempts


@dataclass(frozen=True)
class UserRecord:
    """
    A user row joined with its employee, location and department.

    Note: password_hash is never exposed in repr.
    """
    user_id: int
    employee_id: int
    username: str
    password_hash: str
    role: str
    login_attempts: int = 0
    account_locked: bool = False
    last_login: Optional[datetime] = None
    status: str = UserStatus.ACTIVE.value
    first_name: str = ""
    last_name: str = ""
    employee_code: str = ""
    position: str = ""
    location_id: Optional[int] = None
    location_name: str = ""
    location_code: str = ""
    department_id: Optional[int] = None
    department_name: str = ""

    def __repr__(self) -> str:
        return (
            f"UserRecord(user_id={self.user_id!r}, username={self.username!r}, "
            f"role={self.role!r}, location_id={self.location_id!r}, status={self.status!r})"
        )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def lock_state(self) -> LockState:
        return LockState(self.login_attempts, self.account_locked)


class CredentialStore(Protocol):
    """Reads and mutates user credentials and lockout counters."""

    def get_lock_state(self, username: str) -> Optional[LockState]:
        """Lock counters for a username regardless of account status."""
        ...

    def find_active_user(self, username: str) -> Optional[UserRecord]:
        """An active user joined with location and department, or None."""
        ...

    def record_failed_attempt(self, user_id: int, max_attempts: int) -> LockState:
        """Atomically increment the counter and lock once it reaches max_attempts."""
        ...

    def record_successful_login(self, user_id: int, when: datetime, max_attempts: int) -> bool:
        """
        Reset the counter and stamp last_login, unless the row is locked.

        Returns False, writing nothing, when the account was locked (or hit
        max_attempts) after the caller last read it.
        """
        ...

    def update_password_hash(self, user_id: int, password_hash: str) -> None:
        ...


class SessionStore(Protocol):
    """Server-side session persistence keyed by token hash."""

    def save_session(
        self,
        token_hash: str,
        session: "Session",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        ...

    def load_session(self, token_hash: str) -> Optional["Session"]:
        ...

    def touch_session(self, token_hash: str, last_activity: datetime) -> None:
        ...

    def delete_session(self, token_hash: str) -> None:
        ...

    def purge_expired(self, cutoff: datetime) -> int:
        ...
