"""
Session Control
================

Session authority for authenticated requests.

A Session is an explicit object owned by the request that loaded it. The
SessionAuthority never keeps per-user state of its own; every query takes
the session it is about.

Security Features:
- Sliding idle timeout, re-evaluated on every check
- Expiry detected lazily when the next request arrives
- Logout and expiry are terminal; only a fresh login authenticates again
- Cryptographically random session tokens, stored only as hashes
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, TYPE_CHECKING

from loransems.core.auth.roles import Role, location_allowed, role_satisfies
from loransems.security.audit import AuditAction, AuditTrail, ClientInfo
from loransems.security.constants import SESSION_TIMEOUT_SECONDS, SESSION_TOKEN_BYTES

if TYPE_CHECKING:
    from loransems.db.base import UserRecord


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_token() -> str:
    """Generate a cryptographically secure session token."""
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)


def hash_session_token(token: str) -> str:
    """
    Hash a session token for storage.

    SHA-256 keeps lookups fast while the database never holds a token
    that could be replayed.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SessionState(Enum):
    """Lifecycle of a session."""
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    LOGGED_OUT = "logged_out"


_TERMINAL_STATES = frozenset({SessionState.EXPIRED, SessionState.LOGGED_OUT})


@dataclass
class Session:
    """
    The authenticated principal of one request.

    Role, location and department are resolved at login so authorization
    checks never go back to the store.
    """
    state: SessionState = SessionState.ANONYMOUS
    user_id: Optional[int] = None
    employee_id: Optional[int] = None
    username: Optional[str] = None
    role: Optional[str] = None
    full_name: str = ""
    employee_code: str = ""
    position: str = ""
    location_id: Optional[int] = None
    location_name: str = ""
    location_code: str = ""
    department_id: Optional[int] = None
    department_name: str = ""
    login_time: Optional[datetime] = None
    last_activity: Optional[datetime] = None

    def __repr__(self) -> str:
        return (
            f"Session(state={self.state.value}, user_id={self.user_id!r}, "
            f"role={self.role!r}, location_id={self.location_id!r})"
        )

    @classmethod
    def anonymous(cls) -> "Session":
        return cls()

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL_STATES

    def clear(self, state: SessionState) -> None:
        """Drop the principal and move to a terminal state."""
        for f in fields(self):
            if f.name != "state":
                setattr(self, f.name, f.default)
        self.state = state

    def context(self) -> dict[str, Any]:
        """Display attributes that do not drive authorization."""
        return {
            "employee_id": self.employee_id,
            "username": self.username,
            "full_name": self.full_name,
            "employee_code": self.employee_code,
            "position": self.position,
            "location_name": self.location_name,
            "location_code": self.location_code,
            "department_id": self.department_id,
            "department_name": self.department_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        """Rebuild a session persisted with to_dict (or from a store row)."""
        def _when(value: Any) -> Optional[datetime]:
            if value is None or isinstance(value, datetime):
                return value
            return datetime.fromisoformat(value)

        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["state"] = SessionState(data.get("state", SessionState.AUTHENTICATED.value))
        values["login_time"] = _when(data.get("login_time"))
        values["last_activity"] = _when(data.get("last_activity"))
        for key in ("full_name", "employee_code", "position",
                    "location_name", "location_code", "department_name"):
            if values.get(key) is None:
                values[key] = ""
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "state": self.state.value,
            "user_id": self.user_id,
            "role": self.role,
            "location_id": self.location_id,
            "login_time": self.login_time.isoformat() if self.login_time else None,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
        }
        data.update(self.context())
        return data


class SessionAuthority:
    """
    Sliding-expiration session checks and authorization queries.

    Usage:
        authority = SessionAuthority(audit_trail, timeout_seconds=3600)

        session = authority.create(user)
        if authority.require_login(session):
            if authority.can_access_location(session, location_id):
                ...
        authority.logout(session, client)
    """

    __slots__ = ("_audit", "_timeout_seconds", "_log")

    def __init__(
        self,
        audit: AuditTrail,
        timeout_seconds: int = SESSION_TIMEOUT_SECONDS,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._audit = audit
        self._timeout_seconds = timeout_seconds
        self._log = logging.getLogger("loransems.session")

    @property
    def timeout_seconds(self) -> int:
        return self._timeout_seconds

    def create(self, user: UserRecord, now: Optional[datetime] = None) -> Session:
        """Open an authenticated session for a verified user."""
        now = now or _utcnow()
        return Session(
            state=SessionState.AUTHENTICATED,
            user_id=user.user_id,
            employee_id=user.employee_id,
            username=user.username,
            role=user.role,
            full_name=user.full_name,
            employee_code=user.employee_code,
            position=user.position,
            location_id=user.location_id,
            location_name=user.location_name,
            location_code=user.location_code,
            department_id=user.department_id,
            department_name=user.department_name,
            login_time=now,
            last_activity=now,
        )

    def is_logged_in(self, session: Optional[Session]) -> bool:
        return (
            session is not None
            and session.state is SessionState.AUTHENTICATED
            and session.user_id is not None
            and session.login_time is not None
        )

    def check_timeout(self, session: Session, now: Optional[datetime] = None) -> bool:
        """
        Expire an idle session or extend an active one.

        Returns:
            False if the session was idle longer than the timeout (it is
            cleared), True otherwise (last_activity is advanced to now)
        """
        now = now or _utcnow()

        if session.last_activity is not None:
            idle = (now - session.last_activity).total_seconds()
            if idle > self._timeout_seconds:
                self._log.info(
                    f"Session expired for user_id={session.user_id} after {int(idle)}s idle"
                )
                session.clear(SessionState.EXPIRED)
                return False

        session.last_activity = now
        return True

    def require_login(self, session: Optional[Session], now: Optional[datetime] = None) -> bool:
        return self.is_logged_in(session) and self.check_timeout(session, now)

    def require_role(
        self,
        session: Optional[Session],
        required: Role | str,
        now: Optional[datetime] = None,
    ) -> bool:
        return self.require_login(session, now) and self.has_role(session, required)

    def has_role(self, session: Optional[Session], required: Role | str) -> bool:
        if not self.is_logged_in(session):
            return False
        return role_satisfies(session.role, required)

    def can_access_location(self, session: Optional[Session], location_id: Optional[int]) -> bool:
        if not self.is_logged_in(session):
            return False
        return location_allowed(session.role, session.location_id, location_id)

    def logout(self, session: Optional[Session], client: Optional[ClientInfo] = None) -> None:
        """
        End a session.

        Only a session with a principal is audited and cleared; logging out
        an anonymous session does nothing.
        """
        if session is None:
            return

        if session.user_id is not None:
            self._audit.record(
                session.user_id,
                AuditAction.LOGOUT,
                "User logged out",
                client=client,
            )
            self._log.info(f"User logged out: user_id={session.user_id}")
            session.clear(SessionState.LOGGED_OUT)
