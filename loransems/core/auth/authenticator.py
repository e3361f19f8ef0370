"""
Authenticator
=============

Credential verification with brute-force lockout.

Login sequence:
1. Lock check on the username (any status); locked accounts are refused
   before any password comparison
2. Active user lookup joined with location and department
3. Password verification; a mismatch increments the attempt counter and
   locks the account when it reaches the limit, in one atomic update
4. On success the counter is reset, but only while the row is still
   unlocked; a Session is created and the login is audited

Unknown usernames never accumulate attempts: there is no row to count
against. They receive the same message as a wrong password.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from loransems.core.auth.hashing import CredentialHasher
from loransems.core.auth.session_control import Session, SessionAuthority
from loransems.db.base import CredentialStore, PersistenceError, UserRecord
from loransems.security.audit import AuditAction, AuditTrail, ClientInfo
from loransems.security.constants import (
    MAX_LOGIN_ATTEMPTS,
    MSG_ACCOUNT_LOCKED,
    MSG_INVALID_CREDENTIALS,
    MSG_LOGIN_ERROR,
    MSG_LOGIN_SUCCESS,
)


class AuthenticationError(Exception):
    """Raised when credentials are rejected."""
    pass


class AccountLockedError(AuthenticationError):
    """Raised when the account is locked due to failed attempts."""
    pass


class LoginUnavailableError(Exception):
    """Raised when login could not be evaluated because the store failed."""
    pass


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a login attempt, safe to show to the caller."""
    success: bool
    message: str
    user: Optional[UserRecord] = None
    session: Optional[Session] = None
    locked: bool = False
    error: bool = False

    def raise_for_failure(self) -> None:
        """Raise the matching exception if the login failed."""
        if self.success:
            return
        if self.error:
            raise LoginUnavailableError(self.message)
        if self.locked:
            raise AccountLockedError(self.message)
        raise AuthenticationError(self.message)


class Authenticator:
    """
    Verifies credentials and opens sessions.

    Usage:
        authenticator = Authenticator(store, hasher, sessions, audit_trail)
        result = authenticator.login("admin", "secret", client)
        if result.success:
            handle(result.session)
        else:
            show(result.message)

    Security Notes:
        - Store failures are logged in full and reported as one opaque message
        - The lock check fails closed: if it cannot be read, login fails
    """

    __slots__ = ("_store", "_hasher", "_sessions", "_audit", "_max_attempts", "_log")

    def __init__(
        self,
        store: CredentialStore,
        hasher: CredentialHasher,
        sessions: SessionAuthority,
        audit: AuditTrail,
        max_login_attempts: int = MAX_LOGIN_ATTEMPTS,
    ) -> None:
        if max_login_attempts < 1:
            raise ValueError("max_login_attempts must be at least 1")
        self._store = store
        self._hasher = hasher
        self._sessions = sessions
        self._audit = audit
        self._max_attempts = max_login_attempts
        self._log = logging.getLogger("loransems.auth")

    @property
    def max_login_attempts(self) -> int:
        return self._max_attempts

    def login(
        self,
        username: str,
        password: str,
        client: Optional[ClientInfo] = None,
    ) -> LoginResult:
        """
        Authenticate a user.

        Args:
            username: Non-empty username (validated by the caller)
            password: Non-empty password (validated by the caller)
            client: Origin of the request, recorded in the audit trail

        Returns:
            LoginResult carrying the user and session on success
        """
        try:
            lock_state = self._store.get_lock_state(username)
            if lock_state is not None and lock_state.is_locked(self._max_attempts):
                self._log.warning(f"Login refused for locked account: {username}")
                return LoginResult(False, MSG_ACCOUNT_LOCKED, locked=True)

            user = self._store.find_active_user(username)
            if user is None:
                self._hasher.burn(password)
                self._log.info(f"Login failed for unknown or inactive user: {username}")
                return LoginResult(False, MSG_INVALID_CREDENTIALS)

            if not self._hasher.verify(password, user.password_hash):
                state = self._store.record_failed_attempt(user.user_id, self._max_attempts)
                if state.account_locked:
                    self._log.warning(
                        f"Account locked after {state.login_attempts} failed attempts: {username}"
                    )
                else:
                    self._log.info(
                        f"Invalid password for {username} "
                        f"(attempt {state.login_attempts}/{self._max_attempts})"
                    )
                return LoginResult(False, MSG_INVALID_CREDENTIALS)

            now = datetime.now(timezone.utc)
            # Conditional on the row still being unlocked; a concurrent failure may have locked it
            if not self._store.record_successful_login(user.user_id, now, self._max_attempts):
                self._log.warning(f"Login refused, account locked during verification: {username}")
                return LoginResult(False, MSG_ACCOUNT_LOCKED, locked=True)

        except PersistenceError as e:
            self._log.exception(f"Login error for {username}: {e}")
            return LoginResult(False, MSG_LOGIN_ERROR, error=True)

        self._upgrade_hash(user, password)

        session = self._sessions.create(user, now)
        self._audit.record(
            user.user_id,
            AuditAction.LOGIN,
            "User logged in successfully",
            client=client,
        )
        self._log.info(f"User logged in: {username} (user_id={user.user_id}, role={user.role})")

        return LoginResult(True, MSG_LOGIN_SUCCESS, user=user, session=session)

    def _upgrade_hash(self, user: UserRecord, password: str) -> None:
        """Re-hash legacy or outdated hashes after a verified login."""
        if not self._hasher.needs_rehash(user.password_hash):
            return
        try:
            self._store.update_password_hash(user.user_id, self._hasher.hash(password))
            self._log.info(f"Password hash upgraded for user_id={user.user_id}")
        except PersistenceError as e:
            self._log.error(f"Password hash upgrade failed for user_id={user.user_id}: {e}")
