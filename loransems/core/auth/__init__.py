"""
Lorans EMS Authentication Module
================================

Provides authentication and session authority with:
- Argon2id password hashing (bcrypt hashes from the PHP deployment still verify)
- Brute-force lockout with an atomic attempt counter
- Sliding session expiration
- Linear role order and per-location data isolation
"""

from loransems.core.auth.hashing import (
    CredentialHasher,
    HashScheme,
)
from loransems.core.auth.roles import (
    Role,
    ROLE_LEVELS,
    compare_roles,
    role_satisfies,
    location_allowed,
)
from loransems.core.auth.session_control import (
    Session,
    SessionAuthority,
    SessionState,
    generate_session_token,
    hash_session_token,
)
from loransems.core.auth.authenticator import (
    Authenticator,
    LoginResult,
    AuthenticationError,
    AccountLockedError,
    LoginUnavailableError,
)

__all__ = [
    "CredentialHasher",
    "HashScheme",
    "Role",
    "ROLE_LEVELS",
    "compare_roles",
    "role_satisfies",
    "location_allowed",
    "Session",
    "SessionAuthority",
    "SessionState",
    "generate_session_token",
    "hash_session_token",
    "Authenticator",
    "LoginResult",
    "AuthenticationError",
    "AccountLockedError",
    "LoginUnavailableError",
]
