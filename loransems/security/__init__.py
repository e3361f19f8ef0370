"""
Security module - Audit trail and security constants.

Security Considerations:
- Audit writes never block or alter an authentication outcome
- Identical user-visible messages for unknown users and wrong passwords
- Fail-closed lockout checks
"""

from loransems.security.constants import (
    MAX_LOGIN_ATTEMPTS,
    SESSION_TIMEOUT_SECONDS,
    MSG_ACCOUNT_LOCKED,
    MSG_INVALID_CREDENTIALS,
    MSG_LOGIN_ERROR,
)
from loransems.security.audit import (
    AuditAction,
    AuditError,
    AuditEvent,
    AuditSink,
    AuditTrail,
    ClientInfo,
)

__all__ = [
    # Constants
    "MAX_LOGIN_ATTEMPTS",
    "SESSION_TIMEOUT_SECONDS",
    "MSG_ACCOUNT_LOCKED",
    "MSG_INVALID_CREDENTIALS",
    "MSG_LOGIN_ERROR",
    # Audit
    "AuditAction",
    "AuditError",
    "AuditEvent",
    "AuditSink",
    "AuditTrail",
    "ClientInfo",
]
