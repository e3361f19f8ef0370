"""
Audit Trail
===========

Append-only record of security-relevant events (``system_logs``).

Writing an audit record is best-effort: a failing sink is logged locally
and never alters the outcome of the operation being audited.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol


class AuditAction(Enum):
    """Actions written by the authentication subsystem."""
    LOGIN = "login"
    LOGOUT = "logout"


AUTH_MODULE = "authentication"


@dataclass(frozen=True)
class ClientInfo:
    """Origin of the current request."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class AuditEvent:
    """An immutable system_logs entry."""
    user_id: Optional[int]
    action: str
    module: str
    description: str = ""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "action": self.action,
            "module": self.module,
            "description": self.description,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": self.created_at.isoformat(),
        }


class AuditError(Exception):
    """Raised by a sink when an event cannot be written."""
    pass


class AuditSink(Protocol):
    """Append-only destination for audit events."""

    def append(self, event: AuditEvent) -> None:
        ...


class AuditTrail:
    """
    Best-effort front end for an AuditSink.

    Usage:
        trail = AuditTrail(SQLiteAuditSink(database))
        trail.record(user.user_id, AuditAction.LOGIN, "User logged in successfully")
    """

    __slots__ = ("_sink", "_log")

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink
        self._log = logging.getLogger("loransems.audit")

    @property
    def sink(self) -> AuditSink:
        return self._sink

    def record(
        self,
        user_id: Optional[int],
        action: AuditAction | str,
        description: str,
        module: str = AUTH_MODULE,
        client: Optional[ClientInfo] = None,
    ) -> bool:
        """
        Append an audit event.

        Returns:
            True if the sink accepted the event, False if it failed
        """
        client = client or ClientInfo()
        event = AuditEvent(
            user_id=user_id,
            action=action.value if isinstance(action, AuditAction) else action,
            module=module,
            description=description,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )

        try:
            self._sink.append(event)
        except Exception as e:
            self._log.error(
                f"Audit write failed for action={event.action} user_id={user_id}: {e}"
            )
            return False

        return True
