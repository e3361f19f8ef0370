"""
Request Guards
==============

Decorators that protect Flask views with the session authority.

Each guard runs the sliding-timeout check on the request's Session before
it answers, so an idle session is expired by the first guarded request
that sees it.
"""

from __future__ import annotations

from functools import wraps
from typing import Callable, Optional, TYPE_CHECKING

from flask import current_app, g, jsonify, redirect, request

from loransems.core.auth.roles import Role
from loransems.core.auth.session_control import Session, SessionState
from loransems.security.audit import ClientInfo

if TYPE_CHECKING:
    from loransems.web.app import AuthServices


def get_services() -> AuthServices:
    """The authentication services bound to the current app."""
    return current_app.extensions["loransems"]


def current_session() -> Session:
    """The Session loaded for this request (anonymous if none)."""
    session = g.get("auth_session")
    if session is None:
        session = Session.anonymous()
        g.auth_session = session
    return session


def client_info() -> ClientInfo:
    return ClientInfo(
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )


def _unauthenticated(session: Session, redirect_to: Optional[str]):
    if redirect_to:
        return redirect(redirect_to)
    if session.state is SessionState.EXPIRED:
        return jsonify({"error": "Session expired"}), 401
    return jsonify({"error": "Authentication required"}), 401


def login_required(redirect_to: Optional[str] = None) -> Callable:
    """
    Require an authenticated, non-idle session.

    Args:
        redirect_to: URL to redirect to instead of answering 401
    """
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            session = current_session()
            if not get_services().authority.require_login(session):
                return _unauthenticated(session, redirect_to)
            return f(*args, **kwargs)
        return wrapper
    return decorator


def role_required(
    role: Role | str,
    redirect_to: Optional[str] = None,
    login_redirect: Optional[str] = None,
) -> Callable:
    """
    Require a session whose role is at least ``role``.

    Args:
        role: Minimum role in the linear order
        redirect_to: URL for an insufficient role instead of answering 403
        login_redirect: URL for a missing session instead of answering 401
    """
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            session = current_session()
            authority = get_services().authority
            if not authority.require_login(session):
                return _unauthenticated(session, login_redirect)
            if not authority.has_role(session, role):
                if redirect_to:
                    return redirect(redirect_to)
                return jsonify({"error": "Insufficient permissions"}), 403
            return f(*args, **kwargs)
        return wrapper
    return decorator


def location_required(arg: str = "location_id") -> Callable:
    """
    Require access to the location named by the view argument ``arg``.

    Admins reach every location; everyone else only their own.
    """
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            session = current_session()
            authority = get_services().authority
            if not authority.require_login(session):
                return _unauthenticated(session, None)
            if not authority.can_access_location(session, kwargs.get(arg)):
                return jsonify({"error": "Access denied for this location", "granted": False}), 403
            return f(*args, **kwargs)
        return wrapper
    return decorator
