"""
Lorans Medical EMS Web API
==========================
Flask request layer for authentication and session authority.

The browser cookie carries only a random session token. The Session
itself lives server-side, keyed by the token's SHA-256 hash, and is
loaded into ``flask.g`` for the duration of one request.
"""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, g, jsonify, request
from flask import session as cookie
from werkzeug.middleware.proxy_fix import ProxyFix

from loransems.core.auth.authenticator import Authenticator
from loransems.core.auth.hashing import CredentialHasher
from loransems.core.auth.roles import Role
from loransems.core.auth.session_control import (
    SessionAuthority,
    SessionState,
    generate_session_token,
    hash_session_token,
)
from loransems.core.config import EMSConfig
from loransems.db import PersistenceError, StorageBackend, open_backend
from loransems.security.audit import AuditTrail
from loransems.utils.validators import ValidationError, validate_credentials
from loransems.web.cli import register_commands
from loransems.web.guards import (
    client_info,
    current_session,
    get_services,
    location_required,
    login_required,
    role_required,
)

_TOKEN_KEY = "auth_token"
_MSG_UNAVAILABLE = "The service is temporarily unavailable. Please try again."

_log = logging.getLogger("loransems.web")


@dataclass(frozen=True)
class AuthServices:
    """Everything a request needs, built once per app."""
    config: EMSConfig
    backend: StorageBackend
    hasher: CredentialHasher
    audit: AuditTrail
    authority: SessionAuthority
    authenticator: Authenticator


def build_services(
    config: EMSConfig,
    backend: Optional[StorageBackend] = None,
    hasher: Optional[CredentialHasher] = None,
) -> AuthServices:
    security = config.security
    backend = backend or open_backend(config.database_url, config.database.sslmode)
    hasher = hasher or CredentialHasher(
        memory_cost=security.argon2_memory_cost,
        time_cost=security.argon2_time_cost,
        parallelism=security.argon2_parallelism,
    )
    audit = AuditTrail(backend.audit_sink)
    authority = SessionAuthority(audit, timeout_seconds=security.session_timeout)
    authenticator = Authenticator(
        backend.credentials,
        hasher,
        authority,
        audit,
        max_login_attempts=security.max_login_attempts,
    )
    return AuthServices(config, backend, hasher, audit, authority, authenticator)


def create_app(
    config: Optional[EMSConfig] = None,
    backend: Optional[StorageBackend] = None,
    hasher: Optional[CredentialHasher] = None,
) -> Flask:
    """
    Build the Flask application.

    Args:
        config: Configuration (loaded from the environment if omitted)
        backend: Storage backend (opened from config.database_url if omitted)
        hasher: Password hasher (built from config.security if omitted)
    """
    config = config or EMSConfig.load()

    app = Flask(__name__)
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', secrets.token_hex(32))
    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
    if config.app.behind_proxy:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)
    app.extensions["loransems"] = build_services(config, backend, hasher)

    _register_hooks(app)
    _register_routes(app)
    register_commands(app)
    return app


# ============================================================
# SESSION LOADING
# ============================================================

def _register_hooks(app: Flask) -> None:

    @app.before_request
    def load_session():
        g.auth_token_hash = None
        g.auth_session = None

        token = cookie.get(_TOKEN_KEY)
        if not token:
            return

        token_hash = hash_session_token(token)
        stored = get_services().backend.sessions.load_session(token_hash)
        if stored is None:
            cookie.pop(_TOKEN_KEY, None)
            return

        g.auth_token_hash = token_hash
        g.auth_session = stored

    @app.after_request
    def store_session(response):
        token_hash = g.get("auth_token_hash")
        session = g.get("auth_session")
        if not token_hash or session is None:
            return response

        sessions = get_services().backend.sessions
        try:
            if session.state is SessionState.AUTHENTICATED:
                sessions.touch_session(token_hash, session.last_activity)
            else:
                sessions.delete_session(token_hash)
                cookie.pop(_TOKEN_KEY, None)
        except PersistenceError as e:
            _log.error(f"Failed to write back session state: {e}")
        return response

    @app.errorhandler(PersistenceError)
    def handle_persistence_error(e):
        _log.exception(f"Store error on {request.method} {request.path}: {e}")
        return jsonify({"error": _MSG_UNAVAILABLE}), 503


# ============================================================
# ROUTES
# ============================================================

def _register_routes(app: Flask) -> None:
    app_config = app.extensions["loransems"].config

    @app.route("/api/health")
    def health():
        return jsonify({
            "status": "healthy",
            "database": "PostgreSQL" if app_config.database.is_postgres else "SQLite",
            "timestamp": datetime.now(timezone.utc).isoformat()
        })

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            data = request.form

        try:
            username, password = validate_credentials(data.get("username"), data.get("password"))
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400

        services = get_services()
        client = client_info()
        result = services.authenticator.login(username, password, client)

        if not result.success:
            if result.error:
                return jsonify({"error": result.message}), 503
            if result.locked:
                return jsonify({"error": result.message}), 423
            return jsonify({"error": result.message}), 401

        sessions = services.backend.sessions
        previous = g.get("auth_token_hash")
        if previous:
            sessions.delete_session(previous)

        token = generate_session_token()
        token_hash = hash_session_token(token)
        sessions.save_session(token_hash, result.session, client.ip_address, client.user_agent)

        cookie.clear()
        cookie[_TOKEN_KEY] = token
        g.auth_token_hash = token_hash
        g.auth_session = result.session

        return jsonify({
            "message": result.message,
            "user": result.session.to_dict(),
        })

    @app.route("/api/auth/logout", methods=["POST"])
    def logout():
        get_services().authority.logout(current_session(), client_info())
        cookie.pop(_TOKEN_KEY, None)
        return jsonify({"message": "Logged out successfully"})

    @app.route("/api/auth/session", methods=["GET"])
    @login_required()
    def session_info():
        return jsonify({
            "authenticated": True,
            "session": current_session().to_dict(),
        })

    @app.route("/api/auth/role/<role>", methods=["GET"])
    @login_required()
    def check_role(role):
        granted = get_services().authority.has_role(current_session(), role)
        return jsonify({"role": role, "granted": granted})

    @app.route("/api/locations/<int:location_id>/access", methods=["GET"])
    @location_required("location_id")
    def location_access(location_id):
        return jsonify({"location_id": location_id, "granted": True})

    # Page-style endpoints redirect instead of answering 401/403
    @app.route("/")
    @login_required(redirect_to=app_config.app.login_url)
    def index():
        session = current_session()
        return jsonify({
            "message": f"Welcome, {session.full_name or session.username}",
            "location": session.location_name,
            "role": session.role,
        })

    @app.route("/admin")
    @role_required(
        Role.ADMIN,
        redirect_to=app_config.app.unauthorized_url,
        login_redirect=app_config.app.login_url,
    )
    def admin():
        return jsonify({"message": "Administration", "role": current_session().role})

    @app.route("/login")
    def login_page():
        return jsonify({"message": "Please log in", "endpoint": "/api/auth/login"})

    @app.route("/unauthorized")
    def unauthorized():
        return jsonify({"error": "You do not have permission to access this page"}), 403
