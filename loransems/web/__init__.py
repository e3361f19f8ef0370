"""
Web module - Flask request layer, guards and administration CLI.
"""

from loransems.web.app import AuthServices, build_services, create_app
from loransems.web.guards import (
    current_session,
    location_required,
    login_required,
    role_required,
)

__all__ = [
    "AuthServices",
    "build_services",
    "create_app",
    "current_session",
    "location_required",
    "login_required",
    "role_required",
]
