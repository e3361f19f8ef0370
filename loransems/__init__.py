"""
Lorans Medical EMS - Authentication & Session Authority
========================================================

Credential verification, brute-force lockout, sliding session expiration
and role/location authorization for the Lorans Medical employee
management system.

Security Notice:
- No passwords, hashes or session tokens are logged
- Fail-closed lockout checks
- Store failures surface as one opaque message
"""

from loransems.core.config import EMSConfig
from loransems.core.logging import configure_logging

__version__ = "1.0.0"
__author__ = "Lorans Medical EMS Team"

__all__ = ["EMSConfig", "configure_logging", "__version__"]
