"""
Utils module - Input validation helpers.
"""

from loransems.utils.validators import (
    ValidationError,
    check_length,
    validate_credentials,
    validate_new_password,
    validate_new_username,
)

__all__ = [
    "ValidationError",
    "check_length",
    "validate_credentials",
    "validate_new_password",
    "validate_new_username",
]
