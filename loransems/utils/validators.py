"""
Validation Utilities
====================

Input checks for login forms and account creation, applied before the
Authenticator or the credential store sees the values.
"""

from __future__ import annotations

import re
from typing import Any, Final

from loransems.security.constants import (
    MAX_PASSWORD_LENGTH,
    MAX_USERNAME_LENGTH,
    MIN_PASSWORD_LENGTH,
    MSG_CREDENTIALS_REQUIRED,
)

MIN_USERNAME_LENGTH: Final[int] = 3

# New accounts only; existing rows may predate this rule and must still log in
_USERNAME_CHARS: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9._@-]+$")


class ValidationError(ValueError):
    """An input value was rejected. The message is safe to show the user."""


def check_length(value: str, label: str, minimum: int, maximum: int) -> str:
    """
    Bound the length of *value* and reject NUL characters and text that
    cannot be encoded as UTF-8.

    Raises:
        ValidationError: naming *label* and the violated bound
    """
    if len(value) < minimum:
        raise ValidationError(f"{label} must be at least {minimum} characters")
    if len(value) > maximum:
        raise ValidationError(f"{label} must be at most {maximum} characters")
    if "\x00" in value:
        raise ValidationError(f"{label} contains invalid characters")
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        raise ValidationError(f"{label} contains invalid characters") from None
    return value


def validate_credentials(username: Any, password: Any) -> tuple[str, str]:
    """
    Normalise and check a login form.

    The username is stripped; the password is taken verbatim. Length limits
    are the only content rule at login.

    Returns:
        (username, password)

    Raises:
        ValidationError: If either value is missing or malformed
    """
    if not isinstance(username, str) or not isinstance(password, str):
        raise ValidationError(MSG_CREDENTIALS_REQUIRED)

    username = username.strip()
    if not username or not password:
        raise ValidationError(MSG_CREDENTIALS_REQUIRED)

    check_length(username, "Username", 1, MAX_USERNAME_LENGTH)
    check_length(password, "Password", 1, MAX_PASSWORD_LENGTH)
    return username, password


def validate_new_username(username: str) -> str:
    """Strip and check a username for a new account."""
    username = check_length(username.strip(), "Username", MIN_USERNAME_LENGTH, MAX_USERNAME_LENGTH)
    if not _USERNAME_CHARS.match(username):
        raise ValidationError("Username may only contain letters, digits, '.', '_', '@' and '-'")
    return username


def validate_new_password(password: str) -> str:
    return check_length(password, "Password", MIN_PASSWORD_LENGTH, MAX_PASSWORD_LENGTH)
