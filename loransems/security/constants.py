"""
Security Constants
==================

Defaults for the authentication subsystem. Deployments override the
session and lockout values through configuration, not by editing here.
"""

from typing import Final

# Session
SESSION_TIMEOUT_SECONDS: Final[int] = 3600  # 1 hour of inactivity
SESSION_TOKEN_BYTES: Final[int] = 32

# Lockout
MAX_LOGIN_ATTEMPTS: Final[int] = 5

# Credential input limits
MAX_USERNAME_LENGTH: Final[int] = 50
MAX_PASSWORD_LENGTH: Final[int] = 128
MIN_PASSWORD_LENGTH: Final[int] = 8

# Argon2id (OWASP recommendations)
ARGON2_MEMORY_COST: Final[int] = 102400  # 100 MB in KiB
ARGON2_TIME_COST: Final[int] = 2
ARGON2_PARALLELISM: Final[int] = 4
ARGON2_HASH_LENGTH: Final[int] = 32
ARGON2_SALT_LENGTH: Final[int] = 16

# User-visible messages. Unknown user and wrong password share one message.
MSG_LOGIN_SUCCESS: Final[str] = "Login successful"
MSG_INVALID_CREDENTIALS: Final[str] = "Invalid username or password"
MSG_ACCOUNT_LOCKED: Final[str] = (
    "Account is temporarily locked due to multiple failed login attempts."
)
MSG_LOGIN_ERROR: Final[str] = "An error occurred during login. Please try again."
MSG_CREDENTIALS_REQUIRED: Final[str] = "Please enter both username and password."
