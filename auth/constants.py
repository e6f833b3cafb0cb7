from __future__ import annotations

from datetime import timedelta
from typing import Final

SESSION_COOKIE_NAME: Final[str] = "arcade_session"
CSRF_HEADER_NAME: Final[str] = "X-CSRF-Token"
CSRF_FIELD_NAME: Final[str] = "csrf_token"

MIN_PASSWORD_LENGTH: Final[int] = 8
USERNAME_MIN_LENGTH: Final[int] = 3
USERNAME_MAX_LENGTH: Final[int] = 50
EMAIL_MAX_LENGTH: Final[int] = 100

RESET_TOKEN_TTL: Final[timedelta] = timedelta(hours=24)
TOKEN_BYTES: Final[int] = 32

__all__ = [
    "CSRF_FIELD_NAME",
    "CSRF_HEADER_NAME",
    "EMAIL_MAX_LENGTH",
    "MIN_PASSWORD_LENGTH",
    "RESET_TOKEN_TTL",
    "SESSION_COOKIE_NAME",
    "TOKEN_BYTES",
    "USERNAME_MAX_LENGTH",
    "USERNAME_MIN_LENGTH",
]
