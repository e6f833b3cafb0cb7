from __future__ import annotations

from typing import Mapping


class AuthError(Exception):
    """Base exception for authentication and session errors."""

    code = "AUTH_ERROR"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self.args[0])


class ValidationFailedError(AuthError):
    """Raised when submitted fields fail validation."""

    code = "VALIDATION_FAILED"

    def __init__(self, errors: Mapping[str, str], message: str = "Validation failed") -> None:
        super().__init__(message)
        self.errors = dict(errors)


class InvalidCredentialsError(AuthError):
    """Raised when login credentials are incorrect."""

    code = "INVALID_CREDENTIALS"


class DuplicateAccountError(AuthError):
    """Raised when a username or email is already registered."""

    code = "DUPLICATE_ACCOUNT"


class IncorrectCurrentPasswordError(AuthError):
    """Raised when the current password does not match during a password change."""

    code = "INCORRECT_CURRENT_PASSWORD"


class InvalidOrExpiredTokenError(AuthError):
    """Raised when a password reset token is unknown, used or expired."""

    code = "INVALID_OR_EXPIRED_TOKEN"


class CsrfMismatchError(AuthError):
    """Raised when a state-changing request carries a missing or wrong CSRF token."""

    code = "CSRF_MISMATCH"


class StorageUnavailableError(AuthError):
    """Raised when the user store or session store cannot be reached."""

    code = "STORAGE_UNAVAILABLE"


class NotAuthenticatedError(AuthError):
    """Raised when an operation requires a logged-in session."""

    code = "NOT_AUTHENTICATED"


class AlreadyAuthenticatedError(AuthError):
    """Raised when a signed-in session submits a form meant for visitors."""

    code = "ALREADY_AUTHENTICATED"


class UserNotFoundError(AuthError):
    """Raised when the user behind an authenticated operation no longer exists."""

    code = "USER_NOT_FOUND"


__all__ = [
    "AlreadyAuthenticatedError",
    "AuthError",
    "CsrfMismatchError",
    "DuplicateAccountError",
    "IncorrectCurrentPasswordError",
    "InvalidCredentialsError",
    "InvalidOrExpiredTokenError",
    "NotAuthenticatedError",
    "StorageUnavailableError",
    "UserNotFoundError",
    "ValidationFailedError",
]
