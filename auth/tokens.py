from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

from auth.constants import MIN_PASSWORD_LENGTH, RESET_TOKEN_TTL
from auth.exceptions import InvalidOrExpiredTokenError, ValidationFailedError
from auth.models import is_valid_email
from auth.security import Argon2PasswordHasher, generate_token
from auth.storage import UserRepository, storage_guard
from common.logging import get_logger

logger = get_logger("auth.tokens")


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class PasswordResetService:
    """Issues and redeems single-use password reset tokens."""

    def __init__(
        self,
        user_repository: UserRepository,
        password_hasher: Argon2PasswordHasher | None = None,
        *,
        ttl: timedelta = RESET_TOKEN_TTL,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._user_repository = user_repository
        self._password_hasher = password_hasher or Argon2PasswordHasher()
        self._ttl = ttl
        self._clock = clock or _utcnow

    async def issue(self, email: str) -> str | None:
        """Issue a token for ``email``.

        Returns None, without persisting anything, when no account uses the
        address. Callers must present both outcomes identically.
        """
        if not is_valid_email(email):
            raise ValidationFailedError({"email": "Invalid email address"})

        token = generate_token()
        expires_at = self._clock() + self._ttl
        async with storage_guard("reset.issue"):
            stored = await self._user_repository.set_reset_token(email, token, expires_at)

        logger.info(
            "Password reset requested",
            extra={"event": "auth.reset.requested", "context": {"matched": stored}},
        )
        return token if stored else None

    async def peek(self, token: str) -> bool:
        if not token:
            return False
        async with storage_guard("reset.peek"):
            user = await self._user_repository.find_by_valid_reset_token(token, self._clock())
        return user is not None

    async def redeem(self, token: str, new_password: str) -> None:
        if not token:
            raise InvalidOrExpiredTokenError("Invalid or expired reset token")
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationFailedError(
                {"new_password": f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"}
            )

        password_hash = self._password_hasher.hash(new_password)
        async with storage_guard("reset.redeem"):
            user = await self._user_repository.consume_reset_token(token, password_hash, self._clock())

        if user is None:
            logger.info("Reset token rejected", extra={"event": "auth.reset.rejected"})
            raise InvalidOrExpiredTokenError("Invalid or expired reset token")

        logger.info(
            "Password reset completed",
            extra={"event": "auth.reset.completed", "context": {"user_id": user.id}},
        )


__all__ = ["PasswordResetService"]
