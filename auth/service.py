from __future__ import annotations

from typing import Mapping

from auth.constants import EMAIL_MAX_LENGTH, MIN_PASSWORD_LENGTH, USERNAME_MAX_LENGTH
from auth.exceptions import (
    DuplicateAccountError,
    IncorrectCurrentPasswordError,
    InvalidCredentialsError,
    NotAuthenticatedError,
    UserNotFoundError,
    ValidationFailedError,
)
from auth.models import SessionState, User, is_valid_email
from auth.security import Argon2PasswordHasher
from auth.session import SessionStore
from auth.storage import PROFILE_FIELDS, UserRepository, storage_guard
from common.logging import get_logger

logger = get_logger("auth.service")

_INVALID_CREDENTIALS = "Invalid username/email or password"


def _require(**fields: str | None) -> None:
    missing = {name: "This field is required" for name, value in fields.items() if not value}
    if missing:
        raise ValidationFailedError(missing, message="All fields are required")


def _check_column_limits(fields: Mapping[str, str]) -> None:
    # Mirrors the VARCHAR sizes of the users table.
    limits = {"username": USERNAME_MAX_LENGTH, "email": EMAIL_MAX_LENGTH}
    errors = {
        name: f"{name.capitalize()} must not exceed {limits[name]} characters"
        for name, value in fields.items()
        if name in limits and len(value) > limits[name]
    }
    if errors:
        raise ValidationFailedError(errors)


class AuthService:
    """Domain service orchestrating registration, login, and session management."""

    def __init__(
        self,
        user_repository: UserRepository,
        session_store: SessionStore,
        password_hasher: Argon2PasswordHasher | None = None,
    ) -> None:
        self._user_repository = user_repository
        self._session_store = session_store
        self._password_hasher = password_hasher or Argon2PasswordHasher()

    async def register(self, username: str, email: str, password: str) -> User:
        _require(username=username, email=email, password=password)
        if not is_valid_email(email):
            raise ValidationFailedError({"email": "Invalid email format"})
        _check_column_limits({"username": username, "email": email})
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailedError(
                {"password": f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"}
            )

        async with storage_guard("register"):
            existing = await self._user_repository.find_by_username_or_email(username, email)
            if existing is not None:
                logger.info("Duplicate registration rejected", extra={"event": "auth.register.duplicate"})
                raise DuplicateAccountError("Username or email already exists")

            password_hash = self._password_hasher.hash(password)
            user = await self._user_repository.insert(username, email, password_hash)

        logger.info(
            "User registered",
            extra={"event": "auth.register.created", "context": {"user_id": user.id}},
        )
        return user

    async def login(self, session: SessionState, identifier: str, password: str) -> User:
        """Authenticate and promote ``session``.

        The session id is regenerated before returning; read the new id from
        ``session.session_id``.
        """
        if not identifier or not password:
            raise InvalidCredentialsError(_INVALID_CREDENTIALS)

        async with storage_guard("login"):
            if is_valid_email(identifier):
                user = await self._user_repository.find_by_email(identifier)
            else:
                user = await self._user_repository.find_by_username(identifier)

        if user is None:
            self._password_hasher.verify_dummy(password)
            self._log_failed_login()
            raise InvalidCredentialsError(_INVALID_CREDENTIALS)
        if not self._password_hasher.verify(password, user.password_hash):
            self._log_failed_login()
            raise InvalidCredentialsError(_INVALID_CREDENTIALS)

        async with storage_guard("login"):
            if self._password_hasher.needs_rehash(user.password_hash):
                user.password_hash = self._password_hasher.hash(password)
                await self._user_repository.update_password(user.id, user.password_hash)

            session.user_id = user.id
            session.username = user.username
            session.email = user.email
            await self._session_store.regenerate(session)

        logger.info(
            "User logged in",
            extra={"event": "auth.login.succeeded", "context": {"user_id": user.id}},
        )
        return user

    async def logout(self, session: SessionState) -> None:
        async with storage_guard("logout"):
            await self._session_store.destroy(session.session_id)
        if session.user_id is not None:
            logger.info(
                "User logged out",
                extra={"event": "auth.logout", "context": {"user_id": session.user_id}},
            )

    async def current_user(self, session: SessionState) -> User:
        if session.user_id is None:
            raise NotAuthenticatedError("You must be logged in to access that page")
        async with storage_guard("current_user"):
            user = await self._user_repository.find_by_id(session.user_id)
        if user is None:
            raise NotAuthenticatedError("You must be logged in to access that page")
        return user

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        _require(user_id=user_id, current_password=current_password, new_password=new_password)
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailedError(
                {"new_password": f"New password must be at least {MIN_PASSWORD_LENGTH} characters long"}
            )

        async with storage_guard("change_password"):
            user = await self._user_repository.find_by_id(user_id)
            if user is None:
                raise UserNotFoundError("User not found")
            if not self._password_hasher.verify(current_password, user.password_hash):
                logger.info(
                    "Password change rejected",
                    extra={"event": "auth.password.incorrect_current", "context": {"user_id": user_id}},
                )
                raise IncorrectCurrentPasswordError("Current password is incorrect")

            await self._user_repository.update_password(user_id, self._password_hasher.hash(new_password))

        logger.info(
            "Password changed",
            extra={"event": "auth.password.changed", "context": {"user_id": user_id}},
        )

    async def update_profile(
        self,
        user_id: str,
        fields: Mapping[str, str | None],
        session: SessionState | None = None,
    ) -> User:
        if not user_id:
            raise ValidationFailedError({}, message="Invalid user ID or data")
        changes = {name: value for name, value in fields.items() if name in PROFILE_FIELDS and value}
        if not changes:
            raise ValidationFailedError({}, message="No fields to update")
        if "email" in changes and not is_valid_email(changes["email"]):
            raise ValidationFailedError({"email": "Invalid email format"})
        _check_column_limits(changes)

        async with storage_guard("update_profile"):
            user = await self._user_repository.update_fields(user_id, changes)
            if user is None:
                raise UserNotFoundError("User not found")

            if session is not None and session.user_id == user_id:
                session.username = user.username
                session.email = user.email
                await self._session_store.save(session)

        logger.info(
            "Profile updated",
            extra={
                "event": "auth.profile.updated",
                "context": {"user_id": user_id, "fields": sorted(changes)},
            },
        )
        return user

    @staticmethod
    def _log_failed_login() -> None:
        logger.info("Login rejected", extra={"event": "auth.login.failed"})


__all__ = ["AuthService"]
