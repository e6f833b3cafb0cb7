from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Mapping, Protocol

import asyncpg
from redis.exceptions import RedisError

from auth.exceptions import DuplicateAccountError, StorageUnavailableError
from auth.models import User
from common.logging import get_logger

logger = get_logger("auth.storage")

# Infrastructure failures that must never reach a caller with their detail.
STORAGE_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    RedisError,
    OSError,
    asyncio.TimeoutError,
)

PROFILE_FIELDS = frozenset({"username", "email"})


@asynccontextmanager
async def storage_guard(operation: str) -> AsyncIterator[None]:
    """Translate infrastructure errors into ``StorageUnavailableError``."""
    try:
        yield
    except STORAGE_ERRORS as exc:
        logger.error(
            "Storage operation failed",
            exc_info=exc,
            extra={"event": "auth.storage.unavailable", "context": {"operation": operation}},
        )
        raise StorageUnavailableError("Service temporarily unavailable. Please try again later.") from exc


class SupportsAcquire(Protocol):
    def acquire(self) -> Any:
        ...


class UserRepository(ABC):
    """Abstract repository interface for user records."""

    @abstractmethod
    async def find_by_username_or_email(self, username: str, email: str) -> User | None:
        ...

    @abstractmethod
    async def find_by_username(self, username: str) -> User | None:
        ...

    @abstractmethod
    async def find_by_email(self, email: str) -> User | None:
        ...

    @abstractmethod
    async def find_by_id(self, user_id: str) -> User | None:
        ...

    @abstractmethod
    async def insert(self, username: str, email: str, password_hash: str) -> User:
        ...

    @abstractmethod
    async def update_fields(self, user_id: str, fields: Mapping[str, str]) -> User | None:
        ...

    @abstractmethod
    async def update_password(self, user_id: str, password_hash: str) -> None:
        ...

    @abstractmethod
    async def set_reset_token(self, email: str, token: str, expires_at: datetime) -> bool:
        """Store a pending reset for ``email``; False when no user has it."""

    @abstractmethod
    async def find_by_valid_reset_token(self, token: str, now: datetime) -> User | None:
        ...

    @abstractmethod
    async def clear_reset_token(self, user_id: str) -> None:
        ...

    @abstractmethod
    async def consume_reset_token(self, token: str, password_hash: str, now: datetime) -> User | None:
        """Replace the password and clear a still-valid token in one step."""


def _aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_user(row: Mapping[str, Any]) -> User:
    return User(
        id=str(row["id"]),
        username=row["username"],
        email=row["email"],
        password_hash=row["password_hash"],
        created_at=_aware(row["created_at"]),
        reset_token=row["reset_token"],
        reset_token_expires_at=_aware(row["reset_token_expires_at"]),
    )


@dataclass(slots=True)
class PostgresUserRepository(UserRepository):
    pool: SupportsAcquire
    schema: str = "public"

    @property
    def _columns(self) -> str:
        return "id, username, email, password_hash, reset_token, reset_token_expires_at, created_at"

    async def _fetch_one(self, query: str, *args: Any) -> User | None:
        async with self.pool.acquire() as conn:  # type: ignore[attr-defined]
            row = await conn.fetchrow(query, *args)
        return _row_to_user(row) if row is not None else None

    async def find_by_username_or_email(self, username: str, email: str) -> User | None:
        query = f"""
        SELECT {self._columns}
        FROM {self.schema}.users
        WHERE username = $1 OR email = $2
        LIMIT 1
        """
        return await self._fetch_one(query, username, email)

    async def find_by_username(self, username: str) -> User | None:
        query = f"SELECT {self._columns} FROM {self.schema}.users WHERE username = $1"
        return await self._fetch_one(query, username)

    async def find_by_email(self, email: str) -> User | None:
        query = f"SELECT {self._columns} FROM {self.schema}.users WHERE email = $1"
        return await self._fetch_one(query, email)

    async def find_by_id(self, user_id: str) -> User | None:
        query = f"SELECT {self._columns} FROM {self.schema}.users WHERE id = $1::uuid"
        try:
            return await self._fetch_one(query, user_id)
        except asyncpg.DataError:
            return None

    async def insert(self, username: str, email: str, password_hash: str) -> User:
        query = f"""
        INSERT INTO {self.schema}.users (username, email, password_hash)
        VALUES ($1, $2, $3)
        RETURNING {self._columns}
        """
        async with self.pool.acquire() as conn:  # type: ignore[attr-defined]
            try:
                row = await conn.fetchrow(query, username, email, password_hash)
            except asyncpg.UniqueViolationError as exc:
                raise DuplicateAccountError("Username or email already exists") from exc
        return _row_to_user(row)

    async def update_fields(self, user_id: str, fields: Mapping[str, str]) -> User | None:
        unknown = set(fields) - PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported user fields: {sorted(unknown)}")
        if not fields:
            return await self.find_by_id(user_id)

        names = sorted(fields)
        assignments = ", ".join(f"{name} = ${index}" for index, name in enumerate(names, start=2))
        query = f"""
        UPDATE {self.schema}.users
        SET {assignments}, updated_at = NOW()
        WHERE id = $1::uuid
        RETURNING {self._columns}
        """
        try:
            return await self._fetch_one(query, user_id, *(fields[name] for name in names))
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateAccountError("Username or email already exists") from exc

    async def update_password(self, user_id: str, password_hash: str) -> None:
        query = f"""
        UPDATE {self.schema}.users
        SET password_hash = $2, updated_at = NOW()
        WHERE id = $1::uuid
        """
        async with self.pool.acquire() as conn:  # type: ignore[attr-defined]
            await conn.execute(query, user_id, password_hash)

    async def set_reset_token(self, email: str, token: str, expires_at: datetime) -> bool:
        query = f"""
        UPDATE {self.schema}.users
        SET reset_token = $2, reset_token_expires_at = $3, updated_at = NOW()
        WHERE email = $1
        """
        async with self.pool.acquire() as conn:  # type: ignore[attr-defined]
            status = await conn.execute(query, email, token, expires_at)
        return status.split()[-1] != "0"

    async def find_by_valid_reset_token(self, token: str, now: datetime) -> User | None:
        query = f"""
        SELECT {self._columns}
        FROM {self.schema}.users
        WHERE reset_token = $1 AND reset_token_expires_at > $2
        """
        return await self._fetch_one(query, token, now)

    async def clear_reset_token(self, user_id: str) -> None:
        query = f"""
        UPDATE {self.schema}.users
        SET reset_token = NULL, reset_token_expires_at = NULL, updated_at = NOW()
        WHERE id = $1::uuid
        """
        async with self.pool.acquire() as conn:  # type: ignore[attr-defined]
            await conn.execute(query, user_id)

    async def consume_reset_token(self, token: str, password_hash: str, now: datetime) -> User | None:
        # Single conditional UPDATE: two concurrent redemptions cannot both match.
        query = f"""
        UPDATE {self.schema}.users
        SET password_hash = $2,
            reset_token = NULL,
            reset_token_expires_at = NULL,
            updated_at = NOW()
        WHERE reset_token = $1 AND reset_token_expires_at > $3
        RETURNING {self._columns}
        """
        return await self._fetch_one(query, token, password_hash, now)


__all__ = [
    "PROFILE_FIELDS",
    "PostgresUserRepository",
    "STORAGE_ERRORS",
    "UserRepository",
    "storage_guard",
]
