from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Final

from redis.asyncio import Redis

from .models import Flash, SessionState
from .security import generate_session_id, generate_token, tokens_match


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class SessionStore(ABC):
    """Per-visitor session state keyed by an opaque session identifier.

    Subclasses provide the storage primitives; resolution, regeneration,
    flash messages and CSRF tokens are implemented here on top of them.
    """

    @abstractmethod
    async def load(self, session_id: str) -> SessionState | None:
        ...

    @abstractmethod
    async def create(self, session: SessionState) -> None:
        ...

    @abstractmethod
    async def save(self, session: SessionState) -> None:
        """Persist ``session`` only if its id still exists in the store."""

    @abstractmethod
    async def migrate(self, old_session_id: str, session: SessionState) -> None:
        """Store ``session`` under its new id and drop ``old_session_id`` atomically."""

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        ...

    async def resolve(self, session_id: str | None, *, persist: bool = True) -> SessionState:
        """Return the stored session for ``session_id`` or a fresh anonymous one.

        With ``persist=False`` a fresh session stays in memory until
        :meth:`persist` is called, so requests that never hand the id back to
        the client leave nothing behind.
        """
        if session_id:
            existing = await self.load(session_id)
            if existing is not None:
                return existing
        session = SessionState(session_id=generate_session_id(), is_new=True)
        if persist:
            await self.persist(session)
        return session

    async def persist(self, session: SessionState) -> None:
        if session.is_new:
            await self.create(session)
            session.is_new = False

    async def regenerate(self, session: SessionState) -> str:
        old_session_id = session.session_id
        session.session_id = generate_session_id()
        session.csrf_token = None
        await self.migrate(old_session_id, session)
        session.is_new = False
        return session.session_id

    async def destroy(self, session_id: str) -> None:
        await self.delete(session_id)

    async def set_flash(self, session: SessionState, kind: str, message: str) -> None:
        session.flash = Flash(kind=kind, message=message)
        await self.save(session)

    async def take_flash(self, session: SessionState) -> Flash | None:
        flash = session.flash
        if flash is None:
            return None
        session.flash = None
        await self.save(session)
        return flash

    async def csrf_token(self, session: SessionState) -> str:
        if session.csrf_token is None:
            session.csrf_token = generate_token()
            await self.save(session)
        return session.csrf_token

    async def verify_csrf(self, session: SessionState, candidate: str | None) -> bool:
        return tokens_match(session.csrf_token, candidate)


class RedisSessionStore(SessionStore):
    """Redis-backed session store for HTTP-only cookie sessions."""

    _SESSION_PREFIX: Final[str] = "auth_session:"

    def __init__(self, redis: Redis, ttl: timedelta) -> None:
        self._redis = redis
        self._ttl = ttl

    async def load(self, session_id: str) -> SessionState | None:
        raw = await self._redis.get(self._key(session_id))
        if raw is None:
            return None
        return SessionState.from_document(session_id, json.loads(raw))

    async def create(self, session: SessionState) -> None:
        await self._redis.set(self._key(session.session_id), self._encode(session), ex=self._ttl_seconds, nx=True)

    async def save(self, session: SessionState) -> None:
        await self._redis.set(self._key(session.session_id), self._encode(session), ex=self._ttl_seconds, xx=True)

    async def migrate(self, old_session_id: str, session: SessionState) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(self._key(session.session_id), self._encode(session), ex=self._ttl_seconds)
            pipe.delete(self._key(old_session_id))
            await pipe.execute()

    async def delete(self, session_id: str) -> None:
        await self._redis.delete(self._key(session_id))

    @property
    def _ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    @staticmethod
    def _encode(session: SessionState) -> str:
        return json.dumps(session.to_document(), separators=(",", ":"))

    def _key(self, session_id: str) -> str:
        return f"{self._SESSION_PREFIX}{session_id}"


class InMemorySessionStore(SessionStore):
    """Process-local session store for tests and single-process development.

    Entries expire ``ttl`` after their last write, like the Redis keys; an
    expired entry is dropped the next time it is touched.
    """

    def __init__(
        self,
        ttl: timedelta | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._ttl = ttl
        self._clock = clock or _utcnow
        self._sessions: dict[str, tuple[dict, datetime | None]] = {}
        self._lock = asyncio.Lock()

    async def load(self, session_id: str) -> SessionState | None:
        async with self._lock:
            document = self._live_document(session_id)
        if document is None:
            return None
        return SessionState.from_document(session_id, document)

    async def create(self, session: SessionState) -> None:
        async with self._lock:
            if self._live_document(session.session_id) is None:
                self._store(session)

    async def save(self, session: SessionState) -> None:
        async with self._lock:
            if self._live_document(session.session_id) is not None:
                self._store(session)

    async def migrate(self, old_session_id: str, session: SessionState) -> None:
        async with self._lock:
            self._sessions.pop(old_session_id, None)
            self._store(session)

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            self._sessions.pop(session_id, None)

    def _store(self, session: SessionState) -> None:
        expires_at = self._clock() + self._ttl if self._ttl is not None else None
        self._sessions[session.session_id] = (session.to_document(), expires_at)

    def _live_document(self, session_id: str) -> dict | None:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        document, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._sessions[session_id]
            return None
        return document

    def __contains__(self, session_id: object) -> bool:
        return isinstance(session_id, str) and self._live_document(session_id) is not None

    def __len__(self) -> int:
        return len(self._sessions)


__all__ = ["InMemorySessionStore", "RedisSessionStore", "SessionStore"]
