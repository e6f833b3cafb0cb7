from __future__ import annotations

import os
from contextlib import asynccontextmanager

import asyncpg
import uvicorn
from fastapi import FastAPI
from redis.asyncio import Redis

from auth.app import create_auth_app
from auth.configuration import AuthConfig
from auth.exceptions import DuplicateAccountError
from auth.security import Argon2PasswordHasher
from auth.session import InMemorySessionStore, RedisSessionStore, SessionStore
from auth.storage import PostgresUserRepository
from common.logging import configure_structured_logging

logger = configure_structured_logging("auth.server")


class _PoolProxy:
    """Deferred asyncpg pool proxy to satisfy repository interfaces before startup."""

    def __init__(self) -> None:
        self._pool: asyncpg.Pool | None = None

    def set_pool(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    def acquire(self):
        if self._pool is None:
            raise RuntimeError("Database pool not initialised")
        return self._pool.acquire()

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None


def create_default_app(config: AuthConfig | None = None) -> FastAPI:
    config = config or AuthConfig.from_env(os.environ)

    pool_proxy = _PoolProxy()
    user_repository = PostgresUserRepository(pool=pool_proxy, schema=config.postgres_schema)
    redis_client: Redis | None = None
    session_store: SessionStore
    if config.session_backend == "memory":
        session_store = InMemorySessionStore(ttl=config.session_ttl)
    else:
        redis_client = Redis.from_url(config.redis_url)
        session_store = RedisSessionStore(redis=redis_client, ttl=config.session_ttl)

    password_hasher = Argon2PasswordHasher()
    app = create_auth_app(
        user_repository=user_repository,
        session_store=session_store,
        config=config,
        password_hasher=password_hasher,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        pool = await asyncpg.create_pool(dsn=config.postgres_dsn)
        pool_proxy.set_pool(pool)
        await _prepare_schema(pool, config.postgres_schema)
        await _ensure_default_user(user_repository, password_hasher, config)
        logger.info(
            "Auth service started",
            extra={"event": "auth.server.started", "context": {"session_backend": config.session_backend}},
        )
        try:
            yield
        finally:
            await pool_proxy.close()
            if redis_client is not None:
                await redis_client.aclose()

    app.router.lifespan_context = lifespan
    return app


async def _ensure_default_user(
    user_repository: PostgresUserRepository,
    password_hasher: Argon2PasswordHasher,
    config: AuthConfig,
) -> None:
    username = config.default_user_username
    email = config.default_user_email
    password = config.default_user_password
    if not (username and email and password):
        return

    existing = await user_repository.find_by_username_or_email(username, email)
    if existing is not None:
        logger.info("Default user already exists", extra={"event": "auth.seed_user.exists"})
        return

    try:
        user = await user_repository.insert(username, email, password_hasher.hash(password))
    except DuplicateAccountError:
        logger.info("Default user created concurrently", extra={"event": "auth.seed_user.exists"})
        return
    logger.info(
        "Seeded default user",
        extra={"event": "auth.seed_user.created", "context": {"user_id": user.id, "username": username}},
    )


async def _prepare_schema(pool: asyncpg.Pool, schema: str) -> None:
    async with pool.acquire() as conn:
        await conn.execute(f'CREATE SCHEMA IF NOT EXISTS "{schema}"')
        await conn.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {schema}.users (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                username VARCHAR(50) NOT NULL UNIQUE,
                email VARCHAR(100) NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                reset_token VARCHAR(100),
                reset_token_expires_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                CHECK (reset_token IS NULL OR reset_token_expires_at IS NOT NULL)
            )
            """
        )
        await conn.execute(
            f"CREATE INDEX IF NOT EXISTS users_reset_token_idx ON {schema}.users (reset_token) "
            "WHERE reset_token IS NOT NULL"
        )
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {schema}.scores (
                id BIGSERIAL PRIMARY KEY,
                user_id UUID NOT NULL REFERENCES {schema}.users (id) ON DELETE CASCADE,
                score INTEGER NOT NULL,
                difficulty VARCHAR(20) NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )


def main() -> None:
    config = AuthConfig.from_env(os.environ)
    log_level = os.getenv("AUTH_LOG_LEVEL")
    if log_level:
        logger.setLevel(log_level.upper())

    server_config = uvicorn.Config(
        app=create_default_app(config),
        host=config.http_host,
        port=config.http_port,
        log_config=None,
        access_log=False,
    )
    uvicorn.Server(server_config).run()


__all__ = ["create_default_app", "main"]


if __name__ == "__main__":
    main()
