from __future__ import annotations

from datetime import timedelta

import pytest
import uvicorn

from auth.configuration import AuthConfig
from auth.server import _ensure_default_user, _PoolProxy, create_default_app, main
from auth.session import InMemorySessionStore, RedisSessionStore
from tests.auth_stubs import StubUser, fast_hasher

pytestmark = pytest.mark.unit


def test_memory_backend_wires_in_process_sessions() -> None:
    app = create_default_app(AuthConfig(session_backend="memory"))

    assert isinstance(app.state.session_store, InMemorySessionStore)
    assert app.url_path_for("read_session") == "/auth/session"
    assert app.url_path_for("login_user") == "/auth/login"
    assert app.url_path_for("confirm_password_reset") == "/auth/password-reset/confirm"
    assert app.url_path_for("healthcheck") == "/health"


def test_memory_backend_expires_sessions_after_configured_ttl() -> None:
    app = create_default_app(AuthConfig(session_backend="memory", session_ttl_minutes=1))

    assert app.state.session_store._ttl == timedelta(minutes=1)


def test_redis_backend_is_the_default() -> None:
    app = create_default_app(AuthConfig(redis_url="redis://cache.invalid:6379/0"))

    assert isinstance(app.state.session_store, RedisSessionStore)


def test_pool_proxy_refuses_work_before_startup() -> None:
    with pytest.raises(RuntimeError, match="not initialised"):
        _PoolProxy().acquire()


def test_main_serves_on_configured_address(monkeypatch: pytest.MonkeyPatch) -> None:
    served: list[object] = []

    class RecordingServer:
        def __init__(self, config) -> None:
            self.config = config

        def run(self) -> None:
            served.append(self.config)

    monkeypatch.setenv("AUTH_SESSION_BACKEND", "memory")
    monkeypatch.setenv("AUTH_HTTP_HOST", "127.0.0.1")
    monkeypatch.setenv("AUTH_HTTP_PORT", "9100")
    monkeypatch.setattr(uvicorn, "Server", RecordingServer)

    main()

    assert len(served) == 1
    assert (served[0].host, served[0].port) == ("127.0.0.1", 9100)
    assert served[0].access_log is False


@pytest.mark.asyncio
async def test_default_user_is_seeded_once() -> None:
    repo = StubUser()
    hasher = fast_hasher()
    config = AuthConfig(
        default_user_username="arcade",
        default_user_email="arcade@example.com",
        default_user_password="arcade-pass",
    )

    await _ensure_default_user(repo, hasher, config)  # type: ignore[arg-type]
    await _ensure_default_user(repo, hasher, config)  # type: ignore[arg-type]

    assert [user.username for user in repo.inserted] == ["arcade"]
    assert hasher.verify("arcade-pass", repo.inserted[0].password_hash)


@pytest.mark.asyncio
async def test_default_user_requires_all_three_settings() -> None:
    repo = StubUser()
    config = AuthConfig(default_user_username="arcade", default_user_email="arcade@example.com")

    await _ensure_default_user(repo, fast_hasher(), config)  # type: ignore[arg-type]

    assert repo.inserted == []
