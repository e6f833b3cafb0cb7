from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

pytest.importorskip("argon2")

from auth.exceptions import (
    DuplicateAccountError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    StorageUnavailableError,
    ValidationFailedError,
)
from auth.service import AuthService
from auth.session import InMemorySessionStore
from auth.tokens import PasswordResetService
from tests.auth_stubs import StubUser, UnreachableUser, fast_hasher

pytestmark = pytest.mark.integration


class SteppingClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def user_repo() -> StubUser:
    return StubUser()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def auth_service(user_repo: StubUser, session_store: InMemorySessionStore) -> AuthService:
    return AuthService(user_repo, session_store, fast_hasher())


@pytest.fixture
def reset_service(user_repo: StubUser, clock: SteppingClock) -> PasswordResetService:
    return PasswordResetService(user_repo, fast_hasher(), clock=clock)


@pytest.mark.asyncio
async def test_issue_persists_token_with_24h_expiry(
    auth_service: AuthService, reset_service: PasswordResetService, user_repo: StubUser, clock: SteppingClock
) -> None:
    user = await auth_service.register("alice", "alice@example.com", "password123")

    token = await reset_service.issue("alice@example.com")

    assert token is not None and len(token) == 64
    stored = user_repo.users[user.id]
    assert stored.reset_token == token
    assert stored.reset_token_expires_at == clock.now + timedelta(hours=24)


@pytest.mark.asyncio
async def test_issue_for_unknown_email_persists_nothing(
    auth_service: AuthService, reset_service: PasswordResetService, user_repo: StubUser
) -> None:
    await auth_service.register("alice", "alice@example.com", "password123")

    assert await reset_service.issue("nobody@example.com") is None
    assert all(user.reset_token is None for user in user_repo.users.values())


@pytest.mark.asyncio
async def test_issue_rejects_malformed_email(reset_service: PasswordResetService) -> None:
    with pytest.raises(ValidationFailedError) as excinfo:
        await reset_service.issue("not-an-email")
    assert "email" in excinfo.value.errors


@pytest.mark.asyncio
async def test_reissue_replaces_previous_token(
    auth_service: AuthService, reset_service: PasswordResetService
) -> None:
    await auth_service.register("alice", "alice@example.com", "password123")
    first = await reset_service.issue("alice@example.com")
    second = await reset_service.issue("alice@example.com")

    assert first != second
    assert not await reset_service.peek(first)
    assert await reset_service.peek(second)


@pytest.mark.asyncio
async def test_token_redeems_exactly_once(
    auth_service: AuthService, reset_service: PasswordResetService, user_repo: StubUser
) -> None:
    user = await auth_service.register("alice", "alice@example.com", "password123")
    token = await reset_service.issue("alice@example.com")
    assert token is not None

    await reset_service.redeem(token, "newpassword1")

    stored = user_repo.users[user.id]
    assert stored.reset_token is None
    assert stored.reset_token_expires_at is None
    with pytest.raises(InvalidOrExpiredTokenError):
        await reset_service.redeem(token, "anotherpass1")
    assert not await reset_service.peek(token)


@pytest.mark.asyncio
async def test_expired_token_is_rejected(
    auth_service: AuthService, reset_service: PasswordResetService, user_repo: StubUser, clock: SteppingClock
) -> None:
    user = await auth_service.register("alice", "alice@example.com", "password123")
    token = await reset_service.issue("alice@example.com")
    assert token is not None
    original_hash = user_repo.users[user.id].password_hash

    clock.advance(timedelta(hours=24))

    assert not await reset_service.peek(token)
    with pytest.raises(InvalidOrExpiredTokenError):
        await reset_service.redeem(token, "newpassword1")
    assert user_repo.users[user.id].password_hash == original_hash


@pytest.mark.asyncio
async def test_redeem_input_checks(reset_service: PasswordResetService) -> None:
    with pytest.raises(InvalidOrExpiredTokenError):
        await reset_service.redeem("", "newpassword1")
    with pytest.raises(ValidationFailedError):
        await reset_service.redeem("a" * 64, "short")
    with pytest.raises(InvalidOrExpiredTokenError):
        await reset_service.redeem("a" * 64, "newpassword1")


@pytest.mark.asyncio
async def test_storage_failure_during_issue(clock: SteppingClock) -> None:
    service = PasswordResetService(UnreachableUser(), fast_hasher(), clock=clock)

    with pytest.raises(StorageUnavailableError):
        await service.issue("alice@example.com")


@pytest.mark.asyncio
async def test_full_account_lifecycle(
    auth_service: AuthService,
    reset_service: PasswordResetService,
    session_store: InMemorySessionStore,
    clock: SteppingClock,
) -> None:
    await auth_service.register("alice", "alice@example.com", "password123")
    with pytest.raises(DuplicateAccountError):
        await auth_service.register("alice_two", "alice@example.com", "password123")

    session = await session_store.resolve(None)
    anonymous_id = session.session_id
    await auth_service.login(session, "alice", "password123")
    assert session.authenticated
    assert session.session_id != anonymous_id

    token = await reset_service.issue("alice@example.com")
    assert token is not None
    clock.advance(timedelta(hours=23, minutes=59))
    await reset_service.redeem(token, "newpassword1")

    with pytest.raises(InvalidCredentialsError):
        await auth_service.login(await session_store.resolve(None), "alice", "password123")
    user = await auth_service.login(await session_store.resolve(None), "alice", "newpassword1")
    assert user.username == "alice"
