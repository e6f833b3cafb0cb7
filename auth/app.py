from __future__ import annotations

from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth.configuration import AuthConfig
from auth.constants import CSRF_HEADER_NAME
from auth.exceptions import (
    AlreadyAuthenticatedError,
    AuthError,
    CsrfMismatchError,
    DuplicateAccountError,
    IncorrectCurrentPasswordError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    NotAuthenticatedError,
    StorageUnavailableError,
    UserNotFoundError,
    ValidationFailedError,
)
from auth.models import (
    ChangePasswordForm,
    CsrfProtectedForm,
    FlashResponse,
    LoginForm,
    MessageResponse,
    ProfileForm,
    RegistrationForm,
    ResetRedeemForm,
    ResetRequestForm,
    SessionResponse,
    SessionState,
    TokenStatusResponse,
    UserResponse,
)
from auth.security import Argon2PasswordHasher
from auth.service import AuthService
from auth.session import SessionStore
from auth.storage import UserRepository, storage_guard
from auth.tokens import PasswordResetService
from auth.validation import (
    CHANGE_PASSWORD_RULES,
    LOGIN_RULES,
    PROFILE_RULES,
    REGISTRATION_RULES,
    RESET_REDEEM_RULES,
    RESET_REQUEST_RULES,
    ValidationEngine,
)
from common.logging import get_logger

logger = get_logger("auth.app")

RESET_REQUESTED_MESSAGE = "If your email is registered, a password reset link will be sent."

ERROR_STATUS: dict[type[AuthError], int] = {
    ValidationFailedError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    AlreadyAuthenticatedError: status.HTTP_409_CONFLICT,
    InvalidCredentialsError: status.HTTP_401_UNAUTHORIZED,
    NotAuthenticatedError: status.HTTP_401_UNAUTHORIZED,
    DuplicateAccountError: status.HTTP_409_CONFLICT,
    IncorrectCurrentPasswordError: status.HTTP_400_BAD_REQUEST,
    InvalidOrExpiredTokenError: status.HTTP_400_BAD_REQUEST,
    UserNotFoundError: status.HTTP_404_NOT_FOUND,
    CsrfMismatchError: status.HTTP_403_FORBIDDEN,
    StorageUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def create_auth_app(
    *,
    user_repository: UserRepository,
    session_store: SessionStore,
    config: AuthConfig,
    password_hasher: Argon2PasswordHasher | None = None,
    clock: Callable[[], datetime] | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Return a configured FastAPI application for the arcade auth service."""
    app = FastAPI(title="Arcade Auth Service", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cors_origins or config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    hasher = password_hasher or Argon2PasswordHasher()
    service = AuthService(
        user_repository=user_repository,
        session_store=session_store,
        password_hasher=hasher,
    )
    reset_service = PasswordResetService(user_repository, hasher, ttl=config.reset_token_ttl, clock=clock)
    validator = ValidationEngine()

    app.state.auth_service = service  # type: ignore[attr-defined]
    app.state.reset_service = reset_service  # type: ignore[attr-defined]
    app.state.session_store = session_store  # type: ignore[attr-defined]
    _install_error_handlers(app)

    async def current_session(request: Request) -> SessionState:
        async with storage_guard("session.resolve"):
            return await session_store.resolve(request.cookies.get(config.session_cookie_name), persist=False)

    async def require_csrf(request: Request, session: SessionState, form: CsrfProtectedForm) -> None:
        candidate = form.csrf_token or request.headers.get(CSRF_HEADER_NAME, "")
        if not await session_store.verify_csrf(session, candidate):
            logger.warning(
                "CSRF token validation failed",
                extra={"event": "auth.csrf.rejected", "context": {"path": request.url.path}},
            )
            raise CsrfMismatchError("CSRF token validation failed")

    def require_visitor(session: SessionState) -> None:
        if session.authenticated:
            raise AlreadyAuthenticatedError("You are already logged in")

    async def issue_cookie(response: Response, session: SessionState) -> None:
        async with storage_guard("session.persist"):
            await session_store.persist(session)
        _set_session_cookie(response, session, config)

    def require_login(session: SessionState) -> str:
        if session.user_id is None:
            raise NotAuthenticatedError("You must be logged in to access that page")
        return session.user_id

    async def flash(session: SessionState, kind: str, message: str) -> None:
        async with storage_guard("session.flash"):
            await session_store.set_flash(session, kind, message)

    router = APIRouter(prefix="/auth", tags=["auth"])

    @router.get("/session", response_model=SessionResponse)
    async def read_session(response: Response, session: SessionState = Depends(current_session)) -> SessionResponse:
        await issue_cookie(response, session)
        async with storage_guard("session.read"):
            csrf_token = await session_store.csrf_token(session)
            pending = await session_store.take_flash(session)
        return SessionResponse(
            authenticated=session.authenticated,
            user_id=session.user_id,
            username=session.username,
            email=session.email,
            csrf_token=csrf_token,
            flash=FlashResponse(kind=pending.kind, message=pending.message) if pending else None,
        )

    @router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
    async def register_user(
        form: RegistrationForm,
        request: Request,
        response: Response,
        session: SessionState = Depends(current_session),
    ) -> MessageResponse:
        await require_csrf(request, session, form)
        require_visitor(session)
        validator.ensure_valid(form.model_dump(exclude={"csrf_token"}), REGISTRATION_RULES)
        await service.register(form.username, form.email, form.password)

        message = "Registration successful! You can now login."
        await flash(session, "success", message)
        await issue_cookie(response, session)
        return MessageResponse(message=message)

    @router.post("/login", response_model=UserResponse)
    async def login_user(
        form: LoginForm,
        request: Request,
        response: Response,
        session: SessionState = Depends(current_session),
    ) -> UserResponse:
        await require_csrf(request, session, form)
        require_visitor(session)
        validator.ensure_valid(form.model_dump(exclude={"csrf_token"}), LOGIN_RULES)
        user = await service.login(session, form.identifier, form.password)

        await flash(session, "success", f"Welcome back, {user.username}!")
        await issue_cookie(response, session)
        return UserResponse.from_domain(user)

    @router.post("/logout", response_model=MessageResponse)
    async def logout_user(response: Response, session: SessionState = Depends(current_session)) -> MessageResponse:
        await service.logout(session)
        async with storage_guard("session.resolve"):
            fresh = await session_store.resolve(None)

        message = "You have been successfully logged out."
        await flash(fresh, "success", message)
        await issue_cookie(response, fresh)
        return MessageResponse(message=message)

    @router.get("/profile", response_model=UserResponse)
    async def read_profile(session: SessionState = Depends(current_session)) -> UserResponse:
        user = await service.current_user(session)
        return UserResponse.from_domain(user)

    @router.post("/profile", response_model=UserResponse)
    async def update_profile(
        form: ProfileForm,
        request: Request,
        session: SessionState = Depends(current_session),
    ) -> UserResponse:
        await require_csrf(request, session, form)
        user_id = require_login(session)
        validator.ensure_valid(form.model_dump(exclude={"csrf_token"}), PROFILE_RULES)
        user = await service.update_profile(user_id, {"username": form.username, "email": form.email}, session)

        await flash(session, "success", "Profile updated successfully")
        return UserResponse.from_domain(user)

    @router.post("/password", response_model=MessageResponse)
    async def change_password(
        form: ChangePasswordForm,
        request: Request,
        session: SessionState = Depends(current_session),
    ) -> MessageResponse:
        await require_csrf(request, session, form)
        user_id = require_login(session)
        validator.ensure_valid(form.model_dump(exclude={"csrf_token"}), CHANGE_PASSWORD_RULES)
        await service.change_password(user_id, form.current_password, form.new_password)

        message = "Password changed successfully"
        await flash(session, "success", message)
        return MessageResponse(message=message)

    @router.post("/password-reset", response_model=MessageResponse)
    async def request_password_reset(
        form: ResetRequestForm,
        request: Request,
        session: SessionState = Depends(current_session),
    ) -> MessageResponse:
        await require_csrf(request, session, form)
        require_visitor(session)
        validator.ensure_valid(form.model_dump(exclude={"csrf_token"}), RESET_REQUEST_RULES)
        token = await reset_service.issue(form.email)

        if config.expose_reset_tokens and token is not None:
            await flash(session, "info", f"For demonstration purposes, here is your reset token: {token}")
        else:
            await flash(session, "success", RESET_REQUESTED_MESSAGE)
        return MessageResponse(message=RESET_REQUESTED_MESSAGE)

    @router.get("/password-reset/{token}", response_model=TokenStatusResponse)
    async def read_reset_token(token: str) -> TokenStatusResponse:
        return TokenStatusResponse(valid=await reset_service.peek(token))

    @router.post("/password-reset/confirm", response_model=MessageResponse)
    async def confirm_password_reset(
        form: ResetRedeemForm,
        request: Request,
        session: SessionState = Depends(current_session),
    ) -> MessageResponse:
        await require_csrf(request, session, form)
        require_visitor(session)
        validator.ensure_valid(form.model_dump(exclude={"csrf_token"}), RESET_REDEEM_RULES)
        await reset_service.redeem(form.token, form.new_password)

        message = "Password has been reset successfully. You can now login."
        await flash(session, "success", message)
        return MessageResponse(message=message)

    app.include_router(router)

    @app.get("/health", status_code=status.HTTP_200_OK)
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return app


def _install_error_handlers(app: FastAPI) -> None:
    async def handle_auth_error(_: Request, exc: AuthError) -> JSONResponse:
        status_code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
        body: dict[str, object] = {"detail": exc.message, "code": exc.code}
        if isinstance(exc, ValidationFailedError):
            body["errors"] = exc.errors
        return JSONResponse(status_code=status_code, content=body)

    app.add_exception_handler(AuthError, handle_auth_error)  # type: ignore[arg-type]


def _set_session_cookie(response: Response, session: SessionState, config: AuthConfig) -> None:
    response.set_cookie(
        key=config.session_cookie_name,
        value=session.session_id,
        max_age=config.session_ttl_minutes * 60,
        httponly=True,
        secure=config.secure_cookies,
        samesite="lax",
        domain=config.session_cookie_domain,
        path="/",
    )


__all__ = ["ERROR_STATUS", "RESET_REQUESTED_MESSAGE", "create_auth_app"]
