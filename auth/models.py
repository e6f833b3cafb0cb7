from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel


_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_valid_email(value: str | None) -> bool:
    return bool(value) and _EMAIL_PATTERN.fullmatch(value) is not None


@dataclass(slots=True)
class User:
    id: str
    username: str
    email: str
    password_hash: str
    created_at: datetime
    reset_token: str | None = None
    reset_token_expires_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class Flash:
    kind: str
    message: str


@dataclass(slots=True)
class SessionState:
    """Per-visitor session document.

    ``is_new`` marks a session allocated during the current request that has
    not been stored yet; it is never serialized.
    """

    session_id: str
    user_id: str | None = None
    username: str | None = None
    email: str | None = None
    csrf_token: str | None = None
    flash: Flash | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_new: bool = field(default=False, compare=False, repr=False)

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    def to_document(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "email": self.email,
            "csrf_token": self.csrf_token,
            "flash": {"kind": self.flash.kind, "message": self.flash.message} if self.flash else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_document(cls, session_id: str, document: dict[str, Any]) -> "SessionState":
        raw_flash = document.get("flash")
        created_raw = document.get("created_at")
        created_at = datetime.fromisoformat(created_raw) if created_raw else datetime.now(timezone.utc)
        return cls(
            session_id=session_id,
            user_id=document.get("user_id"),
            username=document.get("username"),
            email=document.get("email"),
            csrf_token=document.get("csrf_token"),
            flash=Flash(kind=raw_flash["kind"], message=raw_flash["message"]) if raw_flash else None,
            created_at=created_at,
        )


# Form payloads. Every field defaults to an empty string so that CSRF
# verification and the validation engine decide what is missing.


class CsrfProtectedForm(BaseModel):
    csrf_token: str = ""


class RegistrationForm(CsrfProtectedForm):
    username: str = ""
    email: str = ""
    password: str = ""
    confirm_password: str = ""


class LoginForm(CsrfProtectedForm):
    identifier: str = ""
    password: str = ""


class ProfileForm(CsrfProtectedForm):
    username: str = ""
    email: str = ""


class ChangePasswordForm(CsrfProtectedForm):
    current_password: str = ""
    new_password: str = ""
    confirm_password: str = ""


class ResetRequestForm(CsrfProtectedForm):
    email: str = ""


class ResetRedeemForm(CsrfProtectedForm):
    token: str = ""
    new_password: str = ""
    confirm_password: str = ""


class FlashResponse(BaseModel):
    kind: str
    message: str


class SessionResponse(BaseModel):
    authenticated: bool
    user_id: str | None = None
    username: str | None = None
    email: str | None = None
    csrf_token: str
    flash: FlashResponse | None = None


class UserResponse(BaseModel):
    user_id: str
    username: str
    email: str
    created_at: datetime

    @classmethod
    def from_domain(cls, user: User) -> "UserResponse":
        return cls(user_id=user.id, username=user.username, email=user.email, created_at=user.created_at)


class MessageResponse(BaseModel):
    message: str


class TokenStatusResponse(BaseModel):
    valid: bool


__all__ = [
    "ChangePasswordForm",
    "CsrfProtectedForm",
    "Flash",
    "FlashResponse",
    "LoginForm",
    "MessageResponse",
    "ProfileForm",
    "RegistrationForm",
    "ResetRedeemForm",
    "ResetRequestForm",
    "SessionResponse",
    "SessionState",
    "TokenStatusResponse",
    "User",
    "UserResponse",
    "is_valid_email",
]
