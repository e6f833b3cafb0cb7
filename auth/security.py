from __future__ import annotations

import hmac
import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from .constants import TOKEN_BYTES


class Argon2PasswordHasher:
    """Argon2id-based password hasher.

    Every hash embeds its own random salt and parameters, so hashing the same
    password twice yields two different strings that both verify.
    """

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._hasher = hasher or PasswordHasher()
        self._dummy_hash: str | None = None

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, password: str, password_hash: str | None) -> bool:
        if not password_hash:
            return False
        try:
            return self._hasher.verify(password_hash, password)
        except (VerificationError, InvalidHashError):
            return False

    def verify_dummy(self, password: str) -> bool:
        """Burn one verification against a throwaway hash.

        Called when a login identifier matches no user, so that the
        unknown-user path costs about as much as a wrong password.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash(secrets.token_hex(16))
        self.verify(password, self._dummy_hash)
        return False

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(password_hash)
        except (InvalidHashError, ValueError):
            return False


def generate_token(nbytes: int = TOKEN_BYTES) -> str:
    """Return a hex token carrying ``nbytes`` bytes of CSPRNG entropy."""
    return secrets.token_hex(nbytes)


def generate_session_id() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def tokens_match(expected: str | None, candidate: str | None) -> bool:
    if not expected or not candidate:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))


__all__ = ["Argon2PasswordHasher", "generate_session_id", "generate_token", "tokens_match"]
