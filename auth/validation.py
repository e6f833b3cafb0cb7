"""Declarative form validation.

A rule set maps a field name to a sequence of constraints. Constraints are
checked in order against the raw submitted value; a field reports a single
message, the one from the last constraint it failed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

from .constants import EMAIL_MAX_LENGTH, MIN_PASSWORD_LENGTH, USERNAME_MAX_LENGTH, USERNAME_MIN_LENGTH
from .exceptions import ValidationFailedError
from .models import is_valid_email


def field_label(name: str) -> str:
    return name.replace("_", " ").capitalize()


@dataclass(slots=True, frozen=True)
class Required:
    def check(self, name: str, value: str, data: Mapping[str, str]) -> str | None:
        return None


@dataclass(slots=True, frozen=True)
class MinLength:
    length: int

    def check(self, name: str, value: str, data: Mapping[str, str]) -> str | None:
        if len(value) < self.length:
            return f"{field_label(name)} must be at least {self.length} characters"
        return None


@dataclass(slots=True, frozen=True)
class MaxLength:
    length: int

    def check(self, name: str, value: str, data: Mapping[str, str]) -> str | None:
        if len(value) > self.length:
            return f"{field_label(name)} must not exceed {self.length} characters"
        return None


@dataclass(slots=True, frozen=True)
class Email:
    def check(self, name: str, value: str, data: Mapping[str, str]) -> str | None:
        if not is_valid_email(value):
            return "Invalid email format"
        return None


@dataclass(slots=True, frozen=True)
class EqualsField:
    other: str

    def check(self, name: str, value: str, data: Mapping[str, str]) -> str | None:
        if data.get(self.other) != value:
            return f"{field_label(name)} does not match {field_label(self.other).lower()}"
        return None


Rule = Required | MinLength | MaxLength | Email | EqualsField
RuleSet = Mapping[str, Sequence[Rule]]


class ValidationEngine:
    """Evaluates rule sets against submitted form data."""

    def validate(self, data: Mapping[str, str | None], rules: RuleSet) -> dict[str, str]:
        values = {key: value or "" for key, value in data.items()}
        errors: dict[str, str] = {}
        for name, constraints in rules.items():
            value = values.get(name, "")
            if not value:
                if any(isinstance(rule, Required) for rule in constraints):
                    errors[name] = f"{field_label(name)} is required"
                continue
            for rule in constraints:
                message = rule.check(name, value, values)
                if message is not None:
                    errors[name] = message
        return errors

    def ensure_valid(self, data: Mapping[str, str | None], rules: RuleSet) -> None:
        errors = self.validate(data, rules)
        if errors:
            raise ValidationFailedError(errors)


_USERNAME_RULES: tuple[Rule, ...] = (
    Required(),
    MinLength(USERNAME_MIN_LENGTH),
    MaxLength(USERNAME_MAX_LENGTH),
)

_EMAIL_RULES: tuple[Rule, ...] = (Required(), Email(), MaxLength(EMAIL_MAX_LENGTH))

REGISTRATION_RULES: RuleSet = {
    "username": _USERNAME_RULES,
    "email": _EMAIL_RULES,
    "password": (Required(), MinLength(MIN_PASSWORD_LENGTH)),
    "confirm_password": (Required(), EqualsField("password")),
}

LOGIN_RULES: RuleSet = {
    "identifier": (Required(),),
    "password": (Required(),),
}

PROFILE_RULES: RuleSet = {
    "username": _USERNAME_RULES,
    "email": _EMAIL_RULES,
}

CHANGE_PASSWORD_RULES: RuleSet = {
    "current_password": (Required(),),
    "new_password": (Required(), MinLength(MIN_PASSWORD_LENGTH)),
    "confirm_password": (Required(), EqualsField("new_password")),
}

RESET_REQUEST_RULES: RuleSet = {
    "email": _EMAIL_RULES,
}

RESET_REDEEM_RULES: RuleSet = {
    "token": (Required(),),
    "new_password": (Required(), MinLength(MIN_PASSWORD_LENGTH)),
    "confirm_password": (Required(), EqualsField("new_password")),
}


__all__ = [
    "CHANGE_PASSWORD_RULES",
    "Email",
    "EqualsField",
    "LOGIN_RULES",
    "MaxLength",
    "MinLength",
    "PROFILE_RULES",
    "REGISTRATION_RULES",
    "RESET_REDEEM_RULES",
    "RESET_REQUEST_RULES",
    "Required",
    "Rule",
    "RuleSet",
    "ValidationEngine",
    "field_label",
]
