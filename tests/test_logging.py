from __future__ import annotations

import json

import pytest

from common.logging import REDACTED, configure_structured_logging, get_logger, log_schema_fields, redact

pytestmark = pytest.mark.unit


def test_configure_structured_logging_outputs_json(capfd) -> None:
    logger = configure_structured_logging("test.component", level="INFO")
    logger.info(
        "Structured message",
        extra={
            "event": "test.event",
            "context": {"key": "value"},
        },
    )
    captured = capfd.readouterr().out.strip()
    payload = json.loads(captured)
    assert payload["component"] == "test.component"
    assert payload["event"] == "test.event"
    assert payload["context"]["key"] == "value"
    assert payload["message"] == "Structured message"


def test_child_logger_inherits_configuration(capfd) -> None:
    configure_structured_logging("parent", level="INFO")
    child = get_logger("parent.child")
    child.info("child message", extra={"context": {"child": True}})
    captured = capfd.readouterr().out.strip()
    payload = json.loads(captured)
    assert payload["component"] == "parent.child"
    assert payload["context"]["child"] is True


def test_sensitive_context_is_redacted(capfd) -> None:
    logger = configure_structured_logging("redaction", level="INFO")
    logger.warning(
        "Login attempt",
        extra={
            "event": "auth.login.failed",
            "context": {"username": "alice", "password": "hunter22", "nested": {"csrf_token": "abc"}},
        },
    )
    payload = json.loads(capfd.readouterr().out.strip())
    assert payload["context"]["username"] == "alice"
    assert payload["context"]["password"] == REDACTED
    assert payload["context"]["nested"]["csrf_token"] == REDACTED
    assert "hunter22" not in json.dumps(payload)


def test_exceptions_are_serialised(capfd) -> None:
    logger = configure_structured_logging("errors", level="INFO")
    try:
        raise ConnectionRefusedError("db down")
    except ConnectionRefusedError as exc:
        logger.error("Storage operation failed", exc_info=exc, extra={"event": "auth.storage.unavailable"})
    payload = json.loads(capfd.readouterr().out.strip())
    assert payload["level"] == "ERROR"
    assert "ConnectionRefusedError: db down" in payload["exception"]


def test_redact_handles_lists() -> None:
    assert redact([{"token": "t"}, "plain"]) == [{"token": REDACTED}, "plain"]


def test_log_schema_field_listing() -> None:
    assert set(log_schema_fields()) == {
        "timestamp",
        "level",
        "component",
        "event",
        "message",
        "request_id",
        "context",
        "exception",
    }
