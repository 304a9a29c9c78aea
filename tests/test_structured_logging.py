"""
Tests for structured logging.

Tests:
- Console and JSON configuration
- Request context propagation
- Secret redaction, including stdlib records with extra fields
"""

import json
import logging

import pytest

from scribeledger.observability.logging import (
    configure_logging,
    get_logger,
    get_request_id,
    get_user_id,
    redact_sensitive_fields,
    request_context,
    set_user_id,
)


@pytest.fixture(autouse=True)
def quiet_logging():
    yield
    configure_logging(log_level="WARNING", json_output=False)


def test_configure_logging_console_output():
    configure_logging(log_level="INFO", json_output=False, colorized=False)

    logger = get_logger("test")
    logger.warning("Quota exceeded", user_id="user_1", minutes_required=30)


def test_json_output_carries_service_and_request_context(capsys):
    configure_logging(log_level="INFO", json_output=True, service_name="billing-test")

    with request_context(request_id="req_json", user_id="user_1"):
        get_logger("test").info("Credits granted", credits=175)

    line = capsys.readouterr().out.strip().splitlines()[-1]
    event = json.loads(line)
    assert event["event"] == "Credits granted"
    assert event["credits"] == 175
    assert event["service"] == "billing-test"
    assert event["request_id"] == "req_json"
    assert event["user_id"] == "user_1"
    assert event["level"] == "info"
    assert event["timestamp"].endswith("Z")


def test_stdlib_extra_fields_are_redacted(capsys):
    configure_logging(log_level="INFO", json_output=True)

    logging.getLogger("scribeledger.billing.stripe_service").warning(
        "Stripe call failed", extra={"api_key": "sk_test_abcdefghijklmnop", "amount": 500}
    )

    event = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert event["event"] == "Stripe call failed"
    assert event["api_key"] == "sk_tes***"
    assert event["amount"] == 500


def test_level_filters_events(capsys):
    configure_logging(log_level="ERROR", json_output=True)

    get_logger("test").info("dropped")

    assert "dropped" not in capsys.readouterr().out


def test_request_context():
    """Request id and user id are scoped to the context."""
    with request_context(request_id="req_123", user_id="user_1") as request_id:
        assert request_id == "req_123"
        assert get_request_id() == "req_123"
        assert get_user_id() == "user_1"

    assert get_request_id() is None
    assert get_user_id() is None


def test_request_context_generates_id():
    with request_context() as request_id:
        assert request_id.startswith("req_")
        assert get_request_id() == request_id


def test_user_id_does_not_leak_between_requests():
    with request_context(request_id="req_a"):
        set_user_id("user_a")
        assert get_user_id() == "user_a"

    with request_context(request_id="req_b"):
        assert get_user_id() is None


class TestRedaction:
    def test_long_secret_keeps_prefix(self):
        event = redact_sensitive_fields(
            None, "info", {"event": "x", "webhook_secret": "whsec_abcdefghijklmnop"}
        )

        assert event["webhook_secret"] == "whsec_***"

    def test_short_secret_fully_redacted(self):
        event = redact_sensitive_fields(None, "info", {"event": "x", "api_key": "sk_1"})

        assert event["api_key"] == "***REDACTED***"

    def test_keys_matched_case_insensitively(self):
        event = redact_sensitive_fields(None, "info", {"event": "x", "Authorization": "Bearer t"})

        assert event["Authorization"] == "***REDACTED***"

    def test_other_fields_untouched(self):
        event = redact_sensitive_fields(
            None, "info", {"event": "x", "user_id": "user_1", "credits": 175, "secret": None}
        )

        assert event["user_id"] == "user_1"
        assert event["credits"] == 175
        assert event["secret"] is None
