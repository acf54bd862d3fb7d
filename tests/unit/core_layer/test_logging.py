"""
Unit Tests for Logging Module

Tests logger creation, request context, secret redaction and log_stage.
"""

from unittest.mock import MagicMock

import pytest

from hapi_canvas.core.logging.logger import (
    add_request_id,
    clear_request_id,
    get_logger,
    get_request_id,
    log_stage,
    redact_secrets,
    redact_token,
    set_request_id,
    setup_logging,
)


@pytest.mark.unit
class TestLoggerCreation:
    def test_get_logger_returns_logger_instance(self):
        logger = get_logger(__name__)
        assert logger is not None
        assert hasattr(logger, "info")
        assert hasattr(logger, "warning")


@pytest.mark.unit
class TestRequestContext:
    def test_request_id_round_trip(self):
        set_request_id("req-123")
        try:
            assert get_request_id() == "req-123"
            event = add_request_id(None, "info", {"event": "x"})
            assert event["request_id"] == "req-123"
        finally:
            clear_request_id()

        assert get_request_id() is None
        assert "request_id" not in add_request_id(None, "info", {"event": "x"})


@pytest.mark.unit
class TestRedaction:
    @pytest.mark.parametrize(
        "token,expected",
        [
            (None, ""),
            ("", ""),
            ("short", "****"),
            ("1234~abcdefghijklmnop", "1234...mnop"),
        ],
    )
    def test_redact_token(self, token, expected):
        assert redact_token(token) == expected

    def test_secret_keys_are_redacted(self):
        event = redact_secrets(
            None,
            "info",
            {"event": "stored", "access_token": "7~abcdefghijklmnopqrstuvwxyz", "user_id": "u1"},
        )
        assert event["access_token"] == "7~ab...wxyz"
        assert event["user_id"] == "u1"

    def test_bearer_values_in_text_are_redacted(self):
        event = redact_secrets(None, "info", {"event": "sent", "header": "Bearer 7~secretsecretsecret"})
        assert event["header"] == "Bearer [REDACTED]"

    def test_canvas_shaped_tokens_are_redacted(self):
        token = "1234~" + "a" * 64
        event = redact_secrets(None, "info", {"event": f"token was {token}"})
        assert token not in event["event"]
        assert "[REDACTED]" in event["event"]


@pytest.mark.unit
class TestLogStageFunction:
    def test_log_stage_calls_logger(self):
        mock_logger = MagicMock()

        log_stage(mock_logger, "RL.ENQUEUE", "enqueued", unit_id="rl-1")

        mock_logger.info.assert_called_once_with("enqueued", stage="RL.ENQUEUE", unit_id="rl-1")

    def test_log_stage_with_different_levels(self):
        mock_logger = MagicMock()

        log_stage(mock_logger, "CB.OPEN", "circuit opened", level="error")
        mock_logger.error.assert_called_once()

        log_stage(mock_logger, "CACHE.HIT", "cache hit", level="DEBUG")
        mock_logger.debug.assert_called_once()


@pytest.mark.unit
class TestSetupLogging:
    @pytest.mark.parametrize("log_format", ["json", "console"])
    def test_setup_logging_configures_structlog(self, log_format):
        setup_logging(log_level="DEBUG", log_format=log_format)

        logger = get_logger("hapi_canvas.test")
        logger.info("configured", access_token="1234~abcdefghijklmnop")
