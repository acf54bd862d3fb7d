#!/usr/bin/env python3
"""
Structured Logging Module using structlog

This module provides structured logging for the Canvas client layer with:
- Request ID correlation across the cache, queue and token manager
- Stage tagging for lifecycle points (enqueue, dequeue, cache hit/miss ...)
- JSON formatting for log aggregation
- Automatic redaction of OAuth secrets

Architectural Decision: structlog for production logging
- Context-aware logging with automatic field injection
- JSON output for log aggregation
- Async-safe via context variables
"""

import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

import structlog
from structlog.types import EventDict, WrappedLogger

from hapi_canvas.core.config.settings import get_settings

# Context variable for the request ID (task-local under asyncio)
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

# Keys whose values are always secrets
_SECRET_KEYS = frozenset(
    {"access_token", "refresh_token", "token", "client_secret", "authorization", "password"}
)
_BEARER_PATTERN = re.compile(r"\b(Bearer)\s+[A-Za-z0-9~._+/=-]+", re.IGNORECASE)
# Canvas tokens look like "<shard>~<64 chars>"
_CANVAS_TOKEN_PATTERN = re.compile(r"\b\d+~[A-Za-z0-9]{20,}\b")


def redact_token(token: str | None) -> str:
    """
    Return a short, non-reversible preview of a secret.

    Tokens of eight characters or fewer are fully masked.

    >>> redact_token("1234~abcdefghijklmnop")
    '1234...mnop'
    """
    if not token:
        return ""
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}...{token[-4:]}"


def _redact_text(text: str) -> str:
    text = _BEARER_PATTERN.sub(r"\1 [REDACTED]", text)
    return _CANVAS_TOKEN_PATTERN.sub("[REDACTED]", text)


def add_request_id(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add the request ID from context to every log entry."""
    request_id = request_id_ctx.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO timestamp to log event."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def redact_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Redact OAuth secrets from the log event.

    - Values of secret-named keys → short preview via redact_token
    - Bearer credentials inside any string → "Bearer [REDACTED]"
    - Canvas token-shaped strings → [REDACTED]
    """
    for key, value in list(event_dict.items()):
        if not isinstance(value, str):
            continue
        if key.lower() in _SECRET_KEYS:
            event_dict[key] = redact_token(value)
        else:
            event_dict[key] = _redact_text(value)
    return event_dict


def add_log_level_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Upper-case the log level."""
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Setup structured logging with structlog.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
    """
    settings = get_settings()

    log_level = log_level or settings.logging.LOG_LEVEL
    log_format = log_format or settings.logging.LOG_FORMAT

    logging.basicConfig(
        format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level.upper())
    )

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_request_id,
            add_timestamp,
            structlog.stdlib.add_log_level,
            add_log_level_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_secrets,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("message", key="value", stage="RL.2")
    """
    return structlog.get_logger(name)


def set_request_id(request_id: str) -> None:
    """Set the request ID in context for the current task."""
    request_id_ctx.set(request_id)


def get_request_id() -> str | None:
    """Get current request ID from context."""
    return request_id_ctx.get()


def clear_request_id() -> None:
    """Clear request ID from context."""
    request_id_ctx.set(None)


def log_stage(
    logger: structlog.stdlib.BoundLogger, stage: str, message: str, level: str = "info", **kwargs
) -> None:
    """
    Log a message with stage information.

    Usage:
        log_stage(logger, "CACHE.HIT", "Response cache hit", cache_key="/courses")
    """
    log_func = getattr(logger, level.lower())
    log_func(message, stage=stage, **kwargs)
