"""
Structured logging for the billing service.

structlog renders both its own events and records emitted through the
standard library (the Stripe client wrapper, uvicorn, settings warnings),
so every line carries the same request context and passes the same
redaction step before it is written.

Request-scoped values (request_id, user_id) live in contextvars and are
bound by ``request_context`` in the HTTP middleware and by the auth
dependency.
"""

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import EventDict, Processor

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)

# Keys whose values never reach a log sink in full
SENSITIVE_FIELDS = frozenset(
    {
        "api_key",
        "authorization",
        "client_secret",
        "secret",
        "signature",
        "stripe_signature",
        "token",
        "webhook_secret",
    }
)

_REDACTED = "***REDACTED***"
_VISIBLE_PREFIX = 6

_handler: logging.Handler | None = None


def _mask(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str) and len(value) > 2 * _VISIBLE_PREFIX:
        return f"{value[:_VISIBLE_PREFIX]}***"
    return _REDACTED


def redact_sensitive_fields(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Mask secrets and signature headers.

    Long values keep a short prefix so keys can still be told apart
    (whsec_abcdef... -> whsec_***).
    """
    for key, value in event_dict.items():
        if key.lower() in SENSITIVE_FIELDS:
            event_dict[key] = _mask(value)
    return event_dict


def add_request_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    user_id = user_id_var.get()
    if user_id:
        event_dict.setdefault("user_id", user_id)
    return event_dict


def service_metadata_processor(
    service_name: str, service_version: str, environment: str
) -> Processor:
    """Build a processor that stamps service identity on every event."""
    metadata = {
        "service": service_name,
        "version": service_version,
        "environment": environment,
    }

    def add_service_metadata(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.update(metadata)
        return event_dict

    return add_service_metadata


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    colorized: bool = False,
    service_name: str = "scribeledger",
    service_version: str = "0.1.0",
    environment: str = "development",
) -> None:
    """
    Configure structlog and route standard library logging through it.

    Safe to call more than once; the previously installed handler is
    replaced rather than stacked.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: One JSON object per line; console rendering otherwise
        colorized: Colorize console output
        service_name: Stamped on every event
        service_version: Stamped on every event
        environment: Stamped on every event
    """
    global _handler

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_request_context,
        service_metadata_processor(service_name, service_version, environment),
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        redact_sensitive_fields,
    ]

    if json_output:
        rendering: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        rendering = [structlog.dev.ConsoleRenderer(colors=colorized)]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        # `extra=` fields from stdlib callers are lifted into the event before redaction
        foreign_pre_chain=[structlog.stdlib.ExtraAdder(), *shared],
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *rendering],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper()))
    _handler = handler


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger.

    Usage:
        logger = get_logger(__name__)
        logger.info("Credits granted", subscription_id=sub_id, credits=175)
    """
    return structlog.get_logger(name)


@contextmanager
def request_context(request_id: str | None = None, user_id: str | None = None) -> Iterator[str]:
    """
    Bind request_id and user_id for the duration of a request.

    user_id is always reset on exit, so an id set later by the auth
    dependency cannot carry over to the next request on the same task.

    Yields:
        The request id in effect (generated when not supplied)
    """
    request_id = request_id or f"req_{uuid.uuid4().hex[:16]}"
    request_token = request_id_var.set(request_id)
    user_token = user_id_var.set(user_id)
    try:
        yield request_id
    finally:
        user_id_var.reset(user_token)
        request_id_var.reset(request_token)


def set_user_id(user_id: str) -> None:
    user_id_var.set(user_id)


def get_request_id() -> str | None:
    return request_id_var.get()


def get_user_id() -> str | None:
    return user_id_var.get()
