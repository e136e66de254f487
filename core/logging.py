from __future__ import annotations

"""
Structured logging setup for the Veridity trust core.

This module configures **structlog** + the stdlib ``logging`` package so that:
- All logs (including library loggers) are emitted as structured JSON by
  default, or through the pretty console renderer in development.
- Context variables (request id, token type, circuit id) are merged into
  every event.
- Secrets and private proof inputs are redacted before rendering.

Quick start
-----------
    from core.logging import setup_logging, get_logger

    setup_logging(level="INFO", log_format="json")  # once on process start
    log = get_logger(__name__)
    log.info("qr.token.issued", token_type="login_request")

Event names are dotted (``<package>.<component>.<event>``).
"""

import logging
from typing import Any, Dict, Iterable, Optional, TextIO

import structlog
from structlog.contextvars import merge_contextvars
from structlog.processors import JSONRenderer


# ------------------------------ Redaction ------------------------------------


REDACT_KEYS = {
    "token",
    "signature",
    "secret",
    "signing_secret",
    "encryption_secret",
    "salt",
    "private_inputs",
    "identity_secret",
    "date_of_birth",
    "citizenship_number",
}


def _redact_secrets(_: logging.Logger, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for k in list(event_dict.keys()):
        if k.lower() in REDACT_KEYS and event_dict[k] is not None:
            event_dict[k] = "***"
    return event_dict


# ------------------------------ Setup ----------------------------------------


def _base_processors(service_name: str, include_stacktrace: bool) -> Iterable:
    yield structlog.stdlib.add_log_level
    yield structlog.processors.TimeStamper(fmt="iso", utc=True)
    yield merge_contextvars
    yield structlog.processors.StackInfoRenderer()
    if include_stacktrace:
        yield structlog.processors.format_exc_info
    yield _redact_secrets
    yield structlog.processors.UnicodeDecoder()

    def _ensure_service(_: logging.Logger, __: str, ev: Dict[str, Any]) -> Dict[str, Any]:
        ev.setdefault("service", service_name)
        return ev

    yield _ensure_service


def setup_logging(
    *,
    service_name: str = "veridity",
    level: str | int = "INFO",
    log_format: str = "json",
    include_stacktrace: Optional[bool] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure structlog + stdlib logging. Safe to call more than once; the
    root handler is replaced, not duplicated. Output goes to ``stream``
    (stderr by default).
    """
    log_format = log_format.lower()
    if include_stacktrace is None:
        include_stacktrace = log_format == "json"

    processors = list(_base_processors(service_name, include_stacktrace))

    if log_format == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=True, sort_keys=False)
    else:
        renderer = JSONRenderer(sort_keys=True)

    # Events are rendered once, by the stdlib handler below.
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            *processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                *processors,
            ],
        )
    )

    root = logging.getLogger()
    root.setLevel(level if isinstance(level, int) else str(level).upper())
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(handler)


def setup_from_settings(settings: Any) -> None:
    """Convenience bridge for `core.config.Settings`."""
    setup_logging(
        service_name=settings.service_name,
        level=settings.log_level,
        log_format=settings.log_format,
    )


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Return a lazy structlog logger named after the stdlib logger ``name``.

    Nothing is bound here: module-level loggers are created at import time,
    before `setup_logging` runs, and must pick up the configuration in force
    when they first log.
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()


# ------------------------------ Context helpers -------------------------------

def bind_context(**kv: Any) -> None:
    """Bind request-scoped key/value pairs into the structlog contextvars store."""
    structlog.contextvars.bind_contextvars(**kv)


def clear_context(*keys: str) -> None:
    """Clear specific keys from contextvars, or all of them if none are given."""
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()


__all__ = [
    "REDACT_KEYS",
    "setup_logging",
    "setup_from_settings",
    "get_logger",
    "bind_context",
    "clear_context",
]
