"""
structlog setup for the risk service.

Every record carries service, level, timestamp and event_type. Per-request
fields (request_id, endpoint, tier) are bound with request_context(), which
stores them in contextvars so analyzer tasks spawned inside the block inherit
them. ScamShieldError values passed as log fields are flattened to their
error code.

No scamshield imports here: every other module imports this one.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

SERVICE_NAME = "scamshield"

_configured = False


def _event_type(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog's 'event' becomes event_type."""
    event_dict.setdefault("event_type", event_dict.pop("event", None))
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _error_codes(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Replace ScamShieldError field values with code and message."""
    for key, value in list(event_dict.items()):
        if isinstance(value, BaseException) and hasattr(value, "code"):
            event_dict[key] = f"{value.code}: {value}"
    return event_dict


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """(Re)configure structlog. Defaults come from LOG_LEVEL and LOG_FORMAT (json | console)."""
    global _configured
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    fmt = (fmt or os.getenv("LOG_FORMAT", "json")).strip().lower()

    renderer: Any
    if fmt == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    else:
        renderer = structlog.processors.JSONRenderer(default=str)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            structlog.processors.format_exc_info,
            _error_codes,
            _event_type,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level_name, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    _configured = True


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Module logger; first positional argument is the event_type:

        logger = get_logger(__name__)
        logger.info("analyzer_done", analyzer="language-pattern", risk_score=45)
    """
    if not _configured:
        configure_logging()
    return structlog.get_logger(name).bind(logger=name)


def bind_request(request_id: str, **context: Any) -> structlog.BoundLogger:
    """Logger with request_id (and any extra fields, e.g. endpoint, tier) bound."""
    return get_logger(SERVICE_NAME).bind(request_id=request_id, **context)


@contextmanager
def request_context(request_id: str, **context: Any) -> Iterator[None]:
    """Bind request fields into contextvars for every log call inside the block."""
    with structlog.contextvars.bound_contextvars(request_id=request_id, **context):
        yield
