"""Structured logging configuration using structlog.

Operation logs carry ``action``, ``alias`` and ``log_id`` bound by
``esodm.core.action.Action``; one ``log_id`` ties together every backend
call of a logical operation.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from esodm.config.settings import ObservabilitySettings

# Loggers of the Elasticsearch client, which log every request at INFO.
TRANSPORT_LOGGERS = ("elastic_transport", "elasticsearch")


def drop_empty_fields(_logger: Any, _method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Remove ``None`` values, e.g. the alias of an operation spanning several collections."""
    return {key: value for key, value in event_dict.items() if value is not None}


def setup_logging(settings: ObservabilitySettings | None = None) -> None:
    """Configure structured logging for esodm.

    Records go to stderr so command output on stdout stays parseable.
    The client transport is only as verbose as esodm when the level is debug.

    Args:
        settings: Observability settings. Uses defaults if None.
    """
    log_level = settings.log_level.upper() if settings else "INFO"
    log_format = settings.log_format if settings else "json"
    level = getattr(logging, log_level, logging.INFO)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        drop_empty_fields,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "console":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)

    transport_level = level if level <= logging.DEBUG else max(level, logging.WARNING)
    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)
