"""Structured logging configuration for converter-based applications.

This module standardizes logging using ``structlog``. It produces either JSON
(for machines) or a pretty console format (for humans) and binds consistent
service context so logs are useful when aggregated.

Typical usage
- Call ``configure_logging(service_name, log_level, log_format)`` at startup,
  or ``configure_logging_from_config(service_name, config)`` to use the
  ``TJC_LOG_*`` settings
- Lines from ``converters.*`` loggers carry a ``component`` key naming the
  converter module (``typed_json``, ``codecs``, ``web``, ...)
- Acquire loggers via ``structlog.get_logger(name)`` or ``get_logger``
"""

import logging
import sys
from typing import Any, MutableMapping

import structlog
from structlog.stdlib import LoggerFactory, add_logger_name

from libs.common.config import BaseConfig

CONVERTER_LOGGER_PREFIX = "converters."


def add_converter_component(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Tag events from ``converters.<module>`` loggers with ``component=<module>``."""
    name = event_dict.get("logger") or ""
    if name.startswith(CONVERTER_LOGGER_PREFIX):
        event_dict.setdefault("component", name[len(CONVERTER_LOGGER_PREFIX):])
    return event_dict


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
    **kwargs: Any
) -> None:
    """Configure structured logging for a service.

    Parameters
    - service_name: Logical service identifier bound to each log line
    - log_level: ``DEBUG``, ``INFO``, ``WARNING``, ``ERROR`` (case-insensitive)
    - log_format: ``json`` for production; ``console`` for local dev
    - kwargs: Extra context bound to every log line
    """

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_logger_name,
        add_converter_component,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name, **kwargs)


def configure_logging_from_config(service_name: str, config: BaseConfig, **kwargs: Any) -> None:
    """Configure logging from ``TJC_LOG_LEVEL`` / ``TJC_LOG_FORMAT`` settings.

    The configured ``tjc_env`` is bound as ``environment`` on every line.
    """
    configure_logging(
        service_name,
        log_level=config.tjc_log_level,
        log_format=config.tjc_log_format,
        environment=config.tjc_env,
        **kwargs
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
