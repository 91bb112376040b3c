"""
localci logging - structlog setup for the job engine.

Modules log through ``get_logger(__name__)``. Job and step identity travel
two ways: ``run_job`` binds ``job=`` into structlog's contextvars for the
duration of a job (so module-level loggers carry it too), and the
``ExecutionContext`` logger is bound with ``job=``/``step=`` for the
pipeline units themselves.

Architecture:
    ::

        configure_logging(level, json_format, service)
            │
            ▼
        ┌────────────────────────────────────────────┐
        │ TimeStamper(iso)            (optional)     │
        │ merge_contextvars           job=, step=    │
        │ add_log_level, add_logger_name             │
        │ service.name                               │
        │ exc_info / stack_info                      │
        ├──────────────────────┬─────────────────────┤
        │ json                 │ console             │
        │ @timestamp/log.level │ ConsoleRenderer     │
        │ JSONRenderer         │                     │
        └──────────────────────┴─────────────────────┘

Examples:
    >>> from localci.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> get_logger(__name__).debug("container.pull.cached", image="node:16")

Tags:
    logging, structlog, observability, localci
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_service = "localci"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("service.name", _service)
    return event_dict


def _elasticsearch_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Rename ``timestamp``/``level`` to their ECS field names."""
    for plain, ecs in (("timestamp", "@timestamp"), ("level", "log.level")):
        if plain in event_dict:
            event_dict[ecs] = event_dict.pop(plain)
    return event_dict


def _renderer(json_format: bool) -> list[Processor]:
    if json_format:
        return [_elasticsearch_compatible, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "localci",
    add_timestamp: bool = True,
) -> None:
    """Install the localci processor chain.

    Args:
        level: Minimum level name (``DEBUG``, ``INFO``, ...).
        json_format: JSON lines when true, console output when false;
            ``None`` picks JSON unless stdout is a terminal.
        service: Value of ``service.name`` on every event.
        add_timestamp: Prefix events with an ISO timestamp.
    """
    global _service
    _service = service
    numeric_level = getattr(logging, level.upper())
    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = []
    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))
    processors += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service_metadata,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        *_renderer(json_format),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


__all__ = ["configure_logging", "get_logger"]
