"""
Structured logging for tagcache.

Library modules only ask for a logger with :func:`get_logger`. Nothing is
printed until the host application (or the ``tagcache`` CLI) calls
:func:`configure_logging`, which routes structlog events through the
standard :mod:`logging` machinery so that records from redis-py and other
libraries come out in the same format.

Examples:
    >>> from tagcache.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=True, service="orders-api")
    >>> get_logger(__name__).info("cache_item_saved", key="user.42")

    Context bound for the duration of a block:

    >>> with LogContext(prefix="orders:"):
    ...     pool.clear()

Tags:
    logging, structlog, stdlib, tagcache
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

HANDLER_NAME = "tagcache"

_service = "tagcache"


def _add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service.name", _service)
    return event_dict


def _ecs_field_names(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Rename ``timestamp``/``level`` to their ECS spellings for JSON shipping."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


class _CurrentStdoutHandler(logging.StreamHandler):
    """Writes to whatever ``sys.stdout`` is at emit time.

    Test runners and ``CliRunner`` swap ``sys.stdout`` after logging is set up.
    """

    def __init__(self) -> None:
        super().__init__(sys.stdout)

    def emit(self, record: logging.LogRecord) -> None:
        self.stream = sys.stdout
        super().emit(record)


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "tagcache",
    add_timestamp: bool = True,
) -> None:
    """Install the tagcache log handler on the root logger.

    Calling it again replaces the previous handler rather than stacking a
    second one.

    Args:
        level: Root log level name (``DEBUG``, ``INFO``, ``WARNING``, ...).
        json_format: JSON lines if True, colored console if False, and
            JSON whenever stdout is not a terminal if None.
        service: Value of the ``service.name`` field on every event.
        add_timestamp: Prefix events with an ISO-8601 UTC timestamp.
    """
    global _service
    _service = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service,
    ]
    if add_timestamp:
        pre_chain.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    render_chain: list[Processor] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if json_format:
        render_chain += [
            _ecs_field_names,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        render_chain.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    # Module-level loggers are not cached so that structlog.testing.capture_logs
    # and later reconfiguration both reach them.
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=False,
    )

    handler = _CurrentStdoutHandler()
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(foreign_pre_chain=pre_chain, processors=render_chain)
    )

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger, normally ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Attach fields to every event logged from the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind fields on enter and drop them again on exit.

    Example:
        with LogContext(prefix="orders:", operation="commit"):
            pool.commit()
    """

    def __init__(self, **kwargs: Any):
        self._fields = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._fields)
        return self

    def __exit__(self, *exc_info) -> None:
        unbind_context(*self._fields)


__all__ = [
    "HANDLER_NAME",
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
