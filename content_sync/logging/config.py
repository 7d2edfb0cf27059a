"""Structured logging configuration with structlog.

Every event carries the service identity and, while a source run is in
progress, that run's ID. Per-run fields such as ``source_id`` are bound with
``LogContext`` so nested calls never have to pass them along.
"""

import logging
import sys
from collections.abc import Mapping
from contextvars import ContextVar, Token
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from .. import __version__

_run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)


def get_run_id() -> str | None:
    """ID of the source run executing in this task, if any."""
    return _run_id_var.get()


def set_run_id(run_id: str | None) -> None:
    _run_id_var.set(run_id)


def add_run_id(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    run_id = get_run_id()
    if run_id:
        event_dict["run_id"] = run_id
    return event_dict


def service_identity(name: str, version: str) -> Processor:
    """Processor stamping ``service`` and ``version`` onto each event."""

    def add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", name)
        event_dict.setdefault("version", version)
        return event_dict

    return add_service


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    service_name: str = "content-sync",
    service_version: str = __version__,
) -> None:
    """Configure structlog on top of the standard library logger.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: Render JSON lines; otherwise colored console output.
        service_name: Stamped on every event.
        service_version: Stamped on every event.
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_run_id,
        service_identity(service_name, service_version),
    ]

    renderer: list[Processor]
    if json_format:
        renderer = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=True)]

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level.upper()))

    structlog.configure(
        processors=[*shared_processors, *renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class LogContext:
    """Bind fields to every event logged inside the block.

    On exit each field goes back to what it was on entry, so nested
    contexts that rebind the same key do not clobber the outer value.
    """

    def __init__(self, **fields: Any):
        self._fields = fields
        self._tokens: Mapping[str, Token[Any]] = {}

    def __enter__(self) -> "LogContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self._fields)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
