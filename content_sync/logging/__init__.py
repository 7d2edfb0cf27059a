"""Structured logging module."""

from .config import (
    LogContext,
    configure_logging,
    get_logger,
    get_run_id,
    set_run_id,
)

__all__ = [
    "LogContext",
    "configure_logging",
    "get_logger",
    "get_run_id",
    "set_run_id",
]
