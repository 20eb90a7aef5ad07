# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# STATUS: Core - Structured logging with context
# PURPOSE: Consistent, queryable logging across all components
# CREATED: 19 OCT 2026
# ============================================================================
"""
Structured Logging

Provides human-readable or JSON logging for leaselock. Logs go to
stderr; stdout belongs to the command run under the lock.

Features:
- Contextual fields (namespace, lease, identity) carried across tasks
- JSON output for log aggregation
- "[leaselock]" prefix in human output

Usage:
    from core.logging import get_logger, log_context

    logger = get_logger("orchestrator.locker")

    with log_context(namespace="default", lease="backup", identity="host-1"):
        logger.info("Became leader")
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO, Union

LOG_PREFIX = "[leaselock] "


@dataclass(frozen=True)
class LogContext:
    """
    Context for structured logging.

    Stored in a ContextVar so that each asyncio task sees the context
    that was current when it was created.
    """
    namespace: Optional[str] = None
    lease: Optional[str] = None
    identity: Optional[str] = None
    component: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is not None and key != "extra":
                result[key] = value
        if self.extra:
            result.update(self.extra)
        return result


_current_context: ContextVar[LogContext] = ContextVar("leaselock_log_context", default=LogContext())


def get_current_context() -> LogContext:
    """Get current logging context."""
    return _current_context.get()


@contextmanager
def log_context(**kwargs):
    """
    Context manager for adding logging context.

    Args:
        **kwargs: Context fields to add

    Example:
        with log_context(lease="backup", identity="host-1"):
            logger.info("Waiting for the lease")
    """
    parent = get_current_context()
    new_context = LogContext(
        namespace=kwargs.get("namespace", parent.namespace),
        lease=kwargs.get("lease", parent.lease),
        identity=kwargs.get("identity", parent.identity),
        component=kwargs.get("component", parent.component),
        extra={**parent.extra, **kwargs.get("extra", {})},
    )
    token = _current_context.set(new_context)
    try:
        yield new_context
    finally:
        _current_context.reset(token)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs log records as JSON for easy parsing by log aggregators.
    """

    def __init__(self, include_context: bool = True, include_source: bool = True):
        super().__init__()
        self.include_context = include_context
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_context:
            context_dict = get_current_context().to_dict()
            if context_dict:
                log_data["context"] = context_dict

        # Include extra fields from record
        if hasattr(record, "extra") and record.extra:
            log_data["data"] = record.extra

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_source:
            log_data["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """
    Human-readable formatter.

    Includes context fields inline for easy reading.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for human reading."""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname.ljust(8)

        context = get_current_context()
        context_parts = []
        if context.namespace:
            context_parts.append(f"namespace={context.namespace}")
        if context.lease:
            context_parts.append(f"lease={context.lease}")
        if context.identity:
            context_parts.append(f"id={context.identity}")

        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""

        extra_str = ""
        if hasattr(record, "extra") and record.extra:
            extra_str = f" {record.extra}"

        result = f"{LOG_PREFIX}{timestamp} {level} {record.name}{context_str}: {record.getMessage()}{extra_str}"

        if record.exc_info:
            result += f"\n{self.formatException(record.exc_info)}"

        return result


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter for structured fields.

    Fields passed as extra= end up in record.extra; the current log
    context is added by the formatters.
    """

    def process(self, msg, kwargs):
        """Move extra fields under record.extra."""
        extra = kwargs.get("extra")
        if extra:
            kwargs["extra"] = {"extra": dict(extra)}
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (e.g., "orchestrator.locker")

    Returns:
        ContextLogger instance
    """
    return ContextLogger(logging.getLogger(name), {})


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Use JSON format
        stream: Output stream (defaults to stderr)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_output or os.getenv("LEASELOCK_LOG_FORMAT", "").lower() == "json":
        formatter: logging.Formatter = StructuredFormatter(include_context=True)
    else:
        formatter = HumanFormatter()

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(formatter)
    root.addHandler(handler)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "LogContext",
    "StructuredFormatter",
    "HumanFormatter",
    "ContextLogger",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_context",
]
