"""
Structured logging for the experimentation engine.

Provides:
- JSON and human-readable log formats
- Correlation IDs and per-test context (test, variant, campaign)
- Log categories for the engine's components
- TRACE level for per-event logging on hot paths
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any
from uuid import uuid4


# =============================================================================
# TRACE Level Logging (below DEBUG)
# =============================================================================

TRACE = 5
logging.addLevelName(TRACE, "TRACE")


def trace(self: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
    """Log a message at TRACE level.

    Reserved for output produced once per recorded event or allocation,
    which would drown everything else at DEBUG.
    """
    if self.isEnabledFor(TRACE):
        self._log(TRACE, message, args, **kwargs)


logging.Logger.trace = trace  # type: ignore[attr-defined]


class LogCategory(str, Enum):
    """Log categories for different components."""

    SYSTEM = "SYSTEM"
    LIFECYCLE = "LIFECYCLE"
    EVENTS = "EVENTS"
    STATS = "STATS"
    STORAGE = "STORAGE"
    API = "API"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    TEXT = "text"


# Record attributes copied verbatim into structured output
CONTEXT_FIELDS = ("correlation_id", "test_id", "variant_id", "campaign_id")


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def __init__(self, category: LogCategory = LogCategory.SYSTEM) -> None:
        super().__init__()
        self.category = category

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "category": getattr(record, "category", self.category.value),
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value:
                log_data[field] = value
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            log_data["extra_data"] = extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter for development."""

    def __init__(self, category: LogCategory = LogCategory.SYSTEM) -> None:
        super().__init__()
        self.category = category

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        category = getattr(record, "category", self.category.value)

        parts = [
            timestamp,
            f"[{record.levelname:8s}]",
            f"[{category:9s}]",
        ]

        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            parts.append(f"[{correlation_id[:8]}]")
        test_id = getattr(record, "test_id", None)
        if test_id:
            variant_id = getattr(record, "variant_id", None)
            parts.append(f"[{test_id}/{variant_id}]" if variant_id else f"[{test_id}]")

        parts.append(record.getMessage())

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            parts.append(f"| {extra_data}")

        message = " ".join(parts)
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that stamps category, correlation id and test context."""

    def __init__(
        self,
        logger: logging.Logger,
        category: LogCategory = LogCategory.SYSTEM,
        correlation_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(logger, {})
        self.category = category
        self.correlation_id = correlation_id or str(uuid4())
        self.context = dict(context or {})

    def process(
        self,
        msg: str,
        kwargs: dict[str, Any],
    ) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra", {})
        extra["category"] = self.category.value
        extra["correlation_id"] = self.correlation_id
        for key, value in self.context.items():
            if key in CONTEXT_FIELDS:
                extra.setdefault(key, value)
            else:
                extra.setdefault("extra_data", {})
                extra["extra_data"] = {key: value, **extra["extra_data"]}
        kwargs["extra"] = extra
        return msg, kwargs

    def trace(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(TRACE, msg, *args, **kwargs)

    def with_context(
        self,
        test_id: str | None = None,
        variant_id: str | None = None,
        campaign_id: str | None = None,
        **extra_data: Any,
    ) -> "ContextLogger":
        """Create a new logger carrying additional context.

        Args:
            test_id: Test the log lines refer to.
            variant_id: Variant the log lines refer to.
            campaign_id: Owning campaign.
            **extra_data: Additional context data.

        Returns:
            New ContextLogger sharing this logger's category and correlation id.
        """
        context = dict(self.context)
        if test_id:
            context["test_id"] = test_id
        if variant_id:
            context["variant_id"] = variant_id
        if campaign_id:
            context["campaign_id"] = campaign_id
        context.update(extra_data)
        return ContextLogger(self.logger, self.category, self.correlation_id, context)


def setup_logging(
    level: str = "INFO",
    log_format: LogFormat = LogFormat.JSON,
    log_file: Path | None = None,
) -> None:
    """Set up logging for the application.

    Args:
        level: Log level (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json or text).
        log_file: Optional log file path.
    """
    root_logger = logging.getLogger()
    level_name = level.upper()
    root_logger.setLevel(TRACE if level_name == "TRACE" else getattr(logging, level_name))

    root_logger.handlers.clear()

    if LogFormat(log_format) == LogFormat.JSON:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = TextFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=30,
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


@lru_cache(maxsize=32)
def get_logger(
    name: str,
    category: LogCategory = LogCategory.SYSTEM,
    correlation_id: str | None = None,
) -> ContextLogger:
    """Get a context logger for a component.

    Args:
        name: Logger name.
        category: Log category.
        correlation_id: Optional correlation ID.

    Returns:
        ContextLogger instance.
    """
    base_logger = logging.getLogger(name)
    return ContextLogger(base_logger, category, correlation_id)


# Convenience functions for quick logging
def log_system(message: str, level: str = "INFO", **kwargs: Any) -> None:
    """Log a system message."""
    logger = get_logger("system", LogCategory.SYSTEM)
    getattr(logger, level.lower())(message, extra={"extra_data": kwargs})


def log_lifecycle(message: str, test_id: str, level: str = "INFO", **kwargs: Any) -> None:
    """Log a test status transition."""
    logger = get_logger("lifecycle", LogCategory.LIFECYCLE)
    getattr(logger, level.lower())(
        message,
        extra={"test_id": test_id, "extra_data": kwargs},
    )


def log_trace(
    category: LogCategory,
    message: str,
    **kwargs: Any,
) -> None:
    """Log a trace-level message for per-event debugging.

    Args:
        category: Log category.
        message: Log message.
        **kwargs: Additional context data.
    """
    logger = get_logger(category.value.lower(), category)
    logger.trace(message, extra={"extra_data": kwargs})


def trace_event(test_id: str, variant_id: str, event_type: str, value: float | None = None) -> None:
    """Trace-log one recorded event."""
    data: dict[str, Any] = {"event_type": event_type}
    if value is not None:
        data["value"] = value
    logger = get_logger("events", LogCategory.EVENTS)
    logger.trace(
        f"Event: {event_type}",
        extra={"test_id": test_id, "variant_id": variant_id, "extra_data": data},
    )


def trace_latency(
    operation: str,
    latency_ms: float,
    component: str | None = None,
) -> None:
    """Trace-log operation latency."""
    message = f"Latency: {operation}={latency_ms:.3f}ms"
    if component:
        message = f"[{component}] {message}"
    log_trace(
        LogCategory.SYSTEM,
        message,
        operation=operation,
        latency_ms=latency_ms,
        component=component,
    )
