"""
Monitoring module.

Provides structured logging and Prometheus metrics. The HTTP API lives in
``campaign_experiments.monitoring.api``.
"""

from .logger import (
    ContextLogger,
    LogCategory,
    LogFormat,
    get_logger,
    log_lifecycle,
    log_system,
    setup_logging,
)
from .metrics import MetricsCollector, get_metrics_collector

__all__ = [
    "ContextLogger",
    "LogCategory",
    "LogFormat",
    "get_logger",
    "log_lifecycle",
    "log_system",
    "setup_logging",
    "MetricsCollector",
    "get_metrics_collector",
]
