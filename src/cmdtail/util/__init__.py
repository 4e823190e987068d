"""Utility helpers package."""

from cmdtail.util.logging import configure_logging, get_logger
from cmdtail.util.observability import (
    EventLogger,
    MetricsCollector,
    ObservabilityManager,
    create_observability_manager,
)

__all__ = [
    "EventLogger",
    "MetricsCollector",
    "ObservabilityManager",
    "configure_logging",
    "create_observability_manager",
    "get_logger",
]
