"""Observability helpers for the checklist relay."""

from .metrics import (
    PIPELINE_EVENTS,
    MetricsRegistry,
    RequestMetricsMiddleware,
    metrics_registry,
)

__all__ = [
    "MetricsRegistry",
    "PIPELINE_EVENTS",
    "RequestMetricsMiddleware",
    "metrics_registry",
]
