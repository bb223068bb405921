"""
Observability for Convergence Core: metrics, logs, traces, health and alerts.
"""

from convergence_core.observability.hub import (
    Alert,
    AlertSeverity,
    HealthCheckResult,
    HealthState,
    LogEntry,
    LogLevel,
    MetricPoint,
    MetricType,
    ObservabilityHub,
    Span,
    SpanEvent,
    SpanStatus,
    metric_key,
    sanitize_metric_name,
)

__all__ = [
    "Alert",
    "AlertSeverity",
    "HealthCheckResult",
    "HealthState",
    "LogEntry",
    "LogLevel",
    "MetricPoint",
    "MetricType",
    "ObservabilityHub",
    "Span",
    "SpanEvent",
    "SpanStatus",
    "metric_key",
    "sanitize_metric_name",
]
