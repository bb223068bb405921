"""
Observability Hub - Metrics, Logs, Traces, Health, Alerts
=========================================================

Process-wide telemetry sink shared by the controller and the registry.

Features:
- Counters, gauges and histograms with label sets
- Structured log buffer mirrored to stdlib logging
- Span stack with parent/trace propagation
- Registered async health checks, run concurrently
- Alerts with threshold-based anomaly detection
- Prometheus text exposition and a JSON dashboard snapshot
- Periodic process memory gauges via psutil
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
import time
import uuid
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple, Union

import psutil

from convergence_core.config.core_config import ObservabilityConfig
from convergence_core.core.events import EventEmitter

logger = logging.getLogger(__name__)

Labels = Optional[Dict[str, str]]
HealthCheckFn = Callable[[], Awaitable[Union[bool, Dict[str, Any]]]]


# ============================================================================
# RECORDS
# ============================================================================

class MetricType(str, Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


_STDLIB_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.FATAL: logging.CRITICAL,
}


class SpanStatus(str, Enum):
    OK = "ok"
    ERROR = "error"
    UNSET = "unset"


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class MetricPoint:
    name: str
    value: float
    type: MetricType
    labels: Dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "type": self.type.value,
            "labels": self.labels,
            "timestamp": self.timestamp,
        }


@dataclass
class LogEntry:
    level: LogLevel
    component: str
    message: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "component": self.component,
            "message": self.message,
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "data": self.data,
        }


@dataclass
class SpanEvent:
    name: str
    timestamp: float = field(default_factory=time.time)
    attributes: Optional[Dict[str, Any]] = None


@dataclass
class Span:
    trace_id: str
    span_id: str
    name: str
    parent_span_id: Optional[str] = None
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    status: SpanStatus = SpanStatus.UNSET
    attributes: Dict[str, Any] = field(default_factory=dict)
    events: List[SpanEvent] = field(default_factory=list)

    @property
    def duration_ms(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "name": self.name,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "status": self.status.value,
            "attributes": self.attributes,
            "events": [
                {"name": e.name, "timestamp": e.timestamp, "attributes": e.attributes}
                for e in self.events
            ],
        }


@dataclass
class HealthCheckResult:
    name: str
    status: HealthState = HealthState.HEALTHY
    latency_ms: float = 0.0
    message: Optional[str] = None
    last_check: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
            "message": self.message,
            "last_check": self.last_check,
        }


@dataclass
class Alert:
    severity: AlertSeverity
    title: str
    message: str
    source: str
    id: str = field(default_factory=lambda: f"alert-{uuid.uuid4().hex[:12]}")
    timestamp: float = field(default_factory=time.time)
    acknowledged: bool = False
    resolved_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "source": self.source,
            "timestamp": self.timestamp,
            "acknowledged": self.acknowledged,
            "resolved_at": self.resolved_at,
        }


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


def metric_key(name: str, labels: Labels = None) -> str:
    """Stable key for a metric series: name{k=v,...} with sorted labels."""
    if not labels:
        return name
    label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
    return f"{name}{{{label_str}}}"


_INVALID_METRIC_CHARS = re.compile(r"[^a-zA-Z0-9_:]")


def sanitize_metric_name(name: str) -> str:
    cleaned = _INVALID_METRIC_CHARS.sub("_", name)
    if cleaned and cleaned[0].isdigit():
        cleaned = "_" + cleaned
    return cleaned


def _format_labels(labels: Dict[str, str]) -> str:
    if not labels:
        return ""
    parts = []
    for key, value in sorted(labels.items()):
        escaped = str(value).replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        parts.append(f'{sanitize_metric_name(key)}="{escaped}"')
    return "{" + ",".join(parts) + "}"


# ============================================================================
# HUB
# ============================================================================

class ObservabilityHub(EventEmitter):
    """
    Central telemetry hub.

    Events: metric, log, span_start, span_end, alert, alert_acknowledged,
    alert_resolved, health_check, summary
    """

    def __init__(self, config: Optional[ObservabilityConfig] = None):
        super().__init__()
        self.config = config or ObservabilityConfig()

        self._metrics: Deque[MetricPoint] = deque()
        self._logs: Deque[LogEntry] = deque(maxlen=self.config.log_retention_count)
        self._spans: "OrderedDict[str, Span]" = OrderedDict()
        self._active_spans: "OrderedDict[str, Span]" = OrderedDict()
        self._health_checks: Dict[str, HealthCheckFn] = {}
        self._health_results: Dict[str, HealthCheckResult] = {}
        self._alerts: List[Alert] = []

        # Series are keyed by (name, sorted label items)
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], float] = {}
        self._gauges: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], float] = {}
        self._histograms: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], List[float]] = {}

        self._tasks: List[asyncio.Task] = []
        self._running = False

    # =========================================================================
    # METRICS
    # =========================================================================

    @staticmethod
    def _series(name: str, labels: Labels) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        return name, tuple(sorted((labels or {}).items()))

    def increment_counter(self, name: str, value: float = 1, labels: Labels = None) -> float:
        series = self._series(name, labels)
        total = self._counters.get(series, 0) + value
        self._counters[series] = total
        self._record(MetricPoint(name, total, MetricType.COUNTER, dict(labels or {})))
        return total

    def set_gauge(self, name: str, value: float, labels: Labels = None) -> None:
        self._gauges[self._series(name, labels)] = value
        self._record(MetricPoint(name, value, MetricType.GAUGE, dict(labels or {})))

    def record_histogram(self, name: str, value: float, labels: Labels = None) -> None:
        stats = self._histograms.setdefault(self._series(name, labels), [0, 0.0])
        stats[0] += 1
        stats[1] += value
        self._record(MetricPoint(name, value, MetricType.HISTOGRAM, dict(labels or {})))

    def record_latency(self, name: str, start_time: float, labels: Labels = None) -> float:
        """Record ms elapsed since ``start_time`` (a time.time() value)."""
        latency_ms = (time.time() - start_time) * 1000
        self.record_histogram(f"{name}_latency_ms", latency_ms, labels)
        return latency_ms

    def get_counter(self, name: str, labels: Labels = None) -> float:
        return self._counters.get(self._series(name, labels), 0)

    def get_gauge(self, name: str, labels: Labels = None) -> Optional[float]:
        return self._gauges.get(self._series(name, labels))

    def _record(self, point: MetricPoint) -> None:
        self._metrics.append(point)
        self.emit("metric", point)

        cutoff = time.time() - self.config.metrics_retention_hours * 3600
        while self._metrics and self._metrics[0].timestamp < cutoff:
            self._metrics.popleft()

        if self.config.anomaly_detection:
            self._check_thresholds(point)

    def _check_thresholds(self, point: MetricPoint) -> None:
        thresholds = self.config.alert_thresholds

        if "error_rate" in point.name and point.value > thresholds.error_rate_percent:
            self._raise_once(
                AlertSeverity.WARNING,
                "High Error Rate",
                f"Error rate is {point.value}% (threshold: {thresholds.error_rate_percent}%)",
                point.name,
            )

        if "latency" in point.name and point.value > thresholds.latency_ms:
            self._raise_once(
                AlertSeverity.WARNING,
                "High Latency",
                f"Latency is {point.value:.0f}ms (threshold: {thresholds.latency_ms:.0f}ms)",
                point.name,
            )

    def get_metrics_in_range(self, start_time: float, end_time: float) -> List[MetricPoint]:
        return [m for m in self._metrics if start_time <= m.timestamp <= end_time]

    # =========================================================================
    # LOGGING
    # =========================================================================

    def debug(self, component: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        if self.config.debug_mode:
            self._log(LogLevel.DEBUG, component, message, data)

    def info(self, component: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.INFO, component, message, data)

    def warn(self, component: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.WARN, component, message, data)
        self.increment_counter("log_warnings_total", 1, {"component": component})

    def error(self, component: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.ERROR, component, message, data)
        self.increment_counter("log_errors_total", 1, {"component": component})

    def fatal(self, component: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.FATAL, component, message, data)
        self.create_alert(AlertSeverity.CRITICAL, f"Fatal error in {component}", message, component)

    def _log(
        self,
        level: LogLevel,
        component: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> LogEntry:
        span = self.get_current_span()
        entry = LogEntry(
            level=level,
            component=component,
            message=message,
            trace_id=span.trace_id if span else None,
            span_id=span.span_id if span else None,
            data=data,
        )
        self._logs.append(entry)
        self.emit("log", entry)

        component_logger = logging.getLogger(f"convergence_core.{component.lower()}")
        suffix = f" {data}" if data else ""
        component_logger.log(_STDLIB_LEVELS[level], f"[{component}] {message}{suffix}")
        return entry

    def get_logs(self, limit: int = 100) -> List[LogEntry]:
        return list(self._logs)[-limit:] if limit > 0 else []

    def get_logs_for_component(self, component: str, limit: int = 100) -> List[LogEntry]:
        matching = [entry for entry in self._logs if entry.component == component]
        return matching[-limit:] if limit > 0 else []

    # =========================================================================
    # TRACING
    # =========================================================================

    def start_span(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> Span:
        """Start a span as a child of the current span, if any."""
        parent = self.get_current_span()
        span = Span(
            trace_id=parent.trace_id if parent else _new_id(),
            span_id=_new_id(),
            parent_span_id=parent.span_id if parent else None,
            name=name,
            attributes=dict(attributes or {}),
        )
        self._spans[span.span_id] = span
        self._active_spans[span.span_id] = span
        self._trim_spans()

        self.emit("span_start", span)
        return span

    def end_span(self, span_id: str, status: Union[SpanStatus, str] = SpanStatus.OK) -> Optional[Span]:
        span = self._spans.get(span_id)
        if span is None or span.end_time is not None:
            return None

        span.end_time = time.time()
        span.status = SpanStatus(status)
        self._active_spans.pop(span_id, None)
        self.emit("span_end", span)

        self.record_histogram("span_duration_ms", span.duration_ms, {"name": span.name})
        return span

    def add_span_event(
        self,
        span_id: str,
        name: str,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> bool:
        span = self._spans.get(span_id)
        if span is None:
            return False
        span.events.append(SpanEvent(name=name, attributes=attributes))
        return True

    def get_current_span(self) -> Optional[Span]:
        """The most recently started span that has not ended."""
        if not self._active_spans:
            return None
        return next(reversed(self._active_spans.values()))

    def get_span(self, span_id: str) -> Optional[Span]:
        return self._spans.get(span_id)

    def _trim_spans(self) -> None:
        limit = self.config.span_retention_count
        if len(self._spans) <= limit:
            return
        for span_id in list(self._spans):
            if len(self._spans) <= limit:
                break
            if span_id not in self._active_spans:
                del self._spans[span_id]

    # =========================================================================
    # HEALTH CHECKS
    # =========================================================================

    def register_health_check(self, name: str, check: HealthCheckFn) -> None:
        """
        Register an async health check.

        The check returns a bool or a dict with ``healthy`` and an optional
        ``message``/``degraded``. Raising marks the check unhealthy.
        """
        self._health_checks[name] = check
        self._health_results[name] = HealthCheckResult(name=name)

    def unregister_health_check(self, name: str) -> None:
        self._health_checks.pop(name, None)
        self._health_results.pop(name, None)

    async def run_health_checks(self) -> List[HealthCheckResult]:
        """Run every registered check concurrently."""
        names = list(self._health_checks)
        if not names:
            return []
        results = await asyncio.gather(*(self._run_check(name) for name in names))
        self.emit("health_check", results)
        return list(results)

    async def _run_check(self, name: str) -> HealthCheckResult:
        check = self._health_checks[name]
        started = time.time()

        timeout = self.config.health_check_timeout
        try:
            outcome = check()
            if inspect.isawaitable(outcome):
                outcome = await asyncio.wait_for(outcome, timeout)
        except asyncio.TimeoutError:
            return self._unhealthy_check(name, started, f"Health check timed out after {timeout}s")
        except Exception as e:
            return self._unhealthy_check(name, started, str(e))

        if isinstance(outcome, dict):
            healthy = bool(outcome.get("healthy"))
            degraded = bool(outcome.get("degraded"))
            message = outcome.get("message")
        else:
            healthy, degraded, message = bool(outcome), False, None

        if not healthy:
            status = HealthState.UNHEALTHY
        elif degraded:
            status = HealthState.DEGRADED
        else:
            status = HealthState.HEALTHY

        latency_ms = (time.time() - started) * 1000
        result = HealthCheckResult(
            name=name,
            status=status,
            latency_ms=latency_ms,
            message=message,
            last_check=time.time(),
        )
        self._health_results[name] = result
        self.set_gauge(f"health_check_{name}", 1 if healthy else 0)
        self.record_histogram(f"health_check_{name}_latency_ms", latency_ms)
        return result

    def _unhealthy_check(self, name: str, started: float, message: str) -> HealthCheckResult:
        result = HealthCheckResult(
            name=name,
            status=HealthState.UNHEALTHY,
            latency_ms=(time.time() - started) * 1000,
            message=message,
            last_check=time.time(),
        )
        self._health_results[name] = result
        self.set_gauge(f"health_check_{name}", 0)
        return result

    def get_health_status(self) -> List[HealthCheckResult]:
        return list(self._health_results.values())

    def is_healthy(self) -> bool:
        return all(r.status == HealthState.HEALTHY for r in self._health_results.values())

    # =========================================================================
    # ALERTS
    # =========================================================================

    def create_alert(
        self,
        severity: Union[AlertSeverity, str],
        title: str,
        message: str,
        source: str,
    ) -> Alert:
        alert = Alert(severity=AlertSeverity(severity), title=title, message=message, source=source)
        self._alerts.append(alert)
        self.emit("alert", alert)
        self.increment_counter("alerts_total", 1, {"severity": alert.severity.value, "source": source})
        return alert

    def _raise_once(self, severity: AlertSeverity, title: str, message: str, source: str) -> Optional[Alert]:
        """Create an alert unless an identical one is still active."""
        for alert in self._alerts:
            if alert.resolved_at is None and alert.title == title and alert.source == source:
                return None
        return self.create_alert(severity, title, message, source)

    def _find_alert(self, alert_id: str) -> Optional[Alert]:
        for alert in self._alerts:
            if alert.id == alert_id:
                return alert
        return None

    def acknowledge_alert(self, alert_id: str) -> bool:
        alert = self._find_alert(alert_id)
        if alert is None:
            return False
        alert.acknowledged = True
        self.emit("alert_acknowledged", alert)
        return True

    def resolve_alert(self, alert_id: str) -> bool:
        alert = self._find_alert(alert_id)
        if alert is None or alert.resolved_at is not None:
            return False
        alert.resolved_at = time.time()
        self.emit("alert_resolved", alert)
        return True

    def get_active_alerts(self) -> List[Alert]:
        return [a for a in self._alerts if a.resolved_at is None]

    # =========================================================================
    # SYSTEM METRICS
    # =========================================================================

    def collect_system_metrics(self) -> Dict[str, float]:
        """Record process and system memory gauges."""
        process = psutil.Process()
        memory = process.memory_info()
        system = psutil.virtual_memory()

        values = {
            "memory_rss_bytes": float(memory.rss),
            "memory_vms_bytes": float(memory.vms),
            "memory_process_percent": float(process.memory_percent()),
            "memory_system_percent": float(system.percent),
        }
        for name, value in values.items():
            self.set_gauge(name, value)

        threshold = self.config.alert_thresholds.memory_usage_percent
        if system.percent > threshold:
            self._raise_once(
                AlertSeverity.WARNING,
                "High Memory Usage",
                f"Memory usage is {system.percent:.1f}%",
                "system",
            )
        return values

    # =========================================================================
    # EXPORT
    # =========================================================================

    def get_dashboard_data(self) -> Dict[str, Any]:
        active_alerts = self.get_active_alerts()
        recent_logs = list(self._logs)[-100:]

        recent_traces: List[str] = []
        for span in self._spans.values():
            if span.trace_id not in recent_traces:
                recent_traces.append(span.trace_id)

        return {
            "metrics": {
                "counters": {metric_key(n, dict(l)): v for (n, l), v in self._counters.items()},
                "gauges": {metric_key(n, dict(l)): v for (n, l), v in self._gauges.items()},
            },
            "health": [r.to_dict() for r in self.get_health_status()],
            "alerts": {
                "active": len(active_alerts),
                "critical": sum(1 for a in active_alerts if a.severity == AlertSeverity.CRITICAL),
                "warning": sum(1 for a in active_alerts if a.severity == AlertSeverity.WARNING),
                "info": sum(1 for a in active_alerts if a.severity == AlertSeverity.INFO),
            },
            "logs": {
                "recent": [entry.to_dict() for entry in recent_logs],
                "error_count": sum(
                    1 for entry in recent_logs if entry.level in (LogLevel.ERROR, LogLevel.FATAL)
                ),
            },
            "traces": {
                "active_spans": len(self._active_spans),
                "recent_traces": recent_traces[-10:],
            },
        }

    def export_prometheus(self) -> str:
        """Render counters, gauges and histogram summaries in text exposition format."""
        lines: List[str] = []

        def render(series: Dict, metric_type: str) -> None:
            families: Dict[str, List[Tuple[Dict[str, str], Any]]] = {}
            for (name, labels), value in series.items():
                families.setdefault(sanitize_metric_name(name), []).append((dict(labels), value))

            for family, samples in families.items():
                lines.append(f"# TYPE {family} {metric_type}")
                for labels, value in samples:
                    if metric_type == "summary":
                        count, total = value
                        lines.append(f"{family}_count{_format_labels(labels)} {count}")
                        lines.append(f"{family}_sum{_format_labels(labels)} {total}")
                    else:
                        lines.append(f"{family}{_format_labels(labels)} {value}")

        render(self._counters, "counter")
        render(self._gauges, "gauge")
        render(self._histograms, "summary")

        return "\n".join(lines) + ("\n" if lines else "")

    # =========================================================================
    # PERIODIC TASKS
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._periodic(self.config.system_metrics_interval, self._system_tick)),
            asyncio.create_task(self._periodic(self.config.health_check_interval, self.run_health_checks)),
            asyncio.create_task(self._periodic(self.config.summary_interval, self._summary_tick)),
        ]
        logger.info("[Observability] Hub started")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("[Observability] Hub stopped")

    async def _system_tick(self) -> None:
        self.collect_system_metrics()

    async def _summary_tick(self) -> None:
        self.emit("summary", self.get_dashboard_data())

    async def _periodic(self, interval: float, tick: Callable[[], Awaitable[Any]]) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval)
                await tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[Observability] Periodic task failed: {e}")


__all__ = [
    "MetricType",
    "LogLevel",
    "SpanStatus",
    "HealthState",
    "AlertSeverity",
    "MetricPoint",
    "LogEntry",
    "SpanEvent",
    "Span",
    "HealthCheckResult",
    "Alert",
    "ObservabilityHub",
    "metric_key",
    "sanitize_metric_name",
]
