"""
Convergence Core Configuration.

Provides centralized configuration for the task controller, the service
registry, the observability hub and the notification manager with:
- Environment variable support (CONVERGENCE_* overrides)
- Sensible defaults
- Type-safe configuration objects
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

OPERATION_MODES = ("supervised", "autonomous", "unrestricted")

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _env_flag(name: str, default: bool) -> bool:
    """Read a boolean flag from the environment."""
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    logger.warning(f"Ignoring unparseable boolean {name}={raw!r}")
    return default


def _env_optional_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


# ============================================================================
# CONTROLLER
# ============================================================================

@dataclass
class ControllerConfig:
    """Autonomous task controller configuration."""

    mode: str = "autonomous"
    self_healing: bool = True
    intelligent_routing: bool = True
    max_concurrent_tasks: int = 10
    task_timeout_seconds: float = 300.0
    max_retries: int = 3
    content_filtering: bool = False
    safety_guardrails: bool = False
    verbose_logging: bool = True

    # Loop timing
    dispatch_interval: float = 0.1
    health_check_interval: float = 10.0

    # Self-healing
    capability_cooldown: float = 60.0
    capability_baseline_success_rate: float = 0.7
    unhealthy_success_rate: float = 0.5

    # Terminal tasks kept for get_task()
    task_history_limit: int = 1000

    def __post_init__(self):
        """Load from environment variables."""
        mode = getattr(self.mode, "value", self.mode)
        self.mode = os.getenv("CONVERGENCE_MODE", mode).strip().lower()
        self.self_healing = _env_flag("CONVERGENCE_SELF_HEALING", self.self_healing)
        self.intelligent_routing = _env_flag(
            "CONVERGENCE_INTELLIGENT_ROUTING", self.intelligent_routing
        )
        self.max_concurrent_tasks = int(
            os.getenv("CONVERGENCE_MAX_CONCURRENT_TASKS", str(self.max_concurrent_tasks))
        )
        self.task_timeout_seconds = float(
            os.getenv("CONVERGENCE_TASK_TIMEOUT", str(self.task_timeout_seconds))
        )
        self.max_retries = int(os.getenv("CONVERGENCE_MAX_RETRIES", str(self.max_retries)))
        self.content_filtering = _env_flag("CONVERGENCE_CONTENT_FILTERING", self.content_filtering)
        self.safety_guardrails = _env_flag("CONVERGENCE_SAFETY_GUARDRAILS", self.safety_guardrails)
        self.verbose_logging = _env_flag("CONVERGENCE_VERBOSE_LOGGING", self.verbose_logging)
        self.dispatch_interval = float(
            os.getenv("CONVERGENCE_DISPATCH_INTERVAL", str(self.dispatch_interval))
        )
        self.health_check_interval = float(
            os.getenv("CONVERGENCE_CONTROLLER_HEALTH_INTERVAL", str(self.health_check_interval))
        )
        self.capability_cooldown = float(
            os.getenv("CONVERGENCE_CAPABILITY_COOLDOWN", str(self.capability_cooldown))
        )

        if self.mode not in OPERATION_MODES:
            raise ValueError(f"Unknown operation mode: {self.mode}")
        if self.max_concurrent_tasks <= 0:
            raise ValueError("max_concurrent_tasks must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# SERVICE REGISTRY
# ============================================================================

@dataclass
class RegistryConfig:
    """Service registry and health monitor configuration."""

    autonomous_mode: bool = True
    unrestricted_mode: bool = False
    auto_discover: bool = True
    auto_connect: bool = True
    auto_heal: bool = True
    health_check_interval: float = 30.0
    probe_timeout: float = 2.0
    # None keeps the two-state healthy/unhealthy model
    degraded_latency_ms: Optional[float] = None

    def __post_init__(self):
        """Load from environment variables."""
        self.autonomous_mode = _env_flag("CONVERGENCE_REGISTRY_AUTONOMOUS", self.autonomous_mode)
        self.unrestricted_mode = _env_flag(
            "CONVERGENCE_REGISTRY_UNRESTRICTED", self.unrestricted_mode
        )
        self.auto_discover = _env_flag("CONVERGENCE_AUTO_DISCOVER", self.auto_discover)
        self.auto_connect = _env_flag("CONVERGENCE_AUTO_CONNECT", self.auto_connect)
        self.auto_heal = _env_flag("CONVERGENCE_AUTO_HEAL", self.auto_heal)
        self.health_check_interval = float(
            os.getenv("CONVERGENCE_REGISTRY_HEALTH_INTERVAL", str(self.health_check_interval))
        )
        self.probe_timeout = float(os.getenv("CONVERGENCE_PROBE_TIMEOUT", str(self.probe_timeout)))
        self.degraded_latency_ms = _env_optional_float(
            "CONVERGENCE_DEGRADED_LATENCY_MS", self.degraded_latency_ms
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# OBSERVABILITY
# ============================================================================

@dataclass
class AlertThresholds:
    """Thresholds that raise anomaly alerts."""

    error_rate_percent: float = 5.0
    latency_ms: float = 5000.0
    memory_usage_percent: float = 90.0


@dataclass
class ObservabilityConfig:
    """Observability hub configuration."""

    debug_mode: bool = False
    metrics_retention_hours: float = 24.0
    log_retention_count: int = 10000
    span_retention_count: int = 5000
    anomaly_detection: bool = True
    alert_thresholds: AlertThresholds = field(default_factory=AlertThresholds)

    system_metrics_interval: float = 10.0
    health_check_interval: float = 30.0
    summary_interval: float = 60.0
    health_check_timeout: float = 5.0

    def __post_init__(self):
        """Load from environment variables."""
        self.debug_mode = _env_flag("CONVERGENCE_DEBUG", self.debug_mode)
        self.metrics_retention_hours = float(
            os.getenv("CONVERGENCE_METRICS_RETENTION_HOURS", str(self.metrics_retention_hours))
        )
        self.log_retention_count = int(
            os.getenv("CONVERGENCE_LOG_RETENTION", str(self.log_retention_count))
        )
        self.anomaly_detection = _env_flag("CONVERGENCE_ANOMALY_DETECTION", self.anomaly_detection)
        self.health_check_timeout = float(
            os.getenv("CONVERGENCE_HEALTH_CHECK_TIMEOUT", str(self.health_check_timeout))
        )


# ============================================================================
# NOTIFICATIONS
# ============================================================================

@dataclass
class NotificationConfig:
    """Notification manager configuration."""

    default_channels: List[str] = field(default_factory=lambda: ["console"])
    rate_limit_enabled: bool = True
    global_rate_limit_per_minute: int = 60
    deduplication_window: float = 60.0
    webhook_url: Optional[str] = None
    webhook_headers: Dict[str, str] = field(default_factory=dict)
    webhook_timeout: float = 10.0
    history_limit: int = 1000

    def __post_init__(self):
        """Load from environment variables."""
        self.webhook_url = os.getenv("NOTIFICATION_WEBHOOK_URL", self.webhook_url or "") or None
        self.rate_limit_enabled = _env_flag(
            "CONVERGENCE_NOTIFY_RATE_LIMIT", self.rate_limit_enabled
        )
        self.global_rate_limit_per_minute = int(
            os.getenv(
                "CONVERGENCE_NOTIFY_PER_MINUTE", str(self.global_rate_limit_per_minute)
            )
        )


# ============================================================================
# TOP LEVEL
# ============================================================================

@dataclass
class ConvergenceConfig:
    """
    Unified convergence configuration.

    Attributes:
        autonomous: Start the task controller during initialize()
        unrestricted: Start the controller in unrestricted mode
        auto_discover: Start the service registry during initialize()
        auto_notify: Forward subsystem events to the notification manager
        debug: Enable debug logging in the observability hub
    """

    autonomous: bool = True
    unrestricted: bool = False
    auto_discover: bool = True
    auto_notify: bool = True
    debug: bool = False
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)

    def __post_init__(self):
        """Load from environment variables."""
        self.autonomous = _env_flag("CONVERGENCE_AUTONOMOUS", self.autonomous)
        self.unrestricted = _env_flag("CONVERGENCE_UNRESTRICTED", self.unrestricted)
        self.auto_notify = _env_flag("CONVERGENCE_AUTO_NOTIFY", self.auto_notify)
        if self.debug:
            self.observability.debug_mode = True

    def summary(self) -> Dict[str, Any]:
        return {
            "autonomous": self.autonomous,
            "unrestricted": self.unrestricted,
            "auto_discover": self.auto_discover,
            "auto_notify": self.auto_notify,
            "debug": self.debug,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConvergenceConfig":
        """Build a config from a nested dictionary. Unknown keys are ignored."""
        nested = {
            "controller": ControllerConfig,
            "registry": RegistryConfig,
            "observability": ObservabilityConfig,
            "notifications": NotificationConfig,
        }
        flags = ("autonomous", "unrestricted", "auto_discover", "auto_notify", "debug")
        unknown = set(data) - set(nested) - set(flags)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {sorted(unknown)}")

        kwargs: Dict[str, Any] = {}
        for key, section_cls in nested.items():
            section = dict(data.get(key) or {})
            if key == "observability" and "alert_thresholds" in section:
                section["alert_thresholds"] = AlertThresholds(**section["alert_thresholds"])
            kwargs[key] = section_cls(**_known_fields(section_cls, section))
        for key in flags:
            if key in data:
                kwargs[key] = bool(data[key])
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ConvergenceConfig":
        """Load config from a YAML file."""
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)


def _known_fields(config_cls: Any, data: Dict[str, Any]) -> Dict[str, Any]:
    names = set(config_cls.__dataclass_fields__)
    unknown = set(data) - names
    if unknown:
        logger.warning(f"Ignoring unknown {config_cls.__name__} keys: {sorted(unknown)}")
    return {k: v for k, v in data.items() if k in names}


def load_config(path: Optional[Union[str, Path]] = None) -> ConvergenceConfig:
    """Load configuration from YAML when a path is given, else defaults plus environment."""
    if path is None:
        path = os.getenv("CONVERGENCE_CONFIG") or None
    if path is None:
        return ConvergenceConfig()
    return ConvergenceConfig.from_yaml(path)


__all__ = [
    "ControllerConfig",
    "RegistryConfig",
    "AlertThresholds",
    "ObservabilityConfig",
    "NotificationConfig",
    "ConvergenceConfig",
    "load_config",
]
