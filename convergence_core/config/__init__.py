"""
Configuration module for Convergence Core.

Provides dataclass-based configuration with:
- Environment variable overrides
- YAML file loading
- Static environment tables for service discovery
"""

from convergence_core.config.core_config import (
    AlertThresholds,
    ControllerConfig,
    ConvergenceConfig,
    NotificationConfig,
    ObservabilityConfig,
    RegistryConfig,
    load_config,
)

from convergence_core.config.environment import (
    CREDENTIAL_ENV_VARS,
    DISCOVERY_HOSTS,
    SERVICE_ENV_VARS,
    WELL_KNOWN_PORTS,
    EnvServiceEntry,
    detect_credentials,
    discovery_targets,
    scan_service_env,
)

__all__ = [
    # Configs
    "AlertThresholds",
    "ControllerConfig",
    "ConvergenceConfig",
    "NotificationConfig",
    "ObservabilityConfig",
    "RegistryConfig",
    "load_config",
    # Environment tables
    "CREDENTIAL_ENV_VARS",
    "DISCOVERY_HOSTS",
    "SERVICE_ENV_VARS",
    "WELL_KNOWN_PORTS",
    "EnvServiceEntry",
    "detect_credentials",
    "discovery_targets",
    "scan_service_env",
]
