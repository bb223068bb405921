"""
Service registry and health monitoring for Convergence Core.
"""

from convergence_core.registry.models import (
    ConfigEvent,
    ConfigEventType,
    EndpointStatus,
    EndpointType,
    ServiceDecision,
    ServiceDecisionType,
    ServiceEndpoint,
)
from convergence_core.registry.prober import EndpointProber, ProbeResult, to_http_url
from convergence_core.registry.service_registry import (
    SERVICE_DOWN_EVENT,
    Notifier,
    Prober,
    ServiceRegistry,
)

__all__ = [
    "ConfigEvent",
    "ConfigEventType",
    "EndpointStatus",
    "EndpointType",
    "ServiceDecision",
    "ServiceDecisionType",
    "ServiceEndpoint",
    "EndpointProber",
    "ProbeResult",
    "to_http_url",
    "SERVICE_DOWN_EVENT",
    "Notifier",
    "Prober",
    "ServiceRegistry",
]
