"""
Service registry data model.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class EndpointType(str, Enum):
    VOICE_PROVIDER = "voice-provider"
    AUTONOMOUS_AGENT = "autonomous-agent"
    RESEARCH_AGENT = "research-agent"
    TOOL_BRIDGE = "tool-bridge"
    WEBHOOK = "webhook"
    CHANNEL = "channel"


class EndpointStatus(str, Enum):
    UNKNOWN = "unknown"
    CHECKING = "checking"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def is_reachable(self) -> bool:
        return self in (EndpointStatus.HEALTHY, EndpointStatus.DEGRADED)


@dataclass
class ServiceEndpoint:
    """A backing-service address tracked by the registry."""

    id: str
    name: str
    type: EndpointType
    url: str
    status: EndpointStatus = EndpointStatus.UNKNOWN
    last_check: Optional[float] = None
    latency_ms: Optional[float] = None
    config: Optional[Dict[str, Any]] = None
    auto_discovered: bool = False

    def __post_init__(self):
        self.type = EndpointType(self.type)
        self.status = EndpointStatus(self.status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "url": self.url,
            "status": self.status.value,
            "last_check": self.last_check,
            "latency_ms": self.latency_ms,
            "config": self.config,
            "auto_discovered": self.auto_discovered,
        }


class ConfigEventType(str, Enum):
    DISCOVERED = "discovered"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    HEALED = "healed"
    ERROR = "error"
    CONFIG_CHANGED = "config_changed"


@dataclass
class ConfigEvent:
    """A change in an endpoint's configuration or reachability."""

    type: ConfigEventType
    service: ServiceEndpoint
    timestamp: float = field(default_factory=time.time)
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "service": self.service.to_dict(),
            "timestamp": self.timestamp,
            "details": self.details,
        }


class ServiceDecisionType(str, Enum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    RECONFIGURE = "reconfigure"
    HEAL = "heal"
    SCALE = "scale"


@dataclass
class ServiceDecision:
    """
    Registry decision record.

    ``approved`` reflects autonomous mode at the time of the decision;
    ``executed`` flips once an approved decision has been carried out.
    """

    type: ServiceDecisionType
    service: str
    reason: str
    approved: bool
    executed: bool = False
    id: str = field(default_factory=lambda: f"decision-{uuid.uuid4().hex[:12]}")
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "service": self.service,
            "reason": self.reason,
            "timestamp": self.timestamp,
            "approved": self.approved,
            "executed": self.executed,
        }


__all__ = [
    "EndpointType",
    "EndpointStatus",
    "ServiceEndpoint",
    "ConfigEventType",
    "ConfigEvent",
    "ServiceDecisionType",
    "ServiceDecision",
]
