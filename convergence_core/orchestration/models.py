"""
Task orchestration data model.

Tasks, capabilities and decisions shared by the controller, the router and
the executors. Enum values are the wire strings, so callers may pass either
the enum member or its plain string value.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Set


# ============================================================================
# ENUMS
# ============================================================================

class TaskType(str, Enum):
    """Kinds of submitted work."""
    VOICE = "voice"
    TEXT = "text"
    CODE = "code"
    RESEARCH = "research"
    AUTONOMOUS = "autonomous"
    CUSTOM = "custom"


class TaskPriority(str, Enum):
    """Priority classes; lower rank dispatches first."""
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.CRITICAL: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.NORMAL: 2,
    TaskPriority.LOW: 3,
}


class TaskStatus(str, Enum):
    QUEUED = "queued"
    ASSIGNED = "assigned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: FrozenSet[TaskStatus] = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)


class CapabilityType(str, Enum):
    """Execution backend families."""
    VOICE_PROVIDER = "voice-provider"
    AUTONOMOUS_AGENT = "autonomous-agent"
    RESEARCH_AGENT = "research-agent"
    TOOL_BRIDGE = "tool-bridge"
    CUSTOM = "custom"


class DecisionType(str, Enum):
    ROUTE = "route"
    SCALE = "scale"
    HEAL = "heal"
    OPTIMIZE = "optimize"
    RESTRICT = "restrict"
    UNRESTRICT = "unrestrict"


# Fixed confidence per decision type
DECISION_CONFIDENCE: Dict[DecisionType, float] = {
    DecisionType.ROUTE: 0.9,
    DecisionType.SCALE: 0.8,
    DecisionType.HEAL: 0.85,
    DecisionType.OPTIMIZE: 0.75,
    DecisionType.RESTRICT: 0.7,
    DecisionType.UNRESTRICT: 0.6,
}


class OperationMode(str, Enum):
    """Controller-wide policy switch."""
    SUPERVISED = "supervised"
    AUTONOMOUS = "autonomous"
    UNRESTRICTED = "unrestricted"


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


# ============================================================================
# RECORDS
# ============================================================================

@dataclass
class Task:
    """A unit of work owned by the controller."""

    type: TaskType
    input: Dict[str, Any] = field(default_factory=dict)
    priority: TaskPriority = TaskPriority.NORMAL
    max_retries: int = 3
    id: str = field(default_factory=lambda: _new_id("task"))
    status: TaskStatus = TaskStatus.QUEUED
    assigned_to: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    result: Any = None
    error: Optional[str] = None
    retry_count: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "input": self.input,
            "priority": self.priority.value,
            "status": self.status.value,
            "assigned_to": self.assigned_to,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "result": self.result,
            "error": self.error,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
        }


@dataclass
class Capability:
    """A registered execution backend."""

    id: str
    name: str
    type: CapabilityType
    priority: int = 1
    enabled: bool = True
    max_concurrent: int = 5
    current_load: int = 0
    success_rate: float = 1.0
    avg_latency_ms: float = 0.0
    tags: Set[str] = field(default_factory=set)

    def __post_init__(self):
        self.type = CapabilityType(self.type)
        self.tags = set(self.tags)

    @property
    def has_capacity(self) -> bool:
        return self.current_load < self.max_concurrent

    def score(self) -> float:
        return (
            self.priority * 10
            + self.success_rate * 5
            - self.avg_latency_ms / 1000
            - self.current_load
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "priority": self.priority,
            "enabled": self.enabled,
            "max_concurrent": self.max_concurrent,
            "current_load": self.current_load,
            "success_rate": round(self.success_rate, 4),
            "avg_latency_ms": round(self.avg_latency_ms, 2),
            "tags": sorted(self.tags),
        }


@dataclass(frozen=True)
class Decision:
    """Audit record of an autonomous choice. Never mutated."""

    type: DecisionType
    reason: str
    input: Any = None
    output: Any = None
    confidence: float = 0.0
    executed: bool = True
    requires_approval: bool = False
    id: str = field(default_factory=lambda: _new_id("decision"))
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "reason": self.reason,
            "input": self.input,
            "output": self.output,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
            "executed": self.executed,
            "requires_approval": self.requires_approval,
        }


def default_capabilities() -> list:
    """Built-in capabilities registered at controller construction."""
    return [
        Capability(
            id="voice-provider",
            name="Voice Provider",
            type=CapabilityType.VOICE_PROVIDER,
            priority=1,
            max_concurrent=5,
            avg_latency_ms=100.0,
            tags={"voice", "speech", "realtime"},
        ),
        Capability(
            id="autonomous-agent",
            name="Autonomous Agent",
            type=CapabilityType.AUTONOMOUS_AGENT,
            priority=2,
            max_concurrent=3,
            avg_latency_ms=500.0,
            tags={"autonomous", "code", "text", "tools"},
        ),
        Capability(
            id="research-agent",
            name="Research Agent",
            type=CapabilityType.RESEARCH_AGENT,
            priority=3,
            max_concurrent=5,
            avg_latency_ms=1000.0,
            tags={"research", "search", "analysis"},
        ),
    ]


__all__ = [
    "TaskType",
    "TaskPriority",
    "TaskStatus",
    "TERMINAL_STATUSES",
    "CapabilityType",
    "DecisionType",
    "DECISION_CONFIDENCE",
    "OperationMode",
    "Task",
    "Capability",
    "Decision",
    "default_capabilities",
]
