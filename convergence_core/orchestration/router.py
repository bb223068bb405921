"""
Capability Router - Task to Backend Selection
=============================================

Routes each task to the best-scoring capability based on:
- **Type matching** - a static task type → capability family table
- **Availability** - enabled and below its concurrency limit
- **Score** - priority*10 + success_rate*5 - avg_latency_ms/1000 - current_load

The router is pure: it reads capability statistics and returns a
RoutingResult. Logging the audit decision is the controller's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional

from convergence_core.orchestration.models import Capability, CapabilityType, Task, TaskType

logger = logging.getLogger(__name__)


# Which capability families may serve each task type
CAPABILITY_MATRIX: Dict[TaskType, FrozenSet[CapabilityType]] = {
    TaskType.VOICE: frozenset({CapabilityType.VOICE_PROVIDER}),
    TaskType.TEXT: frozenset({
        CapabilityType.AUTONOMOUS_AGENT,
        CapabilityType.RESEARCH_AGENT,
        CapabilityType.TOOL_BRIDGE,
    }),
    TaskType.CODE: frozenset({CapabilityType.AUTONOMOUS_AGENT}),
    TaskType.RESEARCH: frozenset({
        CapabilityType.RESEARCH_AGENT,
        CapabilityType.AUTONOMOUS_AGENT,
    }),
    TaskType.AUTONOMOUS: frozenset({CapabilityType.AUTONOMOUS_AGENT}),
    TaskType.CUSTOM: frozenset({
        CapabilityType.AUTONOMOUS_AGENT,
        CapabilityType.TOOL_BRIDGE,
        CapabilityType.CUSTOM,
    }),
}


@dataclass
class RoutingResult:
    """Result of a routing decision."""
    selected: Optional[Capability]
    candidates: List[Capability] = field(default_factory=list)  # best first
    scores: Dict[str, float] = field(default_factory=dict)

    @property
    def should_audit(self) -> bool:
        """True when more than one capability competed for the task."""
        return len(self.candidates) > 1

    @property
    def candidate_ids(self) -> List[str]:
        return [c.id for c in self.candidates]


class CapabilityRouter:
    """Selects an execution backend for a task."""

    def __init__(self, matrix: Optional[Dict[TaskType, FrozenSet[CapabilityType]]] = None):
        self.matrix = dict(matrix or CAPABILITY_MATRIX)
        missing = set(TaskType) - set(self.matrix)
        if missing:
            raise ValueError(
                f"Capability matrix has no entry for: {sorted(t.value for t in missing)}"
            )

    def allowed_types(self, task_type: TaskType) -> FrozenSet[CapabilityType]:
        return self.matrix[TaskType(task_type)]

    def candidates(self, task: Task, capabilities: Iterable[Capability]) -> List[Capability]:
        """Enabled, non-saturated capabilities whose family serves the task type."""
        allowed = self.allowed_types(task.type)
        return [
            cap for cap in capabilities
            if cap.enabled and cap.has_capacity and cap.type in allowed
        ]

    def route(self, task: Task, capabilities: Iterable[Capability]) -> RoutingResult:
        candidates = self.candidates(task, capabilities)
        if not candidates:
            logger.debug(f"[Router] No candidate for {task.id} ({task.type.value})")
            return RoutingResult(selected=None)

        scores = {cap.id: cap.score() for cap in candidates}
        # sorted() is stable, so equal scores keep registration order
        ranked = sorted(candidates, key=lambda cap: scores[cap.id], reverse=True)

        return RoutingResult(selected=ranked[0], candidates=ranked, scores=scores)


__all__ = ["CAPABILITY_MATRIX", "RoutingResult", "CapabilityRouter"]
