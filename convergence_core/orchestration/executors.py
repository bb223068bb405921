"""
Family-specific task executors.

Each capability family has a default executor that announces the task on
the controller's event stream and returns an opaque result. Hosts replace
them with real backends through ``set_executor`` or by passing an executor
to ``register_capability``. Anything exposing ``async execute(task)`` or an
async callable taking the task satisfies the contract; raising signals
failure.
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Union

from convergence_core.orchestration.models import CapabilityType, Decision, DecisionType, Task

EmitFn = Callable[[str, Any], Any]
DecideFn = Callable[..., Decision]


class TaskExecutor(ABC):
    """Base class for capability executors."""

    def __init__(self, emit: Optional[EmitFn] = None):
        self._emit = emit

    def announce(self, event: str, payload: Any) -> None:
        if self._emit is not None:
            self._emit(event, payload)

    @abstractmethod
    async def execute(self, task: Task) -> Any:
        """Run the task and return its result. Raise to signal failure."""


class VoiceExecutor(TaskExecutor):
    async def execute(self, task: Task) -> Any:
        self.announce("voice_task", task)
        return {"type": "voice", "processed": True, "input": task.input}


class AutonomousAgentExecutor(TaskExecutor):
    """Records a route decision for each task it handles."""

    def __init__(self, emit: Optional[EmitFn] = None, decide: Optional[DecideFn] = None):
        super().__init__(emit)
        self._decide = decide

    async def execute(self, task: Task) -> Any:
        decision = None
        if self._decide is not None:
            decision = self._decide(
                DecisionType.ROUTE,
                "Autonomous task routing",
                task.input,
                {"handler": CapabilityType.AUTONOMOUS_AGENT.value, "task": task.id},
            )
        self.announce("autonomous_task", {"task": task, "decision": decision})
        return {
            "type": "autonomous",
            "decision": decision.id if decision else None,
            "processed": True,
        }


class ResearchExecutor(TaskExecutor):
    async def execute(self, task: Task) -> Any:
        self.announce("research_task", task)
        return {"type": "research", "processed": True, "input": task.input}


class ToolBridgeExecutor(TaskExecutor):
    async def execute(self, task: Task) -> Any:
        self.announce("tool_task", task)
        return {"type": "tool", "processed": True, "input": task.input}


class GenericExecutor(TaskExecutor):
    async def execute(self, task: Task) -> Any:
        self.announce("generic_task", task)
        return {"type": "generic", "processed": True, "input": task.input}


ExecutorLike = Union[TaskExecutor, Callable[[Task], Any]]


def build_default_executors(
    emit: Optional[EmitFn] = None,
    decide: Optional[DecideFn] = None,
) -> Dict[CapabilityType, ExecutorLike]:
    """Default executor per capability family."""
    return {
        CapabilityType.VOICE_PROVIDER: VoiceExecutor(emit),
        CapabilityType.AUTONOMOUS_AGENT: AutonomousAgentExecutor(emit, decide),
        CapabilityType.RESEARCH_AGENT: ResearchExecutor(emit),
        CapabilityType.TOOL_BRIDGE: ToolBridgeExecutor(emit),
        CapabilityType.CUSTOM: GenericExecutor(emit),
    }


async def run_executor(executor: ExecutorLike, task: Task) -> Any:
    """Invoke an executor object or callable and await its result."""
    call = executor.execute if hasattr(executor, "execute") else executor
    result = call(task)
    if inspect.isawaitable(result):
        result = await result
    return result


__all__ = [
    "TaskExecutor",
    "VoiceExecutor",
    "AutonomousAgentExecutor",
    "ResearchExecutor",
    "ToolBridgeExecutor",
    "GenericExecutor",
    "ExecutorLike",
    "build_default_executors",
    "run_executor",
]
