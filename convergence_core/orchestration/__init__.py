"""
Task orchestration for Convergence Core.

- models: tasks, capabilities, decisions and their enums
- router: task type to capability selection
- executors: default family executors and the executor contract
- controller: the autonomous task controller
"""

from convergence_core.orchestration.models import (
    DECISION_CONFIDENCE,
    TERMINAL_STATUSES,
    Capability,
    CapabilityType,
    Decision,
    DecisionType,
    OperationMode,
    Task,
    TaskPriority,
    TaskStatus,
    TaskType,
    default_capabilities,
)
from convergence_core.orchestration.router import (
    CAPABILITY_MATRIX,
    CapabilityRouter,
    RoutingResult,
)
from convergence_core.orchestration.executors import (
    AutonomousAgentExecutor,
    GenericExecutor,
    ResearchExecutor,
    TaskExecutor,
    ToolBridgeExecutor,
    VoiceExecutor,
    build_default_executors,
    run_executor,
)
from convergence_core.orchestration.controller import (
    FILTERED_ERROR,
    NO_CAPABILITY_ERROR,
    QUEUE_TIMEOUT_ERROR,
    AutonomousController,
    allow_all_content,
)

__all__ = [
    # Models
    "DECISION_CONFIDENCE",
    "TERMINAL_STATUSES",
    "Capability",
    "CapabilityType",
    "Decision",
    "DecisionType",
    "OperationMode",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "TaskType",
    "default_capabilities",
    # Routing
    "CAPABILITY_MATRIX",
    "CapabilityRouter",
    "RoutingResult",
    # Executors
    "AutonomousAgentExecutor",
    "GenericExecutor",
    "ResearchExecutor",
    "TaskExecutor",
    "ToolBridgeExecutor",
    "VoiceExecutor",
    "build_default_executors",
    "run_executor",
    # Controller
    "FILTERED_ERROR",
    "NO_CAPABILITY_ERROR",
    "QUEUE_TIMEOUT_ERROR",
    "AutonomousController",
    "allow_all_content",
]
