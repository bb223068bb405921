"""
Convergence Core - Task Orchestration, Service Registry and Observability
"""

__version__ = "1.0.0"

from convergence_core.config import ConvergenceConfig, load_config
from convergence_core.integration import ConvergenceCore, create_convergence_core
from convergence_core.notifications import NotificationManager
from convergence_core.observability import ObservabilityHub
from convergence_core.orchestration import AutonomousController, CapabilityRouter
from convergence_core.registry import ServiceRegistry

__all__ = [
    "AutonomousController",
    "CapabilityRouter",
    "ConvergenceConfig",
    "ConvergenceCore",
    "NotificationManager",
    "ObservabilityHub",
    "ServiceRegistry",
    "create_convergence_core",
    "load_config",
    "__version__",
]
