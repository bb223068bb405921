"""
Subsystem composition for Convergence Core.
"""

from convergence_core.integration.convergence import ConvergenceCore, create_convergence_core

__all__ = ["ConvergenceCore", "create_convergence_core"]
