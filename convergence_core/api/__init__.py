"""
HTTP API for Convergence Core.
"""

from convergence_core.api.routes import (
    ModeRequest,
    NotifyRequest,
    TaskRequest,
    create_convergence_routes,
)
from convergence_core.api.server import create_app

__all__ = [
    "create_app",
    "create_convergence_routes",
    "ModeRequest",
    "NotifyRequest",
    "TaskRequest",
]
