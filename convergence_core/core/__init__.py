"""
Core building blocks shared by every subsystem.

- errors: exception hierarchy, failure taxonomy, error classification
- events: observer registration and fan-out
"""

from convergence_core.core.errors import (
    ClassifiedError,
    ContentFilterError,
    ConvergenceError,
    ErrorCategory,
    ErrorSeverity,
    FailureKind,
    ProbeError,
    UnknownTaskTypeError,
)
from convergence_core.core.events import EventEmitter, EventHandler

__all__ = [
    "ClassifiedError",
    "ContentFilterError",
    "ConvergenceError",
    "ErrorCategory",
    "ErrorSeverity",
    "FailureKind",
    "ProbeError",
    "UnknownTaskTypeError",
    "EventEmitter",
    "EventHandler",
]
