"""
Error taxonomy and classification.

Provides:
- Exception hierarchy for the controller and the registry
- Failure kinds for the task and probe paths
- Executor error classification (category, severity, retryability)

Classification is informational: it is attached to failure events and
never alters the controller's retry policy.
"""

from __future__ import annotations

import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


# =============================================================================
# EXCEPTIONS
# =============================================================================


class ConvergenceError(Exception):
    """Base class for convergence core errors."""


class ContentFilterError(ConvergenceError):
    """The content filter predicate itself failed during submission."""


class UnknownTaskTypeError(ConvergenceError, ValueError):
    """A task was submitted with an unknown type or priority."""


class ProbeError(ConvergenceError):
    """An endpoint probe failed. Never escapes a health cycle."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Probe of {url} failed: {reason}")
        self.url = url
        self.reason = reason


# =============================================================================
# FAILURE TAXONOMY
# =============================================================================


class FailureKind(str, Enum):
    """How a task or endpoint failed."""
    INPUT_REJECTED = "input_rejected"      # Content filtered, terminal
    ROUTING_FAILED = "routing_failed"      # No capability, retried
    EXECUTION_FAILED = "execution_failed"  # Executor raised, retried
    QUEUE_TIMEOUT = "queue_timeout"        # Aged out before dispatch, terminal
    PROBE_FAILED = "probe_failed"          # Endpoint marked unhealthy


class ErrorSeverity(str, Enum):
    """Error severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error categories for executor failures."""
    NETWORK = "network"
    TIMEOUT = "timeout"
    RESOURCE = "resource"
    VALIDATION = "validation"
    EXTERNAL = "external"
    INTERNAL = "internal"


@dataclass
class ClassifiedError:
    """Error with classification metadata."""
    exception: BaseException
    category: ErrorCategory
    severity: ErrorSeverity
    is_retryable: bool
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    traceback_str: str = ""

    @classmethod
    def from_exception(
        cls,
        exception: BaseException,
        context: Optional[Dict[str, Any]] = None,
    ) -> "ClassifiedError":
        """Classify an exception."""
        category, severity, retryable = cls._classify(exception)

        return cls(
            exception=exception,
            category=category,
            severity=severity,
            is_retryable=retryable,
            context=context or {},
            traceback_str="".join(
                traceback.format_exception(type(exception), exception, exception.__traceback__)
            ),
        )

    @staticmethod
    def _classify(exception: BaseException) -> Tuple[ErrorCategory, ErrorSeverity, bool]:
        """Classify exception into category, severity, and retryability."""
        exc_type = type(exception).__name__.lower()
        exc_msg = str(exception).lower()

        if "timeout" in exc_type or "timeout" in exc_msg or "timed out" in exc_msg:
            return ErrorCategory.TIMEOUT, ErrorSeverity.WARNING, True

        # Network errors - usually transient
        if any(net in exc_type for net in ["connection", "network", "socket"]):
            return ErrorCategory.NETWORK, ErrorSeverity.WARNING, True

        if any(res in exc_msg for res in ["memory", "oom", "quota", "capacity"]):
            return ErrorCategory.RESOURCE, ErrorSeverity.ERROR, True

        # Validation errors - not retryable
        if any(val in exc_type for val in ["validation", "value", "type", "key"]):
            return ErrorCategory.VALIDATION, ErrorSeverity.WARNING, False

        if any(ext in exc_msg for ext in ["api", "service", "unavailable", "503", "502"]):
            return ErrorCategory.EXTERNAL, ErrorSeverity.WARNING, True

        if "rate" in exc_msg and "limit" in exc_msg:
            return ErrorCategory.EXTERNAL, ErrorSeverity.WARNING, True

        return ErrorCategory.INTERNAL, ErrorSeverity.ERROR, False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self.exception).__name__,
            "message": str(self.exception),
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.is_retryable,
            "context": self.context,
        }


__all__ = [
    "ConvergenceError",
    "ContentFilterError",
    "UnknownTaskTypeError",
    "ProbeError",
    "FailureKind",
    "ErrorSeverity",
    "ErrorCategory",
    "ClassifiedError",
]
