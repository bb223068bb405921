"""
Notification delivery for Convergence Core.
"""

from convergence_core.notifications.manager import (
    NotificationManager,
    NotificationMessage,
    NotificationPriority,
    NotificationRule,
    default_rules,
    event_priority,
    interpolate,
)

__all__ = [
    "NotificationManager",
    "NotificationMessage",
    "NotificationPriority",
    "NotificationRule",
    "default_rules",
    "event_priority",
    "interpolate",
]
