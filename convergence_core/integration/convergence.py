"""
Convergence Core Integration.

Composes the task controller, the service registry, the observability hub
and the notification manager into one explicitly constructed unit, and
wires their events together:

    registry config events ──► notifications + hub counters/latency
    controller decisions   ──► notifications + hub counters
    controller tasks       ──► hub counters/durations (+ notifications on failure)
    hub alerts             ──► notifications

The host process builds one instance with create_convergence_core() and
owns its lifetime.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

from convergence_core.config.core_config import ConvergenceConfig
from convergence_core.notifications.manager import NotificationManager, NotificationPriority
from convergence_core.observability.hub import Alert, AlertSeverity, ObservabilityHub
from convergence_core.orchestration.controller import AutonomousController
from convergence_core.orchestration.models import (
    Decision,
    OperationMode,
    Task,
    TaskPriority,
    TaskType,
)
from convergence_core.registry.models import ConfigEvent, ConfigEventType
from convergence_core.registry.service_registry import ServiceRegistry

logger = logging.getLogger(__name__)

COMPONENT = "ConvergenceCore"

# Registry config events forwarded to notifications. Disconnects are
# reported by the registry itself through its notifier.
_CONFIG_EVENT_NOTIFICATIONS = {
    ConfigEventType.DISCOVERED: "service.discovered",
    ConfigEventType.CONNECTED: "service.connected",
    ConfigEventType.HEALED: "service.recovered",
    ConfigEventType.ERROR: "service.error",
}

_ALERT_PRIORITY = {
    AlertSeverity.CRITICAL: NotificationPriority.URGENT,
    AlertSeverity.WARNING: NotificationPriority.HIGH,
    AlertSeverity.INFO: NotificationPriority.NORMAL,
}


class ConvergenceCore:
    """
    Orchestrates all subsystems behind one API.

    Example:
        >>> core = create_convergence_core(ConvergenceConfig(auto_discover=False))
        >>> await core.initialize()
        >>> task = await core.submit_task("research", {"query": "status"})
        >>> await core.shutdown()
    """

    def __init__(
        self,
        config: Optional[ConvergenceConfig] = None,
        controller: Optional[AutonomousController] = None,
        registry: Optional[ServiceRegistry] = None,
        observability: Optional[ObservabilityHub] = None,
        notifications: Optional[NotificationManager] = None,
    ):
        self.config = config or ConvergenceConfig()

        self.observability = observability or ObservabilityHub(self.config.observability)
        self.notifications = notifications or NotificationManager(self.config.notifications)
        self.controller = controller or AutonomousController(self.config.controller)
        self.registry = registry or ServiceRegistry(
            self.config.registry, notifier=self.notifications
        )
        if self.registry.notifier is None:
            self.registry.notifier = self.notifications

        self._initialized = False
        self._wired = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._initialized:
            return

        self.observability.info(COMPONENT, "Initializing Convergence Core", self.config.summary())

        if not self._wired:
            self._wire_event_handlers()
            self._register_health_checks()
            self._wired = True

        if self.config.auto_discover:
            await self.registry.start()

        if self.config.autonomous:
            self.controller.set_mode(
                OperationMode.UNRESTRICTED if self.config.unrestricted else OperationMode.AUTONOMOUS
            )
            await self.controller.start()

        await self.observability.start()

        self._initialized = True
        self.observability.info(COMPONENT, "Convergence Core initialized", {
            "autonomous": self.config.autonomous,
            "unrestricted": self.config.unrestricted,
        })

        if self.config.auto_notify:
            await self.notifications.notify_event("system.initialized", {
                "mode": self.controller.mode.value,
                "services": len(self.registry.get_services()),
            })

    async def shutdown(self) -> None:
        self.observability.info(COMPONENT, "Shutting down")

        await self.controller.stop()
        await self.registry.stop()
        await self.observability.stop()

        self._initialized = False
        self.observability.info(COMPONENT, "Shutdown complete")

    # =========================================================================
    # WIRING
    # =========================================================================

    def _wire_event_handlers(self) -> None:
        self.registry.on("config_event", self._on_config_event)
        self.controller.on("decision", self._on_decision)
        self.controller.on("task_completed", self._on_task_completed)
        self.controller.on("task_failed", self._on_task_failed)
        self.controller.on("task_timeout", self._on_task_failed)
        self.observability.on("alert", self._on_alert)

    async def _on_config_event(self, event: ConfigEvent) -> None:
        service = event.service
        self.observability.increment_counter(
            "registry_events_total", 1, {"type": event.type.value}
        )
        if service.latency_ms:
            self.observability.record_histogram(
                "service_latency_ms", service.latency_ms, {"service": service.id}
            )
        self.observability.info("Registry", f"Service {event.type.value}: {service.name}", {
            "service": service.to_dict(),
        })

        notification = _CONFIG_EVENT_NOTIFICATIONS.get(event.type)
        if notification and self.config.auto_notify:
            await self.notifications.notify_event(notification, {
                "service": service.name,
                "url": service.url,
                **(event.details or {}),
            })

    async def _on_decision(self, decision: Decision) -> None:
        self.observability.increment_counter(
            "decisions_total", 1, {"type": decision.type.value}
        )
        if self.config.auto_notify:
            await self.notifications.notify_event(f"decision.{decision.type.value}", {
                "type": decision.type.value,
                "reason": decision.reason,
                "confidence": decision.confidence,
            })

    def _on_task_completed(self, task: Task) -> None:
        labels = {"type": task.type.value}
        self.observability.increment_counter("tasks_completed_total", 1, labels)
        if task.started_at and task.completed_at:
            self.observability.record_histogram(
                "task_duration_ms", (task.completed_at - task.started_at) * 1000, labels
            )

    async def _on_task_failed(self, failure: Dict[str, Any]) -> None:
        task: Task = failure["task"]
        self.observability.increment_counter(
            "tasks_failed_total", 1, {"type": task.type.value, "kind": failure["kind"]}
        )
        if self.config.auto_notify:
            await self.notifications.notify_event(f"error.task_{failure['kind']}", {
                "task_id": task.id,
                "task_type": task.type.value,
                "error": failure["error"],
                "error_category": failure.get("error_category"),
            })

    async def _on_alert(self, alert: Alert) -> None:
        await self.notifications.notify(
            alert.title,
            alert.message,
            priority=_ALERT_PRIORITY[alert.severity],
        )

    def _register_health_checks(self) -> None:
        async def core_check() -> Dict[str, Any]:
            return {
                "healthy": self._initialized,
                "message": "Core initialized" if self._initialized else "Core not initialized",
            }

        async def registry_check() -> Dict[str, Any]:
            status = self.registry.get_status()
            services = status["services"]
            reachable = services["healthy"] + services["degraded"]
            return {
                "healthy": status["running"],
                "degraded": status["running"] and reachable == 0,
                "message": f"{services['healthy']}/{services['total']} services healthy",
            }

        async def controller_check() -> Dict[str, Any]:
            status = self.controller.get_status()
            return {
                "healthy": status["running"],
                "message": f"Mode: {status['mode']}, Tasks: {status['tasks']['active']} active",
            }

        self.observability.register_health_check("convergence-core", core_check)
        self.observability.register_health_check("service-registry", registry_check)
        self.observability.register_health_check("autonomous-controller", controller_check)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        return {
            "initialized": self._initialized,
            "config": self.config.summary(),
            "registry": self.registry.get_status(),
            "controller": self.controller.get_status(),
            "health": [r.to_dict() for r in self.observability.get_health_status()],
            "alerts": [a.to_dict() for a in self.observability.get_active_alerts()],
        }

    def enable_unrestricted_mode(self) -> None:
        self.config.unrestricted = True
        self.controller.enable_unrestricted_mode()
        self.controller.disable_guardrails()
        self.registry.set_unrestricted_mode(True)
        self.observability.info(COMPONENT, "UNRESTRICTED MODE ENABLED")

    async def submit_task(
        self,
        task_type: Union[TaskType, str],
        input: Optional[Dict[str, Any]] = None,
        priority: Union[TaskPriority, str] = TaskPriority.NORMAL,
        max_retries: Optional[int] = None,
    ) -> Task:
        return await self.controller.submit_task(task_type, input, priority, max_retries)


def create_convergence_core(config: Optional[ConvergenceConfig] = None, **overrides: Any) -> ConvergenceCore:
    """Build a ConvergenceCore. Call once from the host process."""
    return ConvergenceCore(config, **overrides)


__all__ = ["ConvergenceCore", "create_convergence_core"]
