"""
Service Registry & Health Monitor.

Discovers backing services, keeps their reachability current and reacts to
changes:
- Phase 1: endpoints from environment variables
- Phase 2: network discovery over well-known ports (optional)
- Phase 3: liveness probe of every endpoint not yet healthy (optional)
- Phase 4: periodic health cycle (30s)

A recovery emits ``healed`` and, with auto-heal on, records a heal
decision. A loss emits ``disconnected`` and notifies the notification
collaborator. Probe failures are converted into ``unhealthy`` status and
never propagate.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union

from convergence_core.config.core_config import RegistryConfig
from convergence_core.config.environment import (
    WEBSOCKET_SERVICE_TYPES,
    detect_credentials,
    discovery_targets,
    scan_service_env,
)
from convergence_core.core.events import EventEmitter
from convergence_core.registry.models import (
    ConfigEvent,
    ConfigEventType,
    EndpointStatus,
    EndpointType,
    ServiceDecision,
    ServiceDecisionType,
    ServiceEndpoint,
)
from convergence_core.registry.prober import EndpointProber, ProbeResult

logger = logging.getLogger(__name__)

SERVICE_DOWN_EVENT = "service.down"


class Prober(Protocol):
    async def probe(self, url: str) -> ProbeResult: ...


class Notifier(Protocol):
    async def notify_event(self, event_name: str, payload: Dict[str, Any]) -> Any: ...


class ServiceRegistry(EventEmitter):
    """
    Registry of backing-service endpoints with self-healing health checks.

    Events:
        started, stopped, config_event (ConfigEvent), decision
        (ServiceDecision), notification, mode_changed, log
    """

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        prober: Optional[Prober] = None,
        notifier: Optional[Notifier] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        super().__init__()
        self.config = config or RegistryConfig()
        self._owns_prober = prober is None
        self.prober: Prober = prober or EndpointProber(timeout=self.config.probe_timeout)
        self.notifier = notifier
        self._environ = environ

        self._services: Dict[str, ServiceEndpoint] = {}
        self._decisions: List[ServiceDecision] = []
        self._health_task: Optional[asyncio.Task] = None
        self._running = False
        self._cycle_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Run the four start-up phases in order."""
        if self._running:
            return
        self._running = True

        self._log("info", "Starting service registry", {
            "autonomous_mode": self.config.autonomous_mode,
            "unrestricted_mode": self.config.unrestricted_mode,
        })

        self.load_from_environment()

        if self.config.auto_discover:
            await self.discover_services()

        if self.config.auto_connect:
            await self.auto_connect_all()

        self._health_task = asyncio.create_task(self._health_loop())
        self.emit("started", {"services": [s.to_dict() for s in self._services.values()]})

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        if self._health_task is not None:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None

        if self._owns_prober and isinstance(self.prober, EndpointProber):
            await self.prober.close()

        self._log("info", "Service registry stopped")
        self.emit("stopped", None)

    async def _health_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.config.health_check_interval)
                await self.run_health_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[Registry] Health cycle failed: {e}")

    # =========================================================================
    # PHASE 1: ENVIRONMENT
    # =========================================================================

    def load_from_environment(self) -> List[ServiceEndpoint]:
        """Register one endpoint per non-empty service URL variable."""
        self._log("info", "Loading configuration from environment")
        loaded = []

        for entry in scan_service_env(self._environ):
            endpoint = ServiceEndpoint(
                id=entry.endpoint_id,
                name=f"{entry.service_type} ({entry.env_var})",
                type=EndpointType(entry.service_type),
                url=entry.url,
                status=EndpointStatus.UNKNOWN,
                auto_discovered=False,
            )
            self._services[endpoint.id] = endpoint
            loaded.append(endpoint)
            self._log("info", f"Found {entry.service_type} from {entry.env_var}: {entry.url}")

        for name, present in self.credentials().items():
            if present:
                self._log("info", f"{name} configured")

        return loaded

    def credentials(self) -> Dict[str, bool]:
        return detect_credentials(self._environ)

    # =========================================================================
    # PHASE 2: DISCOVERY
    # =========================================================================

    async def discover_services(self) -> List[ServiceEndpoint]:
        """Probe the discovery matrix concurrently and register what answers."""
        self._log("info", "Auto-discovering services")
        targets = discovery_targets()

        results = await asyncio.gather(
            *(self._safe_probe(f"http://{host}:{port}") for _, host, port in targets)
        )

        discovered = []
        for (service_type, host, port), result in zip(targets, results):
            if not result.alive:
                continue

            endpoint_id = f"{service_type}-discovered-{host}-{port}"
            if endpoint_id in self._services:
                continue

            scheme = "ws" if service_type in WEBSOCKET_SERVICE_TYPES else "http"
            endpoint = ServiceEndpoint(
                id=endpoint_id,
                name=f"{service_type} (auto-discovered)",
                type=EndpointType(service_type),
                url=f"{scheme}://{host}:{port}",
                status=EndpointStatus.HEALTHY,
                last_check=time.time(),
                latency_ms=result.latency_ms,
                auto_discovered=True,
            )
            self._services[endpoint_id] = endpoint
            discovered.append(endpoint)
            self._emit_config_event(ConfigEventType.DISCOVERED, endpoint)
            self._log("info", f"Discovered {service_type} at {endpoint.url}")

        return discovered

    # =========================================================================
    # PHASE 3: CONNECT
    # =========================================================================

    async def auto_connect_all(self) -> None:
        self._log("info", "Auto-connecting to services")
        pending = [
            service for service in self._services.values()
            if service.status != EndpointStatus.HEALTHY
        ]
        if pending:
            await asyncio.gather(*(self.connect_service(s) for s in pending))

    async def connect_service(self, service: ServiceEndpoint) -> bool:
        """Probe one endpoint and update its status. Returns reachability."""
        was_reachable = service.status.is_reachable
        service.status = EndpointStatus.CHECKING

        try:
            result = await self.prober.probe(service.url)
        except Exception as e:
            service.status = EndpointStatus.UNHEALTHY
            service.last_check = time.time()
            self._emit_config_event(ConfigEventType.ERROR, service, {"error": str(e)})
            return False

        service.latency_ms = result.latency_ms
        service.last_check = time.time()

        if not result.alive:
            service.status = EndpointStatus.UNHEALTHY
            return False

        service.status = self._classify_latency(result.latency_ms)
        if not was_reachable:
            self._emit_config_event(ConfigEventType.CONNECTED, service)
            self._log("info", f"Connected to {service.name} ({result.latency_ms:.0f}ms)")
        return True

    def _classify_latency(self, latency_ms: float) -> EndpointStatus:
        threshold = self.config.degraded_latency_ms
        if threshold is not None and latency_ms > threshold:
            return EndpointStatus.DEGRADED
        return EndpointStatus.HEALTHY

    async def _safe_probe(self, url: str) -> ProbeResult:
        try:
            return await self.prober.probe(url)
        except Exception as e:
            return ProbeResult(url=url, alive=False, latency_ms=0.0, error=str(e))

    # =========================================================================
    # PHASE 4: HEALTH CYCLE
    # =========================================================================

    async def run_health_cycle(self) -> None:
        """Re-probe every endpoint concurrently and act on transitions.

        Cycles are serialized; a cycle started while another is running
        waits for it and then compares against the settled statuses.
        """
        async with self._cycle_lock:
            await self._run_health_cycle()

    async def _run_health_cycle(self) -> None:
        services = list(self._services.values())
        if not services:
            return

        previous = {s.id: s.status.is_reachable for s in services}
        await asyncio.gather(*(self.connect_service(s) for s in services))

        for service in services:
            was_reachable = previous[service.id]
            now_reachable = service.status.is_reachable

            if not was_reachable and now_reachable:
                self._emit_config_event(ConfigEventType.HEALED, service)
                if self.config.auto_heal:
                    await self._make_decision(
                        ServiceDecisionType.HEAL, service.id, "Service recovered automatically"
                    )

            elif was_reachable and not now_reachable:
                self._emit_config_event(ConfigEventType.DISCONNECTED, service)
                await self._notify_service_down(service)

    async def force_health_check(self) -> None:
        await self.run_health_cycle()

    async def _notify_service_down(self, service: ServiceEndpoint) -> None:
        last_seen = datetime.fromtimestamp(service.last_check or 0, tz=timezone.utc).isoformat()
        message = f"Service Down: {service.name}\nURL: {service.url}\nLast seen: {last_seen}"
        payload = {
            "type": "service_down",
            "service_id": service.id,
            "service": service.name,
            "url": service.url,
            "last_seen": last_seen,
            "timestamp": time.time(),
        }

        if self.notifier is not None:
            try:
                await self.notifier.notify_event(SERVICE_DOWN_EVENT, payload)
            except Exception as e:
                self._log("error", f"Failed to deliver service-down notification: {e}")

        self.emit("notification", {"type": "service_down", "service": service, "message": message})

    # =========================================================================
    # DECISIONS
    # =========================================================================

    async def _make_decision(
        self,
        decision_type: ServiceDecisionType,
        service_id: str,
        reason: str,
    ) -> ServiceDecision:
        decision = ServiceDecision(
            type=decision_type,
            service=service_id,
            reason=reason,
            approved=self.config.autonomous_mode,
        )
        self._decisions.append(decision)
        self.emit("decision", decision)

        if decision.approved:
            await self._execute_decision(decision)
        return decision

    async def _execute_decision(self, decision: ServiceDecision) -> None:
        self._log("info", f"Executing decision: {decision.type.value} for {decision.service}")
        decision.executed = True

        if decision.type == ServiceDecisionType.HEAL:
            service = self._services.get(decision.service)
            if service is not None and not service.status.is_reachable:
                await self.connect_service(service)
        elif decision.type == ServiceDecisionType.RECONFIGURE:
            await self.discover_services()

    async def request_reconfigure(self, reason: str) -> ServiceDecision:
        """Record a reconfigure decision; approved decisions re-run discovery."""
        return await self._make_decision(ServiceDecisionType.RECONFIGURE, "*", reason)

    def get_decisions(self) -> List[ServiceDecision]:
        return list(self._decisions)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def register_service(self, endpoint: ServiceEndpoint) -> ServiceEndpoint:
        """Upsert an endpoint by id. Status always resets to unknown."""
        endpoint.status = EndpointStatus.UNKNOWN
        endpoint.last_check = None
        self._services[endpoint.id] = endpoint
        self._emit_config_event(ConfigEventType.CONFIG_CHANGED, endpoint)
        return endpoint

    def get_service(self, service_id: str) -> Optional[ServiceEndpoint]:
        return self._services.get(service_id)

    def get_services(self) -> List[ServiceEndpoint]:
        return list(self._services.values())

    def get_services_by_type(self, service_type: Union[EndpointType, str]) -> List[ServiceEndpoint]:
        wanted = EndpointType(service_type)
        return [s for s in self._services.values() if s.type == wanted]

    def get_healthy_services(self) -> List[ServiceEndpoint]:
        return [s for s in self._services.values() if s.status == EndpointStatus.HEALTHY]

    def set_autonomous_mode(self, enabled: bool) -> None:
        self.config.autonomous_mode = enabled
        self._log("info", f"Autonomous mode {'enabled' if enabled else 'disabled'}")
        self.emit("mode_changed", {"autonomous_mode": enabled})

    def set_unrestricted_mode(self, enabled: bool) -> None:
        self.config.unrestricted_mode = enabled
        self._log("info", f"Unrestricted mode {'enabled' if enabled else 'disabled'}")
        self.emit("mode_changed", {"unrestricted_mode": enabled})

    def get_config(self) -> Dict[str, Any]:
        return self.config.to_dict()

    def get_status(self) -> Dict[str, Any]:
        services = list(self._services.values())
        return {
            "running": self._running,
            "services": {
                "total": len(services),
                "healthy": sum(1 for s in services if s.status == EndpointStatus.HEALTHY),
                "degraded": sum(1 for s in services if s.status == EndpointStatus.DEGRADED),
                "unhealthy": sum(1 for s in services if s.status == EndpointStatus.UNHEALTHY),
            },
            "autonomous_mode": self.config.autonomous_mode,
            "unrestricted_mode": self.config.unrestricted_mode,
            "decisions_count": len(self._decisions),
            "credentials": self.credentials(),
        }

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _emit_config_event(
        self,
        event_type: ConfigEventType,
        service: ServiceEndpoint,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.emit("config_event", ConfigEvent(type=event_type, service=service, details=details))

    def _log(self, level: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        getattr(logger, "warning" if level == "warn" else level)(f"[Registry] {message}")
        entry = {
            "timestamp": time.time(),
            "level": level,
            "component": "Registry",
            "message": message,
        }
        if data:
            entry.update(data)
        self.emit("log", entry)


__all__ = ["ServiceRegistry", "Prober", "Notifier", "SERVICE_DOWN_EVENT"]
