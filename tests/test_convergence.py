"""Tests for the composed convergence core and its event wiring."""

from __future__ import annotations

import pytest

from conftest import FailingExecutor, FakeProber
from convergence_core.config import ConvergenceConfig, RegistryConfig
from convergence_core.integration import ConvergenceCore, create_convergence_core
from convergence_core.observability import HealthState
from convergence_core.orchestration import CapabilityType, OperationMode, TaskStatus
from convergence_core.registry import ServiceEndpoint, ServiceRegistry


AGENT_URL = "http://agent.local:8080"


def make_core(prober=None, environ=None, **flags):
    flags.setdefault("autonomous", False)
    flags.setdefault("auto_discover", False)
    config = ConvergenceConfig(**flags)
    config.controller.verbose_logging = False
    registry = ServiceRegistry(
        RegistryConfig(auto_discover=False),
        prober=prober or FakeProber(),
        environ=environ or {},
    )
    return create_convergence_core(config, registry=registry)


async def drain(core):
    await core.registry.drain()
    await core.controller.drain()
    await core.observability.drain()
    await core.notifications.drain()


def titles(core):
    return [m.title for m in core.notifications.get_history()]


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_initialize_starts_configured_subsystems(self):
        core = make_core(
            prober=FakeProber({AGENT_URL: True}),
            environ={"AUTONOMOUS_AGENT_URL": AGENT_URL},
            autonomous=True,
            auto_discover=True,
        )

        await core.initialize()
        try:
            assert core.is_initialized
            assert core.controller.is_running
            assert core.registry.is_running
            assert core.observability.is_running
            assert core.controller.mode == OperationMode.AUTONOMOUS
            assert core.registry.notifier is core.notifications
        finally:
            await core.shutdown()

        assert not core.is_initialized
        assert not core.controller.is_running
        assert not core.registry.is_running
        assert not core.observability.is_running

    @pytest.mark.asyncio
    async def test_unrestricted_flag_starts_controller_unrestricted(self):
        core = make_core(autonomous=True, unrestricted=True)

        await core.initialize()
        await core.shutdown()

        assert core.controller.mode == OperationMode.UNRESTRICTED

    @pytest.mark.asyncio
    async def test_subsystems_stay_stopped_when_disabled(self):
        core = make_core()

        await core.initialize()
        try:
            assert not core.controller.is_running
            assert not core.registry.is_running
        finally:
            await core.shutdown()

    @pytest.mark.asyncio
    async def test_reinitialize_does_not_rewire(self):
        core = make_core()

        await core.initialize()
        await core.initialize()
        await core.shutdown()
        await core.initialize()
        await core.shutdown()

        assert len(core.controller.listeners("task_completed")) == 1
        assert len(core.registry.listeners("config_event")) == 1

    def test_factory_uses_given_config(self):
        config = ConvergenceConfig(autonomous=False)
        core = create_convergence_core(config)

        assert isinstance(core, ConvergenceCore)
        assert core.config is config
        assert core.controller.config is config.controller


class TestWiring:

    @pytest.mark.asyncio
    async def test_completed_task_metrics(self):
        core = make_core()
        await core.initialize()
        try:
            task = await core.submit_task("research", {"query": "q"})
            await core.controller.dispatch_once()
            await core.controller.join(timeout=1)
            await drain(core)
        finally:
            await core.shutdown()

        assert task.status == TaskStatus.COMPLETED
        assert core.observability.get_counter("tasks_completed_total", {"type": "research"}) == 1
        assert "task_duration_ms_count" in core.observability.export_prometheus()

    @pytest.mark.asyncio
    async def test_failed_task_metrics_and_notification(self):
        core = make_core()
        core.controller.set_executor(CapabilityType.RESEARCH_AGENT, FailingExecutor())
        await core.initialize()
        try:
            task = await core.submit_task("research", max_retries=0)
            await core.controller.dispatch_once()
            await core.controller.join(timeout=1)
            await drain(core)
        finally:
            await core.shutdown()

        assert core.observability.get_counter(
            "tasks_failed_total", {"type": "research", "kind": "execution_failed"}
        ) == 1
        message = next(m for m in core.notifications.get_history() if m.title == "Task Failed")
        assert message.body == f"Task {task.id} (research) failed: executor failed"

    @pytest.mark.asyncio
    async def test_decisions_are_counted_and_notified(self):
        core = make_core()
        await core.initialize()
        try:
            core.controller.set_mode("supervised")
            await drain(core)
        finally:
            await core.shutdown()

        assert core.observability.get_counter("decisions_total", {"type": "route"}) == 1
        message = next(m for m in core.notifications.get_history() if m.title == "Autonomous Decision")
        assert message.body == "route: Mode changed"

    @pytest.mark.asyncio
    async def test_auto_notify_off_keeps_metrics_only(self):
        core = make_core(auto_notify=False)
        await core.initialize()
        try:
            core.controller.set_mode("supervised")
            await drain(core)
        finally:
            await core.shutdown()

        assert core.observability.get_counter("decisions_total", {"type": "route"}) == 1
        assert core.notifications.get_history() == []

    @pytest.mark.asyncio
    async def test_service_recovery_and_loss(self):
        prober = FakeProber({AGENT_URL: True}, latency_ms=12.0)
        core = make_core(prober=prober)
        await core.initialize()
        try:
            core.registry.register_service(
                ServiceEndpoint(id="agent", name="Agent", type="autonomous-agent", url=AGENT_URL)
            )
            await core.registry.run_health_cycle()
            await drain(core)

            prober.alive[AGENT_URL] = False
            await core.registry.run_health_cycle()
            await drain(core)
        finally:
            await core.shutdown()

        hub = core.observability
        assert hub.get_counter("registry_events_total", {"type": "healed"}) == 1
        assert hub.get_counter("registry_events_total", {"type": "disconnected"}) == 1
        assert 'service_latency_ms_count{service="agent"}' in hub.export_prometheus()
        assert any(e.component == "Registry" for e in hub.get_logs())

        assert titles(core).count("Service Recovered") == 1
        assert titles(core).count("Service Down") == 1
        down = next(m for m in core.notifications.get_history() if m.title == "Service Down")
        assert down.body == f"Service Agent is down. URL: {AGENT_URL}"

    @pytest.mark.asyncio
    async def test_alerts_become_notifications(self):
        core = make_core()
        await core.initialize()
        try:
            core.observability.create_alert("critical", "Disk Full", "No space left", "system")
            await drain(core)
        finally:
            await core.shutdown()

        message = next(m for m in core.notifications.get_history() if m.title == "Disk Full")
        assert message.priority.value == "urgent"
        assert message.body == "No space left"


class TestHealthAndStatus:

    @pytest.mark.asyncio
    async def test_health_checks_reflect_subsystems(self):
        core = make_core(
            prober=FakeProber({AGENT_URL: True}),
            environ={"AUTONOMOUS_AGENT_URL": AGENT_URL},
            autonomous=True,
            auto_discover=True,
        )
        await core.initialize()
        try:
            results = {r.name: r for r in await core.observability.run_health_checks()}
        finally:
            await core.shutdown()

        assert results["convergence-core"].status == HealthState.HEALTHY
        assert results["service-registry"].status == HealthState.HEALTHY
        assert results["service-registry"].message == "1/1 services healthy"
        assert results["autonomous-controller"].status == HealthState.HEALTHY
        assert results["autonomous-controller"].message == "Mode: autonomous, Tasks: 0 active"

    @pytest.mark.asyncio
    async def test_registry_without_reachable_services_is_degraded(self):
        core = make_core(auto_discover=True)
        await core.initialize()
        try:
            results = {r.name: r for r in await core.observability.run_health_checks()}
        finally:
            await core.shutdown()

        assert results["service-registry"].status == HealthState.DEGRADED
        assert results["autonomous-controller"].status == HealthState.UNHEALTHY

    @pytest.mark.asyncio
    async def test_status_snapshot(self):
        core = make_core()
        await core.initialize()
        try:
            status = core.get_status()
        finally:
            await core.shutdown()

        assert status["initialized"] is True
        assert status["config"]["autonomous"] is False
        assert status["controller"]["mode"] == "autonomous"
        assert status["registry"]["services"]["total"] == 0
        assert {h["name"] for h in status["health"]} == {
            "convergence-core", "service-registry", "autonomous-controller",
        }
        assert status["alerts"] == []

    @pytest.mark.asyncio
    async def test_enable_unrestricted_mode(self):
        core = make_core()
        core.config.controller.content_filtering = True

        core.enable_unrestricted_mode()

        assert core.config.unrestricted is True
        assert core.controller.mode == OperationMode.UNRESTRICTED
        assert core.controller.config.content_filtering is False
        assert core.registry.config.unrestricted_mode is True
