"""Tests for the service registry and health monitor."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeNotifier, FakeProber, RaisingProber, event_names
from convergence_core.config import RegistryConfig, discovery_targets
from convergence_core.registry import (
    ConfigEventType,
    EndpointStatus,
    EndpointType,
    ServiceDecisionType,
    ServiceEndpoint,
    ServiceRegistry,
)


def make_registry(prober=None, notifier=None, environ=None, **config):
    config.setdefault("auto_discover", False)
    return ServiceRegistry(
        RegistryConfig(**config),
        prober=prober or FakeProber(),
        notifier=notifier,
        environ=environ or {},
    )


def config_event_types(collected):
    return [payload.type for name, payload in collected if name == "config_event"]


def agent_endpoint(url="http://agent.local:8080"):
    return ServiceEndpoint(id="agent", name="Agent", type="autonomous-agent", url=url)


class SlowProber(FakeProber):
    """FakeProber that suspends before answering, like a real network round trip."""

    async def probe(self, url):
        await asyncio.sleep(0.01)
        return await super().probe(url)


# =========================================================================
# Environment & discovery
# =========================================================================

class TestEnvironment:

    def test_every_set_variable_becomes_an_endpoint(self):
        registry = make_registry(environ={
            "VOICE_PROVIDER_URL": "ws://localhost:8998",
            "TOOL_BRIDGE_URL": "http://localhost:3333",
            "MCP_SERVER_URL": "http://localhost:3334",
            "RESEARCH_AGENT_URL": "   ",
        })

        loaded = registry.load_from_environment()

        assert sorted(e.id for e in loaded) == [
            "tool-bridge-env-mcp_server_url",
            "tool-bridge-env-tool_bridge_url",
            "voice-provider-env-voice_provider_url",
        ]
        voice = registry.get_service("voice-provider-env-voice_provider_url")
        assert voice.type == EndpointType.VOICE_PROVIDER
        assert voice.status == EndpointStatus.UNKNOWN
        assert voice.auto_discovered is False
        assert len(registry.get_services_by_type("tool-bridge")) == 2

    def test_credentials_report_presence_only(self):
        registry = make_registry(environ={"OPENAI_API_KEY": "sk-secret"})

        credentials = registry.credentials()

        assert credentials["OPENAI_API_KEY"] is True
        assert credentials["HF_TOKEN"] is False
        assert "sk-secret" not in str(registry.get_status())


class TestDiscovery:

    @pytest.mark.asyncio
    async def test_answering_port_is_registered(self, events):
        prober = FakeProber({"http://localhost:8998": True})
        registry = make_registry(prober=prober)
        registry.on("*", events)

        discovered = await registry.discover_services()

        assert [e.id for e in discovered] == ["voice-provider-discovered-localhost-8998"]
        endpoint = discovered[0]
        assert endpoint.url == "ws://localhost:8998"
        assert endpoint.status == EndpointStatus.HEALTHY
        assert endpoint.auto_discovered is True
        assert endpoint.latency_ms == 5.0
        assert config_event_types(events.collected) == [ConfigEventType.DISCOVERED]
        assert len(prober.calls) == len(discovery_targets())

    @pytest.mark.asyncio
    async def test_rediscovery_does_not_duplicate(self):
        registry = make_registry(prober=FakeProber({"http://127.0.0.1:8080": True}))

        await registry.discover_services()
        again = await registry.discover_services()

        assert again == []
        assert len(registry.get_services()) == 1

    @pytest.mark.asyncio
    async def test_probe_errors_are_contained(self):
        registry = make_registry(prober=RaisingProber())

        assert await registry.discover_services() == []


# =========================================================================
# Lifecycle
# =========================================================================

class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_connects_environment_endpoints(self, events):
        prober = FakeProber({"http://agent.local:8080": True})
        registry = make_registry(
            prober=prober,
            environ={"AUTONOMOUS_AGENT_URL": "http://agent.local:8080"},
        )
        registry.on("*", events)

        await registry.start()
        try:
            endpoint = registry.get_service("autonomous-agent-env-autonomous_agent_url")
            assert endpoint.status == EndpointStatus.HEALTHY
            assert endpoint.last_check is not None
            assert ConfigEventType.CONNECTED in config_event_types(events.collected)
            assert "started" in event_names(events)
            assert registry.is_running
        finally:
            await registry.stop()

        assert not registry.is_running
        assert event_names(events)[-1] == "stopped"

    @pytest.mark.asyncio
    async def test_start_without_auto_connect_leaves_status_unknown(self):
        prober = FakeProber()
        registry = make_registry(
            prober=prober,
            environ={"AUTONOMOUS_AGENT_URL": "http://agent.local:8080"},
            auto_connect=False,
        )

        await registry.start()
        await registry.stop()

        assert prober.calls == []
        assert registry.get_services()[0].status == EndpointStatus.UNKNOWN


# =========================================================================
# Health cycle
# =========================================================================

class TestHealthCycle:

    @pytest.mark.asyncio
    async def test_recovery_emits_healed_and_heal_decision(self, events):
        prober = FakeProber({"http://agent.local:8080": True})
        registry = make_registry(prober=prober)
        registry.register_service(agent_endpoint())
        registry.on("*", events)

        await registry.run_health_cycle()

        assert config_event_types(events.collected) == [
            ConfigEventType.CONNECTED,
            ConfigEventType.HEALED,
        ]
        decisions = registry.get_decisions()
        assert len(decisions) == 1
        assert decisions[0].type == ServiceDecisionType.HEAL
        assert decisions[0].service == "agent"
        assert decisions[0].approved is True
        assert decisions[0].executed is True

    @pytest.mark.asyncio
    async def test_steady_state_emits_nothing(self, events):
        registry = make_registry(prober=FakeProber({"http://agent.local:8080": True}))
        registry.register_service(agent_endpoint())
        await registry.run_health_cycle()
        registry.on("*", events)

        await registry.run_health_cycle()

        assert config_event_types(events.collected) == []
        assert len(registry.get_decisions()) == 1

    @pytest.mark.asyncio
    async def test_loss_emits_disconnected_and_notifies(self, events):
        prober = FakeProber({"http://agent.local:8080": True})
        notifier = FakeNotifier()
        registry = make_registry(prober=prober, notifier=notifier)
        registry.register_service(agent_endpoint())
        await registry.run_health_cycle()
        registry.on("*", events)

        prober.alive["http://agent.local:8080"] = False
        await registry.run_health_cycle()

        endpoint = registry.get_service("agent")
        assert endpoint.status == EndpointStatus.UNHEALTHY
        assert config_event_types(events.collected) == [ConfigEventType.DISCONNECTED]

        assert len(notifier.events) == 1
        name, payload = notifier.events[0]
        assert name == "service.down"
        assert payload["service"] == "Agent"
        assert payload["url"] == "http://agent.local:8080"
        assert payload["last_seen"]

        notification = next(p for n, p in events.collected if n == "notification")
        assert notification["type"] == "service_down"
        assert "Service Down: Agent" in notification["message"]

    @pytest.mark.asyncio
    async def test_raising_probe_marks_unhealthy(self, events):
        registry = make_registry(prober=FakeProber({"http://agent.local:8080": True}))
        registry.register_service(agent_endpoint())
        await registry.run_health_cycle()
        registry.on("*", events)

        registry.prober = RaisingProber()
        await registry.run_health_cycle()

        assert registry.get_service("agent").status == EndpointStatus.UNHEALTHY
        assert config_event_types(events.collected) == [
            ConfigEventType.ERROR,
            ConfigEventType.DISCONNECTED,
        ]

    @pytest.mark.asyncio
    async def test_failed_notification_does_not_escape(self, events):
        class BrokenNotifier:
            async def notify_event(self, event_name, payload):
                raise ConnectionError("notification backend down")

        prober = FakeProber({"http://agent.local:8080": True})
        registry = make_registry(prober=prober, notifier=BrokenNotifier())
        registry.register_service(agent_endpoint())
        await registry.run_health_cycle()
        registry.on("*", events)

        prober.alive["http://agent.local:8080"] = False
        await registry.run_health_cycle()

        assert "notification" in event_names(events)

    @pytest.mark.asyncio
    async def test_auto_heal_off_records_no_decision(self):
        registry = make_registry(
            prober=FakeProber({"http://agent.local:8080": True}), auto_heal=False
        )
        registry.register_service(agent_endpoint())

        await registry.run_health_cycle()

        assert registry.get_decisions() == []

    @pytest.mark.asyncio
    async def test_supervised_registry_does_not_execute_decisions(self):
        registry = make_registry(
            prober=FakeProber({"http://agent.local:8080": True}), autonomous_mode=False
        )
        registry.register_service(agent_endpoint())

        await registry.run_health_cycle()

        decision = registry.get_decisions()[0]
        assert decision.approved is False
        assert decision.executed is False

    @pytest.mark.asyncio
    async def test_slow_endpoint_is_degraded_but_reachable(self):
        registry = make_registry(
            prober=FakeProber({"http://agent.local:8080": True}, latency_ms=250.0),
            degraded_latency_ms=100.0,
        )
        registry.register_service(agent_endpoint())

        await registry.run_health_cycle()

        endpoint = registry.get_service("agent")
        assert endpoint.status == EndpointStatus.DEGRADED
        assert endpoint.status.is_reachable
        assert registry.get_healthy_services() == []
        assert registry.get_status()["services"]["degraded"] == 1

    @pytest.mark.asyncio
    async def test_empty_registry_cycle_is_a_no_op(self):
        prober = FakeProber()
        registry = make_registry(prober=prober)

        await registry.force_health_check()

        assert prober.calls == []

    @pytest.mark.asyncio
    async def test_overlapping_cycles_on_steady_endpoint_emit_nothing(self, events):
        registry = make_registry(prober=SlowProber({"http://agent.local:8080": True}))
        registry.register_service(agent_endpoint())
        await registry.run_health_cycle()
        registry.on("*", events)

        await asyncio.gather(registry.run_health_cycle(), registry.force_health_check())

        assert config_event_types(events.collected) == []
        assert registry.get_service("agent").status == EndpointStatus.HEALTHY
        assert len(registry.prober.calls) == 3

    @pytest.mark.asyncio
    async def test_overlapping_cycles_report_a_loss_once(self, events):
        prober = SlowProber({"http://agent.local:8080": True})
        notifier = FakeNotifier()
        registry = make_registry(prober=prober, notifier=notifier)
        registry.register_service(agent_endpoint())
        await registry.run_health_cycle()
        registry.on("*", events)

        prober.alive["http://agent.local:8080"] = False
        await asyncio.gather(registry.run_health_cycle(), registry.run_health_cycle())

        assert config_event_types(events.collected) == [ConfigEventType.DISCONNECTED]
        assert len(notifier.events) == 1


# =========================================================================
# Decisions & public API
# =========================================================================

class TestRegistryApi:

    @pytest.mark.asyncio
    async def test_approved_reconfigure_reruns_discovery(self):
        prober = FakeProber()
        registry = make_registry(prober=prober)

        decision = await registry.request_reconfigure("topology changed")

        assert decision.type == ServiceDecisionType.RECONFIGURE
        assert decision.service == "*"
        assert decision.executed is True
        assert len(prober.calls) == len(discovery_targets())

    def test_register_service_resets_status(self, events):
        registry = make_registry()
        registry.on("*", events)
        endpoint = agent_endpoint()
        endpoint.status = EndpointStatus.HEALTHY
        endpoint.last_check = 123.0

        registry.register_service(endpoint)

        assert endpoint.status == EndpointStatus.UNKNOWN
        assert endpoint.last_check is None
        assert config_event_types(events.collected) == [ConfigEventType.CONFIG_CHANGED]

    def test_register_service_upserts_by_id(self):
        registry = make_registry()
        registry.register_service(agent_endpoint())
        registry.register_service(agent_endpoint(url="http://agent.local:9090"))

        assert len(registry.get_services()) == 1
        assert registry.get_service("agent").url == "http://agent.local:9090"

    def test_modes_emit_mode_changed(self, events):
        registry = make_registry()
        registry.on("*", events)

        registry.set_autonomous_mode(False)
        registry.set_unrestricted_mode(True)

        changes = [p for n, p in events.collected if n == "mode_changed"]
        assert changes == [{"autonomous_mode": False}, {"unrestricted_mode": True}]
        assert registry.get_config()["unrestricted_mode"] is True

    def test_status_shape(self):
        registry = make_registry()
        registry.register_service(agent_endpoint())

        status = registry.get_status()

        assert status["running"] is False
        assert status["services"] == {"total": 1, "healthy": 0, "degraded": 0, "unhealthy": 0}
        assert status["autonomous_mode"] is True
        assert status["decisions_count"] == 0
