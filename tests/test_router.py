"""Tests for capability routing and the orchestration data model."""

from __future__ import annotations

import pytest

from convergence_core.orchestration import (
    CAPABILITY_MATRIX,
    Capability,
    CapabilityRouter,
    CapabilityType,
    Task,
    TaskPriority,
    TaskStatus,
    TaskType,
    default_capabilities,
)


def make_capability(cap_id, cap_type, **kwargs):
    return Capability(id=cap_id, name=cap_id.title(), type=cap_type, **kwargs)


class TestCapabilityScore:

    def test_score_formula(self):
        capability = make_capability(
            "agent", CapabilityType.AUTONOMOUS_AGENT,
            priority=2, success_rate=0.8, avg_latency_ms=500.0, current_load=1,
        )
        assert capability.score() == pytest.approx(20 + 4 - 0.5 - 1)

    def test_capacity(self):
        capability = make_capability("agent", "autonomous-agent", max_concurrent=2, current_load=2)
        assert capability.has_capacity is False

    def test_defaults_are_registered_in_order(self):
        ids = [c.id for c in default_capabilities()]
        assert ids == ["voice-provider", "autonomous-agent", "research-agent"]


class TestCapabilityRouter:

    @pytest.fixture
    def router(self):
        return CapabilityRouter()

    def test_voice_only_routes_to_voice_provider(self, router):
        result = router.route(Task(type=TaskType.VOICE), default_capabilities())

        assert result.selected.id == "voice-provider"
        assert result.should_audit is False

    def test_highest_score_wins(self, router):
        result = router.route(Task(type=TaskType.RESEARCH), default_capabilities())

        assert result.selected.id == "research-agent"
        assert result.candidate_ids == ["research-agent", "autonomous-agent"]
        assert result.scores["research-agent"] > result.scores["autonomous-agent"]
        assert result.should_audit is True

    def test_disabled_capability_is_excluded(self, router):
        capabilities = default_capabilities()
        capabilities[2].enabled = False

        result = router.route(Task(type=TaskType.RESEARCH), capabilities)

        assert result.selected.id == "autonomous-agent"
        assert result.should_audit is False

    def test_no_candidate(self, router):
        result = router.route(Task(type=TaskType.VOICE), [
            make_capability("agent", CapabilityType.AUTONOMOUS_AGENT),
        ])

        assert result.selected is None
        assert result.candidates == []

    def test_ties_keep_registration_order(self, router):
        first = make_capability("first", CapabilityType.TOOL_BRIDGE)
        second = make_capability("second", CapabilityType.CUSTOM)

        result = router.route(Task(type=TaskType.CUSTOM), [first, second])

        assert result.selected is first
        assert result.candidate_ids == ["first", "second"]

    def test_custom_matrix(self):
        router = CapabilityRouter({
            **CAPABILITY_MATRIX,
            TaskType.TEXT: frozenset({CapabilityType.CUSTOM}),
        })
        custom = make_capability("custom", CapabilityType.CUSTOM)

        assert router.route(Task(type=TaskType.TEXT), [custom]).selected is custom
        assert router.route(Task(type=TaskType.CODE), [custom]).selected is None

    def test_incomplete_matrix_is_rejected(self):
        with pytest.raises(ValueError, match="code"):
            CapabilityRouter({TaskType.TEXT: frozenset({CapabilityType.CUSTOM})})

    def test_matrix_covers_every_task_type(self):
        assert set(CAPABILITY_MATRIX) == set(TaskType)


class TestTask:

    def test_defaults(self):
        task = Task(type=TaskType.TEXT)

        assert task.status == TaskStatus.QUEUED
        assert task.priority == TaskPriority.NORMAL
        assert not task.is_terminal

    def test_priority_rank(self):
        ranks = [p.rank for p in (TaskPriority.CRITICAL, TaskPriority.HIGH, TaskPriority.NORMAL, TaskPriority.LOW)]
        assert ranks == sorted(ranks)

    def test_to_dict(self):
        task = Task(type=TaskType.CODE, input={"goal": "x"}, priority=TaskPriority.HIGH)
        data = task.to_dict()

        assert data["type"] == "code"
        assert data["priority"] == "high"
        assert data["status"] == "queued"
        assert data["input"] == {"goal": "x"}
