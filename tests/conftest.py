"""Shared fixtures for the convergence core tests."""

from __future__ import annotations

import asyncio
import os
from typing import Any, Dict, List, Optional

import pytest

from convergence_core.config.environment import CREDENTIAL_ENV_VARS, SERVICE_ENV_VARS
from convergence_core.registry.prober import ProbeResult


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep CONVERGENCE_* overrides and service URLs on the host out of the tests."""
    for name in list(os.environ):
        if name.startswith("CONVERGENCE_"):
            monkeypatch.delenv(name, raising=False)
    for env_vars in SERVICE_ENV_VARS.values():
        for name in env_vars:
            monkeypatch.delenv(name, raising=False)
    for name in CREDENTIAL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("NOTIFICATION_WEBHOOK_URL", raising=False)


class FakeProber:
    """Prober answering from a url -> alive table."""

    def __init__(self, alive: Optional[Dict[str, bool]] = None, latency_ms: float = 5.0):
        self.alive = dict(alive or {})
        self.latency_ms = latency_ms
        self.calls: List[str] = []

    async def probe(self, url: str) -> ProbeResult:
        self.calls.append(url)
        alive = self.alive.get(url, False)
        return ProbeResult(
            url=url,
            alive=alive,
            latency_ms=self.latency_ms,
            status_code=200 if alive else None,
            error=None if alive else "connection refused",
        )


class RaisingProber:
    async def probe(self, url: str) -> ProbeResult:
        raise RuntimeError(f"probe exploded for {url}")


class FakeNotifier:
    def __init__(self):
        self.events: List[tuple] = []

    async def notify_event(self, event_name: str, payload: Dict[str, Any]) -> Any:
        self.events.append((event_name, payload))
        return []


class BlockingExecutor:
    """Executor that waits until released, then returns or raises."""

    def __init__(self, result: Any = "done", error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.release = asyncio.Event()
        self.started: List[str] = []

    async def execute(self, task):
        self.started.append(task.id)
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.result


class GatedExecutor:
    """Executor holding each task until that task's gate is opened."""

    def __init__(self):
        self.gates: Dict[str, asyncio.Event] = {}
        self.started: List[str] = []

    def open(self, task_id: str) -> None:
        self.gates.setdefault(task_id, asyncio.Event()).set()

    def open_all(self) -> None:
        for task_id in self.started:
            self.open(task_id)

    async def execute(self, task):
        self.started.append(task.id)
        await self.gates.setdefault(task.id, asyncio.Event()).wait()
        return task.id


class FailingExecutor:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error or RuntimeError("executor failed")
        self.calls = 0

    async def execute(self, task):
        self.calls += 1
        raise self.error


@pytest.fixture
def fake_prober():
    return FakeProber()


@pytest.fixture
def fake_notifier():
    return FakeNotifier()


@pytest.fixture
def events():
    """Collects (event, payload) pairs from any emitter via on('*')."""
    collected: List[tuple] = []

    def record(event, payload):
        collected.append((event, payload))

    record.collected = collected
    return record


def event_names(recorder) -> List[str]:
    return [name for name, _ in recorder.collected]


async def settle(rounds: int = 5) -> None:
    """Let scheduled callbacks and detached tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
