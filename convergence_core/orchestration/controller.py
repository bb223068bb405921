"""
Autonomous Task Controller
==========================

Owns the priority task queue, the concurrency-bounded dispatch loop, task
lifecycle transitions, retries, queue-timeout eviction, capability
self-healing and the decision log.

Architecture:
    submit_task() ──► priority queue ──► dispatch tick (0.1s)
                                             │
                                             ▼
                                    CapabilityRouter.route()
                                             │
                                             ▼
                              detached executor task (asyncio)
                                             │
                        ┌────────────────────┴────────────────────┐
                        ▼                                         ▼
                 completed (stats↑)                  failed (stats↓) ──► retry / failed

    health tick (10s): disable capabilities below 0.5 success rate,
    re-enable after cooldown at baseline 0.7, evict aged queued tasks.

All controller state is mutated on the event loop thread. Executors run as
independent asyncio tasks; only their completion bookkeeping touches
controller state, and it runs without awaiting in between.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict, deque
from dataclasses import fields, replace
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from convergence_core.config.core_config import ControllerConfig
from convergence_core.core.errors import (
    ClassifiedError,
    ContentFilterError,
    FailureKind,
    UnknownTaskTypeError,
)
from convergence_core.core.events import EventEmitter
from convergence_core.orchestration.executors import (
    ExecutorLike,
    GenericExecutor,
    build_default_executors,
    run_executor,
)
from convergence_core.orchestration.models import (
    DECISION_CONFIDENCE,
    Capability,
    CapabilityType,
    Decision,
    DecisionType,
    OperationMode,
    Task,
    TaskPriority,
    TaskStatus,
    TaskType,
    default_capabilities,
)
from convergence_core.orchestration.router import CapabilityRouter

logger = logging.getLogger(__name__)

ContentFilter = Callable[[Dict[str, Any]], bool]

NO_CAPABILITY_ERROR = "No capable agent available"
QUEUE_TIMEOUT_ERROR = "Task timeout in queue"
FILTERED_ERROR = "Content filtered by guardrails"


def allow_all_content(payload: Dict[str, Any]) -> bool:
    """Default content filter: an empty blocklist, nothing is rejected."""
    return False


class AutonomousController(EventEmitter):
    """
    Priority-queue task controller with self-healing capability routing.

    Events:
        started, stopped, task_queued, task_started, task_completed,
        task_failed, task_cancelled, task_timeout, task_filtered, decision,
        mode_changed, config_updated, capability_registered,
        capability_reenabled, guardrails_disabled, health_check, log,
        plus the per-family executor events.

    task_failed and task_timeout carry a dict with ``task``, ``kind``,
    ``error`` and ``error_category``; other task events carry the Task.

    Example:
        >>> controller = AutonomousController(ControllerConfig(max_retries=1))
        >>> await controller.start()
        >>> task = await controller.submit_task("research", {"query": "q"})
    """

    def __init__(
        self,
        config: Optional[ControllerConfig] = None,
        router: Optional[CapabilityRouter] = None,
        content_filter: Optional[ContentFilter] = None,
        install_defaults: bool = True,
    ):
        super().__init__()
        self.config = config or ControllerConfig()
        self.router = router or CapabilityRouter()
        self.content_filter: ContentFilter = content_filter or allow_all_content

        self._capabilities: Dict[str, Capability] = {}
        self._executors: Dict[CapabilityType, ExecutorLike] = build_default_executors(
            self.emit, self._make_decision
        )
        self._capability_executors: Dict[str, ExecutorLike] = {}
        self._fallback_executor = GenericExecutor(self.emit)

        self._queue: List[Task] = []
        self._active: Dict[str, Task] = {}
        self._tasks: "OrderedDict[str, Task]" = OrderedDict()
        self._terminal_ids: Deque[str] = deque()
        self._decisions: List[Decision] = []

        self._jobs: Dict[str, asyncio.Task] = {}
        self._loops: List[asyncio.Task] = []
        self._cooldowns: Dict[str, asyncio.Task] = {}
        self._disabled_at: Dict[str, float] = {}
        self._running = False

        self._stats = {"completed": 0, "failed": 0, "cancelled": 0, "timed_out": 0}

        if install_defaults:
            for capability in default_capabilities():
                self._capabilities[capability.id] = capability

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def mode(self) -> OperationMode:
        return OperationMode(self.config.mode)

    async def start(self) -> None:
        """Start the dispatch and health loops."""
        if self._running:
            return
        self._running = True

        self._log("Starting Autonomous Controller", {
            "mode": self.config.mode,
            "self_healing": self.config.self_healing,
            "content_filtering": self.config.content_filtering,
        })

        self._loops = [
            asyncio.create_task(self._dispatch_loop()),
            asyncio.create_task(self._health_loop()),
        ]
        self.emit("started", {"config": self.get_config()})

    async def stop(self) -> None:
        """Stop the loops. In-flight executions are left to finish; see join()."""
        if not self._running:
            return
        self._running = False

        pending = self._loops + list(self._cooldowns.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._loops = []
        self._cooldowns.clear()

        self._log("Autonomous Controller stopped")
        self.emit("stopped", None)

    async def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight executions. Returns False on timeout."""
        jobs = list(self._jobs.values())
        if not jobs:
            return True
        done, pending = await asyncio.wait(jobs, timeout=timeout)
        return not pending

    async def _dispatch_loop(self) -> None:
        while self._running:
            try:
                await self.dispatch_once()
                await asyncio.sleep(self.config.dispatch_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[Controller] Dispatch tick failed: {e}")
                await asyncio.sleep(self.config.dispatch_interval)

    async def _health_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.config.health_check_interval)
                await self.run_health_check()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[Controller] Health tick failed: {e}")

    # =========================================================================
    # MODE CONTROL
    # =========================================================================

    def set_mode(self, mode: Union[OperationMode, str]) -> None:
        new_mode = OperationMode(mode)
        previous = self.mode
        self.config.mode = new_mode.value

        if new_mode == OperationMode.UNRESTRICTED:
            self.config.content_filtering = False
            self.config.safety_guardrails = False
            self._log("UNRESTRICTED MODE ENABLED - all guardrails disabled")
        elif new_mode == OperationMode.SUPERVISED:
            self.config.content_filtering = True
            self.config.safety_guardrails = True

        change = {"previous_mode": previous.value, "new_mode": new_mode.value}
        self._make_decision(DecisionType.ROUTE, "Mode changed", change, {"mode": new_mode.value})
        self.emit("mode_changed", change)

    def enable_unrestricted_mode(self) -> None:
        self.set_mode(OperationMode.UNRESTRICTED)

    def disable_guardrails(self) -> None:
        """Turn filtering and safety checks off without changing mode."""
        self.config.content_filtering = False
        self.config.safety_guardrails = False
        self._log("All guardrails and content filtering disabled")
        self.emit("guardrails_disabled", None)

    # =========================================================================
    # TASK MANAGEMENT
    # =========================================================================

    async def submit_task(
        self,
        task_type: Union[TaskType, str],
        input: Optional[Dict[str, Any]] = None,
        priority: Union[TaskPriority, str] = TaskPriority.NORMAL,
        max_retries: Optional[int] = None,
    ) -> Task:
        """
        Queue a task for dispatch.

        Raises:
            UnknownTaskTypeError: type or priority is not recognised
            ContentFilterError: the content filter itself raised
        """
        try:
            task_type = TaskType(task_type)
            priority = TaskPriority(priority)
        except ValueError as e:
            raise UnknownTaskTypeError(str(e)) from e

        payload = dict(input or {})
        task = Task(
            type=task_type,
            input=payload,
            priority=priority,
            max_retries=self.config.max_retries if max_retries is None else max_retries,
        )
        self._tasks[task.id] = task

        if self.config.content_filtering and self.mode != OperationMode.UNRESTRICTED:
            try:
                rejected = self.content_filter(payload)
            except Exception as e:
                del self._tasks[task.id]
                raise ContentFilterError(f"Content filter failed: {e}") from e

            if rejected:
                task.status = TaskStatus.CANCELLED
                task.error = FILTERED_ERROR
                task.completed_at = time.time()
                self._remember_terminal(task)
                self._log(f"Task {task.id} rejected by content filter")
                self.emit("task_filtered", task)
                return task
        else:
            self._log(f"Task accepted (unfiltered): {task.id}", {
                "type": task.type.value,
                "priority": task.priority.value,
            })

        self._insert_by_priority(task)
        self.emit("task_queued", task)
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def cancel_task(self, task_id: str) -> bool:
        """
        Cancel a non-terminal task.

        Cancelling a running task is cooperative: the executor keeps running,
        its result is discarded, and the capability load is released when it
        returns.
        """
        task = self._tasks.get(task_id)
        if task is None or task.is_terminal:
            return False

        if task in self._queue:
            self._queue.remove(task)
        self._active.pop(task.id, None)

        task.status = TaskStatus.CANCELLED
        task.completed_at = time.time()
        self._stats["cancelled"] += 1
        self._remember_terminal(task)

        self._log(f"Task {task.id} cancelled")
        self.emit("task_cancelled", task)
        return True

    def get_queue(self) -> List[Task]:
        """Queued tasks in dispatch order."""
        return list(self._queue)

    def get_active_tasks(self) -> List[Task]:
        return list(self._active.values())

    def _insert_by_priority(self, task: Task) -> None:
        """Insert at the back of the task's priority class."""
        rank = task.priority.rank
        index = len(self._queue)
        for i, queued in enumerate(self._queue):
            if queued.priority.rank > rank:
                index = i
                break
        self._queue.insert(index, task)

    def _remember_terminal(self, task: Task) -> None:
        self._terminal_ids.append(task.id)
        while len(self._terminal_ids) > self.config.task_history_limit:
            evicted = self._terminal_ids.popleft()
            self._tasks.pop(evicted, None)

    # =========================================================================
    # DISPATCH
    # =========================================================================

    async def dispatch_once(self) -> Optional[Task]:
        """Run one dispatch tick. Returns the task that started, if any."""
        if len(self._active) >= self.config.max_concurrent_tasks:
            return None
        if not self._queue:
            return None

        task = self._queue.pop(0)
        routing = self.router.route(task, self._capabilities.values())
        capability = routing.selected

        if capability is None:
            if task.retry_count < task.max_retries:
                task.retry_count += 1
                self._insert_by_priority(task)
                self._log(f"No capability for {task.id}, requeued (attempt {task.retry_count})")
            else:
                self._fail(task, NO_CAPABILITY_ERROR, FailureKind.ROUTING_FAILED)
            return None

        if self.config.intelligent_routing and routing.should_audit:
            self._make_decision(
                DecisionType.ROUTE,
                "Selected capability for task",
                {
                    "task_id": task.id,
                    "task_type": task.type.value,
                    "candidates": routing.candidate_ids,
                },
                {"selected": capability.id},
            )

        task.assigned_to = capability.id
        task.status = TaskStatus.ASSIGNED
        task.status = TaskStatus.RUNNING
        task.started_at = time.time()
        self._active[task.id] = task
        capability.current_load += 1

        self.emit("task_started", task)
        self._log(f"Task {task.id} assigned to {capability.name}")

        job = asyncio.create_task(self._execute(task, capability))
        self._jobs[task.id] = job
        job.add_done_callback(lambda _job, task_id=task.id: self._forget_job(task_id, _job))
        return task

    def _forget_job(self, task_id: str, job: asyncio.Task) -> None:
        if self._jobs.get(task_id) is job:
            del self._jobs[task_id]

    def _resolve_executor(self, capability: Capability) -> ExecutorLike:
        executor = self._capability_executors.get(capability.id)
        if executor is None:
            executor = self._executors.get(capability.type, self._fallback_executor)
        return executor

    async def _execute(self, task: Task, capability: Capability) -> None:
        started = time.monotonic()
        executor = self._resolve_executor(capability)

        try:
            try:
                result = await run_executor(executor, task)
            finally:
                capability.current_load = max(0, capability.current_load - 1)
        except asyncio.CancelledError:
            self._active.pop(task.id, None)
            raise
        except Exception as e:
            self._on_execution_failed(task, capability, e)
        else:
            elapsed_ms = (time.monotonic() - started) * 1000
            self._on_execution_succeeded(task, capability, result, elapsed_ms)

    def _on_execution_succeeded(
        self,
        task: Task,
        capability: Capability,
        result: Any,
        elapsed_ms: float,
    ) -> None:
        # Capability statistics count every execution, cancelled or not
        capability.avg_latency_ms = (capability.avg_latency_ms + elapsed_ms) / 2
        capability.success_rate = capability.success_rate * 0.9 + 0.1

        if task.status == TaskStatus.CANCELLED:
            return

        task.status = TaskStatus.COMPLETED
        task.completed_at = time.time()
        task.result = result
        self._active.pop(task.id, None)

        self._stats["completed"] += 1
        self._remember_terminal(task)
        self.emit("task_completed", task)
        self._log(f"Task {task.id} completed in {elapsed_ms:.0f}ms")

    def _on_execution_failed(self, task: Task, capability: Capability, error: Exception) -> None:
        capability.success_rate *= 0.9

        if task.status == TaskStatus.CANCELLED:
            return

        self._active.pop(task.id, None)
        classified = ClassifiedError.from_exception(
            error, {"task_id": task.id, "capability_id": capability.id}
        )

        if task.retry_count < task.max_retries:
            task.retry_count += 1
            task.status = TaskStatus.QUEUED
            task.assigned_to = None
            self._insert_by_priority(task)
            self._log(f"Retrying task {task.id} (attempt {task.retry_count}): {error}")

            if self.config.self_healing:
                self._make_decision(
                    DecisionType.HEAL,
                    "Task retry with different capability",
                    {"task_id": task.id, "failed_capability": capability.id},
                    {"action": "retry"},
                )
        else:
            self._fail(
                task,
                str(error) or type(error).__name__,
                FailureKind.EXECUTION_FAILED,
                classified,
            )

    def _fail(
        self,
        task: Task,
        error: str,
        kind: FailureKind,
        classified: Optional[ClassifiedError] = None,
        event: str = "task_failed",
    ) -> None:
        task.status = TaskStatus.FAILED
        task.completed_at = time.time()
        task.error = error
        self._active.pop(task.id, None)

        self._stats["failed"] += 1
        if kind == FailureKind.QUEUE_TIMEOUT:
            self._stats["timed_out"] += 1
        self._remember_terminal(task)

        self._log(f"Task {task.id} failed: {error}")
        self.emit(event, {
            "task": task,
            "kind": kind.value,
            "error": error,
            "error_category": classified.category.value if classified else None,
        })

    # =========================================================================
    # HEALTH MONITORING
    # =========================================================================

    async def run_health_check(self) -> Dict[str, Any]:
        """Run one health tick and return the status snapshot it emitted."""
        # Cooldown timers do not survive stop(); catch up here
        now = time.time()
        for capability_id, disabled_at in list(self._disabled_at.items()):
            if capability_id in self._cooldowns:
                continue
            if now - disabled_at >= self.config.capability_cooldown:
                capability = self._capabilities.get(capability_id)
                if capability is None:
                    del self._disabled_at[capability_id]
                else:
                    self._reenable(capability)

        if self.config.self_healing:
            for capability in self._capabilities.values():
                if capability.enabled and capability.success_rate < self.config.unhealthy_success_rate:
                    self._disable_underperformer(capability)

        now = time.time()
        expired = [
            task for task in self._queue
            if now - task.created_at > self.config.task_timeout_seconds
        ]
        for task in expired:
            self._queue.remove(task)
            self._fail(task, QUEUE_TIMEOUT_ERROR, FailureKind.QUEUE_TIMEOUT, event="task_timeout")

        status = self.get_status()
        self.emit("health_check", status)
        return status

    def _disable_underperformer(self, capability: Capability) -> None:
        capability.enabled = False
        self._disabled_at[capability.id] = time.time()
        self._make_decision(
            DecisionType.HEAL,
            "Disabled underperforming capability",
            {"capability_id": capability.id, "success_rate": capability.success_rate},
            {"action": "disable"},
        )
        if capability.id not in self._cooldowns:
            self._cooldowns[capability.id] = asyncio.create_task(
                self._reenable_after_cooldown(capability)
            )

    async def _reenable_after_cooldown(self, capability: Capability) -> None:
        try:
            await asyncio.sleep(self.config.capability_cooldown)
        finally:
            self._cooldowns.pop(capability.id, None)

        self._reenable(capability)

    def _reenable(self, capability: Capability) -> None:
        self._disabled_at.pop(capability.id, None)
        capability.enabled = True
        capability.success_rate = self.config.capability_baseline_success_rate
        self._log(f"Capability {capability.id} re-enabled after cooldown")
        self.emit("capability_reenabled", capability)

    # =========================================================================
    # CAPABILITIES
    # =========================================================================

    def register_capability(
        self,
        capability: Capability,
        executor: Optional[ExecutorLike] = None,
    ) -> None:
        self._capabilities[capability.id] = capability
        if executor is not None:
            self._capability_executors[capability.id] = executor
        self._log(f"Capability registered: {capability.id} ({capability.type.value})")
        self.emit("capability_registered", capability)

    def get_capabilities(self) -> List[Capability]:
        return list(self._capabilities.values())

    def get_capability(self, capability_id: str) -> Optional[Capability]:
        return self._capabilities.get(capability_id)

    def set_capability_enabled(self, capability_id: str, enabled: bool) -> bool:
        capability = self._capabilities.get(capability_id)
        if capability is None:
            return False
        capability.enabled = enabled
        self._disabled_at.pop(capability_id, None)
        if enabled:
            cooldown = self._cooldowns.pop(capability_id, None)
            if cooldown is not None:
                cooldown.cancel()
        return True

    def set_executor(self, capability_type: Union[CapabilityType, str], executor: ExecutorLike) -> None:
        """Replace the executor used for a whole capability family."""
        self._executors[CapabilityType(capability_type)] = executor

    # =========================================================================
    # DECISIONS
    # =========================================================================

    def _make_decision(
        self,
        decision_type: DecisionType,
        reason: str,
        input: Any = None,
        output: Any = None,
    ) -> Decision:
        decision_type = DecisionType(decision_type)
        supervised = self.mode == OperationMode.SUPERVISED
        decision = Decision(
            type=decision_type,
            reason=reason,
            input=input,
            output=output,
            confidence=DECISION_CONFIDENCE[decision_type],
            executed=not supervised,
            requires_approval=supervised,
        )
        self._decisions.append(decision)
        self.emit("decision", decision)

        if self.config.verbose_logging:
            self._log(f"Decision: {decision_type.value} - {reason}", {
                "confidence": decision.confidence,
            })
        return decision

    def get_decisions(self, limit: int = 100) -> List[Decision]:
        if limit <= 0:
            return []
        return self._decisions[-limit:]

    # =========================================================================
    # STATUS & CONFIG
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        capabilities = list(self._capabilities.values())
        return {
            "running": self._running,
            "mode": self.config.mode,
            "tasks": {
                "queued": len(self._queue),
                "active": len(self._active),
                "completed": self._stats["completed"],
                "failed": self._stats["failed"],
                "cancelled": self._stats["cancelled"],
                "timed_out": self._stats["timed_out"],
            },
            "capabilities": {
                "total": len(capabilities),
                "enabled": sum(1 for c in capabilities if c.enabled),
            },
            "decisions": len(self._decisions),
            "config": self.get_config(),
        }

    def get_config(self) -> Dict[str, Any]:
        return self.config.to_dict()

    def update_config(self, **changes: Any) -> Dict[str, Any]:
        """
        Update configuration fields in place.

        ``mode`` is applied through set_mode(). Unknown keys raise TypeError
        and invalid values raise ValueError, before anything is changed.
        """
        known = {f.name for f in fields(self.config)}
        unknown = set(changes) - known
        if unknown:
            raise TypeError(f"Unknown controller config keys: {sorted(unknown)}")

        mode = changes.pop("mode", None)
        if mode is not None:
            mode = OperationMode(mode)
        # Throwaway copy runs the dataclass validation on the merged values
        replace(self.config, **changes)

        for key, value in changes.items():
            setattr(self.config, key, value)
        if mode is not None:
            self.set_mode(mode)

        config = self.get_config()
        self.emit("config_updated", config)
        return config

    # =========================================================================
    # LOGGING
    # =========================================================================

    def _log(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        if self.config.verbose_logging:
            logger.info(f"[Controller] {message}")
        else:
            logger.debug(f"[Controller] {message}")
        self.emit("log", {
            "timestamp": time.time(),
            "level": "info",
            "message": message,
            "data": data,
        })


__all__ = [
    "AutonomousController",
    "ContentFilter",
    "allow_all_content",
    "NO_CAPABILITY_ERROR",
    "QUEUE_TIMEOUT_ERROR",
    "FILTERED_ERROR",
]
