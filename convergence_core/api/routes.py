"""
HTTP surface for a ConvergenceCore.

Usage:
    from convergence_core.api import create_convergence_routes
    app.include_router(create_convergence_routes(core), prefix="/convergence")
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from convergence_core.core.errors import ContentFilterError, UnknownTaskTypeError
from convergence_core.integration.convergence import ConvergenceCore
from convergence_core.observability.hub import HealthState

logger = logging.getLogger(__name__)


# ============================================================================
# Request Models
# ============================================================================

class TaskRequest(BaseModel):
    type: str
    input: Dict[str, Any] = Field(default_factory=dict)
    priority: str = Field(default="normal", pattern="^(critical|high|normal|low)$")
    max_retries: Optional[int] = Field(default=None, ge=0)


class ModeRequest(BaseModel):
    mode: str = Field(pattern="^(supervised|autonomous|unrestricted)$")


class NotifyRequest(BaseModel):
    title: str
    body: str
    priority: str = Field(default="normal", pattern="^(low|normal|high|urgent)$")
    channels: Optional[List[str]] = None


def create_convergence_routes(core: ConvergenceCore) -> APIRouter:
    """Build the router for status, metrics, tasks, mode and notifications."""
    router = APIRouter(tags=["convergence"])

    @router.get("/health")
    async def health_check():
        """Run every registered health check."""
        results = await core.observability.run_health_checks()
        healthy = all(r.status != HealthState.UNHEALTHY for r in results)
        return JSONResponse(
            content={
                "healthy": healthy,
                "checks": [r.to_dict() for r in results],
            },
            status_code=200 if healthy else 503,
        )

    @router.get("/metrics")
    async def prometheus_metrics():
        """Prometheus-compatible metrics endpoint."""
        return PlainTextResponse(
            content=core.observability.export_prometheus(),
            media_type="text/plain; charset=utf-8",
        )

    @router.get("/status")
    async def status():
        return core.get_status()

    @router.get("/dashboard")
    async def dashboard():
        return core.observability.get_dashboard_data()

    @router.get("/services")
    async def services():
        return {"services": [s.to_dict() for s in core.registry.get_services()]}

    @router.get("/capabilities")
    async def capabilities():
        return {"capabilities": [c.to_dict() for c in core.controller.get_capabilities()]}

    @router.get("/decisions")
    async def decisions(limit: int = 100):
        return {"decisions": [d.to_dict() for d in core.controller.get_decisions(limit)]}

    @router.post("/tasks", status_code=201)
    async def submit_task(request: TaskRequest):
        try:
            task = await core.submit_task(
                request.type,
                request.input,
                priority=request.priority,
                max_retries=request.max_retries,
            )
        except UnknownTaskTypeError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ContentFilterError as e:
            raise HTTPException(status_code=422, detail=str(e))

        return {"task_id": task.id, "status": task.status.value}

    @router.get("/tasks/{task_id}")
    async def get_task(task_id: str):
        task = core.controller.get_task(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
        return task.to_dict()

    @router.delete("/tasks/{task_id}")
    async def cancel_task(task_id: str):
        if core.controller.cancel_task(task_id):
            return {"task_id": task_id, "cancelled": True}
        raise HTTPException(
            status_code=404, detail=f"Task not found or already finished: {task_id}"
        )

    @router.post("/mode")
    async def set_mode(request: ModeRequest):
        if request.mode == "unrestricted":
            core.enable_unrestricted_mode()
        else:
            core.controller.set_mode(request.mode)
        return {"mode": core.controller.mode.value}

    @router.post("/notify")
    async def notify(request: NotifyRequest):
        message = await core.notifications.notify(
            request.title,
            request.body,
            priority=request.priority,
            channels=request.channels,
        )
        return {
            "id": message.id,
            "sent": message.outcome == "sent",
            "outcome": message.outcome,
            "delivered_channels": message.delivered_channels,
        }

    return router


__all__ = [
    "create_convergence_routes",
    "TaskRequest",
    "ModeRequest",
    "NotifyRequest",
]
