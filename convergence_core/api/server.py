"""
Convergence Core API Server.

Usage:
    convergence serve --port 8010
    # or
    uvicorn convergence_core.api.server:create_app --factory --port 8010
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from convergence_core import __version__
from convergence_core.api.routes import create_convergence_routes
from convergence_core.config.core_config import load_config
from convergence_core.integration.convergence import ConvergenceCore, create_convergence_core

logger = logging.getLogger(__name__)


def create_app(core: Optional[ConvergenceCore] = None) -> FastAPI:
    """
    Build a FastAPI app bound to one ConvergenceCore.

    The core is initialized on startup and shut down on exit.
    """
    core = core or create_convergence_core(load_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info(f"Convergence Core API v{__version__} Starting...")
        logger.info("=" * 60)
        await core.initialize()
        try:
            yield
        finally:
            await core.shutdown()
            logger.info("Convergence Core API stopped")

    app = FastAPI(
        title="Convergence Core API",
        description="Task orchestration, service registry and observability",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.core = core
    app.include_router(create_convergence_routes(core))
    return app


__all__ = ["create_app"]
