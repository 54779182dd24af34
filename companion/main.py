"""FastAPI wiring for the memory subsystem.

The memory manager is built once in the lifespan, before the app accepts
traffic, and handed to request handlers through :func:`get_memory`. Chat
routes themselves live outside this package.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, Query, Request

from companion.config_runtime import RuntimeConfig, get_config
from companion.errors import register_error_handlers
from companion.logging_config import configure_logging, get_last_errors
from companion.memory.manager import MemoryManager, build_memory_manager
from companion.middleware import RequestIDMiddleware

logger = logging.getLogger(__name__)


def _make_lifespan(config: RuntimeConfig | None):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build, verify and initialize the shared memory context.

        An unreachable history store aborts startup. A failing vector backend
        only degrades retrieval.
        """
        cfg = config or get_config()
        logger.info("memory.config", extra={"meta": cfg.to_dict()})
        manager = build_memory_manager(cfg)
        try:
            await manager.history.ping()
            await manager.initialize()
        except Exception:
            await manager.aclose()
            raise
        app.state.memory = manager
        logger.info("memory.startup", extra={"meta": await manager.status()})
        try:
            yield
        finally:
            await manager.aclose()
            logger.info("memory.shutdown")

    return lifespan


def get_memory(request: Request) -> MemoryManager:
    """FastAPI dependency returning the app-scoped memory manager."""
    return request.app.state.memory


router = APIRouter(tags=["Health"])


@router.get("/healthz/memory")
async def memory_health(memory: MemoryManager = Depends(get_memory)) -> dict:
    """Memory subsystem state: init state, degraded flag, Redis reachability."""
    return await memory.status()


@router.get("/logs")
async def logs(limit: int = Query(default=100, ge=1, le=500)) -> dict:
    """Recent error records from the in-process ring buffer."""
    return {"logs": get_last_errors(limit)}


def create_app(config: RuntimeConfig | None = None) -> FastAPI:
    """Composition root: logging, request ids, lifespan and error handlers."""
    load_dotenv(override=False)
    configure_logging()
    app = FastAPI(title="companion-memory", lifespan=_make_lifespan(config))
    app.add_middleware(RequestIDMiddleware)
    app.include_router(router)
    register_error_handlers(app)
    return app


__all__ = ["create_app", "get_memory"]
