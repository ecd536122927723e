"""Doers API -- Main Application Entry Point

Creates the FastAPI application, configures CORS middleware, registers
the marketplace route modules under the /api/v1 prefix, and mounts the
Socket.IO ASGI application for real-time WebSocket communication.

Run with::

    uvicorn src.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.errors import register_exception_handlers
from src.core.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Shutdown:
      - Close the shared Redis client used for cache eviction.
    """
    yield

    from src.services.cacheService import close_redis

    try:
        await close_redis()
    except Exception:
        logger.exception("Failed to close Redis client")


# ---------------------------------------------------------------------------
# Application instance
# ---------------------------------------------------------------------------

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

register_exception_handlers(app)


# ---------------------------------------------------------------------------
# CORS middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health():
    """Lightweight health check for load balancers and readiness checks."""
    return {"status": "ok", "version": settings.app_version}


# ---------------------------------------------------------------------------
# Register API route modules
# ---------------------------------------------------------------------------
# Each router already defines its own prefix (e.g. /proposals, /jobs) and
# tags.  We mount them under the shared /api/v1 prefix so the full paths
# become /api/v1/proposals, /api/v1/jobs, etc.
# ---------------------------------------------------------------------------

from src.api.routes import contracts, disputes, jobs, payments, proposals  # noqa: E402

_prefix = settings.api_v1_prefix

app.include_router(proposals.router, prefix=_prefix)
app.include_router(jobs.router, prefix=_prefix)
app.include_router(contracts.router, prefix=_prefix)
app.include_router(payments.router, prefix=_prefix)
app.include_router(disputes.router, prefix=_prefix)
app.include_router(disputes.admin_router, prefix=_prefix)


# ---------------------------------------------------------------------------
# Mount Socket.IO ASGI application
# ---------------------------------------------------------------------------

from src.realtime.socketServer import socket_app  # noqa: E402

app.mount("/ws", socket_app)
