"""Field Dispatch API -- Main Application Entry Point

Creates the FastAPI application, configures CORS middleware, registers the
API route modules under the /api/v1 prefix and owns the lifetime of the
response-deadline scheduler.

Run with::

    uvicorn src.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.core.config import settings
from src.services.deadlineScheduler import get_scheduler

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Startup:
      - Rebuild pending response deadlines from the store and start the
        periodic reconcile loop.

    Shutdown:
      - Stop the loop and cancel every pending timer.
    """
    scheduler = get_scheduler()
    if settings.deadline_scheduler_enabled:
        await scheduler.start()
    else:
        logger.warning("Response deadline scheduler disabled by configuration")

    yield

    await scheduler.shutdown()


# ---------------------------------------------------------------------------
# Application instance
# ---------------------------------------------------------------------------

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


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
    return {
        "status": "ok",
        "version": settings.app_version,
        "active_deadlines": len(get_scheduler().list_active()),
    }


# ---------------------------------------------------------------------------
# Register API route modules
# ---------------------------------------------------------------------------

from src.api.routes import (  # noqa: E402
    deadlines,
    payments,
    payouts,
    rates,
    wallets,
    work_orders,
)

_prefix = settings.api_v1_prefix

app.include_router(work_orders.router, prefix=_prefix)
app.include_router(payments.router, prefix=_prefix)
app.include_router(payouts.router, prefix=_prefix)
app.include_router(rates.router, prefix=_prefix)
app.include_router(wallets.router, prefix=_prefix)
app.include_router(deadlines.router, prefix=_prefix)
