"""FastAPI application for the prompt marketplace ledger.

Routers under ``/api/v1`` are thin adapters over the settlement, refund,
payout and result-log services. The only process-wide resources are the
database engine and the ARQ pool used for notification delivery.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from app.api.v1.api import api_router
from app.core.arq_config import close_arq_pool, get_arq_pool, ping_queue
from app.core.config import settings
from app.core.database import close_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.PROJECT_NAME} API ({settings.ENVIRONMENT})")

    try:
        await get_arq_pool()
        logger.info("ARQ job queue pool initialized")
    except (RedisError, OSError) as e:
        # Ledger operations do not depend on the queue; notifications are dropped
        logger.error(f"Job queue unavailable at startup: {e}")

    yield

    logger.info(f"Shutting down {settings.PROJECT_NAME} API")
    await close_arq_pool()
    await close_db()


app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    description="Prompt marketplace settlement, refund, payout and result-log backend",
    version=settings.VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.PUBLIC_BASE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/api/health")
async def health_check():
    """Liveness probe; touches no backing service."""
    return {"status": "ok", "service": "promptmarket-backend"}


@app.get("/api/v1/status")
async def status_check():
    """Readiness details, including whether notifications can be queued."""
    return {
        "status": "running",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "services": {
            "job_queue": "connected" if await ping_queue() else "disconnected",
        },
    }
