"""
Band Video Pipeline - FastAPI health surface.
Exposes liveness and readiness checks for the pipeline workers' shared dependencies.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from config import configure_logging, settings
from database import engine, Base
from metrics import metrics_endpoint
import models  # noqa: F401
from routers import health
from services.pipeline_queue import recover_stalled_sync_jobs

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    configure_logging()
    logger.info("Starting Band Video Pipeline health API")
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database schema verified")
        except Exception as e:
            logger.warning("Database bootstrap skipped: %s", e)
    try:
        recovered = await recover_stalled_sync_jobs()
        if recovered:
            logger.info("Recovered %s stalled sync jobs after startup", recovered)
    except Exception as exc:
        logger.warning("Stalled sync job recovery skipped: %s", exc)
    yield
    logger.info("Shutting down health API")


app = FastAPI(
    title="Band Video Pipeline",
    description="Ingestion, classification and promotion pipeline for band videos",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["Health"])
app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], include_in_schema=False)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Band Video Pipeline",
        "version": "0.1.0",
        "status": "running"
    }
