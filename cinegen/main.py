"""Cinegen generation service - FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cinegen.config import settings
from cinegen.observability.logger import configure_logging
from cinegen.api.v1.router import v1_router
from cinegen.api.v1.health import router as health_root_router
from cinegen.api.v1 import generations as generations_api
from cinegen.api.v1 import health as health_api
from cinegen.api.v1 import tools as tools_api
from cinegen.db.api_keys import load_leonardo_api_key
from cinegen.jobs.orchestrator import SubmissionOrchestrator
from cinegen.jobs.scheduler import PollingScheduler
from cinegen.jobs.store import GenerationRecordStore
from cinegen.leonardo.client import LeonardoClient
from cinegen.storage.result_archive import ResultArchiver

logger = logging.getLogger(__name__)


async def _resolve_api_key():
    if settings.leonardo_api_key:
        return settings.leonardo_api_key
    if settings.leonardo_key_owner_id:
        key = await load_leonardo_api_key(settings.leonardo_key_owner_id)
        if key:
            logger.info("Loaded Leonardo API key from the users table")
            return key
    logger.warning("No Leonardo API key configured; upstream calls will be rejected")
    return ""


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    configure_logging()
    logger.info(f"Starting Cinegen service on port {settings.service_port}")
    logger.info(f"Leonardo API: {settings.leonardo_base_url}")
    logger.info(
        f"Polling: first check after {settings.poll_initial_delay_seconds}s, "
        f"every {settings.poll_interval_seconds}s, max {settings.poll_max_attempts} checks"
    )

    client = LeonardoClient(api_key=await _resolve_api_key())
    store = GenerationRecordStore()
    archiver = ResultArchiver()

    on_complete = None
    if settings.archive_completed_results:
        on_complete = archiver.archive_on_complete
        logger.info(f"Archiving completed results to bucket '{settings.storage_bucket}'")

    scheduler = PollingScheduler(client, store, on_complete=on_complete)
    orchestrator = SubmissionOrchestrator(client, store, scheduler)

    # Wire collaborators into API endpoints
    generations_api.set_orchestrator(orchestrator)
    generations_api.set_tracker(scheduler)
    generations_api.set_archiver(archiver)
    health_api.set_tracker(scheduler)
    health_api.set_client(client)
    tools_api.set_client(client)

    yield

    # Shutdown
    logger.info("Shutting down Cinegen service")
    await scheduler.stop()
    await client.aclose()
    await archiver.aclose()


app = FastAPI(
    title="Cinegen Service",
    description="Leonardo AI image and video generation with status tracking",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS - allow frontend dev server and any configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints
