"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ecosnap.api.routes import router
from ecosnap.config import Settings, get_settings
from ecosnap.media.capture import CaptureManager
from ecosnap.media.offload import OffloadPool
from ecosnap.orchestrator import Orchestrator
from ecosnap.services.classifier import ClassificationClient
from ecosnap.services.disposal import DisposalAdvisor, DisposalCatalog
from ecosnap.services.geolocation import build_location_provider
from ecosnap.services.history import HistoryStore, InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)


def build_orchestrator(settings: Settings, pool: OffloadPool) -> Orchestrator:
    """Wire the capture, classification, advice and history components from settings."""
    backend: KeyValueStore
    if settings.history_backend == "memory":
        backend = InMemoryKeyValueStore()
    else:
        backend = JsonFileKeyValueStore(settings.history_path)

    return Orchestrator(
        capture=CaptureManager(pool, device_index=settings.camera_index),
        classifier=ClassificationClient.from_settings(settings),
        advisor=DisposalAdvisor(DisposalCatalog.load(settings.disposal_data_path)),
        history=HistoryStore(backend, limit=settings.history_limit),
        locator=build_location_provider(settings),
        pool=pool,
        camera_jpeg_quality=settings.camera_jpeg_quality,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting EcoSnap (model=%s, camera=%s, history=%s, location=%s)",
        settings.gemini_model,
        settings.camera_index,
        settings.history_backend,
        settings.location_provider,
    )

    pool = OffloadPool(settings.max_concurrent)
    orchestrator = build_orchestrator(settings, pool)
    app.state.orchestrator = orchestrator
    await orchestrator.start()

    logger.info("EcoSnap ready")
    yield

    logger.info("Shutting down EcoSnap")
    await orchestrator.shutdown()
    await orchestrator.classifier.aclose()
    pool.shutdown()
    logger.info("EcoSnap shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="EcoSnap",
        description="Waste photo classification with disposal guidance and local history",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""
    settings = get_settings()
    uvicorn.run("ecosnap.main:app", host=settings.host, port=settings.port)
