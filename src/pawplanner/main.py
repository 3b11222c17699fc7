"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from pawplanner.config import Settings
    from pawplanner.ml.model_manager import ModelManager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pawplanner.api.routes import router
from pawplanner.config import get_settings
from pawplanner.detection.sessions import SessionRegistry
from pawplanner.ml.inference import InferencePool
from pawplanner.ml.model_manager import OnnxModelManager
from pawplanner.ml.object_detector import OnnxObjectDetector
from pawplanner.ml.preprocessing import PillowPreprocessor

logger = logging.getLogger(__name__)


def build_state(app: FastAPI, settings: Settings) -> None:
    """Create the inference pool, model manager, detector, and session registry."""
    app.state.settings = settings

    inference_pool = InferencePool(settings)
    model_manager = OnnxModelManager(settings)
    detector = OnnxObjectDetector(
        model_manager,
        PillowPreprocessor(settings.max_image_pixels),
        settings.detection_model,
        score_threshold=settings.score_threshold,
    )

    app.state.inference_pool = inference_pool
    app.state.model_manager = model_manager
    app.state.detector = detector
    app.state.sessions = SessionRegistry(
        detector,
        runner=inference_pool.run,
        max_sessions=settings.max_sessions,
        ttl=settings.session_ttl,
    )


async def _maintenance_loop(model_manager: ModelManager, sessions: SessionRegistry, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        model_manager.unload_idle_models()
        sessions.evict_idle()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting PawPlanner (device=%s, max_concurrent=%s, model=%s, threshold=%.2f)",
        settings.device,
        settings.max_concurrent,
        settings.detection_model,
        settings.score_threshold,
    )

    build_state(app, settings)
    maintenance = asyncio.create_task(
        _maintenance_loop(app.state.model_manager, app.state.sessions, settings.maintenance_interval)
    )

    logger.info("PawPlanner ready")
    yield

    logger.info("Shutting down PawPlanner")
    maintenance.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await maintenance
    app.state.sessions.shutdown()
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()
    logger.info("PawPlanner shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="PawPlanner",
        description="Photo object detection with deduplicated, label-sorted results",
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
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "pawplanner.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
