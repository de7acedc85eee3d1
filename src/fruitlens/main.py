"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fruitlens.api.routes import router
from fruitlens.config import Settings, get_settings
from fruitlens.ml.image_classifier import ModelConfig
from fruitlens.ml.inference import InferencePool
from fruitlens.ml.lifecycle import ClassifierLifecycle
from fruitlens.ml.model_manager import OnnxModelManager
from fruitlens.pipeline import FruitPipeline

logger = logging.getLogger(__name__)


def build_pipeline(settings: Settings, pool: InferencePool, loader: OnnxModelManager) -> FruitPipeline:
    """Wire the lifecycle manager and pipeline from settings."""
    lifecycle = ClassifierLifecycle(
        loader,
        pool,
        primary=ModelConfig(
            version=settings.model_version,
            alpha=settings.model_alpha,
            model_url=settings.model_url,
        ),
        self_test=settings.self_test,
        top_k=settings.top_k,
    )
    return FruitPipeline(
        lifecycle,
        capture_size=(settings.camera_width, settings.camera_height),
        max_image_pixels=settings.max_image_pixels,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: start loading the classifier, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FruitLens (device=%s, max_concurrent=%s, model=v%s alpha=%s url=%s)",
        settings.device,
        settings.max_concurrent,
        settings.model_version,
        settings.model_alpha,
        settings.model_url,
    )

    inference_pool = InferencePool(settings)
    model_manager = OnnxModelManager(settings)
    pipeline = build_pipeline(settings, inference_pool, model_manager)
    app.state.inference_pool = inference_pool
    app.state.model_manager = model_manager
    app.state.pipeline = pipeline

    # Loading runs in the background; /status reports progress meanwhile.
    init_task = asyncio.create_task(pipeline.lifecycle.initialize())
    yield

    logger.info("Shutting down FruitLens")
    init_task.cancel()
    with suppress(asyncio.CancelledError):
        await init_task
    pipeline.stop_camera()
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("FruitLens shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FruitLens",
        description="Identify fruit in camera captures and uploaded photos",
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
    uvicorn.run("fruitlens.main:app", host=settings.host, port=settings.port)
