"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coincounter.api.routes import router
from coincounter.config import Settings, get_settings
from coincounter.ml.classifier import CoinClassifier
from coincounter.ml.inference import FrameThrottle, InferencePool
from coincounter.ml.model_manager import OnnxModelManager

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Create the model manager, classifier, pool, and throttle on ``app.state``."""
    model_manager = OnnxModelManager(settings)
    app.state.settings = settings
    app.state.model_manager = model_manager
    app.state.classifier = CoinClassifier(settings, model_manager)
    app.state.inference_pool = InferencePool(settings)
    app.state.frame_throttle = FrameThrottle(settings.frame_interval)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting CoinCounter (device=%s, max_concurrent=%s, models_dir=%s, labels=%s)",
        settings.device,
        settings.max_concurrent,
        settings.models_dir,
        settings.labels_path,
    )

    init_state(app, settings)
    classifier: CoinClassifier = app.state.classifier
    if classifier.is_ready:
        logger.info("CoinCounter ready")
    else:
        # Keep serving: /health reports the reason and /predict answers 503.
        logger.warning("CoinCounter started without a model: %s", classifier.load_error)
    yield

    logger.info("Shutting down CoinCounter")
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()
    logger.info("CoinCounter shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="CoinCounter",
        description="Counts coins in a photo and reports their total value",
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
