"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taggerx.api.routes import router
from taggerx.config import get_settings
from taggerx.ml.inference import InferencePool
from taggerx.ml.model_manager import OnnxModelManager
from taggerx.ml.tagger import Tagger

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: load the tagger on startup, release it on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting TaggerX (device=%s, precision=%s, max_concurrent=%s, model=%s)",
        settings.device,
        settings.precision,
        settings.max_concurrent,
        settings.model_file,
    )

    # Missing assets abort startup here rather than on the first request.
    model_manager = OnnxModelManager(settings)
    app.state.model_manager = model_manager
    app.state.tagger = Tagger.from_settings(settings, model_manager)
    model_manager.get_session()

    inference_pool = InferencePool(settings.max_concurrent)
    app.state.inference_pool = inference_pool

    logger.info("TaggerX ready")
    yield

    logger.info("Shutting down TaggerX")
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("TaggerX shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="TaggerX",
        description="Batch image tagging with a fixed-input-size multi-label classifier",
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
