"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from taggerx.api.middleware import verify_api_key
from taggerx.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ImageTag,
    ModelInfo,
    ModelsResponse,
)
from taggerx.errors import DecodeFailure, InvalidDimension

if TYPE_CHECKING:
    from taggerx.config import Settings
    from taggerx.ml.inference import InferencePool
    from taggerx.ml.model_manager import ModelManager
    from taggerx.ml.tagger import Tagger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_tagger(request: Request) -> Tagger:
    tagger: Tagger = request.app.state.tagger
    return tagger


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Tag an image",
)
async def classify_image(request: Request, file: UploadFile) -> ClassifyImageResponse:
    """Tag an uploaded image and return tags above the threshold, best first."""
    settings = _get_settings(request)
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )

    file_name = file.filename or ""
    tagger = _get_tagger(request)
    try:
        result = await _get_inference_pool(request).run(tagger.tag_image, data, file_name)
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Too many concurrent requests, try again later",
        ) from None
    except (DecodeFailure, InvalidDimension) as exc:
        logger.warning("Rejected upload %s: %s", file_name, exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot decode image: {exc}",
        ) from None

    return ClassifyImageResponse(
        file_name=file_name,
        threshold=settings.threshold,
        tags=[
            ImageTag(label=ranked.tag.name, category=ranked.tag.category, confidence=ranked.probability)
            for ranked in result.tags
        ],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        session_loaded=_get_model_manager(request).is_loaded(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        completed_requests=pool.completed_count,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="Describe the configured model",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return the configured tagger model and its status."""
    settings = _get_settings(request)
    tagger = _get_tagger(request)
    loaded = _get_model_manager(request).is_loaded()
    return ModelsResponse(
        models=[
            ModelInfo(
                name=settings.model_file,
                source=settings.model_repo or "local",
                status="loaded" if loaded else "available",
                num_tags=len(tagger.tags),
                reserved_classes=settings.reserved_classes,
                image_size=settings.image_size,
                precision=settings.precision,
            )
        ]
    )
