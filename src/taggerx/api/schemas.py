"""Pydantic request/response schemas for the TaggerX API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ImageTag(BaseModel):
    """A single predicted tag with its probability."""

    label: str
    category: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassifyImageResponse(BaseModel):
    """Response for the image classification endpoint."""

    file_name: str
    threshold: float
    tags: list[ImageTag] = Field(description="Tags above the threshold, highest probability first")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    session_loaded: bool
    concurrent_requests: int
    queue_depth: int
    completed_requests: int


class ModelInfo(BaseModel):
    """Information about the configured tagger model."""

    name: str
    source: str = Field(description="Hugging Face repo id, or 'local' for files under the assets path")
    status: str = Field(description="Model status: 'loaded' or 'available'")
    num_tags: int
    reserved_classes: int
    image_size: int
    precision: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
