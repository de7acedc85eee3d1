"""Pydantic request/response schemas for the FruitLens API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from fruitlens.ml.lifecycle import LifecycleState


class DisplayItem(BaseModel):
    """One guess as the UI shows it."""

    model_config = ConfigDict(from_attributes=True)

    text: str
    confidence_percent: float = Field(description="Classifier probability x 100, one decimal")
    confidence_label: str = Field(description="Formatted confidence, e.g. '92.0%'")
    magnitude: float = Field(ge=0.0, le=100.0, description="Confidence bar width (0-100)")


class DisplayResult(BaseModel):
    """Ranked fruit guesses, or the top raw guesses when nothing matched."""

    model_config = ConfigDict(from_attributes=True)

    matched: bool = Field(description="False when items are unfiltered raw predictions")
    headline: str
    items: list[DisplayItem]


class ClassifyResponse(BaseModel):
    """Response for a classification run."""

    request_id: int
    status_message: str
    stale: bool = Field(description="A newer image was submitted before this one finished")
    result: DisplayResult


class LifecycleStatus(BaseModel):
    """Classifier lifecycle snapshot."""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    state: LifecycleState
    model_name: str | None
    fallback: bool
    self_test_passed: bool | None
    warnings: list[str]
    error: str | None


class CameraStatus(BaseModel):
    active: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    classifier_state: str
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    version: int | None
    alpha: float | None
    status: str = Field(description="Model status: 'active', 'fallback', or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
